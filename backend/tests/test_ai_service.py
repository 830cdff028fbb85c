import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

import ai_service
from ai_service import AIServiceError, build_prompt, map_question_type, parse_generated_survey

class FakeCompletions:
    def __init__(self, content=None, tokens=42, error=None):
        self.content, self.tokens, self.error = content, tokens, error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)],
                               usage=SimpleNamespace(total_tokens=self.tokens))

def _install(monkeypatch, completions, models=()):
    client = SimpleNamespace(
        chat=SimpleNamespace(completions=completions),
        models=SimpleNamespace(list=lambda: [SimpleNamespace(id=m) for m in models]),
    )
    monkeypatch.setattr(ai_service, "_client", client)
    return client

def test_build_prompt_substitutes_placeholders():
    assert build_prompt("Topic ${prompt}, n=${numQuestions}", "coffee", 7) == "Topic coffee, n=7"
    default = build_prompt(None, "coffee", 7)
    assert "coffee" in default and "7" in default and "${" not in default

@pytest.mark.parametrize("raw,expected", [
    ("radio", "choice"), ("checkbox", "choice"), ("choice", "choice"),
    ("rating", "rating"), ("scale", "rating"), ("number", "number"),
    ("email", "email"), ("text", "text"), ("essay", "text"), (None, "text"),
])
def test_map_question_type(raw, expected):
    assert map_question_type(raw) == expected

def test_parse_generated_survey_defaults():
    content = json.dumps({"questions": [{"question": "Favourite roast?", "type": "radio", "options": ["light", "dark"]}]})
    out = parse_generated_survey(content, "coffee")
    assert out["title"] == "coffee"
    assert "coffee" in out["description"]
    assert out["questions"] == [{"text": "Favourite roast?", "type": "choice", "required": True, "options": ["light", "dark"]}]

@pytest.mark.parametrize("content", ["not json", json.dumps({"questions": []}), json.dumps([1, 2]),
                                     json.dumps({"questions": [{"question": "  "}]})])
def test_parse_generated_survey_rejects_bad_output(content):
    with pytest.raises(AIServiceError):
        parse_generated_survey(content, "coffee")

def test_generate_survey_uses_model_and_template(monkeypatch):
    comp = FakeCompletions(content=json.dumps({
        "title": "Coffee habits", "description": "d",
        "questions": [{"question": "How many cups?", "type": "number"}],
    }), tokens=77)
    _install(monkeypatch, comp)
    draft, tokens = ai_service.generate_survey("coffee", 1, model="m-1", prompt_template="ask about ${prompt}")
    assert tokens == 77
    assert draft["title"] == "Coffee habits"
    assert draft["questions"][0]["type"] == "number"
    assert comp.calls[0]["model"] == "m-1"
    assert comp.calls[0]["messages"][-1]["content"] == "ask about coffee"

def test_generate_survey_wraps_api_errors(monkeypatch):
    err = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    _install(monkeypatch, FakeCompletions(error=err))
    with pytest.raises(AIServiceError):
        ai_service.generate_survey("coffee", 3)

def test_generate_survey_empty_content(monkeypatch):
    _install(monkeypatch, FakeCompletions(content=""))
    with pytest.raises(AIServiceError):
        ai_service.generate_survey("coffee", 3)

def test_not_configured(monkeypatch):
    monkeypatch.setattr(ai_service, "_client", None)
    with pytest.raises(AIServiceError, match="not configured"):
        ai_service.generate_survey("coffee", 3)
    with pytest.raises(AIServiceError):
        ai_service.list_models()

def test_list_and_check_models(monkeypatch):
    comp = FakeCompletions(content="ok")
    _install(monkeypatch, comp, models=["b-model", "a-model"])
    assert ai_service.list_models() == ["a-model", "b-model"]
    ai_service.check_model("a-model")
    assert comp.calls[0]["model"] == "a-model"
