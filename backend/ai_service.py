# LLM-backed survey generation and model management
from __future__ import annotations
from typing import Optional
import os
import json
import logging
from openai import OpenAI, APIConnectionError, APIStatusError, RateLimitError
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Config
_OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
DEFAULT_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")

_client = None
if _OPENAI_API_KEY:
    _client = OpenAI(api_key=_OPENAI_API_KEY)

GENERATE_SURVEY_PROMPT = "generate-survey"

DEFAULT_META_PROMPT = (
    "You are an expert survey methodologist. Design a survey about: ${prompt}.\n"
    "Produce exactly ${numQuestions} questions. Return ONLY a JSON object:\n"
    '{"title": string, "description": string, "questions": ['
    '{"question": string, "type": "text"|"number"|"rating"|"choice"|"email", '
    '"options": [string]}]}\n'
    "Use options only for choice questions."
)

_API_ERRORS = (RateLimitError, APIStatusError, APIConnectionError)


class AIServiceError(RuntimeError):
    """Raised when the model is unavailable or returns unusable output."""


def _require_client():
    if not _client:
        raise AIServiceError("AI service is not configured (OPENAI_API_KEY missing)")
    return _client


def build_prompt(template: Optional[str], topic: str, num_questions: int) -> str:
    """Fill the meta-prompt placeholders; falls back to the built-in template."""
    return (template or DEFAULT_META_PROMPT) \
        .replace("${prompt}", topic) \
        .replace("${numQuestions}", str(num_questions))


def map_question_type(raw_type: Optional[str]) -> str:
    t = (raw_type or "").lower()
    if t in ("radio", "checkbox", "choice"):
        return "choice"
    if t in ("rating", "scale"):
        return "rating"
    if t in ("number", "email"):
        return t
    return "text"


def parse_generated_survey(content: str, topic: str) -> dict:
    """
    Turn raw model JSON into {"title", "description", "questions"}.

    Raises:
        AIServiceError: If the JSON is malformed or holds no questions.
    """
    try:
        data = json.loads(content)
    except (TypeError, json.JSONDecodeError):
        raise AIServiceError("AI returned an invalid response")

    questions = data.get("questions") if isinstance(data, dict) else None
    if not isinstance(questions, list) or not questions:
        raise AIServiceError("AI could not generate questions for this topic; try rephrasing it")

    out = []
    for q in questions:
        if not isinstance(q, dict) or not str(q.get("question") or "").strip():
            continue
        out.append({
            "text": str(q["question"]).strip(),
            "type": map_question_type(q.get("type")),
            "required": True,
            "options": [str(o) for o in (q.get("options") or [])],
        })
    if not out:
        raise AIServiceError("AI could not generate questions for this topic; try rephrasing it")

    return {
        "title": data.get("title") or topic,
        "description": data.get("description") or f'AI-generated survey on "{topic}"',
        "questions": out,
    }


def generate_survey(topic: str, num_questions: int, *, model: Optional[str] = None,
                    prompt_template: Optional[str] = None) -> tuple[dict, Optional[int]]:
    """
    Generate a survey draft with the LLM.

    Returns:
        tuple[dict, int|None]: (survey draft, total tokens reported by the API)
    """
    client = _require_client()
    model = model or DEFAULT_MODEL
    prompt = build_prompt(prompt_template, topic, num_questions)
    try:
        resp = client.chat.completions.create(
            model=model,
            temperature=0.7,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": "Return only valid JSON describing a survey."},
                {"role": "user", "content": prompt},
            ],
        )
    except _API_ERRORS as exc:
        logger.warning("survey generation failed on %s: %s", model, exc)
        raise AIServiceError(f"AI request failed: {exc}") from exc

    usage = getattr(resp, "usage", None)
    total_tokens = getattr(usage, "total_tokens", None) if usage else None
    content = resp.choices[0].message.content if resp.choices else None
    if not content:
        raise AIServiceError("AI returned an empty response")
    return parse_generated_survey(content, topic), total_tokens


def check_model(model: str) -> None:
    """Send a one-token request to check that ``model`` is reachable."""
    client = _require_client()
    try:
        client.chat.completions.create(
            model=model,
            max_tokens=1,
            messages=[{"role": "user", "content": "test"}],
        )
    except _API_ERRORS as exc:
        raise AIServiceError(f"Model '{model}' is not accessible: {exc}") from exc


def list_models() -> list[str]:
    client = _require_client()
    try:
        return sorted(m.id for m in client.models.list())
    except _API_ERRORS as exc:
        raise AIServiceError(f"Listing models failed: {exc}") from exc
