import uuid

import ai_service

from conftest import ADMIN_HDR

def test_admin_requires_key(client):
    assert client.get("/admin/companies").status_code == 401
    assert client.get("/admin/companies", headers={"X-API-Key": "wrong"}).status_code == 401

def test_list_and_disable_company(client):
    email = f"{uuid.uuid4().hex}@corp.test"
    reg = client.post("/auth/register", json={"name": "Corp", "email": email}).json()
    hdr = {"X-Company-Key": reg["api_key"]}

    companies = client.get("/admin/companies", headers=ADMIN_HDR).json()
    assert any(c["email"] == email for c in companies)

    r = client.put(f"/admin/companies/{reg['company_id']}/active", json={"is_active": False}, headers=ADMIN_HDR)
    assert r.status_code == 200
    assert client.get("/surveys", headers=hdr).status_code == 403

    client.put(f"/admin/companies/{reg['company_id']}/active", json={"is_active": True}, headers=ADMIN_HDR)
    assert client.get("/surveys", headers=hdr).status_code == 200

def test_delete_company_cascades(client):
    reg = client.post("/auth/register", json={"name": "Gone", "email": f"{uuid.uuid4().hex}@gone.test"}).json()
    hdr = {"X-Company-Key": reg["api_key"]}
    client.post("/surveys", json={"title": "Doomed", "questions": [{"text": "Q"}]}, headers=hdr)
    assert client.delete(f"/admin/companies/{reg['company_id']}", headers=ADMIN_HDR).status_code == 200
    assert client.get("/surveys", headers=hdr).status_code == 401
    assert client.delete(f"/admin/companies/{reg['company_id']}", headers=ADMIN_HDR).status_code == 404

def test_meta_prompt_crud(client):
    name = f"prompt-{uuid.uuid4().hex[:6]}"
    assert client.get(f"/admin/meta-prompts/{name}", headers=ADMIN_HDR).status_code == 404
    assert client.put(f"/admin/meta-prompts/{name}", json={"prompt_text": "v1"}, headers=ADMIN_HDR).status_code == 200
    assert client.put(f"/admin/meta-prompts/{name}", json={"prompt_text": "v2"}, headers=ADMIN_HDR).status_code == 200
    assert client.get(f"/admin/meta-prompts/{name}", headers=ADMIN_HDR).json()["prompt_text"] == "v2"
    assert any(m["prompt_name"] == name for m in client.get("/admin/meta-prompts", headers=ADMIN_HDR).json())
    assert client.put(f"/admin/meta-prompts/{name}", json={"prompt_text": "  "}, headers=ADMIN_HDR).status_code == 400
    assert client.delete(f"/admin/meta-prompts/{name}", headers=ADMIN_HDR).json() == {"ok": True, "deleted": 1}
    assert client.delete(f"/admin/meta-prompts/{name}", headers=ADMIN_HDR).json() == {"ok": True, "deleted": 0}

def test_generation_uses_configured_model_and_prompt(client, company, fake_generate):
    client.put("/admin/settings/active-model", json={"model_name": "gpt-test-1"}, headers=ADMIN_HDR)
    client.put("/admin/meta-prompts/generate-survey", json={"prompt_text": "Survey on ${prompt}"}, headers=ADMIN_HDR)
    assert client.get("/admin/settings/active-model", headers=ADMIN_HDR).json() == {"model_name": "gpt-test-1", "source": "settings"}

    r = client.post("/surveys/generate", json={"topic": "commute", "num_questions": 3}, headers=company)
    assert r.json()["model"] == "gpt-test-1"
    assert fake_generate[-1]["model"] == "gpt-test-1"
    assert fake_generate[-1]["prompt_template"] == "Survey on ${prompt}"

    usage = client.get("/admin/usage", headers=ADMIN_HDR).json()["stats"]
    assert any(models.get("gpt-test-1", 0) >= 123 for models in usage.values())
    stats = client.get("/admin/stats", headers=ADMIN_HDR).json()
    assert stats["ai_tokens"] >= 123 and stats["companies"] >= 1

def test_model_management(client, monkeypatch):
    monkeypatch.setattr("ai_service.list_models", lambda: ["gpt-a", "gpt-b"])
    monkeypatch.setattr("ai_service.check_model", lambda name: None)
    assert client.get("/admin/models", headers=ADMIN_HDR).json() == {"models": ["gpt-a", "gpt-b"]}
    ok = client.post("/admin/models/check", json={"model_name": "gpt-a"}, headers=ADMIN_HDR).json()
    assert ok["status"] == "success"

def test_model_management_unconfigured(client, monkeypatch):
    monkeypatch.setattr("ai_service._client", None)
    assert client.get("/admin/models", headers=ADMIN_HDR).status_code == 502
    assert client.post("/admin/models/check", json={"model_name": "x"}, headers=ADMIN_HDR).status_code == 502

def test_ai_model_registry(client, monkeypatch):
    name = f"gpt-reg-{uuid.uuid4().hex[:6]}"
    r = client.post("/admin/ai-models", json={"model_name": f"  {name} "}, headers=ADMIN_HDR)
    assert r.status_code == 200 and r.json()["model_name"] == name
    mid = r.json()["id"]
    assert client.post("/admin/ai-models", json={"model_name": name}, headers=ADMIN_HDR).status_code == 409
    assert client.post("/admin/ai-models", json={"model_name": " "}, headers=ADMIN_HDR).status_code == 400
    assert any(m["model_name"] == name for m in client.get("/admin/ai-models", headers=ADMIN_HDR).json())

    broken = f"gpt-broken-{uuid.uuid4().hex[:6]}"
    client.post("/admin/ai-models", json={"model_name": broken}, headers=ADMIN_HDR)

    def fake_check(model):
        if model == broken:
            raise ai_service.AIServiceError("no access")
    monkeypatch.setattr("ai_service.check_model", fake_check)
    statuses = client.post("/admin/ai-models/check", headers=ADMIN_HDR).json()
    assert statuses[name]["status"] == "available"
    assert statuses[broken] == {"status": "unavailable", "message": "no access"}

    assert client.delete(f"/admin/ai-models/{mid}", headers=ADMIN_HDR).status_code == 200
    assert client.delete(f"/admin/ai-models/{mid}", headers=ADMIN_HDR).status_code == 404
    assert all(m["model_name"] != name for m in client.get("/admin/ai-models", headers=ADMIN_HDR).json())
    assert client.get("/admin/ai-models").status_code == 401
