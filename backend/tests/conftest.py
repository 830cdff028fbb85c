import os, tempfile, uuid

# configure before the app modules read their environment
_fd, _APP_DB = tempfile.mkstemp(suffix=".db")
os.close(_fd)
os.environ["DATABASE_URL"] = f"sqlite:///{_APP_DB}"
os.environ["ADMIN_API_KEY"] = "test-key"
os.environ["OPENAI_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from main import app
from db import Base, get_db

ADMIN_HDR = {"X-API-Key": "test-key"}

@pytest.fixture(scope="session")
def tmp_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    return path

@pytest.fixture(scope="session")
def test_engine(tmp_db_path):
    url = f"sqlite:///{tmp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False})

    # SQLite force foreign key constraints
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    return engine

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture(scope="session", autouse=True)
def override_di(TestingSessionLocal):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db

@pytest.fixture
def client():
    return TestClient(app)

@pytest.fixture
def company(client):
    """Register a fresh company; returns its auth headers."""
    r = client.post("/auth/register", json={"name": "Acme", "email": f"{uuid.uuid4().hex}@acme.test"})
    assert r.status_code == 200, r.text
    return {"X-Company-Key": r.json()["api_key"]}

@pytest.fixture
def fake_generate(monkeypatch):
    calls = []
    def _fake(topic, num_questions, *, model=None, prompt_template=None):
        calls.append({"topic": topic, "num_questions": num_questions, "model": model, "prompt_template": prompt_template})
        draft = {
            "title": f"About {topic}",
            "description": "generated",
            "questions": [
                {"text": f"Question {i + 1}", "type": "text", "required": True, "options": []}
                for i in range(num_questions)
            ],
        }
        return draft, 123
    monkeypatch.setattr("ai_service.generate_survey", _fake)
    return calls
