import os
import secrets
import tempfile

# point the app at a throwaway database before anything imports it
_DB_DIR = tempfile.mkdtemp(prefix="responder-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
for _key in ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "OPENROUTER_API_KEY", "LLM_PROVIDER"):
    os.environ.pop(_key, None)

import pytest
from fastapi.testclient import TestClient

from backend.responder.main import app
from backend.responder.db.database import SessionLocal
from backend.responder.models.correspondence_model import User


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(mail_access_token=None):
        user = User(
            email=f"agent-{secrets.token_hex(4)}@example.com",
            name="Agent",
            api_key=secrets.token_urlsafe(16),
            mail_access_token=mail_access_token,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def headers(user):
    return {"X-API-Key": user.api_key}


@pytest.fixture
def client():
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()
