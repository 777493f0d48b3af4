"""
Pytest fixtures for the portal API tests.

Settings are read at import time, so the environment is pointed at a throwaway sqlite file and
upload directory before the application is imported.
"""
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="lvportal-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["BACKUP_SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_BACKUP_SECRET"] = "test-backup-secret"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
for _key in ("GOOGLE_PLACES_API_KEY", "AZURE_AD_CLIENT_ID", "AZURE_AD_CLIENT_SECRET", "AZURE_AD_TENANT_ID"):
    os.environ.pop(_key, None)

import pytest
from fastapi.testclient import TestClient

from app.auth.security import create_session_token
from app.config import settings
from app.db import Base, SessionLocal, engine, get_db
from app.main import app
from app.models.models import User


def _override_get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture(autouse=True)
def fresh_schema():
    """Empty schema for every test."""
    engine.dispose()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.state.backup_scheduler.stop()


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _make_user(db, email: str, name: str, role: str) -> User:
    user = User(email=email, name=name, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin@example.com", "Admin", "admin")


@pytest.fixture
def regular_user(db_session):
    return _make_user(db_session, "tech@example.com", "Tech", "user")


def _client_for(user) -> TestClient:
    client = TestClient(app)
    if user is not None:
        client.cookies.set(settings.session_cookie_name, create_session_token(str(user.id), user.email))
    return client


@pytest.fixture
def admin_client(admin_user):
    return _client_for(admin_user)


@pytest.fixture
def user_client(regular_user):
    return _client_for(regular_user)


@pytest.fixture
def anon_client():
    return _client_for(None)


@pytest.fixture
def project(admin_client):
    resp = admin_client.post("/api/projects", json={"name": "P1", "city": "Austin"})
    assert resp.status_code == 201, resp.text
    return resp.json()["project"]


@pytest.fixture
def milestone(admin_client, project):
    resp = admin_client.post("/api/milestones", json={"project_id": project["id"], "name": "Rough-in"})
    assert resp.status_code == 201, resp.text
    return resp.json()["milestone"]
