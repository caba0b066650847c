from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from dependencies import get_current_user, get_firestore, get_s3_service
from main import app
from models.user import User
from services.s3 import S3Service
from tests.fakes import FakeFirestore


@pytest.fixture
def db() -> FakeFirestore:
    store = FakeFirestore()
    store.add_user("alice", "Alice", "alice.png")
    store.add_user("bob", "Bob")
    return store


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def session():
    """Mutable holder for the user the test client is authenticated as"""
    return {"user": User(user_id="alice", email="alice@example.com")}


@pytest.fixture
def login(session):
    def _login(user_id: str):
        session["user"] = User(user_id=user_id, email=f"{user_id}@example.com")
    return _login


@pytest.fixture
def anonymous_client(db, s3_client):
    app.dependency_overrides[get_firestore] = lambda: db
    app.dependency_overrides[get_s3_service] = lambda: S3Service("test-bucket", s3_client)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def client(anonymous_client, session):
    app.dependency_overrides[get_current_user] = lambda: session["user"]
    return anonymous_client


@pytest.fixture
def make_post(client):
    def _make_post(title="Hello world", keywords="python, fastapi", body="Some body"):
        response = client.post("/posts", data={"title": title, "keywords": keywords, "body": body})
        assert response.status_code == 201, response.text
        return response.json()
    return _make_post
