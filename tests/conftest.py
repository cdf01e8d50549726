# conftest.py
import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from companion.crud.companion import ensure_default_config
from companion.crud.user import create_user
from companion.database import build_engine, build_session_factory
from companion.llm_gateway import LLMGateway
from companion.main import create_app
from companion.models import Base


class FakeOllama:
    """Stand-in for the Ollama HTTP API, served through httpx.MockTransport."""

    def __init__(self):
        self.stream_chunks = ["Hello", " there!"]
        self.generate_text = "Hi, nice to meet you."
        self.models = ["darkplanet-general:latest", "dolphin-mixtral:latest"]
        self.status_code = 200
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="backend exploded")

        path = request.url.path
        if path == "/api/chat":
            lines = [
                json.dumps({"message": {"role": "assistant", "content": chunk}, "done": False})
                for chunk in self.stream_chunks
            ]
            lines.append(json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}))
            return httpx.Response(200, content=("\n".join(lines) + "\n").encode())
        if path == "/api/generate":
            return httpx.Response(200, json={"response": self.generate_text, "done": True})
        if path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": name} for name in self.models]})
        return httpx.Response(404, text="not found")

    def payloads(self, path):
        """JSON bodies of the requests sent to the given path."""
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Provides a database session bound to the test engine."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def companion_config(db_session):
    return ensure_default_config(db_session)


@pytest.fixture
def fake_ollama():
    return FakeOllama()


@pytest.fixture
def gateway(fake_ollama):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_ollama.handler))
    return LLMGateway(
        base_url="http://ollama.test",
        api_key="test-key",
        general_model="general-test",
        long_form_model="longform-test",
        client=client,
    )


@pytest.fixture
def client(engine, gateway):
    app = create_app(engine=engine, gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db_session):
    """Create users directly in the database."""
    def _make(email="user@example.com", password="password123", **fields):
        user = create_user(db_session, email=email, password=password, is_admin=fields.pop("is_admin", False))
        for key, value in fields.items():
            setattr(user, key, value)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make


def register(client, email="user@example.com", password="password123"):
    response = client.post("/api/auth/register", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(tokens):
    return {"Authorization": f"Bearer {tokens['accessToken']}"}


def parse_sse(body):
    """Split an event-stream body into its JSON payloads."""
    events = []
    for block in body.split("\n\n"):
        if not block.strip():
            continue
        assert block.startswith("data: ")
        events.append(json.loads(block[len("data: "):]))
    return events


@pytest.fixture
def admin_tokens(client):
    """The first registered user becomes the admin."""
    return register(client, email="admin@example.com")


@pytest.fixture
def user_tokens(client, admin_tokens):
    return register(client, email="member@example.com")
