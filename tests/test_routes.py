# tests/test_routes.py
from conftest import auth_headers, register


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/api/health").json()["status"] == "healthy"
    assert client.get("/api/health/database").json()["database"] == "connected"


def test_ollama_health(client, fake_ollama):
    assert client.get("/api/health/ollama").status_code == 200
    fake_ollama.status_code = 503
    down = client.get("/api/health/ollama")
    assert down.status_code == 503
    assert down.json()["status"] == "unhealthy"


def test_conversation_crud(client, user_tokens):
    headers = auth_headers(user_tokens)

    created = client.post("/api/conversations", json={"title": "Evening chat"}, headers=headers)
    assert created.status_code == 201
    conversation_id = created.json()["conversation"]["id"]

    listing = client.get("/api/conversations", headers=headers).json()["conversations"]
    assert [c["title"] for c in listing] == ["Evening chat"]

    renamed = client.put(f"/api/conversations/{conversation_id}", json={"title": "Renamed"}, headers=headers)
    assert renamed.json()["conversation"]["title"] == "Renamed"

    assert client.delete(f"/api/conversations/{conversation_id}", headers=headers).json()["success"] is True
    assert client.get(f"/api/conversations/{conversation_id}", headers=headers).status_code == 404


def test_conversation_messages_and_clear(client, companion_config, user_tokens):
    headers = auth_headers(user_tokens)
    first = client.post("/api/chat", json={"message": "one"}, headers=headers)
    conversation_id = first.text.split('"conversationId": "')[1].split('"')[0]
    client.post("/api/chat", json={"message": "two", "conversationId": conversation_id}, headers=headers)

    full = client.get(f"/api/conversations/{conversation_id}", headers=headers).json()
    assert [m["content"] for m in full["messages"]] == ["one", "Hello there!", "two", "Hello there!"]

    page = client.get(f"/api/conversations/{conversation_id}/messages?limit=2&offset=1", headers=headers).json()
    assert [m["content"] for m in page["messages"]] == ["Hello there!", "two"]

    cleared = client.delete(f"/api/conversations/{conversation_id}/messages", headers=headers).json()
    assert cleared["deleted"] == 4
    assert client.get(f"/api/conversations/{conversation_id}", headers=headers).json()["messages"] == []


def test_conversations_are_private(client, admin_tokens, user_tokens):
    created = client.post("/api/conversations", json={}, headers=auth_headers(admin_tokens)).json()
    conversation_id = created["conversation"]["id"]

    headers = auth_headers(user_tokens)
    assert client.get(f"/api/conversations/{conversation_id}", headers=headers).status_code == 404
    assert client.delete(f"/api/conversations/{conversation_id}", headers=headers).status_code == 404
    assert client.get("/api/conversations", headers=headers).json()["conversations"] == []


def test_conversations_require_auth(client):
    assert client.get("/api/conversations").status_code == 401


def test_settings(client):
    tokens = register(client)
    headers = auth_headers(tokens)

    settings = client.get("/api/settings", headers=headers).json()["settings"]
    assert settings["response"] == {"length": "moderate", "style": "thoughtful"}

    updated = client.put("/api/settings/response", json={"style": "casual"}, headers=headers).json()["settings"]
    assert updated["response"] == {"length": "moderate", "style": "casual"}

    assert client.put("/api/settings/response", json={"length": "epic"}, headers=headers).status_code == 400


def test_usage(client, companion_config, user_tokens):
    headers = auth_headers(user_tokens)
    client.post("/api/chat", json={"message": "hi"}, headers=headers)

    usage = client.get("/api/settings/usage", headers=headers).json()
    assert usage["unlimited"] is False
    assert usage["limit"] == 3
    assert usage["used"] == 1
