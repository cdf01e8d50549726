# tests/test_admin_routes.py
import pytest

from companion.crud.companion import (
    ConfigConflictError,
    ConfigurationError,
    activate_system_prompt,
    create_system_prompt,
    get_active_system_prompt,
    update_companion_config,
)
from companion.models.companion import SystemPrompt
from companion.models.user import User
from conftest import auth_headers


def test_admin_routes_require_admin(client, companion_config, admin_tokens, user_tokens):
    assert client.get("/api/admin/companion").status_code == 401
    assert client.get("/api/admin/companion", headers=auth_headers(user_tokens)).status_code == 403
    assert client.get("/api/admin/companion", headers=auth_headers(admin_tokens)).status_code == 200


def test_update_companion_config(client, companion_config, admin_tokens):
    headers = auth_headers(admin_tokens)
    response = client.put(
        "/api/admin/companion",
        json={"name": "Nova", "briefTokens": 300, "useLongFormForDetailed": False},
        headers=headers,
    )

    assert response.status_code == 200
    config = response.json()["config"]
    assert config["name"] == "Nova"
    assert config["briefTokens"] == 300
    assert config["useLongFormForDetailed"] is False
    assert config["moderateTokens"] == 1000
    assert config["version"] == 2
    assert client.get("/api/chat/config").json()["name"] == "Nova"


def test_update_with_stale_version_conflicts(client, companion_config, admin_tokens):
    headers = auth_headers(admin_tokens)
    assert client.put("/api/admin/companion", json={"name": "A", "expectedVersion": 1}, headers=headers).status_code == 200

    stale = client.put("/api/admin/companion", json={"name": "B", "expectedVersion": 1}, headers=headers)

    assert stale.status_code == 409
    assert client.get("/api/admin/companion", headers=headers).json()["config"]["name"] == "A"


def test_update_rejects_invalid_values(client, companion_config, admin_tokens):
    headers = auth_headers(admin_tokens)
    assert client.put("/api/admin/companion", json={"defaultLength": "huge"}, headers=headers).status_code == 400
    assert client.put("/api/admin/companion", json={"temperature": 5}, headers=headers).status_code == 400
    assert client.put("/api/admin/companion", json={}, headers=headers).status_code == 400


def test_config_store_rejects_immutable_fields(db_session, companion_config):
    with pytest.raises(ValueError):
        update_companion_config(db_session, {"version": 10})
    with pytest.raises(ValueError):
        update_companion_config(db_session, {"no_such_field": 1})


def test_config_store_without_row(db_session):
    with pytest.raises(ConfigurationError):
        update_companion_config(db_session, {"name": "Nova"})


def test_config_store_version_check(db_session, companion_config):
    update_companion_config(db_session, {"name": "One"}, expected_version=1)
    with pytest.raises(ConfigConflictError):
        update_companion_config(db_session, {"name": "Two"}, expected_version=1)


def test_preview(client, companion_config, admin_tokens):
    response = client.post(
        "/api/admin/companion/preview",
        json={"length": "brief", "style": "creative", "gender": "non-binary", "personalityMode": "playful"},
        headers=auth_headers(admin_tokens),
    )
    body = response.json()
    assert response.status_code == 200
    assert companion_config.brief_instruction in body["templatePrompt"]
    assert "they/them" in body["templatePrompt"]
    assert "PERSONALITY MODE: PLAYFUL" in body["completePrompt"]


def test_system_prompt_lifecycle(client, companion_config, admin_tokens, fake_ollama):
    headers = auth_headers(admin_tokens)

    first = client.post("/api/admin/system-prompts", json={"name": "main", "content": "First {{name}}"}, headers=headers)
    second = client.post(
        "/api/admin/system-prompts", json={"name": "main", "content": "Second", "activate": True}, headers=headers
    )
    assert first.status_code == 201
    assert first.json()["prompt"]["version"] == 1
    assert second.json()["prompt"]["version"] == 2
    assert second.json()["prompt"]["isActive"] is True

    active = client.get("/api/admin/system-prompts/active", headers=headers).json()["prompt"]
    assert active["content"] == "Second"

    first_id = first.json()["prompt"]["id"]
    activated = client.put(f"/api/admin/system-prompts/{first_id}/activate", headers=headers)
    assert activated.json()["prompt"]["isActive"] is True

    prompts = client.get("/api/admin/system-prompts", headers=headers).json()["prompts"]
    assert [p["isActive"] for p in prompts].count(True) == 1

    client.post("/api/chat", json={"message": "hi", "storeLocally": True}, headers=headers)
    system = fake_ollama.payloads("/api/chat")[-1]["messages"][0]["content"]
    assert system.startswith("First {{name}}")

    assert client.delete(f"/api/admin/system-prompts/{first_id}", headers=headers).status_code == 400
    second_id = second.json()["prompt"]["id"]
    assert client.delete(f"/api/admin/system-prompts/{second_id}", headers=headers).status_code == 200
    assert client.get(f"/api/admin/system-prompts/{second_id}", headers=headers).status_code == 404


def test_activation_keeps_single_active_prompt(db_session):
    prompts = [create_system_prompt(db_session, "p", f"content {i}") for i in range(3)]
    for prompt in prompts + prompts[::-1]:
        activate_system_prompt(db_session, prompt)
        assert db_session.query(SystemPrompt).filter(SystemPrompt.is_active.is_(True)).count() == 1
    assert get_active_system_prompt(db_session).id == prompts[0].id


def test_models_and_connection(client, admin_tokens, fake_ollama):
    headers = auth_headers(admin_tokens)

    models = client.get("/api/admin/models", headers=headers).json()
    assert models["models"] == fake_ollama.models
    assert models["generalModel"] == "general-test"
    assert client.post("/api/admin/test-ollama", headers=headers).json()["success"] is True

    fake_ollama.status_code = 500
    assert client.get("/api/admin/models", headers=headers).status_code == 500
    assert client.post("/api/admin/test-ollama", headers=headers).json()["success"] is False


def test_update_subscription(client, admin_tokens, user_tokens, db_session):
    user_id = user_tokens["user"]["id"]
    response = client.put(
        f"/api/admin/users/{user_id}/subscription", json={"status": "subscribed"}, headers=auth_headers(admin_tokens)
    )
    assert response.json()["user"]["subscriptionStatus"] == "subscribed"
    assert db_session.get(User, user_id).is_subscribed

    missing = client.put(
        "/api/admin/users/nope/subscription", json={"status": "subscribed"}, headers=auth_headers(admin_tokens)
    )
    assert missing.status_code == 404
