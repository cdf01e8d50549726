# tests/test_chat_routes.py
from companion.crud.companion import ensure_default_config
from companion.models.conversation import Conversation, Message
from companion.models.user import User
from conftest import auth_headers, parse_sse


def chat(client, tokens=None, **body):
    body.setdefault("message", "Hello")
    headers = auth_headers(tokens) if tokens else {}
    return client.post("/api/chat", json=body, headers=headers)


def test_stream_events_and_persistence(client, companion_config, user_tokens, fake_ollama, db_session):
    fake_ollama.stream_chunks = ["Hi", " there", " <", "[INST"]

    response = chat(client, user_tokens, message="How was your day?")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"

    events = parse_sse(response.text)
    texts = [e["content"] for e in events if e["type"] == "text"]
    done = events[-1]
    assert "".join(texts) == "Hi there"
    assert done["type"] == "done"
    assert done["isNewChat"] is False

    conversation = db_session.get(Conversation, done["conversationId"])
    assert conversation.title == "How was your day?"
    messages = db_session.query(Message).filter_by(conversation_id=conversation.id).order_by(Message.sequence).all()
    assert [(m.role, m.content) for m in messages] == [("user", "How was your day?"), ("assistant", "Hi there")]
    assert done["userMessageId"] == messages[0].id
    assert done["assistantMessageId"] == messages[1].id


def test_history_is_sent_to_backend(client, companion_config, user_tokens, fake_ollama):
    first = parse_sse(chat(client, user_tokens, message="First").text)[-1]
    chat(client, user_tokens, message="Second", conversationId=first["conversationId"])

    payload = fake_ollama.payloads("/api/chat")[-1]
    roles = [m["role"] for m in payload["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert payload["messages"][1]["content"] == "First"
    assert payload["messages"][-1]["content"] == "Second"
    assert payload["model"] == "general-test"
    assert payload["options"]["num_predict"] == companion_config.moderate_tokens


def test_request_preferences_choose_model_and_budget(client, companion_config, user_tokens, fake_ollama):
    chat(client, user_tokens, preferences={"length": "detailed"}, storeLocally=True)
    payload = fake_ollama.payloads("/api/chat")[-1]
    assert payload["model"] == "longform-test"
    assert payload["options"]["num_predict"] == companion_config.detailed_tokens
    assert payload["options"]["temperature"] == companion_config.temperature


def test_personality_override_reaches_system_prompt(client, companion_config, user_tokens, fake_ollama):
    chat(client, user_tokens, personalityMode="dominant", storeLocally=True)
    system = fake_ollama.payloads("/api/chat")[-1]["messages"][0]
    assert system["role"] == "system"
    assert "PERSONALITY MODE: SOFT-DOMINANT" in system["content"]


def test_ice_breaker_stores_original_message(client, companion_config, user_tokens, fake_ollama, db_session):
    client.put("/api/auth/chat-name", json={"chatName": "Sam"}, headers=auth_headers(user_tokens))

    done = parse_sse(chat(client, user_tokens, message="hey", newChat=True).text)[-1]

    assert done["isNewChat"] is True
    sent = fake_ollama.payloads("/api/chat")[-1]["messages"][-1]["content"]
    assert sent.startswith("[Context: Sam just opened a new chat")
    conversation = db_session.get(Conversation, done["conversationId"])
    assert conversation.title == "New Conversation"
    stored = db_session.query(Message).filter_by(conversation_id=conversation.id, role="user").one()
    assert stored.content == "hey"


def test_new_chat_without_chat_name_is_not_wrapped(client, companion_config, user_tokens, fake_ollama):
    done = parse_sse(chat(client, user_tokens, message="hey", newChat=True).text)[-1]
    assert done["isNewChat"] is False
    assert fake_ollama.payloads("/api/chat")[-1]["messages"][-1]["content"] == "hey"


def test_store_locally_skips_persistence(client, companion_config, user_tokens, db_session):
    done = parse_sse(chat(client, user_tokens, storeLocally=True).text)[-1]
    assert done["type"] == "done"
    assert done["conversationId"] is None
    assert db_session.query(Message).count() == 0


def test_anonymous_chat_is_not_persisted(client, companion_config, db_session):
    events = parse_sse(chat(client).text)
    assert events[-1]["type"] == "done"
    assert events[-1]["conversationId"] is None
    assert db_session.query(Conversation).count() == 0


def test_free_user_blocked_after_weekly_limit(client, companion_config, user_tokens):
    for _ in range(3):
        assert chat(client, user_tokens).status_code == 200

    response = chat(client, user_tokens)

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "Message limit reached"
    assert body["limit"] == 3
    assert body["used"] == 3
    assert body["resetsAt"].endswith("Z")


def test_ice_breaker_is_allowed_after_weekly_limit(client, companion_config, user_tokens):
    for _ in range(3):
        chat(client, user_tokens)
    assert chat(client, user_tokens, newChat=True).status_code == 200


def test_ice_breaker_message_counts_toward_weekly_total(client, companion_config, user_tokens):
    assert chat(client, user_tokens).status_code == 200
    assert chat(client, user_tokens, newChat=True).status_code == 200
    assert chat(client, user_tokens).status_code == 200

    response = chat(client, user_tokens)

    assert response.status_code == 403
    assert response.json()["used"] == 3


def test_quota_is_the_same_whatever_the_ice_breaker_position(client, companion_config, user_tokens):
    assert chat(client, user_tokens, newChat=True).status_code == 200
    assert [chat(client, user_tokens).status_code for _ in range(3)] == [200, 200, 403]


def test_subscribed_user_is_not_limited(client, companion_config, user_tokens, db_session):
    user = db_session.query(User).filter_by(email="member@example.com").one()
    user.subscription_status = "subscribed"
    db_session.commit()

    for _ in range(5):
        assert chat(client, user_tokens).status_code == 200


def test_validation_error_shape(client, companion_config):
    response = client.post("/api/chat", json={"message": ""})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert body["details"][0]["field"] == "message"


def test_message_too_long(client, companion_config):
    assert chat(client, message="x" * 10001).status_code == 400


def test_invalid_preferences_rejected(client, companion_config):
    assert chat(client, preferences={"length": "epic"}).status_code == 400


def test_unconfigured_companion(client):
    response = chat(client)
    assert response.status_code == 500
    assert response.json()["detail"] == "Companion not configured"


def test_unconfigured_companion_does_not_use_quota(client, user_tokens, db_session):
    for _ in range(3):
        assert chat(client, user_tokens).status_code == 500
    assert client.get("/api/settings/usage", headers=auth_headers(user_tokens)).json()["used"] == 0

    ensure_default_config(db_session)

    assert chat(client, user_tokens).status_code == 200


def test_foreign_conversation_is_not_found(client, companion_config, admin_tokens, user_tokens):
    done = parse_sse(chat(client, admin_tokens, message="private").text)[-1]
    response = chat(client, user_tokens, conversationId=done["conversationId"])
    assert response.status_code == 404


def test_stream_failure_sends_error_event(client, companion_config, user_tokens, fake_ollama, db_session):
    fake_ollama.status_code = 500

    response = chat(client, user_tokens, message="Are you there?")

    assert response.status_code == 200
    assert parse_sse(response.text) == [{"type": "error", "error": "Stream failed"}]
    messages = db_session.query(Message).all()
    assert [(m.role, m.content) for m in messages] == [("user", "Are you there?")]


def test_non_streaming(client, companion_config, user_tokens, fake_ollama):
    fake_ollama.generate_text = "Nice to meet you <"

    response = client.post(
        "/api/chat/non-streaming",
        json={"message": "Hi", "preferences": {"length": "brief", "style": "casual"}},
        headers=auth_headers(user_tokens),
    )

    assert response.status_code == 200
    assert response.json() == {
        "response": "Nice to meet you",
        "model": "general-test",
        "length": "brief",
        "style": "casual",
        "isNewChat": False,
    }
    prompt = fake_ollama.payloads("/api/generate")[-1]["prompt"]
    assert prompt.startswith("[INST] ")
    assert prompt.endswith("Hi [/INST]")


def test_non_streaming_upstream_failure(client, companion_config, fake_ollama):
    fake_ollama.status_code = 502
    response = client.post("/api/chat/non-streaming", json={"message": "Hi"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to generate response"


def test_non_streaming_upstream_failure_releases_quota(client, companion_config, user_tokens, fake_ollama):
    headers = auth_headers(user_tokens)
    fake_ollama.status_code = 502
    for _ in range(3):
        assert client.post("/api/chat/non-streaming", json={"message": "Hi"}, headers=headers).status_code == 500
    assert client.get("/api/settings/usage", headers=headers).json()["used"] == 0

    fake_ollama.status_code = 200
    assert client.post("/api/chat/non-streaming", json={"message": "Hi"}, headers=headers).status_code == 200
    assert client.get("/api/settings/usage", headers=headers).json()["used"] == 1


def test_non_streaming_counts_toward_quota(client, companion_config, user_tokens):
    for _ in range(3):
        response = client.post("/api/chat/non-streaming", json={"message": "Hi"}, headers=auth_headers(user_tokens))
        assert response.status_code == 200
    assert chat(client, user_tokens).status_code == 403


def test_user_preferences_apply_when_request_omits_them(client, companion_config, user_tokens, fake_ollama):
    client.put("/api/settings/response", json={"length": "brief"}, headers=auth_headers(user_tokens))
    response = client.post("/api/chat/non-streaming", json={"message": "Hi"}, headers=auth_headers(user_tokens))
    assert response.json()["length"] == "brief"
    assert fake_ollama.payloads("/api/generate")[-1]["options"]["num_predict"] == companion_config.brief_tokens


def test_public_config(client, companion_config):
    response = client.get("/api/chat/config")
    assert response.status_code == 200
    assert response.json()["name"] == "Aura"
    assert response.json()["welcomeTitle"] == companion_config.welcome_title


def test_public_config_missing(client):
    assert client.get("/api/chat/config").status_code == 404


def test_invalid_token_is_treated_as_anonymous(client, companion_config):
    response = client.post("/api/chat", json={"message": "Hi"}, headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 200
    assert parse_sse(response.text)[-1]["conversationId"] is None
