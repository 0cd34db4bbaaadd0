"""Tests for the Inbox API endpoints."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api.main import create_app
from config.settings import DEFAULT_FALLBACK_MESSAGE

from conftest import (
    FACEBOOK_PAGE_ID,
    LINE_BOT_ID,
    facebook_body,
    facebook_text,
    line_body,
    line_text_event,
    sign_facebook,
    sign_line,
)


def _post_line(client, *events, secret=None):
    body = line_body(*events)
    signature = sign_line(body, secret) if secret else sign_line(body)
    return client.post(
        "/api/v1/webhooks/line",
        content=body,
        headers={"X-Line-Signature": signature, "Content-Type": "application/json"},
    )


def test_root_endpoint(client):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "Clinic Inbox"
    assert "version" in data


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["services"]["database"] is True


def test_metrics_endpoint(client):
    client.get("/")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "inbox_http_requests_total" in resp.text


# ── Webhooks ──────────────────────────────────────────

def test_webhook_unsupported_platform(client):
    resp = client.post("/api/v1/webhooks/telegram", content=b"{}")
    assert resp.status_code == 400


def test_webhook_malformed_body(client, channels):
    resp = client.post("/api/v1/webhooks/line", content=b"{oops")
    assert resp.status_code == 400


def test_webhook_unknown_destination(client, channels):
    body = line_body(line_text_event(), destination="U-someone-else")
    resp = client.post("/api/v1/webhooks/line", content=body, headers={"X-Line-Signature": sign_line(body)})
    assert resp.status_code == 404


def test_webhook_bad_signature(client, channels):
    resp = _post_line(client, line_text_event(), secret="not-the-secret")
    assert resp.status_code == 401


def test_webhook_line_message(client, channels, platform):
    resp = _post_line(client, line_text_event(user_id="U-api", text="สวัสดีค่ะ"))
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "received": 1, "stored": 1}
    # No knowledge yet, so the fallback line goes out
    assert platform.sent_texts() == [DEFAULT_FALLBACK_MESSAGE]


def test_webhook_facebook_message(client, channels, platform):
    body = facebook_body(facebook_text(sender="PSID-api"))
    resp = client.post(
        "/api/v1/webhooks/facebook",
        content=body,
        headers={"X-Hub-Signature-256": sign_facebook(body)},
    )
    assert resp.status_code == 200
    assert resp.json()["stored"] == 1


def test_facebook_verification(client):
    params = {"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"}
    resp = client.get("/api/v1/webhooks/facebook", params=params)
    assert resp.status_code == 200
    assert resp.text == "12345"

    params["hub.verify_token"] = "wrong"
    assert client.get("/api/v1/webhooks/facebook", params=params).status_code == 403


def test_line_verification_and_unknown_platform(client):
    assert client.get("/api/v1/webhooks/line").status_code == 200
    assert client.get("/api/v1/webhooks/viber").status_code == 400


# ── Console ───────────────────────────────────────────

def test_console_conversation_flow(client, channels, platform):
    _post_line(client, line_text_event(user_id="U-console", text="Is parking available?"))

    resp = client.get("/api/v1/console/conversations")
    assert resp.status_code == 200
    conversations = resp.json()
    assert len(conversations) == 1
    conversation = conversations[0]
    assert conversation["identity"]["platform"] == "line"
    assert conversation["identity"]["profile_name"] == "Nok"
    assert conversation["ai_mode"] is False

    conversation_id = conversation["id"]
    messages = client.get(f"/api/v1/console/conversations/{conversation_id}/messages").json()
    assert [m["sender_type"] for m in messages] == ["user", "ai"]

    resp = client.post(f"/api/v1/console/conversations/{conversation_id}/messages", json={"content": "Yes, free parking."})
    assert resp.status_code == 201
    assert resp.json()["sender_type"] == "agent"
    assert platform.sent_texts()[-1] == "Yes, free parking."

    resp = client.post(f"/api/v1/console/conversations/{conversation_id}/ai-mode", json={"ai_mode": True})
    assert resp.status_code == 200
    assert resp.json()["ai_mode"] is True

    resp = client.post(f"/api/v1/console/conversations/{conversation_id}/messages", json={"content": "Staff here"})
    assert resp.status_code == 409


def test_console_unknown_conversation(client):
    assert client.get("/api/v1/console/conversations/nope/messages").status_code == 404
    assert client.post("/api/v1/console/conversations/nope/ai-mode", json={"ai_mode": False}).status_code == 404
    assert client.post("/api/v1/console/conversations/nope/messages", json={"content": "hi"}).status_code == 404


def test_console_rejects_empty_message(client):
    resp = client.post("/api/v1/console/conversations/nope/messages", json={"content": ""})
    assert resp.status_code == 422


# ── Channels ──────────────────────────────────────────

def test_channels_listing_hides_credentials(client, channels):
    resp = client.get("/api/v1/channels")
    assert resp.status_code == 200
    listed = resp.json()
    assert {c["platform_account_id"] for c in listed} == {LINE_BOT_ID, FACEBOOK_PAGE_ID}
    for channel in listed:
        assert "access_token" not in channel
        assert "channel_secret" not in channel


def test_channel_validation(client, channels):
    duplicate = {
        "platform": "line",
        "platform_account_id": LINE_BOT_ID,
        "access_token": "t",
        "channel_secret": "s",
    }
    assert client.post("/api/v1/channels", json=duplicate).status_code == 409

    no_secret = {"platform": "line", "platform_account_id": "U-other", "access_token": "t"}
    assert client.post("/api/v1/channels", json=no_secret).status_code == 400

    page_without_secret = {"platform": "facebook", "platform_account_id": "555", "access_token": "t"}
    assert client.post("/api/v1/channels", json=page_without_secret).status_code == 400

    unsupported = {**duplicate, "platform": "whatsapp", "platform_account_id": "x"}
    assert client.post("/api/v1/channels", json=unsupported).status_code == 400


def test_channel_delete(client, channels):
    channel_id = channels["facebook"]["id"]
    assert client.delete(f"/api/v1/channels/{channel_id}").status_code == 204
    assert client.delete(f"/api/v1/channels/{channel_id}").status_code == 404


def test_channel_delete_keeps_its_conversations(client, channels):
    _post_line(client, line_text_event(user_id="U-kept"))
    conversation = client.get("/api/v1/console/conversations").json()[0]
    assert conversation["channel_id"] == channels["line"]["id"]

    assert client.delete(f"/api/v1/channels/{channels['line']['id']}").status_code == 204

    conversations = client.get("/api/v1/console/conversations").json()
    assert [c["id"] for c in conversations] == [conversation["id"]]
    assert conversations[0]["channel_id"] is None
    messages = client.get(f"/api/v1/console/conversations/{conversation['id']}/messages").json()
    assert len(messages) == 2


# ── Knowledge ─────────────────────────────────────────

def test_knowledge_crud(client, fakes):
    resp = client.post("/api/v1/knowledge", json={"content": "Botox 3,900 THB", "category": "injectables"})
    assert resp.status_code == 201
    entry = resp.json()
    assert entry["category"] == "injectables"
    assert entry["id"] in fakes.index.vectors

    listed = client.get("/api/v1/knowledge").json()
    assert [e["id"] for e in listed] == [entry["id"]]

    assert client.delete(f"/api/v1/knowledge/{entry['id']}").status_code == 204
    assert client.delete(f"/api/v1/knowledge/{entry['id']}").status_code == 404


def test_knowledge_validation(client, fakes):
    assert client.post("/api/v1/knowledge", json={"content": "   "}).status_code == 400

    fakes.embedding.fail = True
    assert client.post("/api/v1/knowledge", json={"content": "Filler 9,900 THB"}).status_code == 502
    assert client.get("/api/v1/knowledge").json() == []


def test_knowledge_reply_end_to_end(client, channels, fakes, platform):
    entry = client.post("/api/v1/knowledge", json={"content": "Botox 3,900 THB", "category": "injectables"}).json()
    fakes.index.scores[entry["id"]] = 0.9

    _post_line(client, line_text_event(text="botox price?"))

    assert platform.sent_texts() == [fakes.llm.reply]
    assert "Botox 3,900 THB" in fakes.llm.calls[0]["system"]


# ── AI settings ───────────────────────────────────────

def test_ai_settings(client):
    resp = client.get("/api/v1/settings/ai")
    assert resp.status_code == 200
    assert resp.json()["settings"] == {}
    assert resp.json()["effective"]["strict_mode"] is True

    resp = client.put("/api/v1/settings/ai", json={"min_confidence": 0.7, "strict_mode": False})
    assert resp.status_code == 200
    data = resp.json()
    assert data["settings"] == {"min_confidence": 0.7, "strict_mode": False}
    assert data["effective"]["min_confidence"] == 0.7
    assert data["effective"]["strict_mode"] is False

    assert client.put("/api/v1/settings/ai", json={}).status_code == 400


# ── Realtime ──────────────────────────────────────────

def test_console_socket_snapshot_and_events(client, channels):
    first = _post_line(client, line_text_event(user_id="U-live", message_id="1"))
    assert first.status_code == 200
    conversation_id = client.get("/api/v1/console/conversations").json()[0]["id"]

    with client.websocket_connect("/api/v1/ws/console") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "snapshot"
        assert [c["id"] for c in snapshot["data"]] == [conversation_id]

        ws.send_json({"action": "subscribe", "conversation_id": conversation_id})
        assert ws.receive_json() == {"type": "subscribed", "data": conversation_id}

        _post_line(client, line_text_event(user_id="U-live", message_id="2", text="still there?"))
        created = ws.receive_json()
        updated = ws.receive_json()
        assert created["type"] == "message.created"
        assert created["data"]["content"] == "still there?"
        assert updated["type"] == "conversation.updated"
        assert updated["data"]["id"] == conversation_id

        ws.send_json({"action": "dance"})
        assert ws.receive_json()["type"] == "error"


def test_console_socket_survives_bad_json_and_unregisters(client, services):
    with client.websocket_connect("/api/v1/ws/console") as ws:
        assert ws.receive_json()["type"] == "snapshot"
        assert services.connection_manager.active_count == 1

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "data": "Invalid JSON"}

        ws.send_json({"action": "resync"})
        assert ws.receive_json()["type"] == "snapshot"

    assert services.connection_manager.active_count == 0


# ── Authentication ────────────────────────────────────

@pytest.fixture
def secured_client(settings, services):
    settings.api_key = "staff-key"
    with TestClient(create_app(services)) as c:
        yield c


def test_console_requires_credentials(secured_client):
    assert secured_client.get("/api/v1/console/conversations").status_code == 401
    assert secured_client.get("/api/v1/console/conversations", headers={"X-API-Key": "wrong"}).status_code == 401
    resp = secured_client.get("/api/v1/console/conversations", headers={"X-API-Key": "staff-key"})
    assert resp.status_code == 200


def test_webhooks_do_not_need_api_key(secured_client):
    assert secured_client.get("/api/v1/webhooks/line").status_code == 200


def test_token_exchange(secured_client):
    resp = secured_client.post("/api/v1/auth/token", json={"staff_name": "ploy"}, headers={"X-API-Key": "staff-key"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    resp = secured_client.get("/api/v1/console/conversations", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200

    bad = secured_client.get("/api/v1/console/conversations", headers={"Authorization": "Bearer garbage"})
    assert bad.status_code == 401


def test_console_socket_requires_credentials(secured_client):
    with pytest.raises(WebSocketDisconnect):
        with secured_client.websocket_connect("/api/v1/ws/console") as ws:
            ws.receive_json()

    with secured_client.websocket_connect("/api/v1/ws/console?api_key=staff-key") as ws:
        assert ws.receive_json()["type"] == "snapshot"
