"""Tests for the Facebook webhook routes."""

from fastapi.testclient import TestClient

from omnichan.models import Conversation, ConversationStatus, Customer, Message, SenderType
from omnichan.services.message_sync import millis_to_datetime

from conftest import VERIFY_TOKEN, drain, encode, message_event, messaging_payload, sign

URL = "/api/webhooks/facebook"
T = 1700000000000


def post_signed(client: TestClient, payload: dict):
    body = encode(payload)
    return client.post(
        URL,
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": sign(body)},
    )


def messages(app):
    with app.state.database.session() as db:
        return db.query(Message).order_by(Message.id).all()


# =============================================================================
# Verification handshake
# =============================================================================


def test_verify_webhook_with_correct_token(client):
    resp = client.get(
        URL,
        params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "test_challenge_string"},
    )
    assert resp.status_code == 200
    assert resp.text == "test_challenge_string"


def test_verify_webhook_with_wrong_token(client):
    resp = client.get(
        URL,
        params={"hub.mode": "subscribe", "hub.verify_token": "wrong_token", "hub.challenge": "c"},
    )
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_verify_webhook_with_missing_params(client):
    resp = client.get(URL, params={"hub.mode": "subscribe"})
    assert resp.status_code == 403


# =============================================================================
# Event delivery
# =============================================================================


def test_incoming_message_end_to_end(client, app, app_account):
    resp = post_signed(client, messaging_payload(message_event("m1", text="Hello", timestamp=T)))
    drain(client)

    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    with app.state.database.session() as db:
        customer = db.query(Customer).one()
        conversation = db.query(Conversation).one()
        message = db.query(Message).one()
    assert customer.facebook_id == "u1"
    assert conversation.platform_conversation_id == "p1"
    assert conversation.status == ConversationStatus.OPEN
    assert conversation.last_message == "Hello"
    assert message.content == "Hello"
    assert message.sender_type == SenderType.CUSTOMER


def test_replayed_message_is_stored_once(client, app, app_account):
    payload = messaging_payload(message_event("m1", timestamp=T))
    post_signed(client, payload)
    drain(client)
    resp = post_signed(client, payload)
    drain(client)

    assert resp.status_code == 200
    assert len(messages(app)) == 1


def test_receipts_update_message(client, app, app_account):
    post_signed(client, messaging_payload(message_event("m1", timestamp=T)))
    drain(client)

    post_signed(
        client,
        messaging_payload({"sender": {"id": "u1"}, "recipient": {"id": "p1"}, "timestamp": T, "read": {"watermark": T + 1000}}),
    )
    post_signed(
        client,
        messaging_payload(
            {
                "sender": {"id": "u1"},
                "recipient": {"id": "p1"},
                "timestamp": T,
                "delivery": {"watermark": T + 500, "mids": ["m1", "unknown"]},
            }
        ),
    )
    drain(client)

    [message] = messages(app)
    assert message.read_at == millis_to_datetime(T + 1000)
    assert message.delivered_at == millis_to_datetime(T + 500)
    assert app.state.dispatcher.failed == 0


def test_attachments_are_stored(client, app, app_account):
    event = message_event(
        "m1",
        text=None,
        attachments=[{"type": "image", "payload": {"url": "https://example.com/image.jpg"}}, {"type": "file", "payload": {}}],
    )
    post_signed(client, messaging_payload(event))
    drain(client)

    with app.state.database.session() as db:
        message = db.query(Message).one()
        urls = [a.url for a in message.attachments]
    assert urls == ["https://example.com/image.jpg", ""]


def test_multiple_events_in_one_delivery(client, app, app_account):
    post_signed(
        client,
        messaging_payload(message_event("m1", sender="u1"), message_event("m2", sender="u2")),
    )
    drain(client)

    with app.state.database.session() as db:
        assert db.query(Customer).count() == 2
        assert db.query(Conversation).count() == 2
        assert db.query(Message).count() == 2


def test_unsigned_delivery_is_accepted(client, app, app_account):
    resp = client.post(URL, json=messaging_payload(message_event("m1")))
    drain(client)

    assert resp.status_code == 200
    assert len(messages(app)) == 1


def test_bad_signature_is_rejected(client, app, app_account):
    body = encode(messaging_payload(message_event("m1")))
    resp = client.post(
        URL,
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=not-a-real-signature"},
    )
    drain(client)

    assert resp.status_code == 403
    assert resp.json() == {"success": False, "error": "Invalid signature"}
    assert messages(app) == []


def test_signature_from_wrong_secret_is_rejected(client, app, app_account):
    body = encode(messaging_payload(message_event("m1")))
    resp = client.post(
        URL,
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": sign(body, secret="wrong")},
    )

    assert resp.status_code == 403
    assert messages(app) == []


def test_invalid_payload_still_acknowledged(client):
    resp = client.post(URL, json={"invalid": "data"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True}


def test_non_json_payload_still_acknowledged(client):
    resp = client.post(URL, content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 200


def test_deeply_nested_payload_still_acknowledged(client):
    resp = client.post(URL, content=b"[" * 100000, headers={"Content-Type": "application/json"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True}


def test_unexpected_parse_error_still_acknowledged(client, monkeypatch):
    def explode(payload):
        raise RuntimeError("unexpected")

    monkeypatch.setattr("omnichan.routers.webhooks.iter_envelope", explode)

    resp = post_signed(client, messaging_payload(message_event("m1")))

    assert resp.status_code == 200
    assert resp.json() == {"success": True}


def test_processing_errors_do_not_change_response(client, app, app_account, monkeypatch):
    async def broken(event):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(app.state.dispatcher, "handler", broken)

    resp = post_signed(client, messaging_payload(message_event("m1")))
    drain(client)

    assert resp.status_code == 200
    assert app.state.dispatcher.failed == 1


def test_event_for_unknown_page_is_dropped(client, app, app_account):
    resp = post_signed(client, messaging_payload(message_event("m1"), page_id="not-connected"))
    drain(client)

    assert resp.status_code == 200
    assert messages(app) == []
