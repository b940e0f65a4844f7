import hashlib
import hmac
import json
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from omnichan.config import Settings
from omnichan.database import Database
from omnichan.exceptions import DeliveryFailed
from omnichan.main import create_app
from omnichan.models import Integration, User
from omnichan.services.message_sync import MessageSyncService

APP_SECRET = "test_secret_123"
VERIFY_TOKEN = "test-verify-token"
PAGE_ID = "p1"
PAGE_TOKEN = "page_token_abc"


class FakeGateway:
    """Records outbound calls instead of talking to Facebook."""

    def __init__(self):
        self.sent: List[dict] = []
        self.actions: List[dict] = []
        self.fail_with: Optional[Exception] = None
        self._counter = 0

    async def send_message(self, page_access_token: str, recipient_id: str, text: str) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self._counter += 1
        self.sent.append({"token": page_access_token, "recipient_id": recipient_id, "text": text})
        return f"m_out_{self._counter}"

    async def send_sender_action(self, page_access_token: str, recipient_id: str, action: str) -> None:
        self.actions.append({"token": page_access_token, "recipient_id": recipient_id, "action": action})


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def messaging_payload(*events, page_id: str = PAGE_ID) -> dict:
    return {
        "object": "page",
        "entry": [{"id": page_id, "time": 1700000000000, "messaging": list(events)}],
    }


def message_event(mid: str, text: Optional[str] = "Hello", sender: str = "u1", timestamp: int = 1700000000000, **extra):
    message = {"mid": mid, **extra}
    if text is not None:
        message["text"] = text
    return {
        "sender": {"id": sender},
        "recipient": {"id": PAGE_ID},
        "timestamp": timestamp,
        "message": message,
    }


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.open()
    yield db
    db.close()


@pytest.fixture
def account(database):
    """An owning account with an active integration for page p1."""
    with database.session() as db:
        user = User(email="owner@omnichan.com", name="Owner")
        db.add(user)
        db.commit()
        db.add(
            Integration(
                user_id=user.id,
                platform="facebook",
                platform_page_id=PAGE_ID,
                platform_page_name="Test Page",
                access_token=PAGE_TOKEN,
                is_active=True,
            )
        )
        db.commit()
        return user


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def sync(database, gateway):
    return MessageSyncService(database, gateway)


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        FACEBOOK_APP_SECRET=APP_SECRET,
        WEBHOOK_VERIFY_TOKEN=VERIFY_TOKEN,
        WEBHOOK_WORKERS=1,
        WEBHOOK_QUEUE_SIZE=100,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def app(settings, gateway):
    return create_app(settings=settings, gateway=gateway)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def app_account(client, app):
    """Seed the app's own database with an account and active integration for p1."""
    with app.state.database.session() as db:
        user = User(email="owner@omnichan.com", name="Owner")
        db.add(user)
        db.commit()
        db.add(
            Integration(
                user_id=user.id,
                platform="facebook",
                platform_page_id=PAGE_ID,
                access_token=PAGE_TOKEN,
                is_active=True,
            )
        )
        db.commit()
        return user


def drain(client: TestClient) -> None:
    """Wait until every queued webhook event has been processed."""
    client.portal.call(client.app.state.dispatcher.join)


@pytest.fixture
def delivery_failure():
    return DeliveryFailed("Facebook API Error: invalid token")
