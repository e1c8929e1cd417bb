"""Shared test fixtures and configuration for backend tests.

Every test gets a fresh in-memory DuckDB store, a temporary upload directory,
and empty presence / hub / gateway state.
"""
from typing import Any, List, Optional

import pytest
from fastapi.testclient import TestClient

from chatcore.auth.service import hash_password
from chatcore.config import (
    IN_MEMORY_DB,
    AppConfig,
    RetentionSettings,
    StorageSettings,
    UploadSettings,
    reset_config,
    set_config,
)
from chatcore.conversations.service import MembershipEngine
from chatcore.dependencies import get_gateway, reset_gateway
from chatcore.files import BlobStorage
from chatcore.gateway.hub import hub
from chatcore.main import app
from chatcore.messages.pipeline import DeliveryPipeline
from chatcore.messages.receipts import ReceiptNotifier
from chatcore.messages.service import MessageService
from chatcore.presence import presence
from chatcore.store import ChatStore, User, new_id


class FakeWebSocket:
    """Records frames sent by the hub. ``fail=True`` simulates a dead peer."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[dict] = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def frames(self, event_type: Optional[str] = None) -> List[dict]:
        if event_type is None:
            return list(self.sent)
        return [f for f in self.sent if f["type"] == event_type]


@pytest.fixture(autouse=True)
def chat_env(tmp_path):
    """Install a test configuration and reset every process-wide singleton."""
    upload_dir = str(tmp_path / "uploads")
    set_config(AppConfig(
        storage=StorageSettings(db_path=IN_MEMORY_DB),
        uploads=UploadSettings(upload_dir=upload_dir),
        retention=RetentionSettings(enabled=False),
    ))
    ChatStore.reset_instance()
    ChatStore.get_instance(IN_MEMORY_DB)
    BlobStorage.reset_instance()
    BlobStorage.get_instance(upload_dir)
    hub.reset()
    presence.reset()
    reset_gateway()

    yield

    ChatStore.reset_instance()
    BlobStorage.reset_instance()
    hub.reset()
    presence.reset()
    reset_gateway()
    reset_config()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


@pytest.fixture
def store() -> ChatStore:
    return ChatStore.get_instance()


@pytest.fixture
def blobs() -> BlobStorage:
    return BlobStorage.get_instance()


@pytest.fixture
def pipeline(store) -> DeliveryPipeline:
    return DeliveryPipeline(store, presence)


@pytest.fixture
def receipts(store) -> ReceiptNotifier:
    return ReceiptNotifier(store, presence)


@pytest.fixture
def membership(store, pipeline, blobs) -> MembershipEngine:
    return MembershipEngine(store, pipeline, blobs)


@pytest.fixture
def message_service(store) -> MessageService:
    return MessageService(store)


@pytest.fixture
def gateway():
    return get_gateway()


@pytest.fixture
def make_user(store):
    """Async factory: ``alice = await make_user("Alice")``."""
    async def _make(name: str = "Alice", email: Optional[str] = None, password: str = "secret123") -> User:
        user = User(
            fullName=name,
            email=email or f"{name.lower()}-{new_id()[:8]}@example.com",
            passwordHash=hash_password(password),
        )
        return await store.create_user(user)
    return _make


@pytest.fixture
def fake_socket():
    return FakeWebSocket


@pytest.fixture
def connect(gateway):
    """Async factory opening a gateway session over a FakeWebSocket."""
    async def _connect(user_id: Optional[str] = None, fail: bool = False):
        ws = FakeWebSocket(fail=fail)
        session_id = await hub.accept(ws)
        await gateway.open(session_id, user_id)
        return session_id, ws
    return _connect


def signup(client: TestClient, name: str, password: str = "secret123") -> dict:
    """Register a user through the API; returns ``{"user", "token", "headers"}``."""
    response = client.post("/api/auth/signup", json={
        "fullName": name,
        "email": f"{name.lower()}@example.com",
        "password": password,
    })
    assert response.status_code == 201, response.text
    body = response.json()
    return {
        "user": body["user"],
        "token": body["token"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
    }


@pytest.fixture
def register():
    return signup
