"""
Pytest configuration and shared fixtures for chathub tests.

Everything runs against the in-memory backends:
- InMemoryDirectory seeded with a few users, groups and one attachment
- InMemoryChatRoomStore / InMemoryMessageLedger
- FakeWebSocket standing in for live connections
- JWT access tokens minted with the configured HS256 secret
"""

import os

# Must be set before chathub.config is imported anywhere
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["DIRECTORY_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import pytest
from fastapi.testclient import TestClient

from chathub.config import settings
from chathub.dependencies import build_container, set_container
from chathub.services.chat_service import ChatService
from chathub.services.chatroom_resolver import ChatroomResolver
from chathub.services.directory import InMemoryDirectory
from chathub.services.identity_store import InMemoryChatRoomStore
from chathub.services.lifecycle import LifecycleEngine
from chathub.services.message_ledger import InMemoryMessageLedger
from chathub.services.presence_hub import PresenceHub


class FakeWebSocket:
    """Records what the server sends; enough of starlette's WebSocket for PresenceHub."""

    def __init__(self):
        self.accepted = False
        self.closed_with: Optional[int] = None
        self.sent: List[Dict[str, Any]] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data: Dict[str, Any]):
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.closed_with = code

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == event_type]


class BrokenWebSocket(FakeWebSocket):
    """A client that vanished: every send fails."""

    async def send_json(self, data: Dict[str, Any]):
        raise ConnectionResetError("client went away")


class StalledWebSocket(FakeWebSocket):
    """A client that stopped reading: every send hangs until cancelled."""

    async def send_json(self, data: Dict[str, Any]):
        await asyncio.Event().wait()


def make_token(user_id: str, expires_in: timedelta = timedelta(hours=1), **claims) -> str:
    payload = {
        "sub": user_id,
        "exp": datetime.now(timezone.utc) + expires_in,
        "type": "access",
    }
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def directory() -> InMemoryDirectory:
    """
    Users 5 (Ada), 9 (Grace), 12 (Linus), 40 (outsider).
    Group 17 = {5, 9, 12}, group 30 = {9, 12}.
    Attachment a1 is a PNG uploaded by user 5.
    """
    directory = InMemoryDirectory()
    directory.add_user("5", "Ada")
    directory.add_user("9", "Grace")
    directory.add_user("12", "Linus")
    directory.add_user("40", "Outsider")
    directory.add_group("17", ["5", "9", "12"], name="Team")
    directory.add_group("30", ["9", "12"], name="Pair")
    directory.add_attachment(
        "a1",
        url="https://files.example.com/a1/cat.png",
        name="cat.png",
        size=2048,
        mime_type="image/png",
        uploader_id="5",
    )
    return directory


@pytest.fixture
def store() -> InMemoryChatRoomStore:
    return InMemoryChatRoomStore()


@pytest.fixture
def ledger() -> InMemoryMessageLedger:
    return InMemoryMessageLedger()


@pytest.fixture
def resolver(store, directory) -> ChatroomResolver:
    return ChatroomResolver(store, directory)


@pytest.fixture
def engine(ledger, directory) -> LifecycleEngine:
    return LifecycleEngine(ledger, directory, allow_forward_soft_deleted=True)


@pytest.fixture
async def hub(directory):
    hub = PresenceHub(directory, outbox_size=64)
    yield hub
    await hub.shutdown_all()
    await hub.wait_for_background()


@pytest.fixture
def chat_service(resolver, ledger, engine, hub, directory) -> ChatService:
    return ChatService(resolver, ledger, engine, hub, directory)


@pytest.fixture
def client(directory):
    """TestClient on the real app with in-memory services and the seeded directory."""
    from chathub.main import app

    container = build_container(settings, directory=directory)
    set_container(container)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        set_container(None)


@pytest.fixture
def headers_5():
    return auth_headers_for("5")


@pytest.fixture
def headers_9():
    return auth_headers_for("9")


@pytest.fixture
def headers_40():
    return auth_headers_for("40")
