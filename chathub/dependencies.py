"""
Dependency injection for FastAPI routes.

The application builds one ChatContainer at startup (see main.lifespan) and
routes receive its services via Depends(), so tests can swap them:

    app.dependency_overrides[get_chat_service] = lambda: fake_service
"""

from dataclasses import dataclass
from typing import Optional

from chathub.config import Settings, settings
from chathub.core.logging_config import get_logger
from chathub.services.chat_service import ChatService
from chathub.services.chatroom_resolver import ChatroomResolver
from chathub.services.directory import Directory, HttpDirectory, InMemoryDirectory
from chathub.services.identity_store import ChatRoomStore, InMemoryChatRoomStore, MongoChatRoomStore
from chathub.services.lifecycle import LifecycleEngine
from chathub.services.message_ledger import InMemoryMessageLedger, MessageLedger, MongoMessageLedger
from chathub.services.presence_hub import PresenceHub

logger = get_logger(__name__)


@dataclass
class ChatContainer:
    directory: Directory
    store: ChatRoomStore
    ledger: MessageLedger
    resolver: ChatroomResolver
    engine: LifecycleEngine
    hub: PresenceHub
    chat_service: ChatService


def build_directory(config: Settings = settings) -> Directory:
    if config.DIRECTORY_BACKEND == "memory":
        if config.DIRECTORY_SEED_FILE:
            return InMemoryDirectory.from_seed_file(config.DIRECTORY_SEED_FILE)
        return InMemoryDirectory()
    return HttpDirectory(config.DIRECTORY_API_URL)


def build_container(config: Settings = settings, directory: Optional[Directory] = None) -> ChatContainer:
    """Wire every service for the configured backends."""
    if directory is None:
        directory = build_directory(config)

    if config.STORAGE_BACKEND == "memory":
        store: ChatRoomStore = InMemoryChatRoomStore()
        ledger: MessageLedger = InMemoryMessageLedger()
    else:
        store = MongoChatRoomStore()
        ledger = MongoMessageLedger()

    resolver = ChatroomResolver(store, directory)
    engine = LifecycleEngine(ledger, directory, config.FORWARD_SOFT_DELETED_ALLOWED)
    hub = PresenceHub(directory, config.WS_OUTBOX_SIZE)
    chat_service = ChatService(resolver, ledger, engine, hub, directory)

    logger.info(
        "container_built",
        storage_backend=config.STORAGE_BACKEND,
        directory_backend=config.DIRECTORY_BACKEND,
    )
    return ChatContainer(
        directory=directory,
        store=store,
        ledger=ledger,
        resolver=resolver,
        engine=engine,
        hub=hub,
        chat_service=chat_service,
    )


_container: Optional[ChatContainer] = None


def set_container(container: Optional[ChatContainer]) -> None:
    global _container
    _container = container


def get_container() -> ChatContainer:
    if _container is None:
        raise RuntimeError("Chat services are not initialized")
    return _container


def get_chat_service() -> ChatService:
    return get_container().chat_service


def get_presence_hub() -> PresenceHub:
    return get_container().hub


def current_container() -> Optional[ChatContainer]:
    return _container
