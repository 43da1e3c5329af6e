"""
Identity Store - durable mapping chatroom id -> ChatRoom record.

Two backends share one contract:
- MongoChatRoomStore: Beanie/Motor, `_id` unique index backs create-if-absent
- InMemoryChatRoomStore: process-local, for development and tests

The store never decides ids; ChatroomResolver does. The store only guarantees
that a second insert of an existing id returns the first record instead of
creating a duplicate.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError, PyMongoError

from chathub.core import metrics
from chathub.core.exceptions import ConflictError
from chathub.core.logging_config import get_logger
from chathub.db.documents import ChatRoomDocument
from chathub.models.chatroom import ChatRoom, ChatRoomKind

logger = get_logger(__name__)


class ChatRoomStore(ABC):

    @abstractmethod
    async def get(self, chatroom_id: str) -> Optional[ChatRoom]:
        ...

    @abstractmethod
    async def find_personal(self, user_a: str, user_b: str) -> Optional[ChatRoom]:
        """Find the PERSONAL room whose participants are exactly {user_a, user_b}."""

    @abstractmethod
    async def create_if_absent(self, room: ChatRoom) -> Tuple[ChatRoom, bool]:
        """
        Insert `room` unless its id is taken.

        Returns:
            (stored room, created). When another writer got there first the
            stored room is theirs and created is False.

        Raises:
            ConflictError: The store is unreachable, so neither outcome is known
        """

    @abstractmethod
    async def touch(self, chatroom_id: str, at: datetime) -> None:
        """Move last_activity to `at` unless it is already later."""

    @abstractmethod
    async def set_participants(self, chatroom_id: str, participants: Iterable[str]) -> Optional[ChatRoom]:
        ...

    @abstractmethod
    async def set_archived(self, chatroom_id: str, archived: bool) -> Optional[ChatRoom]:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[ChatRoom]:
        """Rooms `user_id` participates in, most recent activity first."""


class InMemoryChatRoomStore(ChatRoomStore):
    """Dictionary-backed store. Records are copied in and out so callers never share state."""

    def __init__(self):
        self._rooms: Dict[str, ChatRoom] = {}
        self._create_lock = asyncio.Lock()

    async def get(self, chatroom_id: str) -> Optional[ChatRoom]:
        room = self._rooms.get(chatroom_id)
        return room.model_copy(deep=True) if room else None

    async def find_personal(self, user_a: str, user_b: str) -> Optional[ChatRoom]:
        wanted = {user_a, user_b}
        for room in self._rooms.values():
            if room.kind == ChatRoomKind.PERSONAL and set(room.participants) == wanted:
                return room.model_copy(deep=True)
        return None

    async def create_if_absent(self, room: ChatRoom) -> Tuple[ChatRoom, bool]:
        async with self._create_lock:
            existing = self._rooms.get(room.id)
            if existing is not None:
                metrics.chatroom_create_conflicts_total.labels(kind=room.kind.value).inc()
                return existing.model_copy(deep=True), False
            self._rooms[room.id] = room.model_copy(deep=True)
            return room.model_copy(deep=True), True

    async def touch(self, chatroom_id: str, at: datetime) -> None:
        room = self._rooms.get(chatroom_id)
        if room is not None and at > room.last_activity:
            room.last_activity = at

    async def set_participants(self, chatroom_id: str, participants: Iterable[str]) -> Optional[ChatRoom]:
        room = self._rooms.get(chatroom_id)
        if room is None:
            return None
        room.participants = list(dict.fromkeys(participants))
        return room.model_copy(deep=True)

    async def set_archived(self, chatroom_id: str, archived: bool) -> Optional[ChatRoom]:
        room = self._rooms.get(chatroom_id)
        if room is None:
            return None
        room.archived = archived
        return room.model_copy(deep=True)

    async def list_for_user(self, user_id: str) -> List[ChatRoom]:
        rooms = [room for room in self._rooms.values() if user_id in room.participants]
        rooms.sort(key=lambda room: room.last_activity, reverse=True)
        return [room.model_copy(deep=True) for room in rooms]


class MongoChatRoomStore(ChatRoomStore):
    """
    MongoDB-backed store.

    Create-if-absent relies on the `_id` unique index: the losing insert gets a
    DuplicateKeyError and re-reads the winner. Single-field updates go through
    the Motor collection so they stay atomic server side.
    """

    @staticmethod
    def _collection():
        return ChatRoomDocument.get_motor_collection()

    async def get(self, chatroom_id: str) -> Optional[ChatRoom]:
        doc = await ChatRoomDocument.get(chatroom_id)
        return doc.to_domain() if doc else None

    async def find_personal(self, user_a: str, user_b: str) -> Optional[ChatRoom]:
        doc = await ChatRoomDocument.find_one({
            "kind": ChatRoomKind.PERSONAL.value,
            "participants": {"$all": [user_a, user_b], "$size": 2},
        })
        return doc.to_domain() if doc else None

    async def create_if_absent(self, room: ChatRoom) -> Tuple[ChatRoom, bool]:
        doc = ChatRoomDocument.from_domain(room)
        try:
            await doc.insert()
        except DuplicateKeyError:
            metrics.chatroom_create_conflicts_total.labels(kind=room.kind.value).inc()
            logger.info("chatroom_insert_lost_race", chatroom_id=room.id)
            winner = await ChatRoomDocument.get(room.id)
            if winner is None:
                raise ConflictError(f"Chatroom {room.id} vanished after a duplicate insert")
            return winner.to_domain(), False
        except PyMongoError as e:
            metrics.mongodb_operations_total.labels(
                operation="insert", collection="chatrooms", status="error"
            ).inc()
            logger.error("chatroom_insert_failed", chatroom_id=room.id, error=str(e))
            raise ConflictError("Chatroom store unavailable")

        metrics.mongodb_operations_total.labels(
            operation="insert", collection="chatrooms", status="success"
        ).inc()
        return doc.to_domain(), True

    async def touch(self, chatroom_id: str, at: datetime) -> None:
        await self._collection().update_one(
            {"_id": chatroom_id},
            {"$max": {"last_activity": at}},
        )

    async def set_participants(self, chatroom_id: str, participants: Iterable[str]) -> Optional[ChatRoom]:
        await self._collection().update_one(
            {"_id": chatroom_id},
            {"$set": {"participants": list(dict.fromkeys(participants))}},
        )
        return await self.get(chatroom_id)

    async def set_archived(self, chatroom_id: str, archived: bool) -> Optional[ChatRoom]:
        await self._collection().update_one(
            {"_id": chatroom_id},
            {"$set": {"archived": archived}},
        )
        return await self.get(chatroom_id)

    async def list_for_user(self, user_id: str) -> List[ChatRoom]:
        docs = await ChatRoomDocument.find(
            {"participants": user_id}
        ).sort("-last_activity").to_list()
        return [doc.to_domain() for doc in docs]
