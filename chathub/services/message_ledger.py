"""
MessageLedger - append-mostly log of messages per chatroom.

Contract:
- append() assigns a monotonically increasing integer id and created_at, sets
  status SENT and returns the stored record
- list() yields a chatroom's messages lazily in id order; soft-deleted entries
  are skipped unless requested; every call starts a fresh iteration
- get() returns soft-deleted messages too; NotFound only for ids that never
  existed

Mutations touch exactly one message and are conditional on its current state
(compare-and-set), so concurrent updates of different messages never contend
and concurrent updates of the same message cannot silently overwrite each
other.
"""

import itertools
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Dict, Optional

from pymongo import ReturnDocument

from chathub.core import metrics
from chathub.core.exceptions import NotFoundError
from chathub.core.logging_config import get_logger
from chathub.db.documents import MessageDocument, SequenceDocument
from chathub.models.chatroom import utc_now
from chathub.models.message import Message, MessageDraft, MessageStatus

logger = get_logger(__name__)

MESSAGE_SEQUENCE = "messages"


class MessageLedger(ABC):

    @abstractmethod
    async def append(self, chatroom_id: str, draft: MessageDraft) -> Message:
        ...

    @abstractmethod
    async def find(self, message_id: int) -> Optional[Message]:
        ...

    async def get(self, message_id: int) -> Message:
        """Fetch a message by id, soft-deleted or not."""
        message = await self.find(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        return message

    @abstractmethod
    def list(
        self,
        chatroom_id: str,
        include_soft_deleted: bool = False,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Message]:
        ...

    @abstractmethod
    async def count(self, chatroom_id: str, include_soft_deleted: bool = False) -> int:
        ...

    @abstractmethod
    async def compare_and_set_status(
        self,
        message_id: int,
        expected: MessageStatus,
        new: MessageStatus,
    ) -> bool:
        """Set status to `new` only if it is still `expected`. Returns True on success."""

    @abstractmethod
    async def update_content(
        self,
        message_id: int,
        content: str,
        edited_at: datetime,
    ) -> Optional[Message]:
        """Replace content of a message that is not soft-deleted. None if nothing matched."""

    @abstractmethod
    async def mark_soft_deleted(self, message_id: int) -> bool:
        """Flag a message as soft-deleted. Returns True if this call changed it."""


class InMemoryMessageLedger(MessageLedger):

    def __init__(self):
        self._messages: Dict[int, Message] = {}
        self._ids = itertools.count(1)

    async def append(self, chatroom_id: str, draft: MessageDraft) -> Message:
        message = Message(
            id=next(self._ids),
            chatroom_id=chatroom_id,
            status=MessageStatus.SENT,
            created_at=utc_now(),
            **draft.model_dump(),
        )
        self._messages[message.id] = message
        return message.model_copy(deep=True)

    async def find(self, message_id: int) -> Optional[Message]:
        message = self._messages.get(message_id)
        return message.model_copy(deep=True) if message else None

    async def list(
        self,
        chatroom_id: str,
        include_soft_deleted: bool = False,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Message]:
        # Snapshot of ids so appends during iteration do not change the sequence
        ids = sorted(
            message_id for message_id, message in self._messages.items()
            if message.chatroom_id == chatroom_id
        )
        yielded = 0
        for message_id in ids:
            if limit is not None and yielded >= limit:
                return
            if after_id is not None and message_id <= after_id:
                continue
            message = self._messages[message_id]
            if message.soft_deleted and not include_soft_deleted:
                continue
            yielded += 1
            yield message.model_copy(deep=True)

    async def count(self, chatroom_id: str, include_soft_deleted: bool = False) -> int:
        return sum(
            1 for message in self._messages.values()
            if message.chatroom_id == chatroom_id
            and (include_soft_deleted or not message.soft_deleted)
        )

    async def compare_and_set_status(
        self,
        message_id: int,
        expected: MessageStatus,
        new: MessageStatus,
    ) -> bool:
        message = self._messages.get(message_id)
        if message is None or message.status != expected:
            return False
        message.status = new
        return True

    async def update_content(
        self,
        message_id: int,
        content: str,
        edited_at: datetime,
    ) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None or message.soft_deleted:
            return None
        message.content = content
        message.edited_at = edited_at
        return message.model_copy(deep=True)

    async def mark_soft_deleted(self, message_id: int) -> bool:
        message = self._messages.get(message_id)
        if message is None or message.soft_deleted:
            return False
        message.soft_deleted = True
        return True


class MongoMessageLedger(MessageLedger):
    """
    MongoDB-backed ledger.

    Ids come from an atomic `$inc` on the "messages" sequence document, so two
    appends can never receive the same id even across processes.
    """

    @staticmethod
    def _collection():
        return MessageDocument.get_motor_collection()

    async def _next_id(self) -> int:
        counter = await SequenceDocument.get_motor_collection().find_one_and_update(
            {"_id": MESSAGE_SEQUENCE},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["value"]

    async def append(self, chatroom_id: str, draft: MessageDraft) -> Message:
        message = Message(
            id=await self._next_id(),
            chatroom_id=chatroom_id,
            status=MessageStatus.SENT,
            created_at=utc_now(),
            **draft.model_dump(),
        )
        await MessageDocument.from_domain(message).insert()

        metrics.mongodb_operations_total.labels(
            operation="insert", collection="messages", status="success"
        ).inc()
        return message

    async def find(self, message_id: int) -> Optional[Message]:
        doc = await MessageDocument.get(message_id)
        return doc.to_domain() if doc else None

    async def list(
        self,
        chatroom_id: str,
        include_soft_deleted: bool = False,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Message]:
        query: dict = {"chatroom_id": chatroom_id}
        if not include_soft_deleted:
            query["soft_deleted"] = False
        if after_id is not None:
            query["_id"] = {"$gt": after_id}

        cursor = MessageDocument.find(query).sort("+_id")
        if limit is not None:
            cursor = cursor.limit(limit)

        async for doc in cursor:
            yield doc.to_domain()

    async def count(self, chatroom_id: str, include_soft_deleted: bool = False) -> int:
        query: dict = {"chatroom_id": chatroom_id}
        if not include_soft_deleted:
            query["soft_deleted"] = False
        return await MessageDocument.find(query).count()

    async def compare_and_set_status(
        self,
        message_id: int,
        expected: MessageStatus,
        new: MessageStatus,
    ) -> bool:
        result = await self._collection().update_one(
            {"_id": message_id, "status": expected.value},
            {"$set": {"status": new.value}},
        )
        metrics.mongodb_operations_total.labels(
            operation="update", collection="messages", status="success"
        ).inc()
        return result.modified_count == 1

    async def update_content(
        self,
        message_id: int,
        content: str,
        edited_at: datetime,
    ) -> Optional[Message]:
        raw = await self._collection().find_one_and_update(
            {"_id": message_id, "soft_deleted": False},
            {"$set": {"content": content, "edited_at": edited_at}},
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        metrics.mongodb_operations_total.labels(
            operation="update", collection="messages", status="success"
        ).inc()
        return await self.find(message_id)

    async def mark_soft_deleted(self, message_id: int) -> bool:
        result = await self._collection().update_one(
            {"_id": message_id, "soft_deleted": False},
            {"$set": {"soft_deleted": True}},
        )
        return result.modified_count == 1
