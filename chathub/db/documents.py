"""
Beanie documents backing the MongoDB storage backend.

The service layer works with the plain models in chathub.models; these
documents only exist at the persistence boundary.
"""

from datetime import datetime
from typing import List, Optional

from beanie import Document
from pydantic import Field

from chathub.models.chatroom import ChatRoom, ChatRoomKind, utc_now
from chathub.models.message import Attachment, Message, MessageKind, MessageStatus


class ChatRoomDocument(Document):
    """
    MongoDB document for chatrooms.

    The chatroom id is the `_id`, so the primary key unique index is what makes
    concurrent create-if-absent inserts converge on a single record.
    """
    id: str
    kind: ChatRoomKind
    participants: List[str] = Field(default_factory=list)
    group_id: Optional[str] = None
    last_activity: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    archived: bool = False

    class Settings:
        name = "chatrooms"
        indexes = [
            # Personal lookup by participant pair
            [("kind", 1), ("participants", 1)],
            # Rooms of a user, most recent first
            [("participants", 1), ("last_activity", -1)],
            "group_id",
        ]

    @classmethod
    def from_domain(cls, room: ChatRoom) -> "ChatRoomDocument":
        return cls(**room.model_dump())

    def to_domain(self) -> ChatRoom:
        return ChatRoom(
            id=self.id,
            kind=self.kind,
            participants=list(self.participants),
            group_id=self.group_id,
            last_activity=self.last_activity,
            created_at=self.created_at,
            archived=self.archived,
        )


class MessageDocument(Document):
    """
    MongoDB document for messages.

    `_id` is an integer drawn from the "messages" sequence so that id order is
    creation order inside every chatroom.
    """
    id: int
    chatroom_id: str
    sender_id: str
    recipient_id: Optional[str] = None
    content: Optional[str] = Field(default=None, max_length=10000)
    attachment: Optional[Attachment] = None
    kind: MessageKind = MessageKind.TEXT
    status: MessageStatus = MessageStatus.SENT
    soft_deleted: bool = False
    edited_at: Optional[datetime] = None
    forwarded: bool = False
    reply_to: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "messages"
        indexes = [
            # Primary listing pattern: WHERE chatroom_id = ? AND soft_deleted = false ORDER BY _id
            [("chatroom_id", 1), ("soft_deleted", 1), ("_id", 1)],
            "sender_id",
            "reply_to",
        ]

    @classmethod
    def from_domain(cls, message: Message) -> "MessageDocument":
        return cls(**message.model_dump())

    def to_domain(self) -> Message:
        return Message(**self.model_dump(exclude={"revision_id"}))


class SequenceDocument(Document):
    """Named monotonically increasing counters (atomic $inc)."""
    id: str
    value: int = 0

    class Settings:
        name = "sequences"
