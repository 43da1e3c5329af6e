from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from chathub.models.chatroom import utc_now


class MessageStatus(str, Enum):
    """Delivery state. Only ever moves forward: SENT < DELIVERED < READ."""
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"

    @property
    def rank(self) -> int:
        return list(MessageStatus).index(self)

    def is_ahead_of(self, other: "MessageStatus") -> bool:
        return self.rank > other.rank


class MessageKind(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"

    @classmethod
    def from_mime_type(cls, mime_type: Optional[str]) -> "MessageKind":
        if not mime_type:
            return cls.TEXT
        mime_type = mime_type.lower()
        if mime_type.startswith("image/"):
            return cls.IMAGE
        if mime_type.startswith("video/"):
            return cls.VIDEO
        if mime_type.startswith("audio/"):
            return cls.AUDIO
        return cls.TEXT


class Attachment(BaseModel):
    """Snapshot of a file record owned by the attachment store."""
    id: str
    url: str
    name: str
    size: int
    mime_type: str
    uploader_id: str


class MessageDraft(BaseModel):
    """Everything the ledger needs to append a message; id and timestamps are assigned on append."""
    sender_id: str
    recipient_id: Optional[str] = None
    content: Optional[str] = None
    attachment: Optional[Attachment] = None
    kind: MessageKind = MessageKind.TEXT
    reply_to: Optional[int] = None
    forwarded: bool = False


class Message(BaseModel):
    id: int
    chatroom_id: str
    sender_id: str
    recipient_id: Optional[str] = None
    content: Optional[str] = None
    attachment: Optional[Attachment] = None
    kind: MessageKind = MessageKind.TEXT
    status: MessageStatus = MessageStatus.SENT
    soft_deleted: bool = False
    edited_at: Optional[datetime] = None
    forwarded: bool = False
    # Plain id of another message; never an embedded object
    reply_to: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def edited(self) -> bool:
        return self.edited_at is not None
