from datetime import datetime
from typing import Optional

import bleach
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from chathub.models.message import Message, MessageKind, MessageStatus


def sanitize_content(value: Optional[str]) -> Optional[str]:
    """
    Strip all HTML/JS tags while preserving text content.

    We're a chat API, not a rich text editor.
    """
    if value is None:
        return None
    return bleach.clean(value, tags=[], strip=True).strip()


class CamelModel(BaseModel):
    """Wire models use camelCase field names; snake_case is accepted on input too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _MessageBody(CamelModel):
    content: Optional[str] = Field(None, max_length=10000)
    attachment_id: Optional[str] = None

    @field_validator('content')
    @classmethod
    def sanitize(cls, v: Optional[str]) -> Optional[str]:
        return sanitize_content(v)


class PersonalMessageCreate(_MessageBody):
    receiver_id: str


class GroupMessageCreate(_MessageBody):
    group_id: str


class ReplyMessageCreate(_MessageBody):
    replied_to_id: int


class ForwardMessageCreate(CamelModel):
    message_id: int
    destination_chatroom_id: str


class MessageUpdate(CamelModel):
    """Schema for editing a message."""
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator('content')
    @classmethod
    def sanitize(cls, v: str) -> str:
        return sanitize_content(v)


class StatusUpdate(CamelModel):
    status: MessageStatus


class StatusAck(CamelModel):
    message_id: int
    chatroom_id: str
    status: MessageStatus
    changed: bool


class AttachmentView(CamelModel):
    url: str
    name: str
    size: int
    type: str


class RepliedToView(CamelModel):
    id: int
    sender_name: str
    content: Optional[str] = None


class MessageView(CamelModel):
    id: int
    chatroom_id: str
    sender_id: str
    sender_name: str
    content: Optional[str] = None
    timestamp: datetime
    status: MessageStatus
    kind: MessageKind
    attachment: Optional[AttachmentView] = None
    replied_to: Optional[RepliedToView] = None
    edited: bool = False
    forwarded: bool = False
    edit_timestamp: Optional[datetime] = None
    deleted: bool = False


def project_message(
    message: Message,
    sender_name: str,
    replied_to: Optional[Message] = None,
    replied_to_sender_name: Optional[str] = None,
) -> MessageView:
    """
    Build the wire view of a message.

    `replied_to` is the message `message.reply_to` points at, looked up by the
    caller. Its content is shown even when it has been soft-deleted.
    """
    attachment = None
    if message.attachment is not None:
        attachment = AttachmentView(
            url=message.attachment.url,
            name=message.attachment.name,
            size=message.attachment.size,
            type=message.attachment.mime_type,
        )

    replied = None
    if replied_to is not None:
        replied = RepliedToView(
            id=replied_to.id,
            sender_name=replied_to_sender_name or replied_to.sender_id,
            content=replied_to.content,
        )

    return MessageView(
        id=message.id,
        chatroom_id=message.chatroom_id,
        sender_id=message.sender_id,
        sender_name=sender_name,
        content=message.content,
        timestamp=message.created_at,
        status=message.status,
        kind=message.kind,
        attachment=attachment,
        replied_to=replied,
        edited=message.edited,
        forwarded=message.forwarded,
        edit_timestamp=message.edited_at,
        deleted=message.soft_deleted,
    )
