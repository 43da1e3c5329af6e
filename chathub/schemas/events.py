"""
WebSocket frames.

Inbound frames are validated as a union discriminated on "type":

    {"type": "join", "chatroomId": "5_9", "requestId": "r1"}
    {"type": "send_personal", "receiverId": "9", "content": "hi"}

Every inbound frame is answered on the same connection with an "ack" or an
"error" frame carrying the client's requestId. Outbound events fanned out to a
chatroom carry the topic they were published on ("chat/{chatroomId}" or
"messages/status").
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from chathub.models.message import MessageStatus
from chathub.schemas.message import (
    CamelModel,
    ForwardMessageCreate,
    GroupMessageCreate,
    MessageUpdate,
    MessageView,
    PersonalMessageCreate,
    ReplyMessageCreate,
    StatusAck,
)

STATUS_TOPIC = "messages/status"


def chat_topic(chatroom_id: str) -> str:
    return f"chat/{chatroom_id}"


# ============================================================================
# Inbound
# ============================================================================

class _Frame(CamelModel):
    request_id: Optional[str] = None


class PingFrame(_Frame):
    type: Literal["ping"]


class JoinFrame(_Frame):
    type: Literal["join"]
    chatroom_id: str


class LeaveFrame(_Frame):
    type: Literal["leave"]
    chatroom_id: str


class TypingFrame(_Frame):
    type: Literal["typing"]
    chatroom_id: str
    is_typing: bool = True


class SendPersonalFrame(PersonalMessageCreate, _Frame):
    type: Literal["send_personal"]


class SendGroupFrame(GroupMessageCreate, _Frame):
    type: Literal["send_group"]


class SendReplyFrame(ReplyMessageCreate, _Frame):
    type: Literal["send_reply"]


class ForwardFrame(ForwardMessageCreate, _Frame):
    type: Literal["forward"]


class StatusUpdateFrame(_Frame):
    type: Literal["status_update"]
    message_id: int
    status: MessageStatus


class EditFrame(MessageUpdate, _Frame):
    type: Literal["edit"]
    message_id: int


class DeleteFrame(_Frame):
    type: Literal["delete"]
    message_id: int


InboundFrame = Annotated[
    Union[
        PingFrame,
        JoinFrame,
        LeaveFrame,
        TypingFrame,
        SendPersonalFrame,
        SendGroupFrame,
        SendReplyFrame,
        ForwardFrame,
        StatusUpdateFrame,
        EditFrame,
        DeleteFrame,
    ],
    Field(discriminator="type"),
]

inbound_frame_adapter = TypeAdapter(InboundFrame)


# ============================================================================
# Outbound
# ============================================================================

def _dump(model: CamelModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def new_message_event(view: MessageView) -> Dict[str, Any]:
    return {
        "topic": chat_topic(view.chatroom_id),
        "type": "new_message",
        "message": _dump(view),
    }


def message_updated_event(view: MessageView) -> Dict[str, Any]:
    return {
        "topic": chat_topic(view.chatroom_id),
        "type": "message_updated",
        "message": _dump(view),
    }


def message_deleted_event(chatroom_id: str, message_id: int) -> Dict[str, Any]:
    return {
        "topic": chat_topic(chatroom_id),
        "type": "message_deleted",
        "messageId": message_id,
        "chatroomId": chatroom_id,
    }


def status_update_event(ack: StatusAck) -> Dict[str, Any]:
    return {
        "topic": STATUS_TOPIC,
        "type": "status_update",
        **_dump(ack),
    }


def user_joined_event(chatroom_id: str, user_id: str, subscriber_count: int) -> Dict[str, Any]:
    return {
        "topic": chat_topic(chatroom_id),
        "type": "user_joined",
        "chatroomId": chatroom_id,
        "userId": user_id,
        "connectionCount": subscriber_count,
    }


def user_left_event(chatroom_id: str, user_id: str, subscriber_count: int) -> Dict[str, Any]:
    return {
        "topic": chat_topic(chatroom_id),
        "type": "user_left",
        "chatroomId": chatroom_id,
        "userId": user_id,
        "connectionCount": subscriber_count,
    }


def typing_event(chatroom_id: str, user_id: str, is_typing: bool) -> Dict[str, Any]:
    return {
        "topic": chat_topic(chatroom_id),
        "type": "user_typing",
        "chatroomId": chatroom_id,
        "userId": user_id,
        "isTyping": is_typing,
    }


def ack_frame(request_id: Optional[str], data: Any = None) -> Dict[str, Any]:
    return {"type": "ack", "requestId": request_id, "data": data}


def error_frame(request_id: Optional[str], code: int, detail: Any) -> Dict[str, Any]:
    return {"type": "error", "requestId": request_id, "code": code, "detail": detail}
