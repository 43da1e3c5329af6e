"""
Tests for wire views and frame parsing.

Tests cover:
- Message projection (attachment, reply target, edit/delete flags)
- camelCase serialization of views and events
- HTML stripping on inbound content
- Inbound WebSocket frame validation
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from chathub.models.chatroom import ChatRoom, ChatRoomKind
from chathub.models.message import Attachment, Message, MessageKind, MessageStatus
from chathub.schemas.chatroom import PersonalChatRoomCreate, project_chatroom
from chathub.schemas.events import (
    JoinFrame,
    SendPersonalFrame,
    StatusUpdateFrame,
    TypingFrame,
    inbound_frame_adapter,
    new_message_event,
    status_update_event,
)
from chathub.schemas.message import (
    PersonalMessageCreate,
    StatusAck,
    project_message,
)

CREATED = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def message(**overrides) -> Message:
    fields = dict(id=7, chatroom_id="5_9", sender_id="5", content="hi", created_at=CREATED)
    fields.update(overrides)
    return Message(**fields)


class TestProjectMessage:

    def test_plain_text(self):
        view = project_message(message(), sender_name="Ada")

        assert view.id == 7
        assert view.sender_name == "Ada"
        assert view.timestamp == CREATED
        assert view.status == MessageStatus.SENT
        assert view.kind == MessageKind.TEXT
        assert view.attachment is None
        assert view.replied_to is None
        assert not view.edited and not view.deleted and not view.forwarded

    def test_attachment_is_flattened(self):
        attachment = Attachment(
            id="a1",
            url="https://files.example.com/a1/cat.png",
            name="cat.png",
            size=2048,
            mime_type="image/png",
            uploader_id="5",
        )

        view = project_message(message(attachment=attachment, kind=MessageKind.IMAGE), sender_name="Ada")

        assert view.attachment.url == attachment.url
        assert view.attachment.type == "image/png"
        assert view.kind == MessageKind.IMAGE

    def test_reply_target_keeps_deleted_content(self):
        target = message(id=3, content="original", soft_deleted=True)

        view = project_message(
            message(reply_to=3),
            sender_name="Ada",
            replied_to=target,
            replied_to_sender_name="Grace",
        )

        assert view.replied_to.id == 3
        assert view.replied_to.content == "original"
        assert view.replied_to.sender_name == "Grace"

    def test_edited_and_deleted_flags(self):
        edited_at = CREATED.replace(minute=30)

        view = project_message(message(edited_at=edited_at, soft_deleted=True), sender_name="Ada")

        assert view.edited is True
        assert view.edit_timestamp == edited_at
        assert view.deleted is True

    def test_dump_uses_camel_case(self):
        dumped = project_message(message(reply_to=None), sender_name="Ada").model_dump(by_alias=True, mode="json")

        assert dumped["chatroomId"] == "5_9"
        assert dumped["senderName"] == "Ada"
        assert dumped["editTimestamp"] is None
        assert dumped["status"] == "SENT"


class TestProjectChatroom:

    def test_view_fields(self):
        room = ChatRoom(id="group_17", kind=ChatRoomKind.GROUP, participants=["5", "9"], group_id="17")

        dumped = project_chatroom(room).model_dump(by_alias=True, mode="json")

        assert dumped["id"] == "group_17"
        assert dumped["kind"] == "GROUP"
        assert dumped["participantIds"] == ["5", "9"]
        assert dumped["groupId"] == "17"
        assert dumped["archived"] is False

    def test_personal_create_needs_participants(self):
        with pytest.raises(ValidationError):
            PersonalChatRoomCreate(participantIds=[])


class TestEvents:

    def test_new_message_event(self):
        event = new_message_event(project_message(message(), sender_name="Ada"))

        assert event["topic"] == "chat/5_9"
        assert event["type"] == "new_message"
        assert event["message"]["id"] == 7

    def test_status_update_event(self):
        ack = StatusAck(message_id=7, chatroom_id="5_9", status=MessageStatus.READ, changed=True)

        event = status_update_event(ack)

        assert event == {
            "topic": "messages/status",
            "type": "status_update",
            "messageId": 7,
            "chatroomId": "5_9",
            "status": "READ",
            "changed": True,
        }


class TestSanitization:

    def test_tags_are_stripped(self):
        body = PersonalMessageCreate(receiverId="9", content="<b>hello</b> world")
        assert body.content == "hello world"

    def test_snake_case_input_accepted(self):
        body = PersonalMessageCreate(receiver_id="9", content="hi")
        assert body.receiver_id == "9"

    def test_content_length_limit(self):
        with pytest.raises(ValidationError):
            PersonalMessageCreate(receiverId="9", content="x" * 10001)


class TestInboundFrames:

    def test_join(self):
        frame = inbound_frame_adapter.validate_json('{"type": "join", "chatroomId": "5_9", "requestId": "r1"}')

        assert isinstance(frame, JoinFrame)
        assert frame.chatroom_id == "5_9"
        assert frame.request_id == "r1"

    def test_typing_defaults_to_true(self):
        frame = inbound_frame_adapter.validate_json('{"type": "typing", "chatroomId": "5_9"}')

        assert isinstance(frame, TypingFrame)
        assert frame.is_typing is True

    def test_send_personal_is_sanitized(self):
        frame = inbound_frame_adapter.validate_json(
            '{"type": "send_personal", "receiverId": "9", "content": "<i>hi</i>"}'
        )

        assert isinstance(frame, SendPersonalFrame)
        assert frame.content == "hi"

    def test_status_update(self):
        frame = inbound_frame_adapter.validate_json('{"type": "status_update", "messageId": 7, "status": "READ"}')

        assert isinstance(frame, StatusUpdateFrame)
        assert frame.status == MessageStatus.READ

    @pytest.mark.parametrize("raw", [
        '{"type": "dance"}',
        '{"type": "join"}',
        '{"type": "status_update", "messageId": 7, "status": "LOST"}',
        '{"chatroomId": "5_9"}',
        'not json',
    ])
    def test_invalid_frames(self, raw):
        with pytest.raises(ValidationError):
            inbound_frame_adapter.validate_json(raw)
