"""
Tests for the message lifecycle engine.

Tests cover:
- Creation rules (content or attachment, kind from mime type)
- Forward-only status transitions, idempotent same-status, skips
- Edits, soft deletes, replies and forwards
"""

import asyncio

import pytest

from chathub.core.exceptions import InvalidArgumentError, InvalidStateError, NotFoundError
from chathub.models.message import MessageKind, MessageStatus
from chathub.services.lifecycle import LifecycleEngine


class TestCreate:

    @pytest.mark.asyncio
    async def test_text_message(self, engine):
        message = await engine.create("5_9", "5", content="hi", recipient_id="9")

        assert message.status == MessageStatus.SENT
        assert message.kind == MessageKind.TEXT
        assert message.recipient_id == "9"
        assert message.attachment is None

    @pytest.mark.asyncio
    async def test_attachment_sets_kind(self, engine):
        message = await engine.create("5_9", "5", attachment_id="a1")

        assert message.content is None
        assert message.kind == MessageKind.IMAGE
        assert message.attachment.name == "cat.png"
        assert message.attachment.size == 2048

    @pytest.mark.asyncio
    async def test_needs_content_or_attachment(self, engine):
        with pytest.raises(InvalidArgumentError):
            await engine.create("5_9", "5", content="")

    @pytest.mark.asyncio
    async def test_unknown_attachment(self, engine, ledger):
        with pytest.raises(NotFoundError):
            await engine.create("5_9", "5", content="look", attachment_id="missing")
        assert await ledger.count("5_9") == 0


class TestStatusTransitions:

    @pytest.mark.asyncio
    async def test_delivery_then_read(self, engine):
        """SENT -> DELIVERED -> READ; DELIVERED twice is a no-op; SENT afterwards fails."""
        message = await engine.create("5_9", "5", content="hi")

        delivered, changed = await engine.transition_status(message.id, MessageStatus.DELIVERED)
        assert changed and delivered.status == MessageStatus.DELIVERED

        again, changed = await engine.transition_status(message.id, MessageStatus.DELIVERED)
        assert not changed and again.status == MessageStatus.DELIVERED

        read, changed = await engine.transition_status(message.id, MessageStatus.READ)
        assert changed and read.status == MessageStatus.READ

        with pytest.raises(InvalidStateError):
            await engine.transition_status(message.id, MessageStatus.SENT)
        with pytest.raises(InvalidStateError):
            await engine.transition_status(message.id, MessageStatus.DELIVERED)

    @pytest.mark.asyncio
    async def test_skip_straight_to_read(self, engine, ledger):
        message = await engine.create("5_9", "5", content="hi")

        _, changed = await engine.transition_status(message.id, MessageStatus.READ)

        assert changed
        assert (await ledger.get(message.id)).status == MessageStatus.READ

    @pytest.mark.asyncio
    async def test_soft_deleted_message_still_transitions(self, engine):
        message = await engine.create("5_9", "5", content="hi")
        await engine.soft_delete(message.id)

        updated, changed = await engine.transition_status(message.id, MessageStatus.DELIVERED)

        assert changed and updated.soft_deleted

    @pytest.mark.asyncio
    async def test_unknown_message(self, engine):
        with pytest.raises(NotFoundError):
            await engine.transition_status(404, MessageStatus.READ)

    @pytest.mark.asyncio
    async def test_concurrent_identical_transitions_apply_once(self, engine):
        message = await engine.create("5_9", "5", content="hi")

        results = await asyncio.gather(*(
            engine.transition_status(message.id, MessageStatus.READ) for _ in range(5)
        ))

        assert sum(1 for _, changed in results if changed) == 1
        assert {updated.status for updated, _ in results} == {MessageStatus.READ}


class TestEditAndDelete:

    @pytest.mark.asyncio
    async def test_edit_stamps_edited_at(self, engine):
        message = await engine.create("5_9", "5", content="hi")

        first = await engine.edit(message.id, "hello")
        second = await engine.edit(message.id, "hello again")

        assert first.content == "hello" and first.edited
        assert second.content == "hello again"
        assert second.edited_at >= first.edited_at

    @pytest.mark.asyncio
    async def test_edit_rejects_empty_content(self, engine):
        message = await engine.create("5_9", "5", content="hi")
        with pytest.raises(InvalidArgumentError):
            await engine.edit(message.id, "")

    @pytest.mark.asyncio
    async def test_edit_soft_deleted(self, engine):
        message = await engine.create("5_9", "5", content="hi")
        await engine.soft_delete(message.id)

        with pytest.raises(InvalidStateError):
            await engine.edit(message.id, "too late")

    @pytest.mark.asyncio
    async def test_edit_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.edit(404, "nothing here")

    @pytest.mark.asyncio
    async def test_soft_delete_is_idempotent(self, engine):
        message = await engine.create("5_9", "5", content="hi")

        deleted, changed = await engine.soft_delete(message.id)
        again, changed_again = await engine.soft_delete(message.id)

        assert changed and deleted.soft_deleted
        assert not changed_again and again.soft_deleted

    @pytest.mark.asyncio
    async def test_soft_delete_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.soft_delete(404)


class TestReplyAndForward:

    @pytest.mark.asyncio
    async def test_reply_to_soft_deleted_message(self, engine):
        original = await engine.create("5_9", "5", content="original")
        await engine.soft_delete(original.id)

        reply = await engine.reply("5_9", "9", "answer", None, original.id)

        assert reply.reply_to == original.id
        assert reply.chatroom_id == "5_9"

    @pytest.mark.asyncio
    async def test_reply_to_unknown_message(self, engine):
        with pytest.raises(NotFoundError):
            await engine.reply("5_9", "9", "answer", None, 404)

    @pytest.mark.asyncio
    async def test_forward_copies_content_and_attachment(self, engine):
        source = await engine.create("5_9", "5", content="look", attachment_id="a1")

        copy = await engine.forward(source.id, "group_17", "9")

        assert copy.id != source.id
        assert copy.chatroom_id == "group_17"
        assert copy.sender_id == "9"
        assert copy.content == "look"
        assert copy.attachment == source.attachment
        assert copy.kind == MessageKind.IMAGE
        assert copy.forwarded is True
        assert copy.reply_to == source.id

    @pytest.mark.asyncio
    async def test_forward_soft_deleted_when_disabled(self, ledger, directory):
        engine = LifecycleEngine(ledger, directory, allow_forward_soft_deleted=False)
        source = await engine.create("5_9", "5", content="secret")
        await engine.soft_delete(source.id)

        with pytest.raises(InvalidStateError):
            await engine.forward(source.id, "group_17", "5")

    @pytest.mark.asyncio
    async def test_forward_soft_deleted_when_allowed(self, engine):
        source = await engine.create("5_9", "5", content="still here")
        await engine.soft_delete(source.id)

        copy = await engine.forward(source.id, "group_17", "5")

        assert copy.content == "still here"
        assert copy.soft_deleted is False
