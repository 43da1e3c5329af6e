"""
LifecycleEngine - the state machine of a message's mutable fields.

    status:        SENT -> DELIVERED -> READ   (forward only, skips allowed)
    soft_deleted:  False -> True               (terminal, idempotent)
    edited:        content may change any number of times until soft-deleted;
                   every edit refreshes edited_at
    forwarded:     fixed at creation

Replies and forwards only store the id of the message they point at.
"""

from typing import Optional, Tuple

from chathub.config import settings
from chathub.core import metrics
from chathub.core.exceptions import InvalidArgumentError, InvalidStateError
from chathub.core.logging_config import get_logger
from chathub.models.chatroom import utc_now
from chathub.models.message import Attachment, Message, MessageDraft, MessageKind, MessageStatus
from chathub.services.directory import Directory
from chathub.services.message_ledger import MessageLedger

logger = get_logger(__name__)

# Each lost compare-and-set observes a strictly newer status
STATUS_CAS_ATTEMPTS = 3


class LifecycleEngine:

    def __init__(
        self,
        ledger: MessageLedger,
        directory: Directory,
        allow_forward_soft_deleted: Optional[bool] = None,
    ):
        self.ledger = ledger
        self.directory = directory
        if allow_forward_soft_deleted is None:
            allow_forward_soft_deleted = settings.FORWARD_SOFT_DELETED_ALLOWED
        self.allow_forward_soft_deleted = allow_forward_soft_deleted

    async def _load_attachment(self, attachment_id: Optional[str]) -> Optional[Attachment]:
        if attachment_id is None:
            return None
        record = await self.directory.get_attachment(attachment_id)
        return record.to_attachment()

    async def create(
        self,
        chatroom_id: str,
        sender_id: str,
        content: Optional[str] = None,
        attachment_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
        reply_to: Optional[int] = None,
        forwarded: bool = False,
        attachment: Optional[Attachment] = None,
    ) -> Message:
        """
        Append a new message in SENT state.

        Either `attachment_id` (looked up in the attachment store) or an already
        resolved `attachment` snapshot may be given, not both.

        Raises:
            InvalidArgumentError: Neither content nor attachment
            NotFoundError: Unknown attachment id
        """
        if attachment is None:
            attachment = await self._load_attachment(attachment_id)
        elif attachment_id is not None:
            raise InvalidArgumentError("Pass either an attachment id or an attachment, not both")

        if not content and attachment is None:
            raise InvalidArgumentError("A message needs content or an attachment")

        draft = MessageDraft(
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=content or None,
            attachment=attachment,
            kind=MessageKind.from_mime_type(attachment.mime_type if attachment else None),
            reply_to=reply_to,
            forwarded=forwarded,
        )
        message = await self.ledger.append(chatroom_id, draft)

        logger.info(
            "message_appended",
            message_id=message.id,
            chatroom_id=chatroom_id,
            sender_id=sender_id,
            kind=message.kind.value,
            reply_to=reply_to,
            forwarded=forwarded,
        )
        return message

    async def transition_status(
        self,
        message_id: int,
        new_status: MessageStatus,
    ) -> Tuple[Message, bool]:
        """
        Move a message's status forward.

        Returns:
            (message, changed). Requesting the current status again is a no-op
            with changed=False.

        Raises:
            NotFoundError: Unknown message
            InvalidStateError: new_status is behind the current status
        """
        for _ in range(STATUS_CAS_ATTEMPTS):
            message = await self.ledger.get(message_id)

            if message.status == new_status:
                return message, False
            if not new_status.is_ahead_of(message.status):
                raise InvalidStateError(
                    f"Message {message_id} is {message.status.value}; "
                    f"cannot move back to {new_status.value}"
                )

            if await self.ledger.compare_and_set_status(message_id, message.status, new_status):
                metrics.message_status_transitions_total.labels(status=new_status.value).inc()
                logger.info(
                    "message_status_changed",
                    message_id=message_id,
                    chatroom_id=message.chatroom_id,
                    previous=message.status.value,
                    status=new_status.value,
                )
                return message.model_copy(update={"status": new_status}), True

            logger.debug("message_status_cas_retry", message_id=message_id)

        # Every lost race observed a newer status; re-evaluate against the latest one
        message = await self.ledger.get(message_id)
        if message.status == new_status:
            return message, False
        raise InvalidStateError(
            f"Message {message_id} is {message.status.value}; "
            f"cannot move to {new_status.value}"
        )

    async def edit(self, message_id: int, new_content: str) -> Message:
        """
        Replace a message's content and stamp edited_at.

        Raises:
            NotFoundError: Unknown message
            InvalidArgumentError: Empty content
            InvalidStateError: The message is soft-deleted
        """
        if not new_content:
            raise InvalidArgumentError("Edited content cannot be empty")

        updated = await self.ledger.update_content(message_id, new_content, utc_now())
        if updated is None:
            # Distinguish "never existed" from "soft-deleted"
            await self.ledger.get(message_id)
            raise InvalidStateError(f"Message {message_id} is deleted and cannot be edited")

        metrics.messages_edited_total.inc()
        logger.info("message_edited", message_id=message_id, chatroom_id=updated.chatroom_id)
        return updated

    async def soft_delete(self, message_id: int) -> Tuple[Message, bool]:
        """Hide a message from listings. Deleting twice is a no-op (changed=False)."""
        changed = await self.ledger.mark_soft_deleted(message_id)
        message = await self.ledger.get(message_id)

        if changed:
            metrics.messages_deleted_total.inc()
            logger.info("message_soft_deleted", message_id=message_id, chatroom_id=message.chatroom_id)
        return message, changed

    async def reply(
        self,
        chatroom_id: str,
        sender_id: str,
        content: Optional[str],
        attachment_id: Optional[str],
        target_message_id: int,
    ) -> Message:
        """
        Create a message linked to `target_message_id`.

        The target may live in any chatroom and may be soft-deleted; it only has
        to exist.

        Raises:
            NotFoundError: Unknown target message
        """
        target = await self.ledger.get(target_message_id)
        if target.chatroom_id != chatroom_id:
            logger.info(
                "cross_chatroom_reply",
                chatroom_id=chatroom_id,
                target_message_id=target_message_id,
                target_chatroom_id=target.chatroom_id,
            )

        return await self.create(
            chatroom_id=chatroom_id,
            sender_id=sender_id,
            content=content,
            attachment_id=attachment_id,
            reply_to=target.id,
        )

    async def forward(
        self,
        message_id: int,
        destination_chatroom_id: str,
        sender_id: str,
    ) -> Message:
        """
        Copy a message's content and attachment into another chatroom.

        The copy has forwarded=True and reply_to pointing at the original.

        Raises:
            NotFoundError: Unknown source message
            InvalidStateError: Source is soft-deleted and forwarding deleted
                messages is disabled
        """
        source = await self.ledger.get(message_id)
        if source.soft_deleted and not self.allow_forward_soft_deleted:
            raise InvalidStateError(f"Message {message_id} is deleted and cannot be forwarded")

        return await self.create(
            chatroom_id=destination_chatroom_id,
            sender_id=sender_id,
            content=source.content,
            attachment=source.attachment,
            reply_to=source.id,
            forwarded=True,
        )
