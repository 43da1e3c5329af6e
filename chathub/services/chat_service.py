"""
ChatService - orchestrates chatroom resolution, message lifecycle and fan-out.

Flow for every new message:
    resolve chatroom -> authorize sender -> append (LifecycleEngine/MessageLedger)
    -> bump chatroom last_activity -> publish "new_message" to chat/{chatroom_id}

Ordering:
- Append, activity bump and publish for one chatroom run under that chatroom's
  lock, so subscribers receive new messages in id order
- Different chatrooms never contend; status changes, edits and deletes are
  single-row compare-and-set updates and need no chatroom lock

Authorization:
- Only participants may read, post to, join, type in or change statuses in a chatroom
- Only the sender may edit or delete a message
"""

import asyncio
import time
from contextlib import contextmanager
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from weakref import WeakValueDictionary

from chathub.core import metrics
from chathub.core.exceptions import ForbiddenError, NotFoundError
from chathub.core.logging_config import get_logger
from chathub.models.chatroom import ChatRoom, utc_now
from chathub.models.message import Message, MessageStatus
from chathub.schemas.events import (
    message_deleted_event,
    message_updated_event,
    new_message_event,
    status_update_event,
    typing_event,
    user_joined_event,
    user_left_event,
)
from chathub.schemas.message import MessageView, StatusAck, project_message
from chathub.services.chatroom_resolver import ChatroomResolver
from chathub.services.directory import Directory
from chathub.services.lifecycle import LifecycleEngine
from chathub.services.message_ledger import MessageLedger
from chathub.services.presence_hub import Connection, PresenceHub

logger = get_logger(__name__)


@contextmanager
def track_operation(operation: str):
    start_time = time.time()
    try:
        yield
    except Exception as e:
        metrics.message_operation_errors_total.labels(
            operation=operation,
            error_type=type(e).__name__
        ).inc()
        raise
    finally:
        metrics.message_operation_duration_seconds.labels(
            operation=operation
        ).observe(time.time() - start_time)


class ChatService:

    def __init__(
        self,
        resolver: ChatroomResolver,
        ledger: MessageLedger,
        engine: LifecycleEngine,
        hub: PresenceHub,
        directory: Directory,
    ):
        self.resolver = resolver
        self.ledger = ledger
        self.engine = engine
        self.hub = hub
        self.directory = directory
        # Held only while some coroutine uses it
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()
        hub.on_departure = self._announce_departure

    def _lock_for(self, chatroom_id: str) -> asyncio.Lock:
        lock = self._locks.get(chatroom_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chatroom_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def _display_name(self, user_id: str, names: Optional[Dict[str, str]] = None) -> str:
        if names is not None and user_id in names:
            return names[user_id]
        try:
            name = (await self.directory.get_user(user_id)).display_name
        except NotFoundError:
            logger.debug("sender_profile_missing", user_id=user_id)
            name = user_id
        if names is not None:
            names[user_id] = name
        return name

    async def project(self, message: Message, names: Optional[Dict[str, str]] = None) -> MessageView:
        """Assemble the view of a message, resolving its reply target by id."""
        replied_to = None
        replied_to_name = None
        if message.reply_to is not None:
            replied_to = await self.ledger.find(message.reply_to)
            if replied_to is not None:
                replied_to_name = await self._display_name(replied_to.sender_id, names)

        return project_message(
            message,
            sender_name=await self._display_name(message.sender_id, names),
            replied_to=replied_to,
            replied_to_sender_name=replied_to_name,
        )

    # ------------------------------------------------------------------
    # Chatrooms
    # ------------------------------------------------------------------

    @staticmethod
    def _require_participant(room: ChatRoom, user_id: str) -> None:
        if not room.has_participant(user_id):
            logger.warning("chatroom_access_denied", chatroom_id=room.id, user_id=user_id)
            raise ForbiddenError("You are not a participant of this chatroom")

    async def open_personal(self, requester_id: str, participant_ids: Sequence[str]) -> ChatRoom:
        if requester_id not in participant_ids:
            raise ForbiddenError("You can only open personal chats you take part in")
        return await self.resolver.resolve_participants(participant_ids)

    async def open_group(self, requester_id: str, group_id: str) -> ChatRoom:
        room = await self.resolver.resolve_group(group_id)
        self._require_participant(room, requester_id)
        return room

    async def get_chatroom(self, requester_id: str, chatroom_id: str) -> ChatRoom:
        room = await self.resolver.get(chatroom_id)
        self._require_participant(room, requester_id)
        return room

    async def list_chatrooms(self, user_id: str) -> List[ChatRoom]:
        return await self.resolver.rooms_for_user(user_id)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def _append(
        self,
        chatroom_id: str,
        origin: str,
        create: Callable[[], Awaitable[Message]],
    ) -> MessageView:
        with track_operation("create"):
            async with self._lock_for(chatroom_id):
                message = await create()

                try:
                    await self.resolver.store.touch(chatroom_id, message.created_at)
                except Exception as e:
                    # The message is stored; a stale last_activity is tolerated
                    logger.warning(
                        "chatroom_touch_failed",
                        chatroom_id=chatroom_id,
                        message_id=message.id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

                view = await self.project(message)
                self.hub.publish(chatroom_id, new_message_event(view))

        metrics.messages_created_total.labels(origin=origin).inc()
        logger.info(
            "message_created",
            message_id=message.id,
            chatroom_id=chatroom_id,
            sender_id=message.sender_id,
            origin=origin,
        )
        return view

    async def send_personal(
        self,
        sender_id: str,
        receiver_id: str,
        content: Optional[str] = None,
        attachment_id: Optional[str] = None,
    ) -> MessageView:
        room = await self.resolver.resolve_personal(sender_id, receiver_id)
        return await self._append(
            room.id,
            "personal",
            lambda: self.engine.create(
                chatroom_id=room.id,
                sender_id=sender_id,
                content=content,
                attachment_id=attachment_id,
                recipient_id=receiver_id,
            ),
        )

    async def send_group(
        self,
        sender_id: str,
        group_id: str,
        content: Optional[str] = None,
        attachment_id: Optional[str] = None,
    ) -> MessageView:
        room = await self.resolver.resolve_group(group_id)
        self._require_participant(room, sender_id)
        return await self._append(
            room.id,
            "group",
            lambda: self.engine.create(
                chatroom_id=room.id,
                sender_id=sender_id,
                content=content,
                attachment_id=attachment_id,
            ),
        )

    async def send_reply(
        self,
        sender_id: str,
        replied_to_id: int,
        content: Optional[str] = None,
        attachment_id: Optional[str] = None,
    ) -> MessageView:
        """Reply to a message. The reply is posted in the chatroom of the message it answers."""
        target = await self.ledger.get(replied_to_id)
        room = await self.resolver.get(target.chatroom_id)
        self._require_participant(room, sender_id)
        return await self._append(
            room.id,
            "reply",
            lambda: self.engine.reply(
                chatroom_id=room.id,
                sender_id=sender_id,
                content=content,
                attachment_id=attachment_id,
                target_message_id=replied_to_id,
            ),
        )

    async def forward(
        self,
        sender_id: str,
        message_id: int,
        destination_chatroom_id: str,
    ) -> MessageView:
        source = await self.ledger.get(message_id)
        self._require_participant(await self.resolver.get(source.chatroom_id), sender_id)
        destination = await self.resolver.get(destination_chatroom_id)
        self._require_participant(destination, sender_id)
        return await self._append(
            destination.id,
            "forward",
            lambda: self.engine.forward(
                message_id=message_id,
                destination_chatroom_id=destination.id,
                sender_id=sender_id,
            ),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def update_status(self, requester_id: str, message_id: int, status: MessageStatus) -> StatusAck:
        """
        Move a message's delivery status forward and notify the chatroom.

        Re-applying the current status is acknowledged without an event.
        """
        with track_operation("status"):
            message = await self.ledger.get(message_id)
            self._require_participant(await self.resolver.get(message.chatroom_id), requester_id)

            updated, changed = await self.engine.transition_status(message_id, status)
            ack = StatusAck(
                message_id=updated.id,
                chatroom_id=updated.chatroom_id,
                status=updated.status,
                changed=changed,
            )
            if changed:
                self.hub.publish(updated.chatroom_id, status_update_event(ack))
            return ack

    async def _owned_message(self, requester_id: str, message_id: int) -> Message:
        message = await self.ledger.get(message_id)
        if message.sender_id != requester_id:
            logger.warning(
                "message_ownership_denied",
                message_id=message_id,
                sender_id=message.sender_id,
                requesting_user_id=requester_id,
            )
            raise ForbiddenError("You can only change your own messages")
        return message

    async def edit_message(self, requester_id: str, message_id: int, content: str) -> MessageView:
        with track_operation("edit"):
            await self._owned_message(requester_id, message_id)
            updated = await self.engine.edit(message_id, content)
            view = await self.project(updated)
            self.hub.publish(updated.chatroom_id, message_updated_event(view))
            return view

    async def delete_message(self, requester_id: str, message_id: int) -> None:
        with track_operation("delete"):
            await self._owned_message(requester_id, message_id)
            message, changed = await self.engine.soft_delete(message_id)
            if changed:
                self.hub.publish(message.chatroom_id, message_deleted_event(message.chatroom_id, message.id))

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def list_messages(
        self,
        requester_id: str,
        chatroom_id: str,
        include_deleted: bool = False,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[MessageView]:
        room = await self.resolver.get(chatroom_id)
        self._require_participant(room, requester_id)

        names: Dict[str, str] = {}
        views = []
        async for message in self.ledger.list(
            chatroom_id,
            include_soft_deleted=include_deleted,
            after_id=after_id,
            limit=limit,
        ):
            views.append(await self.project(message, names))

        logger.debug(
            "messages_fetched",
            chatroom_id=chatroom_id,
            user_id=requester_id,
            returned=len(views),
            include_deleted=include_deleted,
        )
        return views

    async def get_message(self, requester_id: str, message_id: int) -> MessageView:
        """Fetch a single message, soft-deleted or not."""
        message = await self.ledger.get(message_id)
        self._require_participant(await self.resolver.get(message.chatroom_id), requester_id)
        return await self.project(message)

    # ------------------------------------------------------------------
    # Live subscriptions
    # ------------------------------------------------------------------

    async def join(self, conn: Connection, chatroom_id: str) -> ChatRoom:
        room = await self.resolver.get(chatroom_id)
        self._require_participant(room, conn.user_id)

        if self.hub.subscribe(conn, chatroom_id):
            await self.resolver.store.touch(chatroom_id, utc_now())
            self.hub.publish(
                chatroom_id,
                user_joined_event(chatroom_id, conn.user_id, self.hub.subscriber_count(chatroom_id)),
            )
            logger.info("chatroom_joined", chatroom_id=chatroom_id, user_id=conn.user_id, connection_id=conn.id)
        return room

    async def leave(self, conn: Connection, chatroom_id: str) -> bool:
        room = await self.resolver.get(chatroom_id)
        self._require_participant(room, conn.user_id)

        if not self.hub.unsubscribe(conn, chatroom_id):
            return False
        self.hub.publish(
            chatroom_id,
            user_left_event(chatroom_id, conn.user_id, self.hub.subscriber_count(chatroom_id)),
        )
        logger.info("chatroom_left", chatroom_id=chatroom_id, user_id=conn.user_id, connection_id=conn.id)
        return True

    async def typing(self, conn: Connection, chatroom_id: str, is_typing: bool = True) -> int:
        """
        Relay a typing indicator to the chatroom's subscribers. Never persisted.

        Any participant may type; joining is only needed to receive events.
        """
        room = await self.resolver.get(chatroom_id)
        self._require_participant(room, conn.user_id)
        return self.hub.publish(chatroom_id, typing_event(chatroom_id, conn.user_id, is_typing))

    def disconnect(self, conn: Connection, reason: str = "normal") -> None:
        self.hub.on_disconnect(conn, reason=reason)

    def _announce_departure(self, conn: Connection, chatroom_ids: List[str]) -> None:
        # Runs for every way a connection ends, including server-side drops
        for chatroom_id in chatroom_ids:
            self.hub.publish(
                chatroom_id,
                user_left_event(chatroom_id, conn.user_id, self.hub.subscriber_count(chatroom_id)),
            )
