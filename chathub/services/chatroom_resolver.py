"""
ChatroomResolver - canonical chatroom ids for user pairs and groups.

Personal rooms:
    id = min(a, b) + "_" + max(a, b)
    Numeric ids compare numerically (9 < 10), anything else lexicographically.
    Two callers racing to open the same pair compute the same candidate id, and
    the identity store's create-if-absent lets exactly one insert win; the loser
    gets the winner's record back.

Group rooms:
    id = "group_" + group_id
    Participants mirror the group directory's member list and are re-synced
    whenever the room is resolved again.
"""

import re
from typing import List, Sequence, Tuple

from chathub.core import metrics
from chathub.core.exceptions import InvalidArgumentError, NotFoundError
from chathub.core.logging_config import get_logger
from chathub.models.chatroom import ChatRoom, ChatRoomKind, utc_now
from chathub.services.directory import Directory
from chathub.services.identity_store import ChatRoomStore

logger = get_logger(__name__)

# Underscores are reserved as the separator inside chatroom ids
ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,64}$")
GROUP_ROOM_PREFIX = "group_"


def _ordering_key(user_id: str) -> Tuple[int, int, str]:
    if user_id.isdigit():
        return (0, int(user_id), "")
    return (1, 0, user_id)


def order_participants(user_ids: Sequence[str]) -> List[str]:
    return sorted(set(user_ids), key=_ordering_key)


def personal_chatroom_id(user_a: str, user_b: str) -> str:
    low, high = sorted((user_a, user_b), key=_ordering_key)
    return f"{low}_{high}"


def group_chatroom_id(group_id: str) -> str:
    return f"{GROUP_ROOM_PREFIX}{group_id}"


def validate_id(value: str, what: str = "id") -> str:
    if not isinstance(value, str) or not ID_PATTERN.match(value):
        raise InvalidArgumentError(f"Malformed {what}: {value!r}")
    return value


class ChatroomResolver:

    def __init__(self, store: ChatRoomStore, directory: Directory):
        self.store = store
        self.directory = directory

    async def resolve_participants(self, participant_ids: Sequence[str]) -> ChatRoom:
        """Resolve a personal room from a participant list that must name exactly two distinct users."""
        distinct = list(dict.fromkeys(participant_ids))
        if len(distinct) != 2:
            raise InvalidArgumentError(
                "A personal chat needs exactly two distinct participants"
            )
        return await self.resolve_personal(distinct[0], distinct[1])

    async def resolve_personal(self, user_a: str, user_b: str) -> ChatRoom:
        """
        Return the personal chatroom of two users, creating it on first use.

        Raises:
            InvalidArgumentError: Malformed ids or the same user twice
            NotFoundError: Either user is unknown to the identity provider
            ConflictError: The identity store could not settle the insert
        """
        validate_id(user_a, "user id")
        validate_id(user_b, "user id")
        if user_a == user_b:
            raise InvalidArgumentError(
                "A personal chat needs exactly two distinct participants"
            )

        await self.directory.get_user(user_a)
        await self.directory.get_user(user_b)

        existing = await self.store.find_personal(user_a, user_b)
        if existing is not None:
            return existing

        candidate_id = personal_chatroom_id(user_a, user_b)
        existing = await self.store.get(candidate_id)
        if existing is not None:
            return existing

        now = utc_now()
        room = ChatRoom(
            id=candidate_id,
            kind=ChatRoomKind.PERSONAL,
            participants=order_participants([user_a, user_b]),
            last_activity=now,
            created_at=now,
        )
        stored, created = await self.store.create_if_absent(room)

        if created:
            metrics.chatrooms_created_total.labels(kind=ChatRoomKind.PERSONAL.value).inc()
            logger.info(
                "personal_chatroom_created",
                chatroom_id=stored.id,
                participants=stored.participants,
            )
        return stored

    async def resolve_group(self, group_id: str) -> ChatRoom:
        """
        Return the chatroom of a group, creating it on first use.

        Raises:
            InvalidArgumentError: Malformed group id
            NotFoundError: Unknown group
        """
        validate_id(group_id, "group id")
        group = await self.directory.get_group(group_id)
        chatroom_id = group_chatroom_id(group_id)

        existing = await self.store.get(chatroom_id)
        if existing is not None:
            return await self._sync_participants(existing, group.member_ids)

        now = utc_now()
        room = ChatRoom(
            id=chatroom_id,
            kind=ChatRoomKind.GROUP,
            participants=order_participants(group.member_ids),
            group_id=group_id,
            last_activity=now,
            created_at=now,
        )
        stored, created = await self.store.create_if_absent(room)

        if created:
            metrics.chatrooms_created_total.labels(kind=ChatRoomKind.GROUP.value).inc()
            logger.info(
                "group_chatroom_created",
                chatroom_id=stored.id,
                group_id=group_id,
                member_count=len(stored.participants),
            )
            return stored
        return await self._sync_participants(stored, group.member_ids)

    async def _sync_participants(self, room: ChatRoom, member_ids: Sequence[str]) -> ChatRoom:
        if set(room.participants) == set(member_ids):
            return room

        synced = await self.store.set_participants(room.id, order_participants(member_ids))
        logger.info(
            "group_chatroom_participants_synced",
            chatroom_id=room.id,
            before=len(room.participants),
            after=len(member_ids),
        )
        return synced or room

    async def get(self, chatroom_id: str) -> ChatRoom:
        room = await self.store.get(chatroom_id)
        if room is None:
            raise NotFoundError(f"Chatroom {chatroom_id} not found")
        return room

    async def rooms_for_user(self, user_id: str) -> List[ChatRoom]:
        return await self.store.list_for_user(user_id)

    async def archive(self, chatroom_id: str, archived: bool = True) -> ChatRoom:
        await self.get(chatroom_id)
        room = await self.store.set_archived(chatroom_id, archived)
        logger.info("chatroom_archive_flag_set", chatroom_id=chatroom_id, archived=archived)
        return room
