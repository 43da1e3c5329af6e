"""
Tests for chatroom resolution.

Tests cover:
- Order-independent, idempotent personal chatroom ids
- Numeric vs lexicographic participant ordering
- Group chatroom ids and membership re-sync
- Validation and unknown users/groups
- Concurrent first contact creating exactly one chatroom
"""

import asyncio

import pytest

from chathub.core.exceptions import InvalidArgumentError, NotFoundError
from chathub.models.chatroom import ChatRoomKind
from chathub.services.chatroom_resolver import (
    ChatroomResolver,
    group_chatroom_id,
    order_participants,
    personal_chatroom_id,
)
from chathub.services.identity_store import InMemoryChatRoomStore


class InterleavingStore(InMemoryChatRoomStore):
    """Yields to the event loop on every lookup so concurrent resolvers interleave."""

    async def find_personal(self, user_a, user_b):
        await asyncio.sleep(0)
        return await super().find_personal(user_a, user_b)

    async def get(self, chatroom_id):
        await asyncio.sleep(0)
        return await super().get(chatroom_id)


class TestChatroomIds:

    def test_personal_id_is_order_independent(self):
        assert personal_chatroom_id("5", "9") == personal_chatroom_id("9", "5") == "5_9"

    def test_numeric_ids_compare_numerically(self):
        assert personal_chatroom_id("10", "9") == "9_10"
        assert order_participants(["100", "20", "3"]) == ["3", "20", "100"]

    def test_non_numeric_ids_compare_lexicographically(self):
        assert personal_chatroom_id("bob", "alice") == "alice_bob"

    def test_group_id(self):
        assert group_chatroom_id("17") == "group_17"


class TestResolvePersonal:

    @pytest.mark.asyncio
    async def test_first_contact_creates_room(self, resolver, store):
        """Users 5 and 9 get chatroom 5_9 on first use."""
        room = await resolver.resolve_personal("5", "9")

        assert room.id == "5_9"
        assert room.kind == ChatRoomKind.PERSONAL
        assert room.participants == ["5", "9"]
        assert room.group_id is None
        assert await store.get("5_9") is not None

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent_in_any_order(self, resolver, store):
        first = await resolver.resolve_personal("9", "5")
        second = await resolver.resolve_personal("5", "9")
        third = await resolver.resolve_personal("9", "5")

        assert first.id == second.id == third.id == "5_9"
        assert first.created_at == third.created_at
        assert len(await store.list_for_user("5")) == 1

    @pytest.mark.asyncio
    async def test_same_user_twice_rejected(self, resolver):
        with pytest.raises(InvalidArgumentError):
            await resolver.resolve_personal("5", "5")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["", "5_9", "has space", "x" * 65])
    async def test_malformed_ids_rejected(self, resolver, bad_id):
        with pytest.raises(InvalidArgumentError):
            await resolver.resolve_personal("5", bad_id)

    @pytest.mark.asyncio
    async def test_unknown_user(self, resolver, store):
        with pytest.raises(NotFoundError):
            await resolver.resolve_personal("5", "777")
        assert await store.list_for_user("5") == []

    @pytest.mark.asyncio
    async def test_participant_list_needs_two_distinct_users(self, resolver):
        with pytest.raises(InvalidArgumentError):
            await resolver.resolve_participants(["5", "9", "12"])
        with pytest.raises(InvalidArgumentError):
            await resolver.resolve_participants(["5", "5"])

        room = await resolver.resolve_participants(["12", "5"])
        assert room.id == "5_12"

    @pytest.mark.asyncio
    async def test_concurrent_first_contact_creates_one_room(self, directory):
        """N concurrent resolutions of the same pair agree on one persisted room."""
        store = InterleavingStore()
        resolver = ChatroomResolver(store, directory)

        rooms = await asyncio.gather(*(
            resolver.resolve_personal(*(("5", "9") if i % 2 else ("9", "5")))
            for i in range(20)
        ))

        assert {room.id for room in rooms} == {"5_9"}
        assert len({room.created_at for room in rooms}) == 1
        assert len(await store.list_for_user("9")) == 1


class TestResolveGroup:

    @pytest.mark.asyncio
    async def test_group_room_mirrors_members(self, resolver):
        room = await resolver.resolve_group("17")

        assert room.id == "group_17"
        assert room.kind == ChatRoomKind.GROUP
        assert room.group_id == "17"
        assert room.participants == ["5", "9", "12"]

    @pytest.mark.asyncio
    async def test_group_room_is_stable(self, resolver):
        first = await resolver.resolve_group("17")
        second = await resolver.resolve_group("17")

        assert first.id == second.id
        assert first.created_at == second.created_at

    @pytest.mark.asyncio
    async def test_unknown_group(self, resolver):
        with pytest.raises(NotFoundError):
            await resolver.resolve_group("999")

    @pytest.mark.asyncio
    async def test_membership_changes_are_synced(self, resolver, directory):
        await resolver.resolve_group("17")
        directory.add_group("17", ["5", "12", "40"], name="Team")

        room = await resolver.resolve_group("17")

        assert room.participants == ["5", "12", "40"]
        assert room.has_participant("40")
        assert not room.has_participant("9")


class TestLookup:

    @pytest.mark.asyncio
    async def test_get_unknown_room(self, resolver):
        with pytest.raises(NotFoundError):
            await resolver.get("1_2")

    @pytest.mark.asyncio
    async def test_rooms_for_user_most_recent_first(self, resolver, store):
        personal = await resolver.resolve_personal("5", "9")
        group = await resolver.resolve_group("17")

        await store.touch(personal.id, group.last_activity.replace(year=group.last_activity.year + 1))

        rooms = await resolver.rooms_for_user("9")
        assert [room.id for room in rooms] == ["5_9", "group_17"]

    @pytest.mark.asyncio
    async def test_touch_never_moves_backwards(self, resolver, store):
        room = await resolver.resolve_personal("5", "9")
        earlier = room.last_activity.replace(year=room.last_activity.year - 1)

        await store.touch(room.id, earlier)

        assert (await store.get(room.id)).last_activity == room.last_activity

    @pytest.mark.asyncio
    async def test_archive_flag(self, resolver):
        await resolver.resolve_personal("5", "9")

        room = await resolver.archive("5_9")

        assert room.archived is True
