"""Tests for the conversation membership engine."""
import asyncio

import pytest
import pytest_asyncio

from chatcore.conversations.service import ensure_admin_invariant
from chatcore.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from chatcore.store import Conversation, MessageType


def _ids(summaries):
    return [s.id for s in summaries]


@pytest_asyncio.fixture
async def people(make_user):
    names = ("Alice", "Bob", "Carol", "Dave")
    return {name.lower(): await make_user(name) for name in names}


class TestOneToOne:

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, membership, people):
        alice, bob = people["alice"], people["bob"]

        first, created = await membership.get_or_create_one_to_one(alice.id, bob.id)
        second, created_again = await membership.get_or_create_one_to_one(bob.id, alice.id)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.groupAdmins == []
        assert set(_ids(first.participants)) == {alice.id, bob.id}

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_conversation(self, membership, store, people):
        alice, bob = people["alice"], people["bob"]

        (first, _), (second, _) = await asyncio.gather(
            membership.get_or_create_one_to_one(alice.id, bob.id),
            membership.get_or_create_one_to_one(bob.id, alice.id),
        )

        assert first.id == second.id
        assert len(await store.list_conversations_for(alice.id)) == 1

    @pytest.mark.asyncio
    async def test_with_self_is_rejected(self, membership, people):
        with pytest.raises(ValidationError):
            await membership.get_or_create_one_to_one(people["alice"].id, people["alice"].id)

    @pytest.mark.asyncio
    async def test_unknown_other_user(self, membership, people):
        with pytest.raises(NotFoundError):
            await membership.get_or_create_one_to_one(people["alice"].id, "ghost")


class TestCreateGroup:

    @pytest.mark.asyncio
    async def test_creator_is_admin(self, membership, people):
        view = await membership.create_group(people["alice"].id, " Team ", [people["bob"].id])

        assert view.isGroupChat
        assert view.groupName == "Team"
        assert _ids(view.groupAdmins) == [people["alice"].id]
        assert _ids(view.participants) == [people["alice"].id, people["bob"].id]

    @pytest.mark.asyncio
    async def test_duplicates_are_collapsed(self, membership, people):
        alice, bob = people["alice"], people["bob"]
        view = await membership.create_group(alice.id, "Team", [bob.id, bob.id, alice.id])
        assert _ids(view.participants) == [alice.id, bob.id]

    @pytest.mark.asyncio
    async def test_only_self_as_member_is_rejected(self, membership, people):
        with pytest.raises(ValidationError):
            await membership.create_group(people["alice"].id, "Solo", [people["alice"].id])

    @pytest.mark.asyncio
    async def test_blank_name(self, membership, people):
        with pytest.raises(ValidationError):
            await membership.create_group(people["alice"].id, "   ", [people["bob"].id])

    @pytest.mark.asyncio
    async def test_unknown_members_are_listed(self, membership, people):
        with pytest.raises(NotFoundError) as exc_info:
            await membership.create_group(people["alice"].id, "Team", ["ghost-1", "ghost-2"])
        assert "ghost-1" in exc_info.value.message
        assert "ghost-2" in exc_info.value.message


class TestAdminOperations:

    @pytest_asyncio.fixture
    async def group(self, membership, people):
        return await membership.create_group(
            people["alice"].id, "Team", [people["bob"].id, people["carol"].id]
        )

    @pytest.mark.asyncio
    async def test_rename_requires_admin(self, membership, people, group):
        with pytest.raises(AuthorizationError):
            await membership.rename_group(group.id, people["bob"].id, "New")

        view = await membership.rename_group(group.id, people["alice"].id, "New")
        assert view.groupName == "New"

    @pytest.mark.asyncio
    async def test_non_member_is_not_authorized(self, membership, people, group):
        with pytest.raises(AuthorizationError):
            await membership.add_member(group.id, people["dave"].id, people["dave"].id)

    @pytest.mark.asyncio
    async def test_group_operation_on_one_to_one(self, membership, people):
        pair, _ = await membership.get_or_create_one_to_one(people["alice"].id, people["bob"].id)
        with pytest.raises(ValidationError):
            await membership.add_member(pair.id, people["alice"].id, people["carol"].id)

    @pytest.mark.asyncio
    async def test_unknown_conversation(self, membership, people):
        with pytest.raises(NotFoundError):
            await membership.rename_group("missing", people["alice"].id, "x")

    @pytest.mark.asyncio
    async def test_add_member_posts_system_message(self, membership, store, people, group):
        outcome = await membership.add_member(group.id, people["alice"].id, people["dave"].id)

        assert people["dave"].id in _ids(outcome.result.participants)
        assert len(outcome.effects) == 1
        payload = outcome.effects[0].payload
        assert payload["messageType"] == MessageType.SYSTEM.value
        assert payload["content"] == "Alice added Dave"
        assert payload["senderId"] is None
        assert payload["readBy"] == []

        stored = await store.get_conversation(group.id)
        assert stored.lastMessageId == payload["id"]

    @pytest.mark.asyncio
    async def test_add_existing_member_conflicts(self, membership, people, group):
        with pytest.raises(ConflictError):
            await membership.add_member(group.id, people["alice"].id, people["bob"].id)

    @pytest.mark.asyncio
    async def test_add_unknown_user(self, membership, people, group):
        with pytest.raises(NotFoundError):
            await membership.add_member(group.id, people["alice"].id, "ghost")

    @pytest.mark.asyncio
    async def test_remove_member(self, membership, people, group):
        outcome = await membership.remove_member(group.id, people["alice"].id, people["bob"].id)

        assert people["bob"].id not in _ids(outcome.result.participants)
        assert outcome.effects[0].payload["content"] == "Alice removed Bob"

    @pytest.mark.asyncio
    async def test_remove_admin_conflicts_and_changes_nothing(self, membership, store, people, group):
        await membership.promote(group.id, people["alice"].id, people["bob"].id)
        before = await store.get_conversation(group.id)

        with pytest.raises(ConflictError):
            await membership.remove_member(group.id, people["alice"].id, people["bob"].id)

        after = await store.get_conversation(group.id)
        assert after.model_dump() == before.model_dump()

    @pytest.mark.asyncio
    async def test_remove_non_member(self, membership, people, group):
        with pytest.raises(NotFoundError):
            await membership.remove_member(group.id, people["alice"].id, people["dave"].id)

    @pytest.mark.asyncio
    async def test_promote_then_demote(self, membership, people, group):
        view = await membership.promote(group.id, people["alice"].id, people["bob"].id)
        assert set(_ids(view.groupAdmins)) == {people["alice"].id, people["bob"].id}

        view = await membership.demote(group.id, people["bob"].id, people["alice"].id)
        assert _ids(view.groupAdmins) == [people["bob"].id]

    @pytest.mark.asyncio
    async def test_promote_outsider(self, membership, people, group):
        with pytest.raises(ValidationError):
            await membership.promote(group.id, people["alice"].id, people["dave"].id)

    @pytest.mark.asyncio
    async def test_promote_existing_admin_conflicts(self, membership, people, group):
        with pytest.raises(ConflictError):
            await membership.promote(group.id, people["alice"].id, people["alice"].id)

    @pytest.mark.asyncio
    async def test_sole_admin_cannot_demote_self(self, membership, store, people, group):
        with pytest.raises(ConflictError):
            await membership.demote(group.id, people["alice"].id, people["alice"].id)
        stored = await store.get_conversation(group.id)
        assert stored.groupAdmins == [people["alice"].id]

    @pytest.mark.asyncio
    async def test_demote_non_admin(self, membership, people, group):
        with pytest.raises(ValidationError):
            await membership.demote(group.id, people["alice"].id, people["bob"].id)


class TestLeave:

    @pytest.mark.asyncio
    async def test_sole_admin_leaving_promotes_first_remaining(self, membership, people):
        alice, bob, carol = people["alice"], people["bob"], people["carol"]
        group = await membership.create_group(alice.id, "Team", [bob.id, carol.id])

        outcome = await membership.leave(group.id, alice.id)

        assert _ids(outcome.result.participants) == [bob.id, carol.id]
        assert _ids(outcome.result.groupAdmins) == [bob.id]
        assert outcome.effects[0].payload["content"] == "Alice left"

    @pytest.mark.asyncio
    async def test_last_member_leaving_deletes_group(self, membership, store, people):
        alice, bob = people["alice"], people["bob"]
        group = await membership.create_group(alice.id, "Pair", [bob.id])

        await membership.leave(group.id, bob.id)
        outcome = await membership.leave(group.id, alice.id)

        assert outcome.result is None
        assert outcome.effects == []
        assert await store.get_conversation(group.id) is None
        with pytest.raises(NotFoundError):
            await membership.get(group.id, alice.id)

    @pytest.mark.asyncio
    async def test_leave_one_to_one_is_rejected(self, membership, people):
        pair, _ = await membership.get_or_create_one_to_one(people["alice"].id, people["bob"].id)
        with pytest.raises(ValidationError):
            await membership.leave(pair.id, people["alice"].id)


class TestListing:

    @pytest.mark.asyncio
    async def test_list_for_carries_unread_counts(self, membership, pipeline, people):
        alice, bob = people["alice"], people["bob"]
        pair, _ = await membership.get_or_create_one_to_one(alice.id, bob.id)
        await pipeline.submit(pair.id, alice.id, content="hi")
        await pipeline.submit(pair.id, alice.id, content="there")

        views = await membership.list_for(bob.id)
        assert [v.id for v in views] == [pair.id]
        assert views[0].unreadCount == 2
        assert views[0].lastMessage.content == "there"

    @pytest.mark.asyncio
    async def test_get_requires_participant(self, membership, people):
        pair, _ = await membership.get_or_create_one_to_one(people["alice"].id, people["bob"].id)
        with pytest.raises(AuthorizationError):
            await membership.get(pair.id, people["carol"].id)


class TestAdminInvariant:

    def test_group_without_admins_gets_first_participant(self):
        conv = Conversation(participants=["a", "b"], isGroupChat=True, groupAdmins=["gone"])
        ensure_admin_invariant(conv)
        assert conv.groupAdmins == ["a"]

    def test_one_to_one_is_untouched(self):
        conv = Conversation(participants=["a", "b"])
        ensure_admin_invariant(conv)
        assert conv.groupAdmins == []
