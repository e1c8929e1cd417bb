"""Tests for read receipts, typing relay and reactions."""
import asyncio

import pytest
import pytest_asyncio

from chatcore.errors import AuthorizationError, NotFoundError, ValidationError
from chatcore.events import ServerEvent
from chatcore.gateway.hub import hub
from chatcore.store import MessageStatus


@pytest_asyncio.fixture
async def pair(make_user, membership):
    alice = await make_user("Alice")
    bob = await make_user("Bob")
    conversation, _ = await membership.get_or_create_one_to_one(alice.id, bob.id)
    return alice, bob, conversation

class TestMarkRead:
    @pytest.mark.asyncio
    async def test_marks_others_messages(self, pipeline, receipts, store, pair):
        alice, bob, conversation = pair
        sent = await pipeline.submit(conversation.id, alice.id, content="one")
        await pipeline.submit(conversation.id, alice.id, content="two")
        await pipeline.submit(conversation.id, bob.id, content="mine")

        outcome = await receipts.mark_read(conversation.id, bob.id)

        assert outcome.result == 2
        message = await store.get_message(sent.result.id)
        assert message.status == MessageStatus.READ
        assert set(message.readBy) == {alice.id, bob.id}
    @pytest.mark.asyncio
    async def test_second_call_is_a_no_op(self, pipeline, receipts, connect, pair):
        alice, bob, conversation = pair
        await connect(alice.id)
        await pipeline.submit(conversation.id, alice.id, content="one")
        first = await receipts.mark_read(conversation.id, bob.id)
        second = await receipts.mark_read(conversation.id, bob.id)

        assert first.result == 1
        assert len(first.effects) == 1
        assert second.result == 0
        assert second.effects == []
    @pytest.mark.asyncio
    async def test_notifies_online_sender(self, pipeline, receipts, connect, pair):
        alice, bob, conversation = pair
        _, alice_ws = await connect(alice.id)
        await pipeline.submit(conversation.id, alice.id, content="one")
        await hub.execute(await receipts.mark_read(conversation.id, bob.id))
        assert alice_ws.frames("messages_read") == [
            {"type": "messages_read", "conversationId": conversation.id}
        ]
    @pytest.mark.asyncio
    async def test_offline_sender_gets_nothing(self, pipeline, receipts, pair):
        alice, bob, conversation = pair
        await pipeline.submit(conversation.id, alice.id, content="one")

        outcome = await receipts.mark_read(conversation.id, bob.id)
        assert outcome.result == 1
        assert outcome.effects == []

    @pytest.mark.asyncio
    async def test_non_participant(self, receipts, make_user, pair):
        _, _, conversation = pair
        carol = await make_user("Carol")
        with pytest.raises(AuthorizationError):
            await receipts.mark_read(conversation.id, carol.id)
    @pytest.mark.asyncio
    async def test_unknown_conversation(self, receipts, pair):
        alice, _, _ = pair
        with pytest.raises(NotFoundError):
            await receipts.mark_read("missing", alice.id)

class TestTyping:

    def test_relays_to_room_except_origin(self, receipts):
        outcome = receipts.typing("conv", "u1", True, origin_session="s1")
        effect = outcome.effects[0]
        assert effect.room == "conv"
        assert effect.event == ServerEvent.USER_TYPING
        assert effect.exclude_session == "s1"
        assert effect.payload == {"userId": "u1", "conversationId": "conv", "isTyping": True}
    def test_anonymous_typing_is_dropped(self, receipts):
        assert receipts.typing("conv", None, True).effects == []
        assert receipts.typing(None, "u1", False).effects == []

class TestReactions:

    @pytest.mark.asyncio
    async def test_add_replace_and_toggle(self, pipeline, receipts, store, pair):
        alice, bob, conversation = pair
        sent = await pipeline.submit(conversation.id, alice.id, content="hello")
        message_id = sent.result.id

        outcome = await receipts.react(message_id, bob.id, "👍")
        assert [(r.emoji, r.user, r.userName) for r in outcome.result.reactions] == [("👍", bob.id, "Bob")]
        assert outcome.effects[0].event == ServerEvent.MESSAGE_UPDATED

        await receipts.react(message_id, alice.id, "😂")
        outcome = await receipts.react(message_id, bob.id, "❤️")
        assert [(r.emoji, r.user) for r in outcome.result.reactions] == [("❤️", bob.id), ("😂", alice.id)]

        await receipts.react(message_id, bob.id, "❤️")
        stored = await store.get_message(message_id)
        assert [(r.emoji, r.user) for r in stored.reactions] == [("😂", alice.id)]

    @pytest.mark.asyncio
    async def test_missing_emoji(self, receipts, pair):
        _, bob, _ = pair
        with pytest.raises(ValidationError):
            await receipts.react("m1", bob.id, "")

    @pytest.mark.asyncio
    async def test_unknown_message(self, receipts, pair):
        _, bob, _ = pair
        with pytest.raises(NotFoundError):
            await receipts.react("missing", bob.id, "👍")

    @pytest.mark.asyncio
    async def test_non_participant_cannot_react(self, pipeline, receipts, make_user, pair):
        alice, _, conversation = pair
        carol = await make_user("Carol")
        sent = await pipeline.submit(conversation.id, alice.id, content="hello")
        with pytest.raises(AuthorizationError):
            await receipts.react(sent.result.id, carol.id, "👍")

    @pytest.mark.asyncio
    async def test_reaction_during_mark_read_keeps_receipt(self, pipeline, receipts, store, pair):
        alice, bob, conversation = pair
        sent = await pipeline.submit(conversation.id, alice.id, content="hello")
        reacted, read = await asyncio.gather(
            receipts.react(sent.result.id, alice.id, "👍"),
            receipts.mark_read(conversation.id, bob.id),
        )

        assert read.result == 1
        stored = await store.get_message(sent.result.id)
        assert stored.status == MessageStatus.READ
        assert set(stored.readBy) == {alice.id, bob.id}
        assert [(r.emoji, r.user) for r in stored.reactions] == [("👍", alice.id)]

    @pytest.mark.asyncio
    async def test_concurrent_reactions_are_all_kept(self, pipeline, receipts, store, pair):
        alice, bob, conversation = pair
        sent = await pipeline.submit(conversation.id, alice.id, content="hello")
        await asyncio.gather(
            receipts.react(sent.result.id, alice.id, "😂"),
            receipts.react(sent.result.id, bob.id, "👍"),
        )

        stored = await store.get_message(sent.result.id)
        assert {(r.emoji, r.user) for r in stored.reactions} == {("😂", alice.id), ("👍", bob.id)}
