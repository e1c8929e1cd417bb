"""Tests for the session hub, the session gateway and the /ws endpoint.

Hub and gateway are exercised over in-memory sockets. The end-to-end tests
enter the TestClient as a context manager so every socket shares one event
loop, which is what cross-socket broadcasts need.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from chatcore.auth.service import TokenService
from chatcore.effects import GlobalBroadcast, Outcome, RoomBroadcast, SessionNotice
from chatcore.events import ServerEvent
from chatcore.gateway.hub import frame, hub
from chatcore.main import app
from chatcore.presence import presence


class TestSessionHub:

    @pytest.mark.asyncio
    async def test_accept_registers_session(self, fake_socket):
        ws = fake_socket()
        session_id = await hub.accept(ws)
        assert ws.accepted
        assert hub.is_connected(session_id)

    @pytest.mark.asyncio
    async def test_broadcast_reaches_room_only(self, fake_socket):
        in_room, outside = fake_socket(), fake_socket()
        s1 = await hub.accept(in_room)
        await hub.accept(outside)
        hub.join(s1, "room")

        await hub.broadcast("room", ServerEvent.NEW_MESSAGE, {"id": "m1"})

        assert in_room.sent == [{"type": "new_message", "id": "m1"}]
        assert outside.sent == []

    @pytest.mark.asyncio
    async def test_broadcast_excludes_origin(self, fake_socket):
        a, b = fake_socket(), fake_socket()
        sa = await hub.accept(a)
        sb = await hub.accept(b)
        hub.join(sa, "room")
        hub.join(sb, "room")

        await hub.broadcast("room", ServerEvent.USER_TYPING, {"userId": "u"}, exclude_session=sa)

        assert a.sent == []
        assert len(b.sent) == 1

    @pytest.mark.asyncio
    async def test_dead_session_is_removed(self, fake_socket):
        alive, dead = fake_socket(), fake_socket(fail=True)
        s_alive = await hub.accept(alive)
        s_dead = await hub.accept(dead)
        hub.join(s_alive, "room")
        hub.join(s_dead, "room")

        await hub.broadcast("room", ServerEvent.NEW_MESSAGE, {"id": "m1"})

        assert len(alive.sent) == 1
        assert not hub.is_connected(s_dead)
        assert hub.room_members("room") == {s_alive}

    @pytest.mark.asyncio
    async def test_join_and_leave_are_idempotent(self, fake_socket):
        session_id = await hub.accept(fake_socket())
        hub.join(session_id, "room")
        hub.join(session_id, "room")
        assert hub.room_members("room") == {session_id}

        hub.leave(session_id, "room")
        hub.leave(session_id, "room")
        hub.leave(session_id, "never-joined")
        assert hub.room_members("room") == set()

    @pytest.mark.asyncio
    async def test_send_to_unknown_session(self):
        assert await hub.send("nope", ServerEvent.CONNECTED, {}) is False

    @pytest.mark.asyncio
    async def test_execute_runs_effects_then_follow_up(self, fake_socket):
        ws = fake_socket()
        session_id = await hub.accept(ws)
        hub.join(session_id, "room")

        async def follow_up():
            return Outcome(effects=[SessionNotice(session_id, ServerEvent.MESSAGE_DELIVERED, {"n": 3})])

        await hub.execute(Outcome(
            effects=[
                RoomBroadcast("room", ServerEvent.NEW_MESSAGE, {"n": 1}),
                GlobalBroadcast(ServerEvent.ACTIVE_USERS, {"n": 2}),
            ],
            follow_up=follow_up,
        ))

        assert [f["n"] for f in ws.sent] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_failing_follow_up_is_not_raised(self, fake_socket):
        ws = fake_socket()
        await hub.accept(ws)

        async def follow_up():
            raise RuntimeError("boom")

        await hub.execute(Outcome(
            effects=[GlobalBroadcast(ServerEvent.ACTIVE_USERS, {"users": []})],
            follow_up=follow_up,
        ))
        assert ws.sent == [frame(ServerEvent.ACTIVE_USERS, {"users": []})]


class TestSessionGateway:

    @pytest.mark.asyncio
    async def test_open_sends_connected_then_presence(self, connect):
        session_id, ws = await connect("u1")

        assert ws.sent[0] == {"type": "connected", "sessionId": session_id, "userId": "u1"}
        assert ws.sent[1] == {"type": "active_users", "users": ["u1"]}

    @pytest.mark.asyncio
    async def test_anonymous_session_is_not_in_presence(self, connect):
        _, anon_ws = await connect("null")
        _, ws = await connect("u1")

        assert anon_ws.frames("connected")[0]["userId"] is None
        assert ws.frames("active_users") == [{"type": "active_users", "users": ["u1"]}]
        assert anon_ws.frames("active_users") == [{"type": "active_users", "users": ["u1"]}]

    @pytest.mark.asyncio
    async def test_close_updates_last_seen_and_presence(self, connect, gateway, make_user, store):
        alice = await make_user("Alice")
        before = (await store.get_user(alice.id)).lastSeen
        session_id, _ = await connect(alice.id)
        _, watcher = await connect("watcher")

        await gateway.close(session_id)

        assert not presence.is_online(alice.id)
        assert not hub.is_connected(session_id)
        assert (await store.get_user(alice.id)).lastSeen >= before
        assert watcher.frames("active_users")[-1] == {"type": "active_users", "users": ["watcher"]}

    @pytest.mark.asyncio
    async def test_superseded_session_close_keeps_user_online(self, connect, gateway, make_user, store):
        user = await make_user("Alice")
        old_session, _ = await connect(user.id)
        new_session, new_ws = await connect(user.id)
        last_seen = (await store.get_user(user.id)).lastSeen
        broadcasts = len(new_ws.frames("active_users"))

        await gateway.close(old_session)

        assert presence.session_for(user.id) == new_session
        assert (await store.get_user(user.id)).lastSeen == last_seen
        assert len(new_ws.frames("active_users")) == broadcasts

    @pytest.mark.asyncio
    async def test_join_is_acknowledged(self, connect, gateway):
        session_id, ws = await connect("u1")

        await gateway.handle(session_id, {"type": "join_conversation", "conversationId": "c1"})
        await gateway.handle(session_id, {"type": "leave_conversation", "conversationId": "c1"})

        assert ws.frames("conversation_joined") == [{"type": "conversation_joined", "conversationId": "c1"}]
        assert ws.frames("conversation_left") == [{"type": "conversation_left", "conversationId": "c1"}]
        assert hub.room_members("c1") == set()

    @pytest.mark.asyncio
    async def test_unknown_event_reports_error(self, connect, gateway):
        session_id, ws = await connect("u1")
        await gateway.handle(session_id, {"type": "dance"})
        assert ws.frames("message_error")[0]["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_non_object_frame_reports_error(self, connect, gateway):
        session_id, ws = await connect("u1")
        await gateway.handle(session_id, ["not", "an", "object"])
        assert ws.frames("message_error")[0]["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_sender_must_match_session_user(self, connect, gateway, make_user, membership):
        alice = await make_user("Alice")
        bob = await make_user("Bob")
        conversation, _ = await membership.get_or_create_one_to_one(alice.id, bob.id)
        session_id, ws = await connect(alice.id)

        await gateway.handle(session_id, {
            "type": "send_message",
            "conversationId": conversation.id,
            "senderId": bob.id,
            "content": "spoofed",
        })

        assert ws.frames("message_error")[0]["error"] == "authorization_error"
        assert ws.frames("new_message") == []

    @pytest.mark.asyncio
    async def test_errors_go_to_origin_only(self, connect, gateway, make_user, membership):
        alice = await make_user("Alice")
        bob = await make_user("Bob")
        conversation, _ = await membership.get_or_create_one_to_one(alice.id, bob.id)
        alice_session, alice_ws = await connect(alice.id)
        bob_session, bob_ws = await connect(bob.id)
        hub.join(alice_session, conversation.id)
        hub.join(bob_session, conversation.id)

        await gateway.handle(alice_session, {"type": "send_message", "conversationId": conversation.id})

        assert alice_ws.frames("message_error")[0]["error"] == "validation_error"
        assert bob_ws.frames("message_error") == []

    @pytest.mark.asyncio
    async def test_send_message_with_file(self, connect, gateway, make_user, membership, store):
        alice = await make_user("Alice")
        bob = await make_user("Bob")
        conversation, _ = await membership.get_or_create_one_to_one(alice.id, bob.id)
        session_id, ws = await connect(alice.id)
        hub.join(session_id, conversation.id)

        await gateway.handle(session_id, {
            "type": "send_message",
            "conversationId": conversation.id,
            "fileUrl": "/uploads/chat_files/clip.mp4",
            "fileType": "video/mp4",
            "fileName": "clip.mp4",
        })

        [broadcast] = ws.frames("new_message")
        assert broadcast["messageType"] == "video"
        assert broadcast["file"] == {"url": "/uploads/chat_files/clip.mp4", "mimeType": "video/mp4", "name": "clip.mp4"}

    @pytest.mark.asyncio
    async def test_mark_read_requires_identity(self, connect, gateway):
        session_id, ws = await connect(None)
        await gateway.handle(session_id, {"type": "mark_read", "conversationId": "c1"})
        assert ws.frames("message_error")[0]["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_typing_relay(self, connect, gateway):
        s1, ws1 = await connect("u1")
        s2, ws2 = await connect("u2")
        hub.join(s1, "c1")
        hub.join(s2, "c1")

        await gateway.handle(s1, {"type": "typing", "conversationId": "c1"})
        await gateway.handle(s1, {"type": "stop_typing", "conversationId": "c1"})

        assert ws1.frames("user_typing") == []
        assert [f["isTyping"] for f in ws2.frames("user_typing")] == [True, False]


class TestWebSocketEndpoint:

    def test_invalid_token_is_refused(self):
        with TestClient(app) as client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws?token=not-a-token"):
                    pass
            assert exc_info.value.code == 1008

    def test_admin_token_is_refused(self):
        token = TokenService().issue_token("someone", kind="admin")
        with TestClient(app) as client:
            with pytest.raises(WebSocketDisconnect):
                with client.websocket_connect(f"/ws?token={token}"):
                    pass

    def test_malformed_json_keeps_socket_open(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                connected = ws.receive_json()
                assert connected["type"] == "connected"
                assert connected["userId"] is None

                ws.send_text("{not json")
                error = ws.receive_json()
                assert error["type"] == "message_error"

                ws.send_json({"type": "join_conversation", "conversationId": "c1"})
                assert ws.receive_json() == {"type": "conversation_joined", "conversationId": "c1"}

    def test_binary_frame_keeps_socket_open(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()

                ws.send_bytes(b"\x00\x01")
                error = ws.receive_json()
                assert error["type"] == "message_error"
                assert error["error"] == "validation_error"

                ws.send_json({"type": "join_conversation", "conversationId": "c1"})
                assert ws.receive_json() == {"type": "conversation_joined", "conversationId": "c1"}

    def test_one_to_one_conversation_flow(self, register):
        with TestClient(app) as client:
            alice = register(client, "Alice")
            alice_id, alice_token = alice["user"]["id"], alice["token"]
            bob = register(client, "Bob")
            bob_id, bob_token = bob["user"]["id"], bob["token"]
            response = client.post(
                "/api/conversations/one-to-one",
                json={"userId": bob_id},
                headers=alice["headers"],
            )
            conversation_id = response.json()["id"]

            with client.websocket_connect(f"/ws?token={alice_token}") as alice_ws:
                assert alice_ws.receive_json()["userId"] == alice_id
                assert alice_ws.receive_json() == {"type": "active_users", "users": [alice_id]}

                with client.websocket_connect(f"/ws?token={bob_token}") as bob_ws:
                    assert bob_ws.receive_json()["type"] == "connected"
                    assert set(bob_ws.receive_json()["users"]) == {alice_id, bob_id}
                    assert set(alice_ws.receive_json()["users"]) == {alice_id, bob_id}

                    for ws in (alice_ws, bob_ws):
                        ws.send_json({"type": "join_conversation", "conversationId": conversation_id})
                        assert ws.receive_json()["type"] == "conversation_joined"

                    alice_ws.send_json({
                        "type": "send_message",
                        "conversationId": conversation_id,
                        "content": "hi Bob",
                    })

                    sent = alice_ws.receive_json()
                    assert sent["type"] == "new_message"
                    assert sent["content"] == "hi Bob"
                    assert sent["status"] == "sent"
                    delivered = alice_ws.receive_json()
                    assert delivered == {
                        "type": "message_delivered",
                        "messageId": sent["id"],
                        "conversationId": conversation_id,
                    }

                    received = bob_ws.receive_json()
                    assert received["type"] == "new_message"
                    assert received["id"] == sent["id"]

                    bob_ws.send_json({"type": "typing", "conversationId": conversation_id})
                    assert alice_ws.receive_json() == {
                        "type": "user_typing",
                        "userId": bob_id,
                        "conversationId": conversation_id,
                        "isTyping": True,
                    }

                    bob_ws.send_json({"type": "mark_read", "conversationId": conversation_id})
                    assert alice_ws.receive_json() == {"type": "messages_read", "conversationId": conversation_id}

                    bob_ws.send_json({"type": "react", "messageId": sent["id"], "emoji": "👍"})
                    for ws in (alice_ws, bob_ws):
                        updated = ws.receive_json()
                        assert updated["type"] == "message_updated"
                        assert updated["reactions"][0]["user"] == bob_id

                    history = client.get(
                        f"/api/messages/{conversation_id}",
                        headers=alice["headers"],
                    ).json()
                    assert history[0]["status"] == "read"
                    assert bob_id in history[0]["readBy"]
