"""Tests for ChatRelay event handling (private messages, receipts, typing, history)."""
import pytest
import pytest_asyncio

from conftest import FakeWebSocket, join
from dmrelay.chat.conversations import conversation_key
from dmrelay.chat.schemas import MESSAGE_ID_LENGTH


@pytest_asyncio.fixture
async def pair(relay):
    """Alice (u1) and Bob (u2), both joined, with their sockets cleared."""
    alice_id, alice_ws = await join(relay, "Alice", "u1")
    bob_id, bob_ws = await join(relay, "Bob", "u2")
    alice_ws.clear()
    bob_ws.clear()
    return alice_id, alice_ws, bob_id, bob_ws


def send_message(recipient_id, text="hello", message_id="m1", timestamp="2024-01-01T00:00:00Z"):
    return {
        "type": "private-message",
        "recipientId": recipient_id,
        "message": text,
        "timestamp": timestamp,
        "messageId": message_id,
    }


class TestJoin:

    @pytest.mark.asyncio
    async def test_connect_greets_with_connection_id(self, relay):
        ws = FakeWebSocket()
        connection_id = await relay.connect(ws)

        assert ws.sent == [{"type": "connected", "connectionId": connection_id}]

    @pytest.mark.asyncio
    async def test_join_registers_acks_and_broadcasts(self, relay):
        connection_id, ws = await join(relay, "Alice", "u1")

        snapshot = relay.registry.snapshot()
        assert len([r for r in snapshot if r.userId == "u1"]) == 1
        assert snapshot[0].isOnline is True
        assert snapshot[0].connectionId == connection_id

        assert ws.of_type("user-joined") == [
            {"type": "user-joined", "userId": "u1", "username": "Alice"}
        ]
        (update,) = ws.of_type("users-updated")
        assert update["users"][0]["userId"] == "u1"

    @pytest.mark.asyncio
    async def test_every_join_broadcasts_to_all(self, relay):
        _, alice_ws = await join(relay, "Alice", "u1")
        await join(relay, "Bob", "u2")

        updates = alice_ws.of_type("users-updated")
        assert len(updates) == 2
        assert [u["username"] for u in updates[-1]["users"]] == ["Alice", "Bob"]


class TestPrivateMessage:

    @pytest.mark.asyncio
    async def test_delivers_to_recipient_and_acks_sender(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, send_message("u2"))

        assert bob_ws.sent == [{
            "type": "private-message",
            "id": "m1",
            "senderId": "u1",
            "senderUsername": "Alice",
            "recipientId": "u2",
            "message": "hello",
            "timestamp": "2024-01-01T00:00:00Z",
            "isRead": False,
        }]
        assert alice_ws.sent == [{
            "type": "message-sent",
            "messageId": "m1",
            "timestamp": "2024-01-01T00:00:00Z",
        }]

        (stored,) = relay.store.history(conversation_key("u1", "u2"))
        assert stored.id == "m1"
        assert stored.isRead is False

    @pytest.mark.asyncio
    async def test_both_directions_share_one_conversation(self, relay, pair):
        alice_id, _, bob_id, _ = pair

        await relay.dispatch(alice_id, send_message("u2", "hi bob", "m1"))
        await relay.dispatch(bob_id, send_message("u1", "hi alice", "m2"))

        history = relay.store.history(conversation_key("u2", "u1"))
        assert [(m.id, m.senderId) for m in history] == [("m1", "u1"), ("m2", "u2")]

    @pytest.mark.asyncio
    async def test_generates_id_and_timestamp_when_missing(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, {"type": "private-message", "recipientId": "u2", "message": "yo"})

        (delivered,) = bob_ws.of_type("private-message")
        (ack,) = alice_ws.of_type("message-sent")
        assert len(delivered["id"]) == MESSAGE_ID_LENGTH
        assert ack["messageId"] == delivered["id"]
        assert isinstance(delivered["timestamp"], float)

    @pytest.mark.asyncio
    async def test_timestamps_echoed_with_their_type(self, relay, pair):
        alice_id, alice_ws, bob_id, bob_ws = pair

        await relay.dispatch(alice_id, send_message("u2", message_id="m1", timestamp=1700000000123))
        await relay.dispatch(alice_id, send_message("u2", message_id="m2", timestamp=1700000000.5))
        await relay.dispatch(bob_id, {"type": "get-conversation", "recipientId": "u1"})

        delivered = bob_ws.of_type("private-message")
        acks = alice_ws.of_type("message-sent")
        (history,) = bob_ws.of_type("conversation-history")
        for frames in (delivered, acks, history["messages"]):
            assert frames[0]["timestamp"] == 1700000000123
            assert type(frames[0]["timestamp"]) is int
            assert type(frames[1]["timestamp"]) is float

    @pytest.mark.asyncio
    async def test_unresolved_recipient_is_dropped_silently(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, send_message("ghost"))

        assert alice_ws.sent == []
        assert bob_ws.sent == []
        assert relay.store.history(conversation_key("u1", "ghost")) == []

    @pytest.mark.asyncio
    async def test_unregistered_sender_is_ignored(self, relay, pair):
        _, _, _, bob_ws = pair
        stranger = FakeWebSocket()
        stranger_id = await relay.connect(stranger)
        stranger.clear()

        await relay.dispatch(stranger_id, send_message("u2"))

        assert stranger.sent == []
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_routes_to_most_recent_connection(self, relay, pair):
        alice_id, _, _, old_bob_ws = pair
        _, new_bob_ws = await join(relay, "Bob", "u2")
        new_bob_ws.clear()
        old_bob_ws.clear()

        await relay.dispatch(alice_id, send_message("u2"))

        assert len(new_bob_ws.of_type("private-message")) == 1
        assert old_bob_ws.of_type("private-message") == []

    @pytest.mark.asyncio
    async def test_malformed_payload_is_ignored(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, {"type": "private-message", "message": "no recipient"})
        await relay.dispatch(alice_id, {"type": "private-message", "recipientId": "u2", "message": 42})

        assert alice_ws.sent == []
        assert bob_ws.sent == []


class TestMarkRead:

    @pytest.mark.asyncio
    async def test_marks_incoming_and_notifies_sender(self, relay, pair):
        alice_id, alice_ws, bob_id, _ = pair
        await relay.dispatch(alice_id, send_message("u2", "one", "m1"))
        await relay.dispatch(alice_id, send_message("u2", "two", "m2"))
        await relay.dispatch(bob_id, send_message("u1", "back", "m3"))
        alice_ws.clear()

        await relay.dispatch(bob_id, {"type": "mark-messages-read", "senderId": "u1"})

        key = conversation_key("u1", "u2")
        assert {m.id: m.isRead for m in relay.store.history(key)} == {
            "m1": True, "m2": True, "m3": False,
        }
        assert alice_ws.sent == [{"type": "messages-read", "readBy": "u2", "conversationKey": key}]

    @pytest.mark.asyncio
    async def test_repeated_mark_read_is_idempotent(self, relay, pair):
        alice_id, alice_ws, bob_id, _ = pair
        await relay.dispatch(alice_id, send_message("u2"))
        key = conversation_key("u1", "u2")

        await relay.dispatch(bob_id, {"type": "mark-messages-read", "senderId": "u1"})
        first = [m.model_dump() for m in relay.store.history(key)]
        await relay.dispatch(bob_id, {"type": "mark-messages-read", "senderId": "u1"})

        assert [m.model_dump() for m in relay.store.history(key)] == first

    @pytest.mark.asyncio
    async def test_marks_even_when_sender_offline(self, relay, pair):
        alice_id, _, bob_id, bob_ws = pair
        await relay.dispatch(alice_id, send_message("u2"))
        await relay.handle_disconnect(alice_id)
        bob_ws.clear()

        await relay.dispatch(bob_id, {"type": "mark-messages-read", "senderId": "u1"})

        (message,) = relay.store.history(conversation_key("u1", "u2"))
        assert message.isRead is True
        assert bob_ws.of_type("messages-read") == []


class TestTyping:

    @pytest.mark.asyncio
    async def test_start_and_stop_forwarded(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, {"type": "typing-start", "recipientId": "u2"})
        await relay.dispatch(alice_id, {"type": "typing-stop", "recipientId": "u2"})

        assert bob_ws.sent == [
            {"type": "user-typing", "userId": "u1", "username": "Alice"},
            {"type": "user-stop-typing", "userId": "u1"},
        ]
        assert alice_ws.sent == []

    @pytest.mark.asyncio
    async def test_unresolved_recipient_produces_nothing(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, {"type": "typing-start", "recipientId": "ghost"})
        await relay.dispatch(alice_id, {"type": "typing-stop", "recipientId": "ghost"})

        assert alice_ws.sent == []
        assert bob_ws.sent == []


class TestGetConversation:

    @pytest.mark.asyncio
    async def test_returns_history_to_requester_only(self, relay, pair):
        alice_id, alice_ws, bob_id, bob_ws = pair
        await relay.dispatch(alice_id, send_message("u2", "first", "m1"))
        await relay.dispatch(bob_id, send_message("u1", "second", "m2"))
        alice_ws.clear()
        bob_ws.clear()

        await relay.dispatch(bob_id, {"type": "get-conversation", "recipientId": "u1"})

        assert alice_ws.sent == []
        (event,) = bob_ws.sent
        assert event["type"] == "conversation-history"
        assert event["recipientId"] == "u1"
        assert [m["message"] for m in event["messages"]] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_empty_conversation_returns_empty_list(self, relay, pair):
        alice_id, alice_ws, _, _ = pair

        await relay.dispatch(alice_id, {"type": "get-conversation", "recipientId": "nobody"})

        assert alice_ws.sent == [
            {"type": "conversation-history", "recipientId": "nobody", "messages": []}
        ]

    @pytest.mark.asyncio
    async def test_history_available_for_offline_peer(self, relay, pair):
        alice_id, alice_ws, bob_id, _ = pair
        await relay.dispatch(alice_id, send_message("u2"))
        await relay.handle_disconnect(bob_id)
        alice_ws.clear()

        await relay.dispatch(alice_id, {"type": "get-conversation", "recipientId": "u2"})

        (event,) = alice_ws.of_type("conversation-history")
        assert len(event["messages"]) == 1


class TestDispatch:

    @pytest.mark.asyncio
    async def test_unknown_and_non_object_frames_are_ignored(self, relay, pair):
        alice_id, alice_ws, _, bob_ws = pair

        await relay.dispatch(alice_id, {"type": "no-such-event"})
        await relay.dispatch(alice_id, {"message": "missing type"})
        await relay.dispatch(alice_id, {"type": ["unhashable"]})
        await relay.dispatch(alice_id, ["not", "an", "object"])
        await relay.dispatch(alice_id, "text")

        assert alice_ws.sent == []
        assert bob_ws.sent == []

    @pytest.mark.asyncio
    async def test_malformed_join_registers_nothing(self, relay):
        ws = FakeWebSocket()
        connection_id = await relay.connect(ws)

        await relay.dispatch(connection_id, {"type": "join", "username": "NoId"})

        assert len(relay.registry) == 0
        assert ws.of_type("users-updated") == []
