"""Tests for persist-then-broadcast behaviour of the coordinator."""
import asyncio

import pytest

from chat_relay.relay_errors import StoreError
from chat_relay.session_registry import SessionState
from chat_relay.store import MemoryMessageStore
from .conftest import FakeTransport


async def connect(gateway, name):
    transport = FakeTransport(name)
    session = await gateway.on_connect(transport)
    assert session is not None
    return session, transport


@pytest.mark.asyncio
async def test_message_is_stored_and_broadcast_to_everyone(gateway, coordinator, store):
    alice, alice_t = await connect(gateway, "alice")
    bob, bob_t = await connect(gateway, "bob")

    message = await coordinator.handle_incoming(alice, "alice", "hello")

    assert message is not None
    assert [(m.author, m.body) for m in store.messages] == [("alice", "hello")]
    for transport in (alice_t, bob_t):
        events = transport.events("message")
        assert len(events) == 1
        assert events[0] == {
            "type": "message",
            "id": message.id,
            "author": "alice",
            "body": "hello",
            "createdAt": message.created_at.isoformat(),
        }


@pytest.mark.asyncio
async def test_sequential_messages_arrive_in_order(gateway, coordinator):
    alice, _ = await connect(gateway, "alice")
    _, bob_t = await connect(gateway, "bob")

    bodies = [f"message {i}" for i in range(10)]
    for body in bodies:
        await coordinator.handle_incoming(alice, "alice", body)

    assert bob_t.bodies() == bodies


@pytest.mark.asyncio
async def test_interleaved_senders_observe_store_order(gateway, coordinator, store):
    alice, _ = await connect(gateway, "alice")
    carol, _ = await connect(gateway, "carol")
    _, bob_t = await connect(gateway, "bob")

    async def send_all(session, author):
        for i in range(5):
            await coordinator.handle_incoming(session, author, f"{author}-{i}")

    await asyncio.gather(send_all(alice, "alice"), send_all(carol, "carol"))

    received = bob_t.bodies()
    assert received == [m.body for m in store.messages]
    assert [b for b in received if b.startswith("alice")] == [f"alice-{i}" for i in range(5)]
    assert [b for b in received if b.startswith("carol")] == [f"carol-{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_store_failure_notifies_sender_only(gateway, coordinator, store):
    alice, alice_t = await connect(gateway, "alice")
    _, bob_t = await connect(gateway, "bob")
    store.available = False

    assert await coordinator.handle_incoming(alice, "alice", "hello") is None

    errors = alice_t.events("error")
    assert len(errors) == 1
    assert errors[0]["error_type"] == "StoreError"
    assert alice_t.events("message") == []
    assert bob_t.events("message") == []
    assert bob_t.events("error") == []

    store.available = True
    assert await store.count() == 0


@pytest.mark.parametrize("author,body", [("", "hi"), ("a", "")])
@pytest.mark.asyncio
async def test_validation_error_goes_to_sender_only(gateway, coordinator, store, author, body):
    alice, alice_t = await connect(gateway, "alice")
    _, bob_t = await connect(gateway, "bob")

    assert await coordinator.handle_incoming(alice, author, body) is None

    errors = alice_t.events("error")
    assert [e["error_type"] for e in errors] == ["ValidationError"]
    assert alice_t.events("message") == []
    assert bob_t.sent == [m for m in bob_t.sent if m["type"] == "session_init"]
    assert store.messages == []


@pytest.mark.asyncio
async def test_disconnected_session_does_not_break_broadcast(gateway, coordinator, registry):
    alice, alice_t = await connect(gateway, "alice")
    bob, bob_t = await connect(gateway, "bob")
    _, carol_t = await connect(gateway, "carol")

    await gateway.on_disconnect(bob.session_id)
    message = await coordinator.handle_incoming(alice, "alice", "still here?")

    assert message is not None
    assert alice_t.bodies() == ["still here?"]
    assert carol_t.bodies() == ["still here?"]
    assert bob_t.bodies() == []
    assert bob.session_id not in registry


@pytest.mark.asyncio
async def test_failed_push_is_isolated_and_drops_session(gateway, coordinator, registry):
    alice, alice_t = await connect(gateway, "alice")
    bob, bob_t = await connect(gateway, "bob")
    _, carol_t = await connect(gateway, "carol")
    bob_t.fail_sends = True

    await coordinator.handle_incoming(alice, "alice", "hello")

    assert alice_t.bodies() == ["hello"]
    assert carol_t.bodies() == ["hello"]
    assert bob.session_id not in registry
    assert bob.state == SessionState.CLOSED
    assert bob_t.closed and bob_t.close_code == 1011

    await coordinator.handle_incoming(alice, "alice", "again")
    assert carol_t.bodies() == ["hello", "again"]


@pytest.mark.asyncio
async def test_session_removed_during_append_is_skipped(registry):
    class DisconnectingStore(MemoryMessageStore):
        """Simulates a disconnect landing while the write is suspended."""
        victim = None

        async def _insert(self, message):
            await asyncio.sleep(0)
            if self.victim is not None:
                await gateway.on_disconnect(self.victim.session_id)
            await super()._insert(message)

    from chat_relay.broadcast import BroadcastCoordinator
    from chat_relay.gateway import ConnectionGateway

    store = DisconnectingStore()
    coordinator = BroadcastCoordinator(store, registry)
    gateway = ConnectionGateway(coordinator)
    alice, alice_t = await connect(gateway, "alice")
    bob, bob_t = await connect(gateway, "bob")
    store.victim = bob

    message = await coordinator.handle_incoming(alice, "alice", "hello")

    assert message is not None
    assert alice_t.bodies() == ["hello"]
    assert bob_t.bodies() == []
    assert bob.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_duplicate_registration_delivers_once(gateway, coordinator, registry):
    alice, alice_t = await connect(gateway, "alice")
    registry.add(alice)
    registry.add(alice)

    await coordinator.handle_incoming(alice, "alice", "once")
    assert alice_t.bodies() == ["once"]


@pytest.mark.asyncio
async def test_send_history_goes_to_requester(gateway, coordinator, store):
    alice, alice_t = await connect(gateway, "alice")
    _, bob_t = await connect(gateway, "bob")
    for i in range(4):
        await store.append("alice", f"m{i}")

    await coordinator.send_history(alice, 2)

    history = alice_t.events("history")
    assert len(history) == 1
    assert [m["body"] for m in history[0]["messages"]] == ["m2", "m3"]
    assert bob_t.events("history") == []


@pytest.mark.asyncio
async def test_send_history_reports_store_failure(gateway, coordinator, store):
    alice, alice_t = await connect(gateway, "alice")
    store.available = False

    await coordinator.send_history(alice, 5)

    assert alice_t.events("history") == []
    assert [e["error_type"] for e in alice_t.events("error")] == [StoreError.error_type]
