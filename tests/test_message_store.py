"""Tests for the in-memory message store and the shared store behaviour."""
import asyncio
from datetime import timedelta

import pytest

from chat_relay.relay_errors import StoreError, ValidationError
from chat_relay.store import MemoryMessageStore


class SlowMessageStore(MemoryMessageStore):
    """Store whose writes take longer than its deadline."""
    async def _insert(self, message):
        await asyncio.sleep(1.0)
        await super()._insert(message)


@pytest.mark.asyncio
async def test_append_assigns_id_timestamp_and_seq(store):
    first = await store.append("alice", "hello")
    second = await store.append("bob", "hi alice")

    assert first.author == "alice"
    assert first.body == "hello"
    assert first.id and second.id and first.id != second.id
    assert (first.seq, second.seq) == (1, 2)
    assert first.created_at.tzinfo is not None
    assert second.created_at >= first.created_at
    assert await store.count() == 2


@pytest.mark.asyncio
async def test_created_at_never_goes_backwards(store, monkeypatch):
    first = await store.append("alice", "one")
    earlier = first.created_at - timedelta(seconds=30)
    monkeypatch.setattr(store, "_now", lambda: earlier)

    second = await store.append("alice", "two")
    assert second.created_at == first.created_at


@pytest.mark.parametrize("author,body", [
    ("", "hi"),
    ("a", ""),
    ("   ", "hi"),
    ("a", "\n\t"),
    (None, "hi"),
    ("a", None),
    (42, "hi"),
    ("a", ["hi"]),
    ("a", "\ud800"),
    ("\udfff", "hi"),
])
@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_write(store, author, body):
    with pytest.raises(ValidationError):
        await store.append(author, body)
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_length_limits():
    store = MemoryMessageStore(max_author_length=5, max_body_length=10)
    await store.append("alice", "x" * 10)

    with pytest.raises(ValidationError) as exc_info:
        await store.append("alice!", "ok")
    assert exc_info.value.field == "author"

    with pytest.raises(ValidationError) as exc_info:
        await store.append("alice", "x" * 11)
    assert exc_info.value.field == "body"
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_unavailable_store_raises_store_error(store):
    store.available = False
    with pytest.raises(StoreError):
        await store.append("alice", "hello")
    with pytest.raises(StoreError):
        await store.recent(10)

    store.available = True
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_seq_continues_after_failed_append(store):
    await store.append("alice", "one")
    store.available = False
    with pytest.raises(StoreError):
        await store.append("alice", "lost")
    store.available = True

    third = await store.append("alice", "two")
    assert third.seq == 2
    assert [m.body for m in store.messages] == ["one", "two"]


@pytest.mark.asyncio
async def test_deadline_expiry_raises_store_error():
    store = SlowMessageStore(timeout=0.05)
    with pytest.raises(StoreError, match="timed out"):
        await store.append("alice", "hello")
    assert store.messages == []


@pytest.mark.asyncio
async def test_recent_returns_newest_oldest_first(store):
    for i in range(5):
        await store.append("alice", f"m{i}")

    recent = await store.recent(3)
    assert [m.body for m in recent] == ["m2", "m3", "m4"]
    assert await store.recent(0) == []
    assert len(await store.recent(50)) == 5


@pytest.mark.asyncio
async def test_open_picks_up_existing_messages():
    store = MemoryMessageStore()
    await store.append("alice", "one")
    await store.append("alice", "two")

    store._last_seq = 0
    await store.open()
    third = await store.append("alice", "three")
    assert third.seq == 3


@pytest.mark.asyncio
async def test_concurrent_appends_get_distinct_ordered_seq(store):
    await asyncio.gather(*(store.append(f"user{i}", f"body{i}") for i in range(20)))

    seqs = [m.seq for m in store.messages]
    assert seqs == list(range(1, 21))
    stamps = [m.created_at for m in store.messages]
    assert stamps == sorted(stamps)
