from __future__ import annotations

import asyncio

import pytest

from tasklens.kernel.errors import ThreadAccessDeniedError, ThreadNotFoundError, ValidationError
from tasklens.threads.models import MessageRole, NewMessage, StreamAccumulator, StreamStatus
from tasklens.threads.store import InMemoryThreadStore, StreamClosedError, iter_stream_deltas

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _user(text: str) -> NewMessage:
    return NewMessage(role=MessageRole.USER, content=text)


async def test_messages_keep_append_order_and_pages_are_stable():
    store = InMemoryThreadStore()
    thread = await store.create_thread("user_1", "Image analysis session")
    for i in range(5):
        await store.append_message(thread.thread_id, "user_1", _user(f"m{i}"))

    first = await store.list_messages(thread.thread_id, "user_1", None, 2)
    assert [m.content for m in first.page] == ["m0", "m1"]
    assert not first.is_done

    # New appends do not shift pages already handed out.
    await store.append_message(thread.thread_id, "user_1", _user("m5"))
    second = await store.list_messages(thread.thread_id, "user_1", first.continue_cursor, 2)
    assert [m.content for m in second.page] == ["m2", "m3"]

    rest = await store.list_messages(thread.thread_id, "user_1", second.continue_cursor, 50)
    assert [m.content for m in rest.page] == ["m4", "m5"]
    assert rest.is_done
    assert [m.order for m in rest.page] == [4, 5]


async def test_concurrent_appends_get_distinct_orders():
    store = InMemoryThreadStore()
    thread = await store.create_thread("user_1", "t")
    await asyncio.gather(*(store.append_message(thread.thread_id, "user_1", _user(str(i))) for i in range(20)))
    page = await store.list_messages(thread.thread_id, "user_1", None, 100)
    assert [m.order for m in page.page] == list(range(20))


async def test_only_owner_may_read_or_write():
    store = InMemoryThreadStore()
    thread = await store.create_thread("owner", "t")

    with pytest.raises(ThreadAccessDeniedError):
        await store.append_message(thread.thread_id, "intruder", _user("hi"))
    with pytest.raises(ThreadAccessDeniedError):
        await store.list_messages(thread.thread_id, "intruder")
    with pytest.raises(ThreadNotFoundError):
        await store.get_thread("thread_missing", "owner")


async def test_invalid_cursor_and_page_size():
    store = InMemoryThreadStore()
    thread = await store.create_thread("owner", "t")
    with pytest.raises(ValidationError):
        await store.list_messages(thread.thread_id, "owner", "garbage")
    with pytest.raises(ValidationError):
        await store.list_messages(thread.thread_id, "owner", None, 0)


async def test_stream_deltas_are_superseded_by_final_message():
    store = InMemoryThreadStore()
    thread = await store.create_thread("owner", "t")
    stream = await store.begin_stream(thread.thread_id, "owner")

    await store.append_delta(stream.stream_id, "Hello ")
    await store.append_delta(stream.stream_id, "world")

    sync = await store.sync_streams(thread.thread_id, "owner", {stream.stream_id: 6})
    assert [d.text for d in sync.deltas] == ["world"]
    assert sync.streams[0].status == StreamStatus.STREAMING

    message = await store.finish_stream(
        stream.stream_id, "owner", NewMessage(role=MessageRole.ASSISTANT, content="Hello world")
    )
    sync = await store.sync_streams(thread.thread_id, "owner")
    assert sync.streams[0].status == StreamStatus.FINISHED
    assert sync.streams[0].message_id == message.message_id

    with pytest.raises(StreamClosedError):
        await store.append_delta(stream.stream_id, "!")


async def test_accumulator_merges_replayed_deltas():
    store = InMemoryThreadStore()
    thread = await store.create_thread("owner", "t")
    stream = await store.begin_stream(thread.thread_id, "owner")
    for chunk in ["ab", "cd", "ef"]:
        await store.append_delta(stream.stream_id, chunk)

    acc = StreamAccumulator()
    sync = await store.sync_streams(thread.thread_id, "owner")
    acc.apply_all(sync.deltas)
    # Replaying the same deltas after a reconnect changes nothing.
    texts = acc.apply_all(sync.deltas)
    assert texts[stream.stream_id] == "abcdef"
    assert acc.cursors == {stream.stream_id: 6}

    await store.abort_stream(stream.stream_id)
    acc.supersede(await store.sync_streams(thread.thread_id, "owner", acc.cursors))
    assert acc.texts == {}


async def test_iter_stream_deltas_follows_until_stream_finishes():
    store = InMemoryThreadStore()
    thread = await store.create_thread("owner", "t")
    stream = await store.begin_stream(thread.thread_id, "owner")

    async def produce():
        for chunk in ["one ", "two ", "three"]:
            await store.append_delta(stream.stream_id, chunk)
            await asyncio.sleep(0.01)
        await store.finish_stream(
            stream.stream_id, "owner", NewMessage(role=MessageRole.ASSISTANT, content="one two three")
        )

    producer = asyncio.create_task(produce())
    acc = StreamAccumulator()
    async for sync in iter_stream_deltas(store, thread.thread_id, "owner", poll_interval=0.005):
        acc.apply_all(sync.deltas)
    await producer

    assert acc.texts[stream.stream_id] == "one two three"


async def test_only_newest_closed_streams_are_retained():
    store = InMemoryThreadStore(max_closed_streams=2)
    thread = await store.create_thread("user_1", "t")
    other = await store.create_thread("user_1", "other")
    kept_elsewhere = await store.begin_stream(other.thread_id, "user_1")
    await store.append_delta(kept_elsewhere.stream_id, "x")
    await store.abort_stream(kept_elsewhere.stream_id)

    stream_ids = []
    for i in range(4):
        stream = await store.begin_stream(thread.thread_id, "user_1")
        await store.append_delta(stream.stream_id, f"turn {i}")
        if i % 2:
            await store.abort_stream(stream.stream_id)
        else:
            await store.finish_stream(
                stream.stream_id, "user_1", NewMessage(role=MessageRole.ASSISTANT, content=f"turn {i}")
            )
        stream_ids.append(stream.stream_id)

    live = await store.begin_stream(thread.thread_id, "user_1")
    await store.append_delta(live.stream_id, "typing")

    sync = await store.sync_streams(thread.thread_id, "user_1")
    assert [s.stream_id for s in sync.streams] == [*stream_ids[2:], live.stream_id]
    assert {d.stream_id for d in sync.deltas} == {*stream_ids[2:], live.stream_id}
    # Finalized messages outlive their streams.
    page = await store.list_messages(thread.thread_id, "user_1")
    assert [m.content for m in page.page] == ["turn 0", "turn 2"]
    # Pruning is per thread.
    assert len((await store.sync_streams(other.thread_id, "user_1")).streams) == 1
