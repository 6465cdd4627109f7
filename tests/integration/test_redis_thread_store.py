from __future__ import annotations

import os

import pytest
import pytest_asyncio

from tasklens.kernel.errors import ThreadAccessDeniedError
from tasklens.kernel.ids import new_prefixed_id
from tasklens.threads.models import MessageRole, NewMessage, StreamStatus
from tasklens.threads.redis_store import RedisThreadStore

REDIS_URL = os.environ.get("TASKLENS_TEST_REDIS_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.asyncio,
    pytest.mark.skipif(not REDIS_URL, reason="TASKLENS_TEST_REDIS_URL not set"),
]


@pytest_asyncio.fixture
async def store():
    store = RedisThreadStore(REDIS_URL, prefix=f"tasklens:test:{new_prefixed_id('run')}:", ttl_seconds=60, stream_retention_seconds=5)
    await store.connect()
    yield store
    await store.disconnect()


async def test_append_and_page(store):
    thread = await store.create_thread("owner", "Image analysis session")
    for i in range(3):
        message = await store.append_message(
            thread.thread_id, "owner", NewMessage(role=MessageRole.USER, content=f"m{i}")
        )
        assert message.order == i

    page = await store.list_messages(thread.thread_id, "owner", None, 2)
    assert [m.content for m in page.page] == ["m0", "m1"]
    rest = await store.list_messages(thread.thread_id, "owner", page.continue_cursor, 2)
    assert [m.order for m in rest.page] == [2]
    assert rest.is_done

    with pytest.raises(ThreadAccessDeniedError):
        await store.list_messages(thread.thread_id, "someone-else")


async def test_streams(store):
    thread = await store.create_thread("owner", "t")
    stream = await store.begin_stream(thread.thread_id, "owner")
    await store.append_delta(stream.stream_id, "abc")
    delta = await store.append_delta(stream.stream_id, "de")
    assert (delta.start, delta.end) == (3, 5)

    await store.finish_stream(stream.stream_id, "owner", NewMessage(role=MessageRole.ASSISTANT, content="abcde"))
    sync = await store.sync_streams(thread.thread_id, "owner", {stream.stream_id: 3})
    assert [d.text for d in sync.deltas] == ["de"]
    assert sync.streams[0].status == StreamStatus.FINISHED


async def test_thread_and_delta_keys_expire(store):
    thread = await store.create_thread("owner", "t")
    await store.append_message(thread.thread_id, "owner", NewMessage(role=MessageRole.USER, content="hi"))
    stream = await store.begin_stream(thread.thread_id, "owner")
    await store.append_delta(stream.stream_id, "partial")

    client = await store._client()
    deltas_key = store._key("stream", stream.stream_id, "deltas")
    assert 0 < await client.ttl(store._key(thread.thread_id)) <= 60
    assert 0 < await client.ttl(store._key(thread.thread_id, "messages")) <= 60
    assert 5 < await client.ttl(deltas_key) <= 60

    await store.abort_stream(stream.stream_id)
    # Closed streams only linger for the retention window.
    assert 0 < await client.ttl(deltas_key) <= 5
    assert 0 < await client.ttl(store._key("stream", stream.stream_id)) <= 5
