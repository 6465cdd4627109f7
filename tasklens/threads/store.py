"""
Thread store.

Durable, append-only, resumable message logs. Appends to one thread are
serialized; readers page through the log with stable cursors and follow
in-flight assistant output through stream deltas.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from typing import Protocol

import structlog

from tasklens.kernel.errors import (
    NotFoundError,
    ThreadAccessDeniedError,
    ThreadNotFoundError,
    ValidationError,
)
from tasklens.kernel.ids import new_prefixed_id

from .models import (
    ConversationThread,
    Message,
    MessagePage,
    MessageRole,
    NewMessage,
    StreamDelta,
    StreamInfo,
    StreamStatus,
    StreamSync,
    decode_cursor,
    encode_cursor,
)

logger = structlog.get_logger()

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


class ThreadStore(Protocol):
    async def create_thread(self, owner_id: str, title: str) -> ConversationThread:
        ...

    async def get_thread(self, thread_id: str, owner_id: str) -> ConversationThread:
        ...

    async def append_message(self, thread_id: str, owner_id: str, message: NewMessage) -> Message:
        ...

    async def list_messages(
        self,
        thread_id: str,
        owner_id: str,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
    ) -> MessagePage:
        ...

    async def begin_stream(
        self, thread_id: str, owner_id: str, role: MessageRole = MessageRole.ASSISTANT
    ) -> StreamInfo:
        ...

    async def append_delta(self, stream_id: str, text: str) -> StreamDelta:
        ...

    async def finish_stream(self, stream_id: str, owner_id: str, message: NewMessage) -> Message:
        ...

    async def abort_stream(self, stream_id: str) -> None:
        ...

    async def sync_streams(
        self,
        thread_id: str,
        owner_id: str,
        cursors: dict[str, int] | None = None,
    ) -> StreamSync:
        ...


def check_owner(thread: ConversationThread, owner_id: str) -> ConversationThread:
    """Only the owning principal may read or write a thread."""
    if thread.owner_id != owner_id:
        logger.warning("Thread access denied", thread_id=thread.thread_id, caller=owner_id)
        raise ThreadAccessDeniedError(thread_id=thread.thread_id)
    return thread


def clamp_page_size(num_items: int) -> int:
    if num_items < 1:
        raise ValidationError(
            message="numItems must be positive",
            code="thread.invalid_page_size",
            meta={"num_items": num_items},
        )
    return min(num_items, MAX_PAGE_SIZE)


class StreamNotFoundError(NotFoundError):
    def __init__(self, *, stream_id: str):
        super().__init__(message="Stream not found", code="thread.stream_not_found", meta={"stream_id": stream_id})


class StreamClosedError(ValidationError):
    def __init__(self, *, stream_id: str):
        super().__init__(
            message="Stream already finalized",
            code="thread.stream_closed",
            status_code=409,
            meta={"stream_id": stream_id},
        )


class InMemoryThreadStore:
    """Thread store kept in process memory; one asyncio lock per thread.

    Only the newest `max_closed_streams` finished or aborted streams of a
    thread are retained; older ones and their deltas are dropped when another
    stream closes. The finalized messages stay in the log.
    """

    def __init__(self, max_closed_streams: int = 16) -> None:
        self._max_closed_streams = max_closed_streams
        self._threads: dict[str, ConversationThread] = {}
        self._messages: dict[str, list[Message]] = defaultdict(list)
        self._streams: dict[str, StreamInfo] = {}
        self._deltas: dict[str, list[StreamDelta]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _thread(self, thread_id: str) -> ConversationThread:
        thread = self._threads.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id=thread_id)
        return thread

    def _stream(self, stream_id: str) -> StreamInfo:
        info = self._streams.get(stream_id)
        if info is None:
            raise StreamNotFoundError(stream_id=stream_id)
        return info

    def _prune_closed_streams(self, thread_id: str) -> None:
        closed = [
            info.stream_id
            for info in self._streams.values()
            if info.thread_id == thread_id and info.status != StreamStatus.STREAMING
        ]
        for stream_id in closed[: max(0, len(closed) - self._max_closed_streams)]:
            del self._streams[stream_id]
            self._deltas.pop(stream_id, None)

    async def create_thread(self, owner_id: str, title: str) -> ConversationThread:
        thread = ConversationThread(thread_id=new_prefixed_id("thread"), owner_id=owner_id, title=title)
        self._threads[thread.thread_id] = thread
        logger.info("Created thread", thread_id=thread.thread_id, owner_id=owner_id)
        return thread

    async def get_thread(self, thread_id: str, owner_id: str) -> ConversationThread:
        return check_owner(self._thread(thread_id), owner_id)

    async def append_message(self, thread_id: str, owner_id: str, message: NewMessage) -> Message:
        check_owner(self._thread(thread_id), owner_id)
        async with self._locks[thread_id]:
            log = self._messages[thread_id]
            stored = Message(
                **message.model_dump(),
                message_id=new_prefixed_id("msg"),
                thread_id=thread_id,
                order=len(log),
            )
            log.append(stored)
        return stored

    async def list_messages(
        self,
        thread_id: str,
        owner_id: str,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
    ) -> MessagePage:
        check_owner(self._thread(thread_id), owner_id)
        start = decode_cursor(cursor)
        size = clamp_page_size(num_items)
        log = self._messages[thread_id]
        page = log[start : start + size]
        end = start + len(page)
        return MessagePage(page=page, continue_cursor=encode_cursor(end), is_done=end >= len(log))

    async def begin_stream(
        self, thread_id: str, owner_id: str, role: MessageRole = MessageRole.ASSISTANT
    ) -> StreamInfo:
        check_owner(self._thread(thread_id), owner_id)
        info = StreamInfo(stream_id=new_prefixed_id("stream"), thread_id=thread_id, role=role)
        self._streams[info.stream_id] = info
        return info

    async def append_delta(self, stream_id: str, text: str) -> StreamDelta:
        info = self._stream(stream_id)
        if info.status != StreamStatus.STREAMING:
            raise StreamClosedError(stream_id=stream_id)
        delta = StreamDelta(stream_id=stream_id, start=info.length, end=info.length + len(text), text=text)
        info.length = delta.end
        self._deltas[stream_id].append(delta)
        return delta

    async def finish_stream(self, stream_id: str, owner_id: str, message: NewMessage) -> Message:
        info = self._stream(stream_id)
        if info.status != StreamStatus.STREAMING:
            raise StreamClosedError(stream_id=stream_id)
        stored = await self.append_message(info.thread_id, owner_id, message)
        info.status = StreamStatus.FINISHED
        info.message_id = stored.message_id
        self._prune_closed_streams(info.thread_id)
        return stored

    async def abort_stream(self, stream_id: str) -> None:
        info = self._stream(stream_id)
        if info.status == StreamStatus.STREAMING:
            info.status = StreamStatus.ABORTED
            self._prune_closed_streams(info.thread_id)

    async def sync_streams(
        self,
        thread_id: str,
        owner_id: str,
        cursors: dict[str, int] | None = None,
    ) -> StreamSync:
        check_owner(self._thread(thread_id), owner_id)
        cursors = cursors or {}
        streams = [info.model_copy() for info in self._streams.values() if info.thread_id == thread_id]
        deltas = [
            delta
            for info in streams
            for delta in self._deltas[info.stream_id]
            if delta.end > cursors.get(info.stream_id, 0)
        ]
        return StreamSync(streams=streams, deltas=deltas)


async def iter_stream_deltas(
    store: ThreadStore,
    thread_id: str,
    owner_id: str,
    cursors: dict[str, int] | None = None,
    *,
    poll_interval: float = 0.25,
    idle_timeout: float = 30.0,
) -> AsyncIterator[StreamSync]:
    """Lazily follow a thread's in-flight streams from the given cursors.

    Yields each non-empty sync. Stops once no stream is still producing, or after
    `idle_timeout` seconds without progress. Restart by passing the last cursors.
    Cancelling the consumer simply stops iteration.
    """
    positions = dict(cursors or {})
    idle = 0.0
    while True:
        sync = await store.sync_streams(thread_id, owner_id, positions)
        if sync.deltas:
            for delta in sync.deltas:
                positions[delta.stream_id] = max(positions.get(delta.stream_id, 0), delta.end)
            idle = 0.0
            yield sync
        if not any(info.status == StreamStatus.STREAMING for info in sync.streams):
            if not sync.deltas:
                yield sync
            return
        if idle >= idle_timeout:
            return
        await asyncio.sleep(poll_interval)
        idle += poll_interval
