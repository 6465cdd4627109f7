"""
Redis-backed thread store.

Layout (all keys under `prefix`):
- `{thread_id}`            hash: owner_id, title, created_at
- `{thread_id}:messages`   list of message JSON, position = order
- `{thread_id}:streams`    set of stream ids
- `stream:{stream_id}`     hash: thread_id, role, status, message_id, length
- `stream:{stream_id}:deltas` list of delta JSON

RPUSH and HINCRBY are atomic, so message order and delta offsets never collide.
Writes slide the thread expiry forward when `ttl_seconds` is set. A finished or
aborted stream keeps its deltas for `stream_retention_seconds`, then expires.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from tasklens.kernel.errors import ThreadNotFoundError
from tasklens.kernel.ids import new_prefixed_id
from tasklens.kernel.time import utc_now

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
from .store import DEFAULT_PAGE_SIZE, StreamClosedError, StreamNotFoundError, check_owner, clamp_page_size

logger = structlog.get_logger()


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisThreadStore:
    """Thread store persisted in Redis."""

    def __init__(
        self,
        redis_url: str,
        prefix: str = "tasklens:threads:",
        ttl_seconds: int | None = None,
        stream_retention_seconds: int = 300,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._ttl_seconds = ttl_seconds
        self._stream_retention_seconds = stream_retention_seconds
        self._redis = None

    async def connect(self) -> None:
        if self._redis is not None:
            return
        import redis.asyncio as redis

        self._redis = redis.from_url(self._redis_url)
        await self._redis.ping()
        logger.info("Thread store connected to Redis")

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _key(self, *parts: str) -> str:
        return self._prefix + ":".join(parts)

    async def _client(self):
        await self.connect()
        return self._redis

    async def _touch(self, *keys: str) -> None:
        if self._ttl_seconds:
            client = await self._client()
            for key in keys:
                await client.expire(key, self._ttl_seconds)

    async def _retire_stream(self, stream_id: str) -> None:
        client = await self._client()
        for key in (self._key("stream", stream_id), self._key("stream", stream_id, "deltas")):
            await client.expire(key, self._stream_retention_seconds)

    async def _thread(self, thread_id: str) -> ConversationThread:
        client = await self._client()
        data = await client.hgetall(self._key(thread_id))
        if not data:
            raise ThreadNotFoundError(thread_id=thread_id)
        fields = {_text(k): _text(v) for k, v in data.items()}
        return ConversationThread(
            thread_id=thread_id,
            owner_id=fields["owner_id"],
            title=fields.get("title", ""),
            created_at=datetime.fromisoformat(fields["created_at"]),
        )

    async def _stream(self, stream_id: str) -> StreamInfo:
        client = await self._client()
        data = await client.hgetall(self._key("stream", stream_id))
        if not data:
            raise StreamNotFoundError(stream_id=stream_id)
        fields = {_text(k): _text(v) for k, v in data.items()}
        return StreamInfo(
            stream_id=stream_id,
            thread_id=fields["thread_id"],
            role=MessageRole(fields.get("role", MessageRole.ASSISTANT.value)),
            status=StreamStatus(fields.get("status", StreamStatus.STREAMING.value)),
            message_id=fields.get("message_id") or None,
            length=int(fields.get("length", 0)),
        )

    async def create_thread(self, owner_id: str, title: str) -> ConversationThread:
        client = await self._client()
        thread = ConversationThread(thread_id=new_prefixed_id("thread"), owner_id=owner_id, title=title)
        await client.hset(
            self._key(thread.thread_id),
            mapping={
                "owner_id": owner_id,
                "title": title,
                "created_at": thread.created_at.isoformat(),
            },
        )
        await self._touch(self._key(thread.thread_id))
        logger.info("Created thread", thread_id=thread.thread_id, owner_id=owner_id)
        return thread

    async def get_thread(self, thread_id: str, owner_id: str) -> ConversationThread:
        return check_owner(await self._thread(thread_id), owner_id)

    async def append_message(self, thread_id: str, owner_id: str, message: NewMessage) -> Message:
        check_owner(await self._thread(thread_id), owner_id)
        client = await self._client()
        message_id = new_prefixed_id("msg")
        created_at = utc_now()
        # Order is derived from the list index on read; 0 is a placeholder.
        draft = Message(
            **message.model_dump(),
            message_id=message_id,
            thread_id=thread_id,
            order=0,
            created_at=created_at,
        )
        key = self._key(thread_id, "messages")
        length = await client.rpush(key, draft.model_dump_json())
        await self._touch(self._key(thread_id), key, self._key(thread_id, "streams"))
        return draft.model_copy(update={"order": int(length) - 1})

    async def list_messages(
        self,
        thread_id: str,
        owner_id: str,
        cursor: str | None = None,
        num_items: int = DEFAULT_PAGE_SIZE,
    ) -> MessagePage:
        check_owner(await self._thread(thread_id), owner_id)
        client = await self._client()
        start = decode_cursor(cursor)
        size = clamp_page_size(num_items)
        key = self._key(thread_id, "messages")
        raw = await client.lrange(key, start, start + size - 1)
        total = await client.llen(key)
        page = [
            Message.model_validate_json(item).model_copy(update={"order": start + offset})
            for offset, item in enumerate(raw)
        ]
        end = start + len(page)
        return MessagePage(page=page, continue_cursor=encode_cursor(end), is_done=end >= int(total))

    async def begin_stream(
        self, thread_id: str, owner_id: str, role: MessageRole = MessageRole.ASSISTANT
    ) -> StreamInfo:
        check_owner(await self._thread(thread_id), owner_id)
        client = await self._client()
        info = StreamInfo(stream_id=new_prefixed_id("stream"), thread_id=thread_id, role=role)
        await client.hset(
            self._key("stream", info.stream_id),
            mapping={
                "thread_id": thread_id,
                "role": role.value,
                "status": StreamStatus.STREAMING.value,
                "length": 0,
            },
        )
        await client.sadd(self._key(thread_id, "streams"), info.stream_id)
        await self._touch(self._key("stream", info.stream_id), self._key(thread_id, "streams"))
        return info

    async def append_delta(self, stream_id: str, text: str) -> StreamDelta:
        info = await self._stream(stream_id)
        if info.status != StreamStatus.STREAMING:
            raise StreamClosedError(stream_id=stream_id)
        client = await self._client()
        end = int(await client.hincrby(self._key("stream", stream_id), "length", len(text)))
        delta = StreamDelta(stream_id=stream_id, start=end - len(text), end=end, text=text)
        deltas_key = self._key("stream", stream_id, "deltas")
        await client.rpush(deltas_key, delta.model_dump_json())
        await self._touch(deltas_key, self._key("stream", stream_id))
        return delta

    async def finish_stream(self, stream_id: str, owner_id: str, message: NewMessage) -> Message:
        info = await self._stream(stream_id)
        if info.status != StreamStatus.STREAMING:
            raise StreamClosedError(stream_id=stream_id)
        stored = await self.append_message(info.thread_id, owner_id, message)
        client = await self._client()
        await client.hset(
            self._key("stream", stream_id),
            mapping={"status": StreamStatus.FINISHED.value, "message_id": stored.message_id},
        )
        await self._retire_stream(stream_id)
        return stored

    async def abort_stream(self, stream_id: str) -> None:
        info = await self._stream(stream_id)
        if info.status == StreamStatus.STREAMING:
            client = await self._client()
            await client.hset(self._key("stream", stream_id), "status", StreamStatus.ABORTED.value)
            await self._retire_stream(stream_id)

    async def sync_streams(
        self,
        thread_id: str,
        owner_id: str,
        cursors: dict[str, int] | None = None,
    ) -> StreamSync:
        check_owner(await self._thread(thread_id), owner_id)
        client = await self._client()
        cursors = cursors or {}
        stream_ids = sorted(_text(s) for s in await client.smembers(self._key(thread_id, "streams")))
        streams: list[StreamInfo] = []
        deltas: list[StreamDelta] = []
        for stream_id in stream_ids:
            try:
                info = await self._stream(stream_id)
            except StreamNotFoundError:
                await client.srem(self._key(thread_id, "streams"), stream_id)
                continue
            streams.append(info)
            seen = cursors.get(stream_id, 0)
            for item in await client.lrange(self._key("stream", stream_id, "deltas"), 0, -1):
                delta = StreamDelta.model_validate_json(item)
                if delta.end > seen:
                    deltas.append(delta)
        return StreamSync(streams=streams, deltas=deltas)
