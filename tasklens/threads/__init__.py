from .models import (
    ConversationThread,
    Message,
    MessagePage,
    MessageRole,
    NewMessage,
    StreamAccumulator,
    StreamDelta,
    StreamInfo,
    StreamStatus,
    StreamSync,
    render_message_text,
)
from .redis_store import RedisThreadStore
from .store import InMemoryThreadStore, ThreadStore, iter_stream_deltas

__all__ = [
    "ConversationThread",
    "InMemoryThreadStore",
    "Message",
    "MessagePage",
    "MessageRole",
    "NewMessage",
    "RedisThreadStore",
    "StreamAccumulator",
    "StreamDelta",
    "StreamInfo",
    "StreamStatus",
    "StreamSync",
    "ThreadStore",
    "iter_stream_deltas",
    "render_message_text",
]
