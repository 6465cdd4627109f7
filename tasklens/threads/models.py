"""
Conversation thread models.

A thread is an append-only message log owned by one principal. Finalized
messages are immutable; in-flight assistant output is exposed separately as
stream deltas that consumers merge until the finalized message supersedes them.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tasklens.kernel.errors import ValidationError
from tasklens.kernel.time import utc_now


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StreamStatus(str, Enum):
    STREAMING = "streaming"
    FINISHED = "finished"
    ABORTED = "aborted"


class ConversationThread(BaseModel):
    model_config = ConfigDict(frozen=True)

    thread_id: str
    owner_id: str
    title: str
    created_at: datetime = Field(default_factory=utc_now)


class NewMessage(BaseModel):
    """Message content as submitted by a writer, before the log assigns its position."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    tool_name: str | None = None
    tool_call_id: str | None = None
    tool_arguments: dict[str, Any] | None = None
    tool_output: Any = None
    is_error: bool = False


class Message(NewMessage):
    """A finalized message in the thread log."""

    message_id: str
    thread_id: str
    order: int
    streaming: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class MessagePage(BaseModel):
    page: list[Message]
    continue_cursor: str
    is_done: bool


class StreamDelta(BaseModel):
    """Text appended to an in-flight stream, covering characters [start, end)."""

    model_config = ConfigDict(frozen=True)

    stream_id: str
    start: int
    end: int
    text: str


class StreamInfo(BaseModel):
    stream_id: str
    thread_id: str
    role: MessageRole = MessageRole.ASSISTANT
    status: StreamStatus = StreamStatus.STREAMING
    message_id: str | None = None
    length: int = 0


class StreamSync(BaseModel):
    streams: list[StreamInfo] = Field(default_factory=list)
    deltas: list[StreamDelta] = Field(default_factory=list)


# =============================================================================
# Cursors
# =============================================================================


def encode_cursor(position: int) -> str:
    return f"m{position}"


def decode_cursor(cursor: str | None) -> int:
    """Position encoded in a pagination cursor (None means the beginning)."""
    if not cursor:
        return 0
    if cursor.startswith("m") and cursor[1:].isdigit():
        return int(cursor[1:])
    raise ValidationError(
        message="Invalid pagination cursor",
        code="thread.invalid_cursor",
        meta={"cursor": cursor},
    )


# =============================================================================
# Consumer helpers
# =============================================================================


class StreamAccumulator:
    """Merges stream deltas into last-known text per stream.

    Deltas may be replayed after a reconnect; anything already applied is
    skipped. Once a stream is finished its partial text should be dropped in
    favour of the finalized message (see `supersede`).
    """

    def __init__(self) -> None:
        self.texts: dict[str, str] = {}

    @property
    def cursors(self) -> dict[str, int]:
        return {stream_id: len(text) for stream_id, text in self.texts.items()}

    def apply(self, delta: StreamDelta) -> str:
        current = self.texts.get(delta.stream_id, "")
        if delta.end <= len(current):
            return current
        if delta.start > len(current):
            # Gap: the consumer missed deltas and must resync from its cursor.
            return current
        merged = current + delta.text[len(current) - delta.start :]
        self.texts[delta.stream_id] = merged
        return merged

    def apply_all(self, deltas: list[StreamDelta]) -> dict[str, str]:
        for delta in deltas:
            self.apply(delta)
        return dict(self.texts)

    def supersede(self, sync: StreamSync) -> None:
        for info in sync.streams:
            if info.status != StreamStatus.STREAMING:
                self.texts.pop(info.stream_id, None)


def render_message_text(message: Message) -> str:
    """Display text for a message."""
    if message.role == MessageRole.ASSISTANT and message.tool_name:
        return f"Calling {message.tool_name}…"
    if message.role == MessageRole.TOOL and message.tool_output is not None and not message.is_error:
        return json.dumps(message.tool_output, indent=2, ensure_ascii=False)
    return message.content
