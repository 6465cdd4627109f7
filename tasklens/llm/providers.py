"""
Model providers.

Model clients are passed into the pipeline explicitly; nothing here is a
process-wide singleton. Both implementations go through LiteLLM so the
provider (Anthropic, OpenAI, ...) is picked by the model string.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from tasklens.imaging.transport import ImagePayload

logger = structlog.get_logger()

DeltaCallback = Callable[[str], Awaitable[None]]


# =============================================================================
# Vision (single stateless call)
# =============================================================================


class VisionModelClient(Protocol):
    async def complete_vision(
        self,
        *,
        system: str,
        prompt: str,
        image: ImagePayload,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Return the concatenated text content of the model response."""
        ...


class LiteLLMVisionClient:
    """Multimodal chat completion via LiteLLM."""

    def __init__(self, model: str, timeout: float = 60.0):
        self.model = model
        self.timeout = timeout

    async def complete_vision(
        self,
        *,
        system: str,
        prompt: str,
        image: ImagePayload,
        max_tokens: int,
        temperature: float,
    ) -> str:
        import litellm

        response = await asyncio.wait_for(
            litellm.acompletion(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image.to_data_url()}},
                        ],
                    },
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            timeout=self.timeout,
        )

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        logger.debug(
            "Vision call completed",
            model=self.model,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
        )
        return content


# =============================================================================
# Agent turns (tool calling)
# =============================================================================


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """The model asked to run one named tool with raw JSON arguments."""

    call_id: str
    name: str
    arguments: str


@dataclass(frozen=True, slots=True)
class ModelTurn:
    """One model turn: either a tool request or a final text answer."""

    text: str = ""
    tool_call: ToolCallRequest | None = None
    extra_tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def is_final(self) -> bool:
        return self.tool_call is None


class AgentModel(Protocol):
    async def next_turn(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        *,
        on_delta: DeltaCallback | None = None,
    ) -> ModelTurn:
        ...


class LiteLLMAgentModel:
    """Streaming tool-calling chat model via LiteLLM."""

    def __init__(self, model: str, timeout: float = 60.0, max_tokens: int = 2048, temperature: float = 0.0):
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def _collect(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        on_delta: DeltaCallback | None,
    ) -> Any:
        import litellm

        stream = await litellm.acompletion(
            model=self.model,
            messages=messages,
            tools=tools or None,
            tool_choice="auto" if tools else None,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        chunks = []
        async for chunk in stream:
            chunks.append(chunk)
            delta = chunk.choices[0].delta if chunk.choices else None
            text = getattr(delta, "content", None) if delta else None
            if text and on_delta is not None:
                await on_delta(text)
        return litellm.stream_chunk_builder(chunks, messages=messages)

    async def next_turn(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        *,
        on_delta: DeltaCallback | None = None,
    ) -> ModelTurn:
        response = await asyncio.wait_for(
            self._collect(messages, tools, on_delta),
            timeout=self.timeout,
        )
        message = response.choices[0].message
        calls = [
            ToolCallRequest(
                call_id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "{}",
            )
            for call in (getattr(message, "tool_calls", None) or [])
        ]
        if not calls:
            return ModelTurn(text=message.content or "")
        if len(calls) > 1:
            logger.warning(
                "Model requested several tools in one turn; running the first",
                tools=[c.name for c in calls],
            )
        return ModelTurn(text=message.content or "", tool_call=calls[0], extra_tool_calls=calls[1:])


def parse_tool_arguments(raw: str) -> Any:
    """Decode tool arguments; invalid JSON is returned as-is for schema rejection."""
    try:
        return json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return raw
