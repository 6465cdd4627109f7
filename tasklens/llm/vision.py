"""
Vision Extraction Call

One stateless request to a multimodal model under a fixed prompt contract.
The returned text must be a JSON object that validates as an AnalysisResult.
No retries happen here; callers decide whether to re-run.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import structlog

from tasklens.extraction.schemas import MAX_TASKS_PER_ANALYSIS, AnalysisResult, validate_analysis
from tasklens.imaging.transport import ImagePayload
from tasklens.kernel.errors import (
    ExtractionCallFailedError,
    MalformedExtractionOutputError,
    TaskLensError,
)

from .prompts import VISION_SYSTEM_PROMPT, get_vision_extraction_prompt
from .providers import VisionModelClient

logger = structlog.get_logger()


def _strip_code_fence(text: str) -> str:
    raw = text.strip()
    if raw.startswith("```"):
        raw = raw.strip("`").strip()
        if raw.lower().startswith("json"):
            raw = raw[4:].strip()
    return raw


def parse_model_json(text: str) -> Any:
    """Parse model text as JSON (a single surrounding code fence is tolerated)."""
    try:
        return json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise MalformedExtractionOutputError(meta={"error": str(exc)}) from exc


class VisionExtractor:
    """Turns image bytes plus optional context into a candidate AnalysisResult."""

    def __init__(
        self,
        client: VisionModelClient,
        *,
        max_tokens: int = 1200,
        temperature: float = 0.0,
        max_tasks: int = MAX_TASKS_PER_ANALYSIS,
    ):
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_tasks = max_tasks

    async def analyze(self, image: ImagePayload, context: str | None = None) -> AnalysisResult:
        start_time = time.time()
        prompt = get_vision_extraction_prompt(context, max_tasks=self.max_tasks)

        try:
            text = await self.client.complete_vision(
                system=VISION_SYSTEM_PROMPT,
                prompt=prompt,
                image=image,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except TaskLensError:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("Vision call timed out", media_type=image.media_type)
            raise ExtractionCallFailedError(message="Vision model call timed out") from exc
        except Exception as exc:
            logger.warning("Vision call failed", media_type=image.media_type, error=str(exc))
            raise ExtractionCallFailedError(meta={"error": str(exc)}) from exc

        if not text or not text.strip():
            raise ExtractionCallFailedError(message="Vision model response did not include text content")

        analysis = validate_analysis(parse_model_json(text))

        logger.info(
            "Vision extraction complete",
            media_type=image.media_type,
            byte_size=image.byte_size,
            task_count=len(analysis.tasks),
            confidence=analysis.confidence,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return analysis
