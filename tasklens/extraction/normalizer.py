"""
Analysis normalization.

Fills ids and coerces priorities so downstream consumers get a stable shape.
Normalization never drops tasks and never clamps numeric bounds (those are
validated by the schema instead). `normalize(normalize(x)) == normalize(x)`.
"""

from __future__ import annotations

import structlog

from tasklens.kernel.ids import synthesize_task_id

from .schemas import (
    ALLOWED_PRIORITIES,
    DEFAULT_PRIORITY,
    MAX_TASKS_PER_ANALYSIS,
    AnalysisResult,
    ExtractedTask,
    Priority,
)

logger = structlog.get_logger()


def ensure_priority(priority: str | None, fallback: Priority = DEFAULT_PRIORITY) -> Priority:
    """Case-insensitive match against low/medium/high, else `fallback`."""
    if not priority:
        return fallback
    normalized = priority.strip().lower()
    if normalized in ALLOWED_PRIORITIES:
        return normalized  # type: ignore[return-value]
    return fallback


def normalize_task(task: ExtractedTask, index: int) -> ExtractedTask:
    return task.model_copy(
        update={
            "id": task.id or synthesize_task_id(index),
            "priority": ensure_priority(task.priority),
        }
    )


def normalize(analysis: AnalysisResult) -> AnalysisResult:
    """Assign missing task ids and coerce priorities; idempotent."""
    if len(analysis.tasks) > MAX_TASKS_PER_ANALYSIS:
        logger.warning(
            "Analysis exceeds task limit",
            task_count=len(analysis.tasks),
            limit=MAX_TASKS_PER_ANALYSIS,
        )
    tasks = [normalize_task(task, index) for index, task in enumerate(analysis.tasks)]
    return analysis.model_copy(update={"summary": analysis.summary or "", "tasks": tasks})
