"""
Task Materializer

Commits selected extracted tasks to the external task store on behalf of the
authenticated principal. Analysis and task payloads usually round-trip
through a client, so both are re-validated before use.

Batch commits are sequential and not atomic: if task k fails, tasks 1..k-1
stay committed and `PartialMaterializationError` reports what was created.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from tasklens.auth.identity import Principal
from tasklens.extraction.normalizer import ensure_priority
from tasklens.extraction.schemas import (
    DEFAULT_PRIORITY,
    AnalysisResult,
    ExtractedTask,
    Priority,
    validate_analysis,
    validate_task,
)
from tasklens.kernel.errors import NoTasksSelectedError, PartialMaterializationError
from tasklens.kernel.ids import random_token
from tasklens.kernel.serialization import json_dumps
from tasklens.kernel.time import epoch_millis, utc_now
from tasklens.tasks.store import TaskCreate, TaskStore

logger = structlog.get_logger()

PROVENANCE_SOURCE = "image-analysis"
PROVENANCE_LINE = "Generated via image analysis"
DEFAULT_HOURS: float = 1


@dataclass(frozen=True, slots=True)
class MaterializeDefaults:
    """Session defaults applied only where an extracted task omits its own value."""

    priority: Priority = DEFAULT_PRIORITY
    hours: float = DEFAULT_HOURS

    @classmethod
    def of(cls, priority: str | None = None, hours: float | None = None) -> MaterializeDefaults:
        return cls(
            priority=ensure_priority(priority, DEFAULT_PRIORITY),
            hours=DEFAULT_HOURS if hours is None else hours,
        )


@dataclass(frozen=True, slots=True)
class CommitResult:
    count: int
    task_ids: list[str]

    def to_public_dict(self) -> dict[str, Any]:
        return {"count": self.count, "taskIds": list(self.task_ids)}


def build_task_details(task: ExtractedTask) -> str:
    sections: list[str] = []
    if task.description:
        sections.append(task.description.strip())
    if task.notes:
        sections.append(f"Notes: {task.notes.strip()}")
    sections.append(PROVENANCE_LINE)
    return "\n\n".join(sections)


def build_provenance(
    analysis: AnalysisResult,
    source_task_id: str,
    project_id: str | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Serialized audit record attached to each created task."""
    record: dict[str, Any] = {
        "source": PROVENANCE_SOURCE,
        "generatedAt": epoch_millis(generated_at),
        "sourceTaskId": source_task_id,
    }
    if project_id is not None:
        record["projectId"] = project_id
    record.update(
        {
            "summary": analysis.summary or "",
            "confidence": analysis.confidence,
            "totalEstimatedHours": analysis.total_estimated_hours,
            "tasks": [task.to_wire() for task in analysis.tasks],
        }
    )
    return json_dumps(record)


class TaskMaterializer:
    def __init__(self, task_store: TaskStore, clock: Callable[[], datetime] = utc_now):
        self.task_store = task_store
        self.clock = clock

    def build_request(
        self,
        task: ExtractedTask,
        analysis: AnalysisResult,
        project_id: str | None,
        defaults: MaterializeDefaults,
    ) -> TaskCreate:
        return TaskCreate(
            text=task.title,
            details=build_task_details(task),
            priority=ensure_priority(task.priority, defaults.priority),
            status="todo",
            hrs=task.estimated_hours if task.estimated_hours is not None else defaults.hours,
            project_id=project_id,
            ref_link="",
            analysis_data=build_provenance(
                analysis,
                task.id or random_token(),
                project_id,
                generated_at=self.clock(),
            ),
        )

    async def commit_selected(
        self,
        principal: Principal,
        analysis: Any,
        selected_ids: Iterable[str],
        *,
        project_id: str | None = None,
        defaults: MaterializeDefaults | None = None,
    ) -> CommitResult:
        """Create every selected task, in analysis order."""
        analysis = validate_analysis(analysis)
        defaults = defaults or MaterializeDefaults()
        wanted = {task_id for task_id in selected_ids if task_id}
        selected = [task for task in analysis.tasks if task.id and task.id in wanted]
        if not selected:
            raise NoTasksSelectedError()

        created: list[str] = []
        for task in selected:
            request = self.build_request(task, analysis, project_id, defaults)
            try:
                task_id = await self.task_store.create_task(principal, request)
            except Exception as exc:
                logger.warning(
                    "Batch materialization stopped",
                    owner_id=principal.subject,
                    created=len(created),
                    requested=len(selected),
                    failed_task=task.id,
                    error=str(exc),
                )
                if not created:
                    raise
                raise PartialMaterializationError(task_ids=created, requested=len(selected), cause=exc) from exc
            created.append(task_id)

        logger.info(
            "Tasks materialized",
            owner_id=principal.subject,
            count=len(created),
            project_id=project_id,
        )
        return CommitResult(count=len(created), task_ids=created)

    async def commit_single(
        self,
        principal: Principal,
        analysis: Any,
        task: Any,
        *,
        project_id: str | None = None,
        defaults: MaterializeDefaults | None = None,
    ) -> str:
        analysis = validate_analysis(analysis)
        task = validate_task(task)
        request = self.build_request(task, analysis, project_id, defaults or MaterializeDefaults())
        task_id = await self.task_store.create_task(principal, request)
        logger.info("Task materialized", owner_id=principal.subject, task_id=task_id, project_id=project_id)
        return task_id
