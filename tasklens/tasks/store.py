"""
Task store port.

The task/project store is an external collaborator; this module defines the
two operations the pipeline calls and an in-process implementation used in
development and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import structlog

from tasklens.auth.identity import Principal
from tasklens.extraction.schemas import Priority
from tasklens.kernel.errors import ForbiddenError, NotFoundError
from tasklens.kernel.ids import new_prefixed_id

logger = structlog.get_logger()

TaskStatus = Literal["todo", "in_progress", "done"]


@dataclass(frozen=True, slots=True)
class TaskCreate:
    """Arguments to the store's create operation."""

    text: str
    details: str | None = None
    priority: Priority = "medium"
    status: TaskStatus = "todo"
    hrs: float = 1
    project_id: str | None = None
    ref_link: str | None = None
    analysis_data: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": self.text,
            "priority": self.priority,
            "status": self.status,
            "hrs": self.hrs,
        }
        if self.details is not None:
            payload["details"] = self.details
        if self.project_id is not None:
            payload["projectId"] = self.project_id
        if self.ref_link is not None:
            payload["refLink"] = self.ref_link
        if self.analysis_data is not None:
            payload["analysisData"] = self.analysis_data
        return payload


class TaskStore(Protocol):
    async def create_task(self, principal: Principal, task: TaskCreate) -> str:
        """Create a task owned by `principal` and return its id."""
        ...

    async def share_task_with_collaborators(self, principal: Principal, task_id: str) -> Any:
        """Share a task with its project's collaborators; result is opaque."""
        ...


@dataclass(frozen=True, slots=True)
class StoredTask:
    task_id: str
    owner_id: str
    request: TaskCreate
    shared_with: tuple[str, ...] = ()


@dataclass(slots=True)
class InMemoryTaskStore:
    """Dict-backed task store.

    `project_members` maps project ids to the principals allowed to share
    tasks in that project (the owner may always share).
    """

    tasks: dict[str, StoredTask] = field(default_factory=dict)
    project_members: dict[str, set[str]] = field(default_factory=dict)

    async def create_task(self, principal: Principal, task: TaskCreate) -> str:
        task_id = new_prefixed_id("task")
        self.tasks[task_id] = StoredTask(task_id=task_id, owner_id=principal.subject, request=task)
        logger.info("Task created", task_id=task_id, owner_id=principal.subject, project_id=task.project_id)
        return task_id

    async def share_task_with_collaborators(self, principal: Principal, task_id: str) -> dict[str, Any]:
        stored = self.tasks.get(task_id)
        if stored is None:
            raise NotFoundError(message="Task not found", code="task.not_found", meta={"task_id": task_id})

        project_id = stored.request.project_id
        members = self.project_members.get(project_id or "", set())
        if principal.subject != stored.owner_id and principal.subject not in members:
            raise ForbiddenError(
                message="Not authorized on this task's project",
                code="task.share_forbidden",
                meta={"task_id": task_id},
            )

        collaborators = tuple(sorted(m for m in members if m != stored.owner_id))
        self.tasks[task_id] = StoredTask(
            task_id=task_id,
            owner_id=stored.owner_id,
            request=stored.request,
            shared_with=collaborators,
        )
        return {"success": True, "taskId": task_id, "sharedWith": list(collaborators)}
