from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tasklens.auth.identity import Principal
from tasklens.kernel.errors import TaskStoreError
from tasklens.tasks.store import InMemoryTaskStore, TaskCreate


@dataclass(slots=True)
class FlakyTaskStore:
    """In-memory task store whose Nth create call (1-based) fails."""

    fail_on_call: int
    inner: InMemoryTaskStore = field(default_factory=InMemoryTaskStore)
    create_calls: int = 0
    requests: list[TaskCreate] = field(default_factory=list)

    async def create_task(self, principal: Principal, task: TaskCreate) -> str:
        self.create_calls += 1
        self.requests.append(task)
        if self.create_calls == self.fail_on_call:
            raise TaskStoreError(meta={"status_code": 503})
        return await self.inner.create_task(principal, task)

    async def share_task_with_collaborators(self, principal: Principal, task_id: str) -> Any:
        return await self.inner.share_task_with_collaborators(principal, task_id)
