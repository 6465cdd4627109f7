"""HTTP adapter for the task store service."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from tasklens.auth.identity import Principal
from tasklens.kernel.errors import ForbiddenError, NotFoundError, TaskStoreError, UnauthenticatedError
from tasklens.kernel.http.client import request_with_retry

from .store import TaskCreate

logger = structlog.get_logger()


class HttpTaskStore:
    """Calls the task store over HTTP on behalf of an authenticated principal.

    The principal is forwarded in `X-Principal-Id`, authenticated by the shared
    `X-Internal-Secret`. Task creation is not idempotent, so it is never retried.
    """

    def __init__(
        self,
        base_url: str,
        internal_secret: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.internal_secret = internal_secret
        self.timeout = timeout
        self.transport = transport

    def _headers(self, principal: Principal) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Internal-Secret": self.internal_secret,
            "X-Principal-Id": principal.subject,
        }

    async def _post(
        self,
        path: str,
        principal: Principal,
        payload: dict[str, Any],
        *,
        max_attempts: int,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await request_with_retry(
                    client,
                    "POST",
                    url,
                    headers=self._headers(principal),
                    json=payload,
                    max_attempts=max_attempts,
                )
        except httpx.HTTPError as exc:
            logger.warning("Task store request failed", url=url, error=str(exc))
            raise TaskStoreError(meta={"path": path, "error": str(exc)}) from exc

        if response.status_code == 401:
            raise UnauthenticatedError()
        if response.status_code == 403:
            raise ForbiddenError(message="Task store denied the request", code="task.forbidden", meta={"path": path})
        if response.status_code == 404:
            raise NotFoundError(message="Task not found", code="task.not_found", meta={"path": path})
        if response.status_code >= 400:
            logger.warning(
                "Task store returned an error",
                url=url,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise TaskStoreError(meta={"path": path, "status_code": response.status_code})

        try:
            return response.json()
        except ValueError as exc:
            raise TaskStoreError(message="Task store returned invalid JSON", meta={"path": path}) from exc

    async def create_task(self, principal: Principal, task: TaskCreate) -> str:
        body = await self._post("/tasks", principal, task.to_payload(), max_attempts=1)
        task_id = body.get("taskId") if isinstance(body, dict) else body
        if not isinstance(task_id, str) or not task_id:
            raise TaskStoreError(message="Task store response is missing taskId")
        return task_id

    async def share_task_with_collaborators(self, principal: Principal, task_id: str) -> Any:
        return await self._post(
            "/tasks/share",
            principal,
            {"taskId": task_id},
            max_attempts=3,
        )
