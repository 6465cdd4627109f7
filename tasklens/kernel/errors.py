from __future__ import annotations

import re
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class TaskLensError(Exception):
    """Base typed error for TaskLens.

    Goals:
    - Stable `code` for programmatic handling across clients.
    - Human-readable `message` for UI surfaces.
    - Optional `meta` payload for debugging (safe-to-expose only).
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 500,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid TaskLens error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.meta = dict(meta or {})

    def to_public_dict(self, *, request_id: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            # Keep `detail` for compatibility with FastAPI error surfaces.
            "detail": self.message,
            "code": self.code,
        }
        if request_id:
            payload["request_id"] = request_id
        if self.meta:
            payload["meta"] = self.meta
        return payload


class NotFoundError(TaskLensError):
    def __init__(self, *, message: str = "Not found", code: str = "resource.not_found", meta: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, status_code=404, meta=meta)


class UnauthorizedError(TaskLensError):
    def __init__(
        self,
        *,
        message: str = "Not authenticated",
        code: str = "auth.unauthorized",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=401, meta=meta)


class ForbiddenError(TaskLensError):
    def __init__(
        self,
        *,
        message: str = "Forbidden",
        code: str = "auth.forbidden",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=403, meta=meta)


class ValidationError(TaskLensError):
    def __init__(
        self,
        *,
        message: str = "Validation error",
        code: str = "request.validation_error",
        meta: dict[str, Any] | None = None,
        status_code: int = 422,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class UpstreamError(TaskLensError):
    def __init__(
        self,
        *,
        message: str = "Upstream service error",
        code: str = "upstream.error",
        meta: dict[str, Any] | None = None,
        status_code: int = 502,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


# =============================================================================
# Authentication / authorization
# =============================================================================


class UnauthenticatedError(UnauthorizedError):
    def __init__(self, *, message: str = "Not authenticated", meta: dict[str, Any] | None = None):
        super().__init__(message=message, code="auth.unauthenticated", meta=meta)


class ToolAuthorizationError(ForbiddenError):
    def __init__(self, *, tool: str, message: str | None = None, meta: dict[str, Any] | None = None):
        super().__init__(
            message=message or f"Not authorized to invoke {tool}",
            code="auth.tool_forbidden",
            meta={"tool": tool, **(meta or {})},
        )


# =============================================================================
# Conversation threads
# =============================================================================


class ThreadNotFoundError(NotFoundError):
    def __init__(self, *, thread_id: str):
        super().__init__(
            message="Thread not found",
            code="thread.not_found",
            meta={"thread_id": thread_id},
        )


class ThreadAccessDeniedError(ForbiddenError):
    def __init__(self, *, thread_id: str):
        super().__init__(
            message="Thread belongs to another principal",
            code="thread.access_denied",
            meta={"thread_id": thread_id},
        )


# =============================================================================
# Image transport
# =============================================================================


class InvalidImageFormatError(ValidationError):
    def __init__(self, *, message: str = "Invalid image payload", meta: dict[str, Any] | None = None):
        super().__init__(message=message, code="image.invalid_format", meta=meta)


class ReferenceNotFoundError(NotFoundError):
    def __init__(self, *, reference: str):
        super().__init__(
            message="Stored image payload not found",
            code="image.reference_not_found",
            meta={"reference": reference},
        )


# =============================================================================
# Vision extraction
# =============================================================================


class ExtractionCallFailedError(UpstreamError):
    def __init__(self, *, message: str = "Vision model call failed", meta: dict[str, Any] | None = None):
        super().__init__(message=message, code="extraction.call_failed", meta=meta)


class MalformedExtractionOutputError(UpstreamError):
    def __init__(self, *, message: str = "Failed to parse AI response", meta: dict[str, Any] | None = None):
        super().__init__(message=message, code="extraction.malformed_output", meta=meta)


class SchemaValidationError(ValidationError):
    def __init__(self, *, field_path: str, errors: list[dict[str, Any]] | None = None, message: str | None = None):
        super().__init__(
            message=message or f"Analysis failed schema validation at {field_path or '<root>'}",
            code="extraction.schema_validation_failed",
            meta={"field_path": field_path, "errors": list(errors or [])},
        )

    @property
    def field_path(self) -> str:
        return self.meta["field_path"]


# =============================================================================
# Materialization / task store
# =============================================================================


class NoTasksSelectedError(ValidationError):
    def __init__(self):
        super().__init__(
            message="No tasks selected",
            code="materialize.no_tasks_selected",
            status_code=400,
        )


class TaskStoreError(UpstreamError):
    def __init__(self, *, message: str = "Task store request failed", meta: dict[str, Any] | None = None):
        super().__init__(message=message, code="task_store.error", meta=meta)


class PartialMaterializationError(UpstreamError):
    """Raised after a batch commit stopped part-way; earlier tasks stay committed."""

    def __init__(self, *, task_ids: list[str], requested: int, cause: TaskLensError | Exception):
        super().__init__(
            message=f"Created {len(task_ids)} of {requested} tasks before a failure",
            code="materialize.partial_failure",
            meta={
                "count": len(task_ids),
                "requested": requested,
                "task_ids": list(task_ids),
                "cause": getattr(cause, "code", type(cause).__name__),
            },
        )
        self.task_ids = list(task_ids)
        self.cause = cause
