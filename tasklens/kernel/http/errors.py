"""
HTTP rendering of TaskLens errors.

Every error body carries `detail`, a stable `code` and the `request_id`.
Extraction and materialization failures add what a client needs to react:
the offending `fieldPath` for schema failures, and the committed `count` and
`taskIds` for a batch that stopped part-way.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from tasklens.kernel.errors import (
    PartialMaterializationError,
    SchemaValidationError,
    TaskLensError,
    UpstreamError,
)

logger = structlog.get_logger()

# Leading loc segments FastAPI adds for the request part that failed.
_REQUEST_PARTS = frozenset({"body", "query", "path", "header"})


def _get_request_id(request: Request) -> str | None:
    return getattr(getattr(request, "state", None), "request_id", None)


def render_error(exc: TaskLensError, *, request_id: str | None) -> dict[str, Any]:
    payload = exc.to_public_dict(request_id=request_id)
    if isinstance(exc, SchemaValidationError):
        payload["fieldPath"] = exc.field_path
    if isinstance(exc, PartialMaterializationError):
        payload["count"] = len(exc.task_ids)
        payload["taskIds"] = list(exc.task_ids)
    if isinstance(exc, UpstreamError):
        payload["retriable"] = not isinstance(exc, PartialMaterializationError)
    return jsonable_encoder(payload)


def request_field_path(loc: tuple[Any, ...] | list[Any]) -> str:
    """Dotted path of a request validation error, without the request part."""
    parts = list(loc)
    if parts and parts[0] in _REQUEST_PARTS:
        parts = parts[1:]
    return ".".join(str(p) for p in parts)


def register_exception_handlers(app: FastAPI) -> None:
    """Register TaskLens exception handlers on a FastAPI app."""

    @app.exception_handler(TaskLensError)
    async def _tasklens_error_handler(request: Request, exc: TaskLensError) -> Response:
        request_id = _get_request_id(request)
        if exc.status_code >= 500:
            logger.warning("Request failed upstream", code=exc.code, request_id=request_id, meta=exc.meta)
        return JSONResponse(status_code=exc.status_code, content=render_error(exc, request_id=request_id))

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> Response:
        request_id = _get_request_id(request)

        payload: dict[str, Any] = {
            "detail": exc.detail,
            "code": f"http.{exc.status_code}",
        }
        if request_id:
            payload["request_id"] = request_id

        headers = dict(exc.headers or {})
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        request_id = _get_request_id(request)
        errors = exc.errors()
        payload: dict[str, Any] = {
            "detail": jsonable_encoder(errors),
            "code": "request.invalid",
            "fieldPath": request_field_path(errors[0]["loc"]) if errors else "",
        }
        if request_id:
            payload["request_id"] = request_id
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        request_id = _get_request_id(request)
        logger.exception("Unhandled exception", request_id=request_id, error=str(exc))

        payload: dict[str, Any] = {
            "detail": "Internal Server Error",
            "code": "internal.unhandled",
        }
        if request_id:
            payload["request_id"] = request_id
        return JSONResponse(status_code=500, content=payload)
