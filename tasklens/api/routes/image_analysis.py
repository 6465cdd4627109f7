"""
Image Analysis Endpoints

Sessions (thread + dispatch loop), direct analysis, and task commits.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sse_starlette.sse import EventSourceResponse

from tasklens.agent.state import AgentStatus
from tasklens.extraction.schemas import Priority
from tasklens.kernel.errors import TaskLensError, ValidationError
from tasklens.pipeline.service import ExtractionPipeline
from tasklens.threads.store import DEFAULT_PAGE_SIZE

from ..deps import HeaderIdentityResolver, get_identity, get_pipeline

router = APIRouter(prefix="/image-analysis")
logger = structlog.get_logger()


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionRequest(_Body):
    title: str | None = Field(default=None, max_length=200)


class RunExtractionRequest(_Body):
    image_data_url: str | None = Field(default=None, description="Base64 data URL of the image")
    storage_id: str | None = Field(default=None, description="Reference to a previously stored image")
    context: str | None = Field(default=None, description="Optional project context")


class AnalyzeRequest(_Body):
    image_data_url: str = Field(..., description="Base64 data URL of the image")
    context: str | None = None


class _CommitRequest(_Body):
    # Re-validated as an AnalysisResult by the materializer.
    analysis: dict[str, Any]
    project_id: str | None = None
    default_priority: Priority | None = None
    default_hrs: float | None = Field(default=None, ge=0)


class CommitSelectedRequest(_CommitRequest):
    selected_task_ids: list[str]


class CommitOneRequest(_CommitRequest):
    task: dict[str, Any]


def _parse_stream_cursors(raw: str | None) -> dict[str, int] | None:
    if raw is None:
        return None
    try:
        parsed = json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise ValidationError(
            message="streamCursors must be a JSON object",
            code="request.invalid_stream_cursors",
        ) from exc
    if not isinstance(parsed, dict) or not all(
        isinstance(k, str) and isinstance(v, int) and not isinstance(v, bool) for k, v in parsed.items()
    ):
        raise ValidationError(
            message="streamCursors must map stream ids to offsets",
            code="request.invalid_stream_cursors",
        )
    return parsed


@router.post("/sessions")
async def create_session(
    body: CreateSessionRequest | None = None,
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    if body is not None and body.title:
        thread_id = await pipeline.create_session(identity, body.title)
    else:
        thread_id = await pipeline.create_session(identity)
    return {"threadId": thread_id}


@router.post("/sessions/{thread_id}/run")
async def run_extraction(
    thread_id: str,
    body: RunExtractionRequest,
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    """
    Run the dispatch loop on a session.

    `status` distinguishes a confirmed `final_answer` from
    `step_budget_exhausted` (retriable, analysis unconfirmed). Hard failures
    are returned as errors.
    """
    outcome = await pipeline.run_extraction(
        identity,
        thread_id,
        image_data_url=body.image_data_url,
        storage_id=body.storage_id,
        context=body.context,
    )
    if outcome.status == AgentStatus.FAILED:
        raise TaskLensError(
            code=outcome.error_code or "extraction.failed",
            message=outcome.error_message or "Extraction failed",
            status_code=outcome.error_status or 502,
            meta={"threadId": thread_id, "status": outcome.status.value, "steps": outcome.steps},
        )
    return outcome.to_public_dict()


@router.get("/sessions/{thread_id}/messages")
async def list_session_messages(
    thread_id: str,
    cursor: str | None = Query(default=None),
    num_items: int = Query(default=DEFAULT_PAGE_SIZE, alias="numItems"),
    stream_cursors: str | None = Query(default=None, alias="streamCursors"),
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    result = await pipeline.list_session_messages(
        identity,
        thread_id,
        cursor=cursor,
        num_items=num_items,
        stream_cursors=_parse_stream_cursors(stream_cursors),
    )
    return result.model_dump(mode="json", exclude_none=True)


@router.get("/sessions/{thread_id}/stream")
async def stream_session(
    thread_id: str,
    stream_cursors: str | None = Query(default=None, alias="streamCursors"),
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    """Server-sent events of in-flight assistant output."""
    syncs = await pipeline.follow_session_streams(identity, thread_id, _parse_stream_cursors(stream_cursors))

    async def generate_events():
        try:
            async for sync in syncs:
                yield {"event": "sync", "data": sync.model_dump_json()}
            yield {"event": "complete", "data": json.dumps({"threadId": thread_id})}
        except TaskLensError as e:
            logger.warning("Session stream failed", thread_id=thread_id, code=e.code)
            yield {"event": "error", "data": json.dumps({"code": e.code, "error": e.message})}

    return EventSourceResponse(generate_events())


@router.post("/analyze")
async def analyze_image(
    body: AnalyzeRequest,
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    analysis = await pipeline.analyze_image_direct(identity, body.image_data_url, body.context)
    return {"analysis": analysis.to_wire()}


@router.post("/tasks/commit")
async def commit_selected_tasks(
    body: CommitSelectedRequest,
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    result = await pipeline.commit_selected_tasks(
        identity,
        body.analysis,
        body.selected_task_ids,
        project_id=body.project_id,
        default_priority=body.default_priority,
        default_hours=body.default_hrs,
    )
    return result.to_public_dict()


@router.post("/tasks/commit-one")
async def commit_single_task(
    body: CommitOneRequest,
    identity: HeaderIdentityResolver = Depends(get_identity),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    return await pipeline.commit_single_task(
        identity,
        body.analysis,
        body.task,
        project_id=body.project_id,
        default_priority=body.default_priority,
        default_hours=body.default_hrs,
    )
