"""
Agent tools.

The capability set is fixed: inspectImage, createTask, shareTask. Each tool
declares a pydantic argument schema; arguments the model sends are validated
against it and rejected on mismatch. Every invocation re-resolves the caller
and checks it against the session owner before doing anything else.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tasklens.auth.identity import IdentityResolver, Principal, require_principal
from tasklens.extraction.normalizer import ensure_priority, normalize
from tasklens.imaging.transport import ImageTransport
from tasklens.kernel.errors import TaskLensError, ToolAuthorizationError
from tasklens.llm.providers import ToolCallRequest, parse_tool_arguments
from tasklens.llm.vision import VisionExtractor
from tasklens.tasks.store import TaskCreate, TaskStore

from .state import ToolResult

logger = structlog.get_logger()

INSPECT_IMAGE = "inspectImage"
CREATE_TASK = "createTask"
SHARE_TASK = "shareTask"

DEFAULT_TASK_HOURS = 1


# =============================================================================
# Argument schemas
# =============================================================================


class _ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", strict=True)


class InspectImageArgs(_ToolArgs):
    image_data_url: str | None = Field(
        default=None, description="Base64 data URL for the image (data:image/...;base64,...)"
    )
    storage_id: str | None = Field(default=None, description="Storage identifier referencing the uploaded image")
    context: str | None = Field(default=None, description="Optional project or business context")

    @model_validator(mode="after")
    def _require_image(self) -> InspectImageArgs:
        if not self.image_data_url and not self.storage_id:
            raise ValueError("Provide either imageDataUrl or storageId")
        return self


class CreateTaskArgs(_ToolArgs):
    title: str = Field(min_length=1, description="Title of the task")
    details: str | None = Field(default=None, description="Optional details for the task")
    priority: str | None = Field(default=None, description="Task priority: low, medium or high")
    hrs: float | None = Field(default=None, ge=0, description="Estimated hours for completion")
    project_id: str | None = Field(default=None, description="Optional project ID to associate with the task")
    ref_link: str | None = Field(default=None, description="Optional reference link for the task")


class ShareTaskArgs(_ToolArgs):
    task_id: str = Field(min_length=1, description="Task ID to share")


# =============================================================================
# Registry
# =============================================================================


@dataclass(slots=True)
class ToolContext:
    """Collaborators available to tool handlers for one session run."""

    owner_id: str
    identity: IdentityResolver
    transport: ImageTransport
    extractor: VisionExtractor
    task_store: TaskStore


Handler = Callable[[Any, ToolContext, Principal], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class Tool:
    name: str
    description: str
    args_model: type[_ToolArgs]
    handler: Handler

    def definition(self) -> dict[str, Any]:
        """Function-calling definition handed to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(by_alias=True),
            },
        }


async def authorize_tool_call(tool: str, ctx: ToolContext) -> Principal:
    """Resolve the caller afresh and require it to own the session."""
    principal = await require_principal(ctx.identity)
    if principal.subject != ctx.owner_id:
        logger.warning("Tool call by non-owner rejected", tool=tool, caller=principal.subject)
        raise ToolAuthorizationError(tool=tool)
    return principal


async def _inspect_image(args: InspectImageArgs, ctx: ToolContext, principal: Principal) -> dict[str, Any]:
    image = await ctx.transport.resolve(image_data_url=args.image_data_url, storage_id=args.storage_id)
    analysis = normalize(await ctx.extractor.analyze(image, args.context))
    return {"analysis": analysis}


async def _create_task(args: CreateTaskArgs, ctx: ToolContext, principal: Principal) -> dict[str, Any]:
    task_id = await ctx.task_store.create_task(
        principal,
        TaskCreate(
            text=args.title,
            details=args.details,
            priority=ensure_priority(args.priority),
            status="todo",
            hrs=args.hrs if args.hrs is not None else DEFAULT_TASK_HOURS,
            project_id=args.project_id,
            ref_link=args.ref_link,
        ),
    )
    output: dict[str, Any] = {"taskId": task_id}
    if args.project_id:
        output["projectId"] = args.project_id
    return output


async def _share_task(args: ShareTaskArgs, ctx: ToolContext, principal: Principal) -> Any:
    return await ctx.task_store.share_task_with_collaborators(principal, args.task_id)


TOOLS: dict[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool(
            name=INSPECT_IMAGE,
            description=(
                "Analyze an image (whiteboard, screenshot, sketch) and extract actionable tasks "
                "with estimated hours."
            ),
            args_model=InspectImageArgs,
            handler=_inspect_image,
        ),
        Tool(
            name=CREATE_TASK,
            description="Create a task on behalf of the authenticated user.",
            args_model=CreateTaskArgs,
            handler=_create_task,
        ),
        Tool(
            name=SHARE_TASK,
            description="Share a task with project collaborators.",
            args_model=ShareTaskArgs,
            handler=_share_task,
        ),
    )
}


def tool_definitions() -> list[dict[str, Any]]:
    return [tool.definition() for tool in TOOLS.values()]


def _error_result(call: ToolCallRequest, exc: TaskLensError) -> ToolResult:
    return ToolResult(
        tool=call.name,
        call_id=call.call_id,
        ok=False,
        error_code=exc.code,
        error_message=exc.message,
        error_status=exc.status_code,
    )


async def execute_tool(call: ToolCallRequest, ctx: ToolContext) -> ToolResult:
    """Run one tool call; every failure comes back as an error ToolResult."""
    tool = TOOLS.get(call.name)
    if tool is None:
        logger.warning("Model requested unknown tool", tool=call.name)
        return ToolResult(
            tool=call.name,
            call_id=call.call_id,
            ok=False,
            error_code="tool.unknown",
            error_message=f"Unknown tool: {call.name}",
            error_status=400,
        )

    try:
        args = tool.args_model.model_validate(parse_tool_arguments(call.arguments))
    except PydanticValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        return ToolResult(
            tool=call.name,
            call_id=call.call_id,
            ok=False,
            error_code="tool.invalid_arguments",
            error_message="; ".join(f"{'.'.join(map(str, e['loc'])) or '<root>'}: {e['msg']}" for e in errors),
            error_status=422,
        )

    try:
        principal = await authorize_tool_call(tool.name, ctx)
        output = await tool.handler(args, ctx, principal)
    except TaskLensError as exc:
        logger.info("Tool call failed", tool=tool.name, code=exc.code)
        return _error_result(call, exc)

    if tool.name == INSPECT_IMAGE:
        analysis = output["analysis"]
        return ToolResult(
            tool=tool.name,
            call_id=call.call_id,
            ok=True,
            output=analysis.to_wire(),
            analysis=analysis,
        )

    logger.info("Tool call succeeded", tool=tool.name)
    return ToolResult(tool=tool.name, call_id=call.call_id, ok=True, output=output)
