"""
Pydantic schemas for image analysis output.

`AnalysisResult` and `ExtractedTask` describe one vision-extraction outcome.
The wire shape is camelCase JSON (what the model is asked to emit and what
clients send back when committing tasks); attributes are snake_case.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tasklens.kernel.errors import SchemaValidationError

Priority = Literal["low", "medium", "high"]
ALLOWED_PRIORITIES: frozenset[str] = frozenset({"low", "medium", "high"})
DEFAULT_PRIORITY: Priority = "medium"
MAX_TASKS_PER_ANALYSIS = 8


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """camelCase dict without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ExtractedTask(_WireModel):
    """One candidate unit of work read off an image."""

    id: str | None = Field(default=None, description="Correlation key, synthesized when absent")
    title: str = Field(min_length=1, strict=True, description="Concise task title")
    description: str | None = Field(default=None, strict=True)
    notes: str | None = Field(default=None, strict=True)
    # Raw model output may carry any string here; the normalizer coerces it.
    priority: str | None = Field(default=None, strict=True)
    estimated_hours: float | None = Field(default=None, ge=0, strict=True)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Task title is required")
        return value


class AnalysisResult(_WireModel):
    """One vision-extraction outcome."""

    summary: str = Field(default="", strict=True)
    total_estimated_hours: float | None = Field(default=None, ge=0, strict=True)
    confidence: float | None = Field(default=None, ge=0, le=1, strict=True)
    tasks: list[ExtractedTask] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def exceeds_task_limit(self) -> bool:
        return len(self.tasks) > MAX_TASKS_PER_ANALYSIS

    def task_by_id(self, task_id: str) -> ExtractedTask | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


def _field_path(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc)


def _schema_error(exc: PydanticValidationError) -> SchemaValidationError:
    errors = exc.errors(include_url=False, include_context=False, include_input=False)
    first = errors[0] if errors else {"loc": ()}
    return SchemaValidationError(
        field_path=_field_path(tuple(first.get("loc", ()))),
        errors=[{"loc": _field_path(tuple(e.get("loc", ()))), "msg": e.get("msg", "")} for e in errors],
    )


def validate_analysis(data: Any) -> AnalysisResult:
    """Validate untrusted data (model output or client round-trip) as an AnalysisResult."""
    if isinstance(data, AnalysisResult):
        data = data.to_wire()
    try:
        return AnalysisResult.model_validate(data)
    except PydanticValidationError as exc:
        raise _schema_error(exc) from exc


def validate_task(data: Any) -> ExtractedTask:
    """Validate untrusted data as a single ExtractedTask."""
    if isinstance(data, ExtractedTask):
        data = data.to_wire()
    try:
        return ExtractedTask.model_validate(data)
    except PydanticValidationError as exc:
        raise _schema_error(exc) from exc
