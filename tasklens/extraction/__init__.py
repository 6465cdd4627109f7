"""Extraction schema and normalizer."""

from .normalizer import ensure_priority, normalize
from .schemas import (
    DEFAULT_PRIORITY,
    MAX_TASKS_PER_ANALYSIS,
    AnalysisResult,
    ExtractedTask,
    Priority,
    validate_analysis,
    validate_task,
)

__all__ = [
    "DEFAULT_PRIORITY",
    "MAX_TASKS_PER_ANALYSIS",
    "AnalysisResult",
    "ExtractedTask",
    "Priority",
    "ensure_priority",
    "normalize",
    "validate_analysis",
    "validate_task",
]
