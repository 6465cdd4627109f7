"""Task materialization."""

from .materializer import (
    CommitResult,
    MaterializeDefaults,
    TaskMaterializer,
    build_provenance,
    build_task_details,
)

__all__ = [
    "CommitResult",
    "MaterializeDefaults",
    "TaskMaterializer",
    "build_provenance",
    "build_task_details",
]
