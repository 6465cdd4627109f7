from __future__ import annotations

import pytest

from tasklens.extraction.schemas import AnalysisResult, ExtractedTask, validate_analysis, validate_task
from tasklens.kernel.errors import SchemaValidationError


@pytest.mark.unit
def test_validate_analysis_accepts_camel_case_wire_shape():
    analysis = validate_analysis(
        {
            "summary": "Sprint board",
            "totalEstimatedHours": 6,
            "confidence": 0.8,
            "tasks": [{"id": "t1", "title": "Ship login", "estimatedHours": 2.5, "priority": "HIGH"}],
        }
    )
    assert analysis.total_estimated_hours == 6
    assert analysis.tasks[0].estimated_hours == 2.5
    # Raw priority is preserved until normalization.
    assert analysis.tasks[0].priority == "HIGH"


@pytest.mark.unit
def test_defaults_for_missing_summary_and_tasks():
    analysis = validate_analysis({"summary": None})
    assert analysis.summary == ""
    assert analysis.tasks == []


@pytest.mark.unit
@pytest.mark.parametrize(
    ("payload", "field_path"),
    [
        ({"confidence": 1.5}, "confidence"),
        ({"totalEstimatedHours": -1}, "totalEstimatedHours"),
        ({"tasks": [{"title": ""}]}, "tasks.0.title"),
        ({"tasks": [{"title": "ok"}, {"title": "   "}]}, "tasks.1.title"),
        ({"tasks": [{"title": "ok", "estimatedHours": -0.5}]}, "tasks.0.estimatedHours"),
        ({"tasks": [{"title": 42}]}, "tasks.0.title"),
        ({"tasks": "not a list"}, "tasks"),
    ],
)
def test_out_of_bound_values_fail_with_field_path(payload, field_path):
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_analysis(payload)
    assert excinfo.value.field_path == field_path


@pytest.mark.unit
def test_non_object_payload_is_rejected():
    with pytest.raises(SchemaValidationError):
        validate_analysis(["not", "an", "object"])


@pytest.mark.unit
def test_excess_tasks_are_flagged_not_rejected():
    analysis = validate_analysis({"tasks": [{"title": f"Task {i}"} for i in range(10)]})
    assert len(analysis.tasks) == 10
    assert analysis.exceeds_task_limit


@pytest.mark.unit
def test_to_wire_omits_unset_fields():
    task = ExtractedTask(title="Write docs")
    assert task.to_wire() == {"title": "Write docs"}


@pytest.mark.unit
def test_validate_accepts_model_instances():
    analysis = AnalysisResult(summary="x", tasks=[ExtractedTask(id="a", title="A")])
    assert validate_analysis(analysis) == analysis
    assert validate_task(analysis.tasks[0]).id == "a"


@pytest.mark.unit
def test_task_by_id():
    analysis = validate_analysis({"tasks": [{"id": "a", "title": "A"}, {"id": "b", "title": "B"}]})
    assert analysis.task_by_id("b").title == "B"
    assert analysis.task_by_id("zzz") is None
