from __future__ import annotations

import json

import pytest

from tasklens.auth.identity import Principal
from tasklens.extraction.schemas import validate_analysis, validate_task
from tasklens.kernel.errors import (
    NoTasksSelectedError,
    PartialMaterializationError,
    SchemaValidationError,
    TaskStoreError,
)
from tasklens.materialize.materializer import (
    MaterializeDefaults,
    TaskMaterializer,
    build_provenance,
    build_task_details,
)
from tasklens.tasks.store import InMemoryTaskStore
from tests.support.clock import FakeClock
from tests.support.tasks import FlakyTaskStore

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]

PRINCIPAL = Principal(subject="user_1")

FIVE_TASKS = {
    "summary": "Sprint plan",
    "confidence": 0.8,
    "totalEstimatedHours": 12,
    "tasks": [
        {"id": "a", "title": "A", "priority": "high", "estimatedHours": 3},
        {"id": "b", "title": "B"},
        {"id": "c", "title": "C", "priority": "garbage"},
        {"id": "d", "title": "D", "estimatedHours": 0.5},
        {"id": "e", "title": "E"},
    ],
}


def _requests(store: InMemoryTaskStore) -> list:
    return [stored.request for stored in store.tasks.values()]


async def test_empty_selection_creates_nothing():
    store = InMemoryTaskStore()
    with pytest.raises(NoTasksSelectedError):
        await TaskMaterializer(store).commit_selected(PRINCIPAL, FIVE_TASKS, ["zzz", ""])
    assert store.tasks == {}


async def test_three_of_five_with_fallbacks():
    store = InMemoryTaskStore()
    result = await TaskMaterializer(store).commit_selected(
        PRINCIPAL,
        FIVE_TASKS,
        ["b", "c", "a"],
        defaults=MaterializeDefaults.of("low", 4),
    )

    assert result.count == 3
    assert len(result.task_ids) == 3
    requests = _requests(store)
    # Analysis order, not selection order.
    assert [r.text for r in requests] == ["A", "B", "C"]
    assert [r.priority for r in requests] == ["high", "low", "low"]
    assert [r.hrs for r in requests] == [3, 4, 4]
    assert all(r.status == "todo" for r in requests)


async def test_whiteboard_scenario():
    analysis = {
        "summary": "whiteboard plan",
        "tasks": [
            {"id": "t1", "title": "Design API", "priority": "high"},
            {"id": "t2", "title": "Write tests"},
        ],
    }
    store = InMemoryTaskStore()
    result = await TaskMaterializer(store).commit_selected(
        PRINCIPAL,
        analysis,
        ["t1", "t2"],
        defaults=MaterializeDefaults.of("low", 2),
    )

    assert result.to_public_dict()["count"] == 2
    t1, t2 = _requests(store)
    assert (t1.text, t1.priority) == ("Design API", "high")
    assert (t2.text, t2.priority, t2.hrs) == ("Write tests", "low", 2)


async def test_default_fallbacks_are_medium_and_one_hour():
    store = InMemoryTaskStore()
    await TaskMaterializer(store).commit_selected(PRINCIPAL, FIVE_TASKS, ["e"])
    (request,) = _requests(store)
    assert request.priority == "medium"
    assert request.hrs == 1


async def test_partial_failure_keeps_earlier_commits():
    store = FlakyTaskStore(fail_on_call=3)
    with pytest.raises(PartialMaterializationError) as excinfo:
        await TaskMaterializer(store).commit_selected(PRINCIPAL, FIVE_TASKS, ["a", "b", "c", "d", "e"])

    err = excinfo.value
    assert err.meta["count"] == 2
    assert err.meta["requested"] == 5
    assert err.task_ids == list(store.inner.tasks.keys())
    assert isinstance(err.cause, TaskStoreError)
    # Creation stopped at the failing task.
    assert store.create_calls == 3


async def test_first_failure_surfaces_original_error():
    store = FlakyTaskStore(fail_on_call=1)
    with pytest.raises(TaskStoreError):
        await TaskMaterializer(store).commit_selected(PRINCIPAL, FIVE_TASKS, ["a", "b"])
    assert store.inner.tasks == {}


async def test_round_tripped_analysis_is_revalidated():
    tampered = {**FIVE_TASKS, "confidence": 7}
    store = InMemoryTaskStore()
    with pytest.raises(SchemaValidationError) as excinfo:
        await TaskMaterializer(store).commit_selected(PRINCIPAL, tampered, ["a"])
    assert excinfo.value.field_path == "confidence"
    assert store.tasks == {}


async def test_single_commit_validates_task_and_attaches_provenance():
    clock = FakeClock.fixed()
    store = InMemoryTaskStore()
    materializer = TaskMaterializer(store, clock=clock.now)

    task_id = await materializer.commit_single(
        PRINCIPAL,
        FIVE_TASKS,
        {"title": "Loose task", "description": "  Write it  ", "notes": " soon "},
        project_id="proj_9",
        defaults=MaterializeDefaults.of("high", 5),
    )

    request = store.tasks[task_id].request
    assert request.priority == "high"
    assert request.hrs == 5
    assert request.project_id == "proj_9"
    assert request.details == "Write it\n\nNotes: soon\n\nGenerated via image analysis"

    provenance = json.loads(request.analysis_data)
    assert list(provenance) == [
        "source",
        "generatedAt",
        "sourceTaskId",
        "projectId",
        "summary",
        "confidence",
        "totalEstimatedHours",
        "tasks",
    ]
    assert provenance["source"] == "image-analysis"
    assert provenance["generatedAt"] == int(clock.now().timestamp() * 1000)
    # Task had no id, so a fresh one was synthesized.
    assert len(provenance["sourceTaskId"]) == 32
    assert provenance["tasks"][0] == {"id": "a", "title": "A", "priority": "high", "estimatedHours": 3}


async def test_single_commit_rejects_invalid_task():
    with pytest.raises(SchemaValidationError) as excinfo:
        await TaskMaterializer(InMemoryTaskStore()).commit_single(PRINCIPAL, FIVE_TASKS, {"title": ""})
    assert excinfo.value.field_path == "title"


async def test_build_task_details_minimal():
    assert build_task_details(validate_task({"title": "x"})) == "Generated via image analysis"


async def test_provenance_without_project_or_optional_numbers():
    analysis = validate_analysis({"tasks": [{"id": "t1", "title": "A"}]})
    record = json.loads(build_provenance(analysis, "t1"))
    assert "projectId" not in record
    assert record["confidence"] is None
    assert record["totalEstimatedHours"] is None
    assert record["summary"] == ""
