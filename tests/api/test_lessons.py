from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from cohort_engine.models.content import Lesson, Module
from cohort_engine.services.container import ServiceContainer
from tests.conftest import auth, create_test_course

USER = "learner-1"


@pytest.fixture
def lesson(services: ServiceContainer) -> Lesson:
    """Week 1 lesson whose only counted unit is an inline quiz block."""
    course = create_test_course(services, weeks=2)
    services.enrollments.enroll(USER, course.cohort.id)
    module = Module.new(week_id=course.week(1).id, title="Practice", order_index=1)
    lesson = Lesson.new(
        module_id=module.id,
        title="Drill",
        blocks=[
            {"id": "intro", "type": "text", "content": "Warm up"},
            {"id": "check", "type": "quiz", "passing_score": 70, "coin_reward": 15},
        ],
    )
    services.content.add(module)
    services.content.add(lesson)
    return lesson


def _complete_check(client: TestClient, lesson: Lesson, score: float):
    return client.post(
        f"/v1/lessons/{lesson.id}/blocks/check/complete",
        json={"block_type": "quiz", "score_percentage": score},
        headers=auth(),
    )


def test_block_completion_pays_once(client: TestClient, lesson: Lesson) -> None:
    first = _complete_check(client, lesson, 80)
    assert first.status_code == 201
    body = first.json()
    assert (body["attempt_number"], body["passed"], body["coins_awarded"]) == (1, True, 15)
    assert body["lesson_progress"]["percentage"] == 100.0
    assert body["lesson_progress"]["can_complete"] is True

    second = _complete_check(client, lesson, 95).json()
    assert (second["attempt_number"], second["coins_awarded"]) == (2, 0)


def test_failing_score_leaves_lesson_open(client: TestClient, lesson: Lesson) -> None:
    body = _complete_check(client, lesson, 40).json()
    assert body["passed"] is False
    assert body["coins_awarded"] == 0

    progress = client.get(f"/v1/lessons/{lesson.id}/progress", headers=auth()).json()
    assert progress["percentage"] == 0.0
    assert [(u["kind"], u["id"], u["completed"]) for u in progress["units"]] == [
        ("quiz", "check", False)
    ]


def test_wrong_block_type_is_422(client: TestClient, lesson: Lesson) -> None:
    resp = client.post(
        f"/v1/lessons/{lesson.id}/blocks/intro/complete",
        json={"block_type": "video"},
        headers=auth(),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_failed"


def test_lesson_time_is_monotonic(client: TestClient, lesson: Lesson) -> None:
    url = f"/v1/lessons/{lesson.id}/time"
    client.post(url, json={"time_spent_seconds": 300}, headers=auth())
    resp = client.post(url, json={"time_spent_seconds": 100}, headers=auth())
    assert resp.json()["time_spent_seconds"] == 300


def test_module_progress(client: TestClient, lesson: Lesson) -> None:
    _complete_check(client, lesson, 100)
    body = client.get(f"/v1/modules/{lesson.module_id}/progress", headers=auth()).json()
    assert body["percentage"] == 100.0
    assert (body["completed_lessons"], body["total_lessons"]) == (1, 1)
    assert body["lessons"][0]["lesson_id"] == str(lesson.id)


def test_locked_week_lesson_is_403(client: TestClient, services) -> None:
    course = create_test_course(services, weeks=2)
    services.enrollments.enroll(USER, course.cohort.id)
    resp = client.get(f"/v1/lessons/{course.lesson(2).id}/progress", headers=auth())
    assert resp.status_code == 403
    assert resp.json()["error"] == "week_locked"
