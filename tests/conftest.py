from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, replace

import pytest
from fastapi.testclient import TestClient

from cohort_engine.api.dependencies import get_services
from cohort_engine.core.clock import FixedClock
from cohort_engine.core.config import SETTINGS, Settings
from cohort_engine.main import app
from cohort_engine.models.content import (
    Cohort,
    Lesson,
    Module,
    Quiz,
    QuizQuestion,
    Topic,
    UnlockRules,
    Week,
)
from cohort_engine.services import token_service
from cohort_engine.services.cache import cache_service
from cohort_engine.services.container import ServiceContainer, build_services


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Leaderboard pages must not bleed between tests."""
    if hasattr(cache_service, "clear"):
        cache_service.clear()  # type: ignore[union-attr]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings() -> Settings:
    return replace(SETTINGS, app_env="test", database_url=None)


@pytest.fixture
def services(settings: Settings, clock: FixedClock) -> ServiceContainer:
    """A fresh engine per test: empty store, empty content, frozen time."""
    return build_services(settings, clock)


@pytest.fixture
def client(services: ServiceContainer) -> Iterator[TestClient]:
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.pop(get_services, None)


def mint_token(
    user_id: str = "learner-1",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing.  Roles default to student."""
    return token_service.create_access_token(sub=user_id, roles=roles)


def auth(user_id: str = "learner-1", roles: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, roles)}"}


@pytest.fixture
def token() -> str:
    return mint_token()


@pytest.fixture
def instructor_token() -> str:
    return mint_token("instructor-1", roles=["instructor"])


# ---------------------------------------------------------------------------
# Content fixtures
# ---------------------------------------------------------------------------


@dataclass
class CourseFixture:
    """A cohort with one module and one lesson per week."""

    cohort: Cohort
    weeks: list[Week]
    modules: list[Module]
    lessons: list[Lesson]
    topics: list[list[Topic]] = field(default_factory=list)

    def week(self, number: int) -> Week:
        return self.weeks[number - 1]

    def lesson(self, number: int) -> Lesson:
        return self.lessons[number - 1]

    def topics_of(self, number: int) -> list[Topic]:
        return self.topics[number - 1]


def create_test_course(
    services: ServiceContainer,
    *,
    weeks: int = 2,
    topics_per_week: int = 2,
    coin_reward: int = 10,
    min_time_seconds: int = 0,
    unlock_rules: UnlockRules | None = None,
    start_date: int | None = None,
) -> CourseFixture:
    """Load a small course into the in-memory content repo.

    Every week after the first gets ``unlock_rules`` (default: sequential,
    with the 90% default progress threshold).
    """
    content = services.content
    cohort = Cohort.new(name="Spring Cohort", start_date=start_date)
    content.add(cohort)

    course = CourseFixture(cohort=cohort, weeks=[], modules=[], lessons=[])
    for number in range(1, weeks + 1):
        week = Week.new(
            cohort_id=cohort.id,
            week_number=number,
            unlock_rules=unlock_rules if number > 1 else None,
        )
        module = Module.new(week_id=week.id, title=f"Module {number}")
        lesson = Lesson.new(module_id=module.id, title=f"Lesson {number}")
        topics = [
            Topic.new(
                lesson_id=lesson.id,
                title=f"Topic {number}.{i}",
                order_index=i,
                min_time_required_seconds=min_time_seconds,
                coin_reward=coin_reward,
            )
            for i in range(1, topics_per_week + 1)
        ]
        for row in (week, module, lesson, *topics):
            content.add(row)
        course.weeks.append(week)
        course.modules.append(module)
        course.lessons.append(lesson)
        course.topics.append(topics)
    return course


def create_test_quiz(
    services: ServiceContainer,
    week: Week,
    *,
    questions: int = 2,
    **quiz_fields,
) -> tuple[Quiz, list[QuizQuestion]]:
    """Standalone week quiz of true/false questions whose answer is True."""
    quiz = Quiz.new(week_id=week.id, title="Checkpoint", **quiz_fields)
    services.content.add(quiz)
    rows = [
        QuizQuestion.new(
            quiz_id=quiz.id,
            type="true_false",
            prompt=f"Statement {i}",
            correct_answers=["true"],
            explanation=f"Statement {i} holds",
            order_index=i,
        )
        for i in range(1, questions + 1)
    ]
    for row in rows:
        services.content.add(row)
    return quiz, rows
