"""Topic state machine, time eligibility, and idempotent completion."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from uuid import uuid4

import pytest

from cohort_engine.core.errors import (
    AccessDenied,
    AlreadyCompleted,
    NotEligible,
    ValidationFailed,
    WeekLocked,
)
from cohort_engine.models.ledger import TOPIC_COMPLETION
from cohort_engine.services.container import ServiceContainer, build_services
from tests.conftest import create_test_course

USER = "learner-1"


@pytest.fixture
def course(services: ServiceContainer):
    course = create_test_course(services, weeks=2, topics_per_week=2, coin_reward=10)
    services.enrollments.enroll(USER, course.cohort.id)
    return course


# ---- completion ----


def test_complete_topic_pays_reward_and_updates_lesson(services, course) -> None:
    topic = course.topics_of(1)[0]
    result = services.topics.complete_topic(USER, topic.id)

    assert result.coins_awarded == 10
    assert result.new_balance == 10
    assert result.completion.is_completed
    assert result.completion.completion_percentage == 100.0
    assert result.lesson_progress is not None
    assert result.lesson_progress.percentage == 50.0


def test_complete_topic_twice_is_idempotent(services, course) -> None:
    topic = course.topics_of(1)[0]
    services.topics.complete_topic(USER, topic.id)

    with pytest.raises(AlreadyCompleted) as exc_info:
        services.topics.complete_topic(USER, topic.id)

    assert exc_info.value.existing.topic_id == topic.id
    rows = [c for c in services.db.table("topic_completions").values() if c.user_id == USER]
    assert len(rows) == 1
    txns = services.ledger.list_transactions(USER)
    assert [(t.source, t.source_id) for t in txns] == [(TOPIC_COMPLETION, str(topic.id))]
    assert services.ledger.get_balance(USER) == 10


def test_concurrent_completions_write_one_row_and_one_reward(services, course) -> None:
    topic = course.topics_of(1)[0]

    def complete(_: int) -> bool:
        try:
            services.topics.complete_topic(USER, topic.id)
            return True
        except AlreadyCompleted:
            return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(complete, range(16)))

    assert outcomes.count(True) == 1
    assert len(services.ledger.list_transactions(USER)) == 1
    assert services.ledger.get_balance(USER) == 10


def test_complete_topic_keeps_completion_data(services, course) -> None:
    topic = course.topics_of(1)[0]
    result = services.topics.complete_topic(USER, topic.id, {"source": "video_ended"})
    assert result.completion.completion_data == {"source": "video_ended"}


def test_zero_reward_topic_completes_without_transaction(services) -> None:
    course = create_test_course(services, weeks=1, coin_reward=0)
    services.enrollments.enroll(USER, course.cohort.id)

    result = services.topics.complete_topic(USER, course.topics_of(1)[0].id)
    assert result.coins_awarded == 0
    assert services.ledger.list_transactions(USER) == []


# ---- access ----


def test_complete_topic_in_locked_week_raises(services, course) -> None:
    with pytest.raises(WeekLocked):
        services.topics.complete_topic(USER, course.topics_of(2)[0].id)


def test_complete_topic_without_enrollment_raises(services, course) -> None:
    with pytest.raises(AccessDenied):
        services.topics.complete_topic("stranger", course.topics_of(1)[0].id)


# ---- time eligibility ----


def test_min_time_enforced(services: ServiceContainer) -> None:
    course = create_test_course(services, weeks=1, min_time_seconds=120)
    services.enrollments.enroll(USER, course.cohort.id)
    topic = course.topics_of(1)[0]

    services.topics.update_topic_progress(USER, topic.id, 40, 50, time_spent_seconds=50)
    with pytest.raises(NotEligible, match="70 more second"):
        services.topics.complete_topic(USER, topic.id)

    services.topics.update_topic_progress(USER, topic.id, 100, 125, time_spent_seconds=125)
    assert services.topics.complete_topic(USER, topic.id).completion.is_completed


def test_min_time_not_enforced_when_disabled(services, settings, clock) -> None:
    relaxed = build_services(replace(settings, enforce_topic_min_time=False), clock)
    course = create_test_course(relaxed, weeks=1, min_time_seconds=600)
    relaxed.enrollments.enroll(USER, course.cohort.id)

    result = relaxed.topics.complete_topic(USER, course.topics_of(1)[0].id)
    assert result.completion.is_completed


def test_default_min_time_applies_when_topic_has_none(services, settings) -> None:
    course = create_test_course(services, weeks=1)
    topic = course.topics_of(1)[0]

    unset = replace(topic, min_time_required_seconds=None)
    assert services.topics.min_time_for(unset) == settings.default_topic_min_time_seconds
    assert services.topics.get_time_remaining_for_eligibility(None, unset) == 120


# ---- progress tracking ----


def test_progress_is_clamped_and_times_never_decrease(services, course) -> None:
    topic = course.topics_of(1)[0]
    services.topics.update_topic_progress(USER, topic.id, 150, 90, time_spent_seconds=90)
    row = services.topics.update_topic_progress(USER, topic.id, -5, 30, time_spent_seconds=10)

    assert row.completion_percentage == 0.0
    assert row.last_position_seconds == 90
    assert row.time_spent_seconds == 90


def test_progress_after_completion_is_ignored(services, course) -> None:
    topic = course.topics_of(1)[0]
    services.topics.complete_topic(USER, topic.id)
    row = services.topics.update_topic_progress(USER, topic.id, 10, 5)
    assert row.completion_percentage == 100.0
    assert row.is_completed


def test_negative_times_rejected(services, course) -> None:
    with pytest.raises(ValidationFailed):
        services.topics.update_topic_progress(USER, course.topics_of(1)[0].id, 10, -1)


def test_start_topic_is_idempotent(services, course, clock) -> None:
    topic = course.topics_of(1)[0]
    first = services.topics.start_topic(USER, topic.id)
    clock.advance(300)
    again = services.topics.start_topic(USER, topic.id)
    assert again.id == first.id
    assert again.started_at == first.started_at


# ---- navigation ----


def test_next_item_is_following_topic_in_lesson(services, course) -> None:
    first, second = course.topics_of(1)
    assert services.topics.get_next_item(first).id == second.id
    assert services.topics.get_next_item(second) is None


# ---- staff ----


def test_bulk_complete_skips_min_time(services: ServiceContainer) -> None:
    course = create_test_course(services, weeks=2, min_time_seconds=600, coin_reward=10)
    services.enrollments.enroll(USER, course.cohort.id)
    first, second = course.topics_of(1)
    locked = course.topics_of(2)[0]
    services.topics.complete_topic(USER, first.id, enforce_min_time=False)

    outcomes = services.topics.bulk_complete_topics(
        USER, [locked.id, first.id, second.id], actor="admin-1"
    )

    assert outcomes[first.id].already_completed and outcomes[first.id].success
    assert (outcomes[second.id].success, outcomes[second.id].coins_awarded) == (True, 10)
    assert not outcomes[locked.id].success
    assert outcomes[locked.id].error == "week_locked"
    assert services.topics.get_completion(USER, second.id).completion_data == {
        "completed_by": "admin-1"
    }
    assert services.ledger.get_balance(USER) == 20


def test_bulk_complete_unknown_topic_is_reported(services, course) -> None:
    missing = uuid4()
    outcomes = services.topics.bulk_complete_topics(USER, [missing], actor="admin-1")
    assert (outcomes[missing].success, outcomes[missing].error) == (False, "not_found")


def test_topic_statistics(services, course, clock) -> None:
    topic = course.topics_of(1)[0]
    for user_id in ("learner-2", "learner-3", "learner-4"):
        services.enrollments.enroll(user_id, course.cohort.id)
    services.enrollments.withdraw("learner-4", course.cohort.id)

    services.topics.update_topic_progress(USER, topic.id, 100, 0, time_spent_seconds=300)
    services.topics.complete_topic(USER, topic.id)
    services.topics.update_topic_progress("learner-2", topic.id, 100, 0, time_spent_seconds=100)
    services.topics.complete_topic("learner-2", topic.id)
    # Started but not finished
    services.topics.start_topic("learner-3", topic.id)

    stats = services.topics.get_topic_statistics(topic.id)

    assert (stats.total_completions, stats.total_students) == (2, 3)
    assert stats.completion_rate == 66.67
    assert stats.average_time_spent_seconds == 200.0
    assert stats.coins_distributed == 20


def test_statistics_for_unstarted_topic(services, course) -> None:
    stats = services.topics.get_topic_statistics(course.topics_of(1)[1].id)
    assert (stats.total_completions, stats.completion_rate) == (0, 0.0)
    assert stats.average_time_spent_seconds is None
