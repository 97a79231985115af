"""Enrollment lifecycle and cohort completion."""

from __future__ import annotations

import pytest

from cohort_engine.core.errors import AccessDenied, InvalidStateTransition, ValidationFailed
from cohort_engine.models.content import Cohort
from cohort_engine.models.ledger import COHORT_COMPLETION, TOPIC_COMPLETION
from cohort_engine.services.container import ServiceContainer
from tests.conftest import create_test_course

USER = "learner-1"


def test_enroll_opens_first_week_only(services: ServiceContainer) -> None:
    course = create_test_course(services, weeks=3)
    enrollment = services.enrollments.enroll(USER, course.cohort.id)

    assert enrollment.status == "active"
    rows = [services.weeks.get_week_progress(USER, w.id) for w in course.weeks]
    assert [r.is_unlocked for r in rows] == [True, False, False]
    assert services.enrollments.active_cohort_for(USER) == course.cohort.id


def test_double_enroll_is_rejected(services: ServiceContainer) -> None:
    course = create_test_course(services)
    services.enrollments.enroll(USER, course.cohort.id)
    with pytest.raises(ValidationFailed):
        services.enrollments.enroll(USER, course.cohort.id)


def test_withdraw_then_reenroll_keeps_progress(services: ServiceContainer) -> None:
    course = create_test_course(services, weeks=2)
    services.enrollments.enroll(USER, course.cohort.id)
    services.topics.complete_topic(USER, course.topics_of(1)[0].id)

    withdrawn = services.enrollments.withdraw(USER, course.cohort.id)
    assert withdrawn.status == "withdrawn"
    assert services.enrollments.active_cohort_for(USER) is None
    with pytest.raises(AccessDenied):
        services.topics.complete_topic(USER, course.topics_of(1)[1].id)

    again = services.enrollments.enroll(USER, course.cohort.id)
    assert again.id == withdrawn.id
    assert again.status == "active"
    assert services.ledger.get_balance(USER) == 10
    services.topics.complete_topic(USER, course.topics_of(1)[1].id)


def test_withdraw_twice_is_invalid(services: ServiceContainer) -> None:
    course = create_test_course(services)
    services.enrollments.enroll(USER, course.cohort.id)
    services.enrollments.withdraw(USER, course.cohort.id)
    with pytest.raises(InvalidStateTransition):
        services.enrollments.withdraw(USER, course.cohort.id)


def test_get_enrollment_without_one_raises(services: ServiceContainer) -> None:
    course = create_test_course(services)
    with pytest.raises(ValidationFailed):
        services.enrollments.get_enrollment(USER, course.cohort.id)


def test_finishing_every_week_completes_enrollment_once(
    services: ServiceContainer, settings
) -> None:
    course = create_test_course(services, weeks=2, topics_per_week=1, coin_reward=10)
    services.enrollments.enroll(USER, course.cohort.id)

    services.topics.complete_topic(USER, course.topics_of(1)[0].id)
    assert services.enrollments.get_enrollment(USER, course.cohort.id).completion_percentage == 50.0

    services.topics.complete_topic(USER, course.topics_of(2)[0].id)
    enrollment = services.enrollments.get_enrollment(USER, course.cohort.id)
    assert enrollment.status == "completed"
    assert enrollment.completion_percentage == 100.0

    # A later recalculation must not pay the bonus again
    services.enrollments.recalculate_enrollment(USER, course.cohort.id)
    assert services.ledger.earnings_by_source(USER) == {
        TOPIC_COMPLETION: 20,
        COHORT_COMPLETION: settings.cohort_completion_bonus,
    }


def test_cohort_without_weeks_stays_at_zero(services: ServiceContainer) -> None:
    cohort = Cohort.new(name="Empty")
    services.content.add(cohort)
    services.enrollments.enroll(USER, cohort.id)

    enrollment = services.enrollments.recalculate_enrollment(USER, cohort.id)
    assert enrollment is not None
    assert enrollment.completion_percentage == 0.0
    assert enrollment.status == "active"


# ---- staff ----


def test_cohort_stats(services: ServiceContainer) -> None:
    course = create_test_course(services, weeks=1, topics_per_week=2)
    for user_id in (USER, "learner-2", "learner-3", "learner-4"):
        services.enrollments.enroll(user_id, course.cohort.id)
    for topic in course.topics_of(1):
        services.topics.complete_topic(USER, topic.id)
    services.topics.complete_topic("learner-2", course.topics_of(1)[0].id)
    services.enrollments.withdraw("learner-4", course.cohort.id)

    stats = services.enrollments.get_cohort_stats(course.cohort.id)

    assert stats.total_enrolled == 4
    assert (stats.active_students, stats.completed_students, stats.withdrawn_students) == (2, 1, 1)
    assert stats.completion_rate == 25.0
    # learner-2 at 50%, learner-3 at 0%
    assert stats.average_progress == 25.0


def test_stats_for_empty_cohort(services: ServiceContainer) -> None:
    cohort = Cohort.new(name="Empty")
    services.content.add(cohort)
    stats = services.enrollments.get_cohort_stats(cohort.id)
    assert (stats.total_enrolled, stats.completion_rate, stats.average_progress) == (0, 0.0, 0.0)
