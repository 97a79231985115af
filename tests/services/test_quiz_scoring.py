"""Quiz attempts: limits, resume, expiry, grading and rewards."""

from __future__ import annotations

from uuid import uuid4

import pytest
from prometheus_client import REGISTRY

from cohort_engine.core.errors import (
    AlreadyCompleted,
    AttemptNotFound,
    MaxAttemptsReached,
    WeekLocked,
)
from cohort_engine.models.content import QuizQuestion
from cohort_engine.models.ledger import QUIZ_ATTEMPT
from cohort_engine.services.container import ServiceContainer
from cohort_engine.services.quiz_scoring import feedback_for, grade_answers
from tests.conftest import create_test_course, create_test_quiz

USER = "learner-1"


@pytest.fixture
def course(services: ServiceContainer):
    course = create_test_course(services, weeks=2)
    services.enrollments.enroll(USER, course.cohort.id)
    return course


def _answers(questions, *values) -> dict[str, object]:
    return {str(q.id): v for q, v in zip(questions, values)}


def _take(services: ServiceContainer, quiz, answers):
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)
    return services.quizzes.submit_quiz_attempt(USER, started.attempt.id, answers)


# ---- grading ----


def test_half_right_does_not_pass_at_70(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), coin_reward=25)
    submission = _take(services, quiz, _answers(questions, True, False))

    attempt = submission.attempt
    assert (attempt.score, attempt.total_points, attempt.percentage) == (1, 2, 50.0)
    assert not attempt.passed
    assert submission.coins_awarded == 0
    assert submission.feedback == "Keep studying and try again."


def test_passing_attempt_pays_reward_keyed_by_attempt(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), coin_reward=25)
    submission = _take(services, quiz, _answers(questions, "True", "true"))

    assert submission.attempt.passed
    assert submission.coins_awarded == 25
    assert submission.new_balance == 25
    txn = services.ledger.list_transactions(USER)[0]
    assert (txn.source, txn.source_id) == (QUIZ_ATTEMPT, str(submission.attempt.id))


def test_multiple_choice_list_must_match_exact_set() -> None:
    quiz_id = uuid4()
    question = QuizQuestion.new(
        quiz_id=quiz_id,
        type="multiple_choice",
        prompt="Pick the primes",
        options=["a", "b", "c"],
        correct_answers=["a", "c"],
    )
    key = str(question.id)

    assert grade_answers([question], {key: ["c", "a"]}).percentage == 100.0
    assert grade_answers([question], {key: ["a"]}).percentage == 0.0
    assert grade_answers([question], {key: ["a", "b", "c"]}).percentage == 0.0
    assert grade_answers([question], {key: []}).percentage == 0.0
    assert grade_answers([question], {}).percentage == 0.0


def test_free_text_scores_zero_and_waits_for_review(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), questions=1)
    essay = QuizQuestion.new(quiz_id=quiz.id, type="essay", prompt="Explain", order_index=9)
    services.content.add(essay)

    submission = _take(
        services, quiz, {str(questions[0].id): True, str(essay.id): "A long answer"}
    )
    results = {r.question_id: r for r in submission.attempt.question_results}
    assert results[essay.id].pending_review
    assert results[essay.id].points_awarded == 0
    assert submission.attempt.percentage == 50.0


def test_weighted_points(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), questions=1)
    heavy = QuizQuestion.new(
        quiz_id=quiz.id, type="true_false", prompt="Heavy", correct_answers=["false"], points=3
    )
    services.content.add(heavy)

    submission = _take(services, quiz, {str(questions[0].id): False, str(heavy.id): False})
    assert (submission.attempt.score, submission.attempt.total_points) == (3, 4)
    assert submission.attempt.percentage == 75.0
    assert submission.attempt.passed


@pytest.mark.parametrize(
    ("percentage", "expected"),
    [
        (95.0, "Excellent work!"),
        (75.0, "Good job, you passed."),
        (62.0, "So close. Review the material and try again."),
        (10.0, "Keep studying and try again."),
    ],
)
def test_feedback_bands(percentage: float, expected: str) -> None:
    assert feedback_for(percentage, 70) == expected


# ---- attempt limits ----


def test_fourth_attempt_is_refused_when_limit_is_three(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), max_attempts=3)
    for _ in range(3):
        submission = _take(services, quiz, _answers(questions, False, False))
    assert submission.remaining_attempts == 0

    with pytest.raises(MaxAttemptsReached):
        services.quizzes.start_quiz_attempt(USER, quiz.id)
    assert len(services.quizzes.list_attempts(USER, quiz.id)) == 3


def test_start_resumes_open_attempt(services, course) -> None:
    quiz, _ = create_test_quiz(services, course.week(1), max_attempts=2)
    first = services.quizzes.start_quiz_attempt(USER, quiz.id)
    again = services.quizzes.start_quiz_attempt(USER, quiz.id)

    assert not first.resumed and again.resumed
    assert again.attempt.id == first.attempt.id
    assert again.remaining_attempts == 1


def test_passed_quiz_cannot_be_restarted(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), coin_reward=25)
    _take(services, quiz, _answers(questions, True, True))

    with pytest.raises(AlreadyCompleted):
        services.quizzes.start_quiz_attempt(USER, quiz.id)
    assert services.ledger.get_balance(USER) == 25


def test_coins_only_for_first_pass_after_failures(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), coin_reward=25)
    _take(services, quiz, _answers(questions, False, False))
    passed = _take(services, quiz, _answers(questions, True, True))

    assert passed.attempt.attempt_number == 2
    assert passed.coins_awarded == 25
    assert services.ledger.earnings_by_source(USER) == {QUIZ_ATTEMPT: 25}


def test_submitting_twice_is_refused(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1))
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)
    services.quizzes.submit_quiz_attempt(USER, started.attempt.id, _answers(questions, True, True))

    with pytest.raises(AlreadyCompleted):
        services.quizzes.submit_quiz_attempt(USER, started.attempt.id, {})


def test_other_learners_attempt_is_not_found(services, course) -> None:
    quiz, _ = create_test_quiz(services, course.week(1))
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)

    with pytest.raises(AttemptNotFound):
        services.quizzes.submit_quiz_attempt("learner-2", started.attempt.id, {})


def test_quiz_in_locked_week_cannot_start(services, course) -> None:
    quiz, _ = create_test_quiz(services, course.week(2))
    with pytest.raises(WeekLocked):
        services.quizzes.start_quiz_attempt(USER, quiz.id)


# ---- timing ----


def test_late_submission_grades_saved_answers(services, course, clock) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), time_limit_seconds=600)
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)
    services.quizzes.save_answers(USER, started.attempt.id, _answers(questions, True, False))

    clock.advance(600 + services.settings.quiz_submit_grace_seconds + 1)
    submission = services.quizzes.submit_quiz_attempt(
        USER, started.attempt.id, _answers(questions, True, True)
    )

    assert submission.attempt.auto_submitted
    assert submission.attempt.percentage == 50.0


def test_submission_within_grace_is_on_time(services, course, clock) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), time_limit_seconds=600)
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)

    clock.advance(600 + services.settings.quiz_submit_grace_seconds)
    submission = services.quizzes.submit_quiz_attempt(
        USER, started.attempt.id, _answers(questions, True, True)
    )
    assert not submission.attempt.auto_submitted
    assert submission.attempt.passed


def test_answers_after_expiry_are_not_saved(services, course, clock) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), time_limit_seconds=60)
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)
    services.quizzes.save_answers(USER, started.attempt.id, _answers(questions, True))

    clock.advance(61)
    attempt = services.quizzes.save_answers(USER, started.attempt.id, _answers(questions, True, True))
    assert attempt.answers == {str(questions[0].id): True}


def test_overdue_attempt_finalized_on_next_start(services, course, clock) -> None:
    quiz, _ = create_test_quiz(services, course.week(1), time_limit_seconds=60, max_attempts=3)
    first = services.quizzes.start_quiz_attempt(USER, quiz.id)

    clock.advance(3600)
    second = services.quizzes.start_quiz_attempt(USER, quiz.id)

    assert not second.resumed
    assert second.attempt.attempt_number == 2
    history = {a.id: a for a in services.quizzes.list_attempts(USER, quiz.id)}
    assert history[first.attempt.id].auto_submitted
    assert not history[first.attempt.id].is_open


# ---- presentation ----


def test_randomized_order_is_stable_per_attempt(services, course) -> None:
    quiz, _ = create_test_quiz(services, course.week(1), questions=8, is_randomized=True)
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)
    resumed = services.quizzes.start_quiz_attempt(USER, quiz.id)

    assert [q.id for q in started.questions] == [q.id for q in resumed.questions]
    assert len(started.questions) == 8


def test_public_questions_hide_answer_key(services, course) -> None:
    quiz, _ = create_test_quiz(services, course.week(1))
    started = services.quizzes.start_quiz_attempt(USER, quiz.id)
    assert not hasattr(started.questions[0], "correct_answers")


def test_review_only_when_quiz_shows_answers(services, course) -> None:
    hidden, hidden_qs = create_test_quiz(services, course.week(1))
    shown, shown_qs = create_test_quiz(services, course.week(1), show_correct_answers=True)

    assert _take(services, hidden, _answers(hidden_qs, False, False)).review == ()
    review = _take(services, shown, _answers(shown_qs, True, False)).review
    assert [r.correct for r in review] == [True, False]
    assert review[1].correct_answers == ("true",)
    assert review[1].explanation == "Statement 2 holds"


# ---- reads ----


def test_best_attempt_prefers_highest_then_earliest(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), passing_score=100)
    _take(services, quiz, _answers(questions, True, False))
    _take(services, quiz, _answers(questions, False, True))
    _take(services, quiz, _answers(questions, False, False))

    best = services.quizzes.get_best_attempt(USER, quiz.id)
    assert best is not None
    assert (best.attempt_number, best.percentage) == (1, 50.0)
    assert services.quizzes.get_remaining_attempts(USER, quiz.id) is None


def test_grading_counts_metric(services, course) -> None:
    labels = {"outcome": "failed"}
    before = REGISTRY.get_sample_value("engine_quiz_attempts_graded_total", labels) or 0.0
    quiz, questions = create_test_quiz(services, course.week(1))
    _take(services, quiz, _answers(questions, False, False))
    after = REGISTRY.get_sample_value("engine_quiz_attempts_graded_total", labels) or 0.0
    assert after - before == 1


# ---- staff ----


def test_reset_frees_the_attempt_limit(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), max_attempts=1)
    _take(services, quiz, _answers(questions, False, False))

    assert services.quizzes.reset_user_attempts(USER, quiz.id, actor="admin-1") == 1
    assert services.quizzes.list_attempts(USER, quiz.id) == []
    assert services.quizzes.get_remaining_attempts(USER, quiz.id) == 1
    assert services.quizzes.start_quiz_attempt(USER, quiz.id).attempt.attempt_number == 1


def test_reset_leaves_other_learners_alone(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1))
    services.enrollments.enroll("learner-2", course.cohort.id)
    _take(services, quiz, _answers(questions, False, False))
    other = services.quizzes.start_quiz_attempt("learner-2", quiz.id)

    services.quizzes.reset_user_attempts(USER, quiz.id, actor="admin-1")

    assert [a.id for a in services.quizzes.list_attempts("learner-2", quiz.id)] == [
        other.attempt.id
    ]


def test_pass_after_reset_is_not_paid_again(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1), coin_reward=25)
    _take(services, quiz, _answers(questions, True, True))
    services.quizzes.reset_user_attempts(USER, quiz.id, actor="admin-1")

    again = _take(services, quiz, _answers(questions, True, True))

    assert again.attempt.passed
    assert again.coins_awarded == 0
    assert services.ledger.get_balance(USER) == 25


def test_quiz_statistics(services, course) -> None:
    quiz, questions = create_test_quiz(services, course.week(1))
    services.enrollments.enroll("learner-2", course.cohort.id)
    _take(services, quiz, _answers(questions, False, False))
    _take(services, quiz, _answers(questions, True, True))
    started = services.quizzes.start_quiz_attempt("learner-2", quiz.id)
    services.quizzes.submit_quiz_attempt(
        "learner-2", started.attempt.id, _answers(questions, True, False)
    )
    # Open attempts are not counted
    services.enrollments.enroll("learner-3", course.cohort.id)
    services.quizzes.start_quiz_attempt("learner-3", quiz.id)

    stats = services.quizzes.get_quiz_statistics(quiz.id)

    assert (stats.total_attempts, stats.passed_attempts, stats.unique_users) == (3, 1, 2)
    assert stats.pass_rate == 33.33
    assert stats.average_score == 50.0
    assert stats.score_distribution == {
        "0-20": 1, "21-40": 0, "41-60": 1, "61-80": 0, "81-100": 1
    }


def test_statistics_for_untaken_quiz_are_zero(services, course) -> None:
    quiz, _ = create_test_quiz(services, course.week(1))
    stats = services.quizzes.get_quiz_statistics(quiz.id)
    assert (stats.total_attempts, stats.pass_rate, stats.average_score) == (0, 0.0, 0.0)
