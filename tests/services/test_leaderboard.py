"""Leaderboard ranks and levels."""

from __future__ import annotations

import pytest

from cohort_engine.models.ledger import TOPIC_COMPLETION
from cohort_engine.services.container import ServiceContainer
from tests.conftest import create_test_course


def _earn(services: ServiceContainer, user_id: str, amount: int, key: str = "t-1") -> None:
    services.ledger.award(user_id, amount, TOPIC_COMPLETION, key, reason="r")


def test_ties_share_rank_and_are_ordered_by_user_id(services: ServiceContainer) -> None:
    _earn(services, "carol", 50)
    _earn(services, "bob", 100)
    _earn(services, "alice", 100)
    _earn(services, "dave", 10)

    board = services.leaderboard.get_leaderboard(limit=10)
    assert [(e.rank, e.user_id) for e in board] == [
        (1, "alice"),
        (1, "bob"),
        (3, "carol"),
        (4, "dave"),
    ]


def test_limit_truncates_but_ranks_stay_global(services: ServiceContainer) -> None:
    for i, amount in enumerate([30, 20, 10]):
        _earn(services, f"u{i}", amount)

    board = services.leaderboard.get_leaderboard(limit=2)
    assert [e.user_id for e in board] == ["u0", "u1"]
    assert services.leaderboard.get_user_rank("u2").rank == 3


def test_user_without_transactions_ranks_last(services: ServiceContainer) -> None:
    _earn(services, "a", 5)
    entry = services.leaderboard.get_user_rank("nobody")
    assert (entry.rank, entry.balance, entry.level) == (2, 0, 1)


def test_cohort_scope_includes_zero_balances_and_skips_withdrawn(
    services: ServiceContainer,
) -> None:
    course = create_test_course(services)
    outsider = "outsider"
    for user_id in ("a", "b", "c"):
        services.enrollments.enroll(user_id, course.cohort.id)
    services.enrollments.withdraw("c", course.cohort.id)
    _earn(services, "a", 40)
    _earn(services, "c", 90)
    _earn(services, outsider, 500)

    board = services.leaderboard.get_leaderboard(cohort_id=course.cohort.id)
    assert [(e.user_id, e.balance, e.rank) for e in board] == [("a", 40, 1), ("b", 0, 2)]


@pytest.mark.parametrize(
    ("balance", "level", "in_level", "to_next"),
    [
        (0, 1, 0, 1000),
        (999, 1, 999, 1),
        (1000, 2, 0, 1000),
        (2500, 3, 500, 500),
        (-40, 1, 0, 1000),
    ],
)
def test_level_for_balance(
    services: ServiceContainer, balance: int, level: int, in_level: int, to_next: int
) -> None:
    info = services.leaderboard.level_for(balance)
    assert (info.level, info.coins_in_level, info.coins_to_next_level) == (
        level,
        in_level,
        to_next,
    )
    assert info.total_coins == balance


def test_negative_adjustment_lowers_rank(services: ServiceContainer) -> None:
    _earn(services, "a", 100)
    _earn(services, "b", 80)
    services.ledger.adjust("a", -30, "Duplicate credit", actor="admin-1")

    assert [e.user_id for e in services.leaderboard.get_leaderboard()] == ["b", "a"]
