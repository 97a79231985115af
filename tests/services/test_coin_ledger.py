"""Coin ledger: exactly-once rewards and derived balances."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from prometheus_client import REGISTRY

from cohort_engine.core.errors import ValidationFailed
from cohort_engine.models.ledger import MANUAL_ADJUSTMENT, QUIZ_ATTEMPT, TOPIC_COMPLETION
from cohort_engine.services.container import ServiceContainer


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


# ---- award ----


def test_award_credits_once_per_key(services: ServiceContainer) -> None:
    ledger = services.ledger
    first = ledger.award("u-1", 10, TOPIC_COMPLETION, "t-1", reason="Completed topic")
    second = ledger.award("u-1", 10, TOPIC_COMPLETION, "t-1", reason="Completed topic")

    assert first.created is True
    assert first.amount == 10
    assert second.created is False
    assert second.amount == 0
    assert second.transaction == first.transaction
    assert ledger.get_balance("u-1") == 10
    assert len(ledger.list_transactions("u-1")) == 1


def test_same_source_id_for_another_user_is_a_new_key(services: ServiceContainer) -> None:
    services.ledger.award("u-1", 10, TOPIC_COMPLETION, "t-1", reason="r")
    result = services.ledger.award("u-2", 10, TOPIC_COMPLETION, "t-1", reason="r")
    assert result.created is True
    assert services.ledger.get_balance("u-2") == 10


def test_non_positive_award_records_nothing(services: ServiceContainer) -> None:
    assert services.ledger.award("u-1", 0, TOPIC_COMPLETION, "t-1", reason="r").created is False
    assert services.ledger.award("u-1", -5, TOPIC_COMPLETION, "t-2", reason="r").created is False
    assert services.ledger.list_transactions("u-1") == []


def test_award_stamps_clock_and_metadata(services: ServiceContainer, clock) -> None:
    result = services.ledger.award(
        "u-1", 25, QUIZ_ATTEMPT, "a-1", reason="Passed quiz", metadata={"percentage": 100.0}
    )
    assert result.transaction is not None
    assert result.transaction.created_at == clock.now()
    assert result.transaction.metadata == {"percentage": 100.0}


def test_duplicate_award_counts_metric(services: ServiceContainer) -> None:
    labels = {"source": TOPIC_COMPLETION}
    before = _sample("engine_duplicate_rewards_total", labels)
    services.ledger.award("u-1", 10, TOPIC_COMPLETION, "t-9", reason="r")
    services.ledger.award("u-1", 10, TOPIC_COMPLETION, "t-9", reason="r")
    assert _sample("engine_duplicate_rewards_total", labels) - before == 1


def test_concurrent_awards_for_same_key_pay_once(services: ServiceContainer) -> None:
    def award(_: int):
        return services.ledger.award("u-1", 10, TOPIC_COMPLETION, "t-1", reason="r")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(award, range(32)))

    assert sum(1 for r in results if r.created) == 1
    assert services.ledger.get_balance("u-1") == 10


def test_balance_equals_sum_of_transactions_under_concurrency(
    services: ServiceContainer,
) -> None:
    def award(i: int):
        # Four keys, each hit eight times
        return services.ledger.award("u-1", i % 4 + 1, TOPIC_COMPLETION, f"t-{i % 4}", reason="r")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(award, range(32)))

    txns = services.ledger.list_transactions("u-1")
    assert len(txns) == 4
    assert services.ledger.get_balance("u-1") == sum(t.amount for t in txns) == 1 + 2 + 3 + 4


# ---- adjustments ----


def test_adjust_allows_negative_and_repeated_corrections(services: ServiceContainer) -> None:
    ledger = services.ledger
    ledger.award("u-1", 100, TOPIC_COMPLETION, "t-1", reason="r")
    ledger.adjust("u-1", -30, "Duplicate credit", actor="admin-1")
    ledger.adjust("u-1", 5, "Goodwill", actor="admin-1")
    ledger.adjust("u-1", 5, "Goodwill", actor="admin-1")

    assert ledger.get_balance("u-1") == 80
    manual = [t for t in ledger.list_transactions("u-1") if t.source == MANUAL_ADJUSTMENT]
    assert len(manual) == 3
    assert all(t.created_by == "admin-1" for t in manual)


def test_concurrent_adjustments_in_one_second_all_land(services: ServiceContainer) -> None:
    # Frozen clock: every adjustment shares the same actor and timestamp
    def grant(_: int) -> None:
        services.ledger.adjust("u-1", 5, "Goodwill", actor="admin-1")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(grant, range(16)))

    assert services.ledger.get_balance("u-1") == 80
    keys = {t.source_id for t in services.ledger.list_transactions("u-1")}
    assert len(keys) == 16


@pytest.mark.parametrize(("amount", "reason"), [(0, "why"), (10, "   ")])
def test_adjust_rejects_empty_corrections(
    services: ServiceContainer, amount: int, reason: str
) -> None:
    with pytest.raises(ValidationFailed):
        services.ledger.adjust("u-1", amount, reason, actor="admin-1")


def test_earnings_by_source_ignores_deductions(services: ServiceContainer) -> None:
    ledger = services.ledger
    ledger.award("u-1", 10, TOPIC_COMPLETION, "t-1", reason="r")
    ledger.award("u-1", 15, TOPIC_COMPLETION, "t-2", reason="r")
    ledger.award("u-1", 50, QUIZ_ATTEMPT, "a-1", reason="r")
    ledger.adjust("u-1", -20, "Correction", actor="admin-1")

    assert ledger.earnings_by_source("u-1") == {TOPIC_COMPLETION: 25, QUIZ_ATTEMPT: 50}


def test_list_transactions_newest_first_with_limit(services: ServiceContainer, clock) -> None:
    for i in range(3):
        services.ledger.award("u-1", 1, TOPIC_COMPLETION, f"t-{i}", reason="r")
        clock.advance(60)

    txns = services.ledger.list_transactions("u-1", limit=2)
    assert [t.source_id for t in txns] == ["t-2", "t-1"]
