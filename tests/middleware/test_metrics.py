"""Prometheus HTTP metrics.

Counters live in the global registry and never reset between tests, so
every assertion compares a before/after delta.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth

COMPLETE_TEMPLATE = "/v1/topics/{topic_id}/complete"


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _sample("http_requests_total", labels)
    client.get("/health")
    assert _sample("http_requests_total", labels) - before == 1


def test_endpoint_label_is_route_template(client: TestClient) -> None:
    labels = {"method": "POST", "endpoint": COMPLETE_TEMPLATE, "status_code": "404"}
    before = _sample("http_requests_total", labels)

    for _ in range(3):
        client.post(f"/v1/topics/{uuid.uuid4()}/complete", headers=auth())

    assert _sample("http_requests_total", labels) - before == 3


def test_unknown_paths_share_one_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _sample("http_requests_total", labels)
    client.get("/no/such/path")
    client.get("/another/missing/path")
    assert _sample("http_requests_total", labels) - before == 2


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _sample("http_request_duration_seconds_count", labels) - before == 1


def test_metrics_endpoint_exposes_engine_counters(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    for name in (
        "http_requests_total",
        "engine_coins_awarded_total",
        "engine_weeks_unlocked_total",
        "engine_quiz_attempts_graded_total",
    ):
        assert name in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _sample("http_requests_total", labels) == before
