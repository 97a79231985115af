"""Enrollment endpoints."""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from tests.conftest import auth, create_test_course


def test_enroll_withdraw_and_reenroll(client: TestClient, services) -> None:
    course = create_test_course(services)
    url = f"/v1/cohorts/{course.cohort.id}"

    enrolled = client.post(f"{url}/enroll", headers=auth())
    assert enrolled.status_code == 201
    assert enrolled.json()["status"] == "active"

    duplicate = client.post(f"{url}/enroll", headers=auth())
    assert duplicate.status_code == 422

    withdrawn = client.post(f"{url}/withdraw", headers=auth())
    assert withdrawn.json()["status"] == "withdrawn"
    assert withdrawn.json()["withdrawn_at"] is not None

    again = client.post(f"{url}/enroll", headers=auth())
    assert again.status_code == 201
    assert again.json()["id"] == enrolled.json()["id"]
    assert again.json()["withdrawn_at"] is None


def test_get_enrollment(client: TestClient, services) -> None:
    course = create_test_course(services)
    url = f"/v1/cohorts/{course.cohort.id}/enrollment"

    assert client.get(url, headers=auth()).status_code == 422
    client.post(f"/v1/cohorts/{course.cohort.id}/enroll", headers=auth())
    body = client.get(url, headers=auth()).json()
    assert body["user_id"] == "learner-1"
    assert body["completion_percentage"] == 0.0


def test_enroll_in_unknown_cohort_is_404(client: TestClient) -> None:
    resp = client.post(f"/v1/cohorts/{uuid.uuid4()}/enroll", headers=auth())
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"
