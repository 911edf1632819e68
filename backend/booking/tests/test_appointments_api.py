from __future__ import annotations

from typing import Dict

import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from booking.core.config import settings
from booking.db.session import session_factory
from booking.main import create_app
from booking.tests.factories import (
    PRACTITIONER_ID,
    TENANT_ID,
    USER_ID,
    FixedClock,
    NOW,
    at,
    make_request,
)

HEADERS = {"X-Tenant-ID": TENANT_ID, "X-User-ID": USER_ID}


@pytest.fixture
def client(practitioners: None) -> TestClient:
    app = create_app(settings, session_factory, clock=FixedClock(NOW))
    with TestClient(app) as test_client:
        yield test_client


def _create(client: TestClient, hour: int, minute: int = 0, **kwargs: object) -> Dict[str, object]:
    payload = make_request(at(hour, minute), **kwargs).model_dump(mode="json")
    response = client.post("/api/v1/appointments", json=payload, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_missing_identity_headers_are_rejected(client: TestClient) -> None:
    payload = make_request(at(9)).model_dump(mode="json")

    response = client.post("/api/v1/appointments", json=payload, headers={"X-Tenant-ID": TENANT_ID})

    assert response.status_code == 401


def test_create_and_fetch_appointment(client: TestClient) -> None:
    created = _create(client, 14)

    response = client.get(f"/api/v1/appointments/{created['id']}", headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "scheduled"
    assert body["practitioner_id"] == PRACTITIONER_ID
    assert body["local_start"].startswith("2030-01-02T15:00:00")
    assert [reminder["reminder_type"] for reminder in body["reminders"]] == ["email", "sms", "push"]


def test_conflict_returns_409_with_collisions_and_alternatives(client: TestClient) -> None:
    existing = _create(client, 14)
    payload = make_request(at(14, 15), patient_id="patient-002").model_dump(mode="json")

    response = client.post("/api/v1/appointments", json=payload, headers=HEADERS)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["reason"] == "conflict"
    assert detail["code"] == "PRACTITIONER_OVERLAP"
    assert [item["id"] for item in detail["conflicts"]] == [existing["id"]]
    assert detail["alternatives"]
    assert detail["alternatives"][0]["start_utc"].startswith("2030-01-02T14:30:00")


def test_invalid_interval_returns_400(client: TestClient) -> None:
    payload = make_request(at(10)).model_dump(mode="json")
    payload["end_utc"] = payload["start_utc"]

    response = client.post("/api/v1/appointments", json=payload, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_TIME_RANGE"


def test_unknown_practitioner_returns_404(client: TestClient) -> None:
    payload = make_request(at(10), practitioner_id="prac-unknown").model_dump(mode="json")

    response = client.post("/api/v1/appointments", json=payload, headers=HEADERS)

    assert response.status_code == 404


def test_reschedule_endpoint(client: TestClient) -> None:
    created = _create(client, 14)

    response = client.post(
        f"/api/v1/appointments/{created['id']}/reschedule",
        json={"start_utc": at(16).isoformat(), "end_utc": at(16, 30).isoformat(), "reason": "traffic"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["start_utc"].startswith("2030-01-02T16:00:00")
    assert body["rescheduled_count"] == 1


def test_cancel_endpoint_reports_outcome(client: TestClient) -> None:
    created = _create(client, 14)
    url = f"/api/v1/appointments/{created['id']}/cancel"

    first = client.post(url, json={"reason": "patient called"}, headers=HEADERS)
    second = client.post(url, headers=HEADERS)

    assert first.status_code == 200
    assert first.json() == {"cancelled": True}
    assert second.json() == {"cancelled": False}


def test_cancel_unknown_appointment_returns_404(client: TestClient) -> None:
    response = client.post("/api/v1/appointments/missing/cancel", headers=HEADERS)

    assert response.status_code == 404


def test_confirm_and_transition_endpoints(client: TestClient) -> None:
    created = _create(client, 14)
    base = f"/api/v1/appointments/{created['id']}"

    confirm = client.post(f"{base}/confirm", headers=HEADERS)
    start = client.post(f"{base}/status", json={"status": "in_progress"}, headers=HEADERS)
    invalid = client.post(f"{base}/status", json={"status": "scheduled"}, headers=HEADERS)

    assert confirm.status_code == 204
    assert start.status_code == 200
    assert start.json()["status"] == "in_progress"
    assert start.json()["confirmed_by"] == USER_ID
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "INVALID_TRANSITION"


def test_patch_updates_only_sent_fields(client: TestClient) -> None:
    created = _create(client, 14, title="Check-up", notes="first visit")

    response = client.patch(
        f"/api/v1/appointments/{created['id']}",
        json={"notes": "allergic to latex", "service_type": "cleaning"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Check-up"
    assert body["notes"] == "allergic to latex"
    assert body["service_type"] == "cleaning"
    assert body["version"] == 2


def test_practitioner_read_endpoints(client: TestClient) -> None:
    created = _create(client, 9, 30)
    base = f"/api/v1/practitioners/{PRACTITIONER_ID}"

    availability = client.get(
        f"{base}/availability",
        params={"start_utc": at(9, 45).isoformat(), "end_utc": at(10, 15).isoformat()},
        headers=HEADERS,
    )
    schedule = client.get(
        f"{base}/schedule",
        params={"start_from": at(8).isoformat(), "end_to": at(12).isoformat()},
        headers=HEADERS,
    )
    free_slots = client.get(
        f"{base}/free-slots",
        params={"start_from": at(9).isoformat(), "end_to": at(11).isoformat(), "slot_minutes": 30},
        headers=HEADERS,
    )
    inverted = client.get(
        f"{base}/schedule",
        params={"start_from": at(12).isoformat(), "end_to": at(8).isoformat()},
        headers=HEADERS,
    )

    assert availability.status_code == 200
    assert availability.json()["available"] is False
    assert [item["id"] for item in availability.json()["conflicts"]] == [created["id"]]
    assert [item["id"] for item in schedule.json()] == [created["id"]]
    slot_starts = [slot["start_utc"][:16] for slot in free_slots.json()]
    assert slot_starts == ["2030-01-02T09:00", "2030-01-02T10:00", "2030-01-02T10:30"]
    assert inverted.status_code == 400
