from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import List

import pytest

from booking.models import AppointmentStatus
from booking.services.conflicts import Candidate, Interval, has_conflict, intervals_overlap
from booking.services.results import InvalidIntervalError

BASE = datetime(2030, 1, 2, 8, 0)


def _interval(
    identifier: str,
    start_minute: int,
    end_minute: int,
    *,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    tenant_id: str = "t1",
    practitioner_id: str = "p1",
) -> Interval:
    return Interval(
        id=identifier,
        tenant_id=tenant_id,
        practitioner_id=practitioner_id,
        start=BASE + timedelta(minutes=start_minute),
        end=BASE + timedelta(minutes=end_minute),
        status=status,
    )


def _candidate(start_minute: int, end_minute: int) -> Candidate:
    return Candidate("t1", "p1", BASE + timedelta(minutes=start_minute), BASE + timedelta(minutes=end_minute))


def test_partial_overlap_reports_existing_appointment() -> None:
    existing = [_interval("a", 360, 390)]  # 14:00-14:30

    report = has_conflict(_candidate(375, 405), existing)

    assert report.has_conflict
    assert [item.id for item in report.conflicts] == ["a"]


def test_adjacent_intervals_do_not_conflict() -> None:
    existing = [_interval("a", 360, 390)]

    assert not has_conflict(_candidate(390, 420), existing).has_conflict
    assert not has_conflict(_candidate(330, 360), existing).has_conflict


def test_returns_every_conflict_sorted_by_start() -> None:
    existing = [
        _interval("late", 120, 180),
        _interval("early", 0, 60),
        _interval("middle", 60, 120),
        _interval("outside", 300, 330),
    ]

    report = has_conflict(_candidate(30, 150), existing)

    assert [item.id for item in report.conflicts] == ["early", "middle", "late"]


def test_enclosing_and_enclosed_intervals_conflict() -> None:
    existing = [_interval("a", 60, 120)]

    assert has_conflict(_candidate(0, 180), existing).has_conflict
    assert has_conflict(_candidate(70, 80), existing).has_conflict
    assert has_conflict(_candidate(60, 120), existing).has_conflict


@pytest.mark.parametrize("status", [AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW])
def test_inactive_statuses_free_the_slot(status: AppointmentStatus) -> None:
    existing = [_interval("a", 60, 120, status=status)]

    assert not has_conflict(_candidate(60, 120), existing).has_conflict


@pytest.mark.parametrize(
    "status",
    [AppointmentStatus.CONFIRMED, AppointmentStatus.IN_PROGRESS, AppointmentStatus.COMPLETED],
)
def test_active_statuses_hold_the_slot(status: AppointmentStatus) -> None:
    existing = [_interval("a", 60, 120, status=status)]

    assert has_conflict(_candidate(90, 100), existing).has_conflict


def test_other_practitioners_and_tenants_are_ignored() -> None:
    existing = [
        _interval("other-practitioner", 60, 120, practitioner_id="p2"),
        _interval("other-tenant", 60, 120, tenant_id="t2"),
    ]

    assert not has_conflict(_candidate(60, 120), existing).has_conflict


def test_excluded_appointment_does_not_conflict_with_itself() -> None:
    existing = [_interval("a", 60, 120), _interval("b", 150, 180)]

    assert not has_conflict(_candidate(60, 120), existing, exclude_id="a").has_conflict
    report = has_conflict(_candidate(60, 160), existing, exclude_id="a")
    assert [item.id for item in report.conflicts] == ["b"]


@pytest.mark.parametrize("start_minute,end_minute", [(60, 60), (90, 60)])
def test_zero_length_or_inverted_candidate_is_rejected(start_minute: int, end_minute: int) -> None:
    with pytest.raises(InvalidIntervalError):
        has_conflict(_candidate(start_minute, end_minute), [])


def test_detector_matches_brute_force_on_random_sets() -> None:
    rng = random.Random(20300102)
    statuses = list(AppointmentStatus)

    for _ in range(300):
        existing: List[Interval] = []
        for index in range(rng.randint(0, 12)):
            start = rng.randint(0, 200)
            existing.append(
                _interval(
                    f"appt-{index}",
                    start,
                    start + rng.randint(1, 60),
                    status=rng.choice(statuses),
                    practitioner_id=rng.choice(["p1", "p1", "p2"]),
                )
            )
        candidate_start = rng.randint(0, 220)
        candidate_end = candidate_start + rng.randint(1, 60)
        candidate = _candidate(candidate_start, candidate_end)

        # Minute-by-minute occupancy is an independent oracle for half-open overlap
        candidate_minutes = set(range(candidate_start, candidate_end))
        expected = set()
        for item in existing:
            if item.practitioner_id != "p1":
                continue
            if item.status in (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW):
                continue
            item_start = int((item.start - BASE).total_seconds() // 60)
            item_end = int((item.end - BASE).total_seconds() // 60)
            if candidate_minutes & set(range(item_start, item_end)):
                expected.add(item.id)

        report = has_conflict(candidate, existing)

        assert {item.id for item in report.conflicts} == expected
        assert report.has_conflict == bool(expected)


def test_intervals_overlap_is_symmetric() -> None:
    a_start, a_end = BASE, BASE + timedelta(minutes=30)
    b_start, b_end = BASE + timedelta(minutes=29), BASE + timedelta(minutes=45)

    assert intervals_overlap(a_start, a_end, b_start, b_end)
    assert intervals_overlap(b_start, b_end, a_start, a_end)
    assert not intervals_overlap(a_start, a_end, a_end, b_end)
