from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from booking.models import AppointmentStatus
from booking.services.lifecycle import AppointmentLifecycleManager
from booking.services.results import AppointmentNotFoundError, InvalidIntervalError
from booking.services.schedule import ScheduleReader, free_slots_between
from booking.tests.factories import (
    OTHER_PRACTITIONER_ID,
    OTHER_TENANT_ID,
    PRACTITIONER_ID,
    TENANT_ID,
    USER_ID,
    at,
    make_request,
)


def _book(lifecycle: AppointmentLifecycleManager, start: datetime, minutes: int = 30, **kwargs: object):
    result = lifecycle.create(TENANT_ID, make_request(start, minutes, **kwargs), USER_ID)
    assert result.ok, result.failure
    return result.appointment


def test_check_availability_reports_conflicts_without_writing(
    practitioners: None, lifecycle: AppointmentLifecycleManager, schedule: ScheduleReader
) -> None:
    existing = _book(lifecycle, at(14))

    busy = schedule.check_availability(TENANT_ID, PRACTITIONER_ID, at(14, 15), at(14, 45))
    free = schedule.check_availability(TENANT_ID, PRACTITIONER_ID, at(14, 30), at(15))
    own_slot = schedule.check_availability(TENANT_ID, PRACTITIONER_ID, at(14), at(14, 30), exclude_id=existing.id)

    assert busy.has_conflict
    assert [item.id for item in busy.conflicts] == [existing.id]
    assert not free.has_conflict
    assert not own_slot.has_conflict


def test_check_availability_rejects_inverted_window(practitioners: None, schedule: ScheduleReader) -> None:
    with pytest.raises(InvalidIntervalError):
        schedule.check_availability(TENANT_ID, PRACTITIONER_ID, at(15), at(14))


def test_schedule_lists_active_appointments_in_window(
    practitioners: None, lifecycle: AppointmentLifecycleManager, schedule: ScheduleReader
) -> None:
    late = _book(lifecycle, at(16))
    early = _book(lifecycle, at(9), patient_id="patient-002")
    straddling = _book(lifecycle, at(11, 45), 30, patient_id="patient-003")
    cancelled = _book(lifecycle, at(13), patient_id="patient-004")
    lifecycle.cancel(cancelled.id, None, USER_ID)
    no_show = _book(lifecycle, at(10), patient_id="patient-005")
    lifecycle.mark_no_show(no_show.id, USER_ID)
    _book(lifecycle, at(9), practitioner_id=OTHER_PRACTITIONER_ID)

    items = schedule.get_practitioner_schedule(TENANT_ID, PRACTITIONER_ID, at(8), at(17))
    window = schedule.get_practitioner_schedule(TENANT_ID, PRACTITIONER_ID, at(12), at(16))

    assert [item.id for item in items] == [early.id, straddling.id, late.id]
    assert [item.id for item in window] == [straddling.id]
    assert all(item.status == AppointmentStatus.SCHEDULED for item in items)


def test_schedule_is_tenant_scoped(
    practitioners: None, lifecycle: AppointmentLifecycleManager, schedule: ScheduleReader
) -> None:
    _book(lifecycle, at(9))

    assert schedule.get_practitioner_schedule(OTHER_TENANT_ID, PRACTITIONER_ID, at(8), at(17)) == []


def test_free_slots_skip_busy_time(
    practitioners: None, lifecycle: AppointmentLifecycleManager, schedule: ScheduleReader
) -> None:
    _book(lifecycle, at(9, 30))
    _book(lifecycle, at(10, 15), 30, patient_id="patient-002")

    slots = schedule.list_free_slots(TENANT_ID, PRACTITIONER_ID, at(9), at(12), slot_minutes=30)

    starts = [slot.start_utc for slot in slots]
    assert starts == [
        datetime(2030, 1, 2, 9, 0, tzinfo=timezone.utc),
        datetime(2030, 1, 2, 10, 45, tzinfo=timezone.utc),
        datetime(2030, 1, 2, 11, 15, tzinfo=timezone.utc),
    ]


def test_free_slots_between_merges_overlapping_busy_blocks() -> None:
    start = at(8)
    busy = [
        (at(9), at(10)),
        (at(9, 30), at(10, 30)),
        (at(7), at(8, 15)),
    ]

    slots = free_slots_between(start, at(11), 15, busy)

    assert slots[0] == (at(8, 15), at(8, 30))
    assert (at(9, 45), at(10)) not in slots
    assert slots[-1] == (at(10, 45), at(11))
    assert all(end - begin == timedelta(minutes=15) for begin, end in slots)


def test_get_appointment_includes_reminders_and_history(
    practitioners: None, lifecycle: AppointmentLifecycleManager, schedule: ScheduleReader
) -> None:
    created = _book(lifecycle, at(14))

    loaded = schedule.get_appointment(TENANT_ID, created.id)

    assert loaded.id == created.id
    assert len(loaded.reminders) == 3
    assert [entry.to_status for entry in loaded.status_history] == ["scheduled"]

    with pytest.raises(AppointmentNotFoundError):
        schedule.get_appointment(OTHER_TENANT_ID, created.id)
