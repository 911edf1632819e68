"""Read-only schedule queries.

Nothing here locks or writes. Results are snapshots: a slot reported free can
be taken before the caller books it, in which case the coordinator returns a
conflict.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlmodel import Session, select

from booking.core.timeutils import as_aware_utc, to_naive_utc
from booking.db.session import SessionFactory
from booking.models import INACTIVE_STATUSES, Appointment
from booking.schemas.appointment import AppointmentRead, AppointmentSummary, FreeSlot
from booking.services.conflicts import Candidate, ConflictReport, has_conflict, validate_interval
from booking.services.mapping import build_appointment_read, build_summary, interval_from_row
from booking.services.results import AppointmentNotFoundError


def _merge_intervals(intervals: List[Tuple[datetime, datetime]]) -> List[Tuple[datetime, datetime]]:
    if not intervals:
        return []
    ordered = sorted(intervals, key=lambda item: item[0])
    merged: List[Tuple[datetime, datetime]] = [ordered[0]]
    for current_start, current_end in ordered[1:]:
        last_start, last_end = merged[-1]
        if current_start <= last_end:
            merged[-1] = (last_start, max(last_end, current_end))
        else:
            merged.append((current_start, current_end))
    return merged


def _chunk_interval(start: datetime, end: datetime, slot_minutes: int) -> List[Tuple[datetime, datetime]]:
    slots: List[Tuple[datetime, datetime]] = []
    step = timedelta(minutes=slot_minutes)
    current = start
    while current + step <= end:
        slots.append((current, current + step))
        current += step
    return slots


def free_slots_between(
    start_from: datetime,
    end_to: datetime,
    slot_minutes: int,
    busy: List[Tuple[datetime, datetime]],
) -> List[Tuple[datetime, datetime]]:
    """Chunk the gaps between merged ``busy`` intervals into fixed-length slots."""
    clamped = [
        (max(start_from, busy_start), min(end_to, busy_end))
        for busy_start, busy_end in busy
        if busy_start < end_to and busy_end > start_from
    ]
    pointer = start_from
    slots: List[Tuple[datetime, datetime]] = []
    for busy_start, busy_end in _merge_intervals(clamped):
        if busy_start > pointer:
            slots.extend(_chunk_interval(pointer, busy_start, slot_minutes))
        pointer = max(pointer, busy_end)
        if pointer >= end_to:
            break
    if pointer < end_to:
        slots.extend(_chunk_interval(pointer, end_to, slot_minutes))
    return slots


class ScheduleReader:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def _active_rows(
        self,
        session: Session,
        tenant_id: str,
        practitioner_id: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> List[Appointment]:
        statement = (
            select(Appointment)
            .where(
                Appointment.tenant_id == tenant_id,
                Appointment.practitioner_id == practitioner_id,
                Appointment.status.notin_([status.value for status in INACTIVE_STATUSES]),
                Appointment.start_utc < end_utc,
                Appointment.end_utc > start_utc,
            )
            .order_by(Appointment.start_utc, Appointment.id)
        )
        if exclude_id is not None:
            statement = statement.where(Appointment.id != exclude_id)
        return list(session.exec(statement).all())

    def check_availability(
        self,
        tenant_id: str,
        practitioner_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> ConflictReport:
        start_utc, end_utc = to_naive_utc(start), to_naive_utc(end)
        validate_interval(start_utc, end_utc)
        with self._session_factory() as session:
            rows = self._active_rows(session, tenant_id, practitioner_id, start_utc, end_utc)
        return has_conflict(
            Candidate(tenant_id, practitioner_id, start_utc, end_utc),
            [interval_from_row(row) for row in rows],
            exclude_id=exclude_id,
        )

    def get_practitioner_schedule(
        self,
        tenant_id: str,
        practitioner_id: str,
        from_utc: datetime,
        to_utc: datetime,
    ) -> List[AppointmentSummary]:
        start_utc, end_utc = to_naive_utc(from_utc), to_naive_utc(to_utc)
        validate_interval(start_utc, end_utc)
        with self._session_factory() as session:
            rows = self._active_rows(session, tenant_id, practitioner_id, start_utc, end_utc)
        return [build_summary(row) for row in rows]

    def list_free_slots(
        self,
        tenant_id: str,
        practitioner_id: str,
        from_utc: datetime,
        to_utc: datetime,
        slot_minutes: int = 30,
        exclude_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[FreeSlot]:
        if slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        start_utc, end_utc = to_naive_utc(from_utc), to_naive_utc(to_utc)
        validate_interval(start_utc, end_utc)
        with self._session_factory() as session:
            rows = self._active_rows(session, tenant_id, practitioner_id, start_utc, end_utc, exclude_id)
        slots = free_slots_between(
            start_utc,
            end_utc,
            slot_minutes,
            [(row.start_utc, row.end_utc) for row in rows],
        )
        if limit is not None:
            slots = slots[:limit]
        return [FreeSlot(start_utc=as_aware_utc(start), end_utc=as_aware_utc(end)) for start, end in slots]

    def get_appointment(self, tenant_id: str, appointment_id: str) -> AppointmentRead:
        with self._session_factory() as session:
            appointment = session.get(Appointment, appointment_id)
            if appointment is None or appointment.tenant_id != tenant_id:
                raise AppointmentNotFoundError(appointment_id)
            read = build_appointment_read(session, appointment)
        return read
