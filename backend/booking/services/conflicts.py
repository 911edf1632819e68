"""Pure interval conflict detection.

Intervals are half-open ``[start, end)`` in UTC: two intervals that only touch
at a boundary do not overlap.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from booking.models.enums import INACTIVE_STATUSES, AppointmentStatus
from booking.services.results import InvalidIntervalError


@dataclass(frozen=True)
class Interval:
    id: str
    tenant_id: str
    practitioner_id: Optional[str]
    start: datetime
    end: datetime
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    patient_id: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    tenant_id: str
    practitioner_id: str
    start: datetime
    end: datetime


@dataclass
class ConflictReport:
    has_conflict: bool
    conflicts: List[Interval] = field(default_factory=list)


def validate_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise InvalidIntervalError("Interval start must be strictly before its end")


def intervals_overlap(
    first_start: datetime, first_end: datetime, second_start: datetime, second_end: datetime
) -> bool:
    return not (first_end <= second_start or first_start >= second_end)


def _occupies_timeline(interval: Interval, candidate: Candidate, exclude_id: Optional[str]) -> bool:
    if interval.tenant_id != candidate.tenant_id:
        return False
    if interval.practitioner_id != candidate.practitioner_id:
        return False
    if AppointmentStatus(interval.status) in INACTIVE_STATUSES:
        return False
    return exclude_id is None or interval.id != exclude_id


def has_conflict(
    candidate: Candidate,
    existing: Iterable[Interval],
    exclude_id: Optional[str] = None,
) -> ConflictReport:
    """Return every active interval of the same practitioner overlapping ``candidate``.

    ``exclude_id`` ignores one appointment, typically the one being moved.
    """
    validate_interval(candidate.start, candidate.end)
    conflicts = [
        interval
        for interval in existing
        if _occupies_timeline(interval, candidate, exclude_id)
        and intervals_overlap(candidate.start, candidate.end, interval.start, interval.end)
    ]
    conflicts.sort(key=lambda item: (item.start, item.id))
    return ConflictReport(has_conflict=bool(conflicts), conflicts=conflicts)
