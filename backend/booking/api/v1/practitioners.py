from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from booking.api.deps import RequestContext, get_request_context, get_schedule
from booking.core.timeutils import as_aware_utc, to_naive_utc
from booking.schemas import AppointmentSummary, AvailabilityRead, FreeSlot
from booking.services.mapping import conflict_view
from booking.services.results import InvalidIntervalError
from booking.services.schedule import ScheduleReader

router = APIRouter(prefix="/practitioners", tags=["practitioners"])


def _bad_window(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/{practitioner_id}/availability", response_model=AvailabilityRead)
def check_practitioner_availability(
    practitioner_id: str,
    start_utc: datetime,
    end_utc: datetime,
    exclude_appointment_id: Optional[str] = None,
    caller: RequestContext = Depends(get_request_context),
    schedule: ScheduleReader = Depends(get_schedule),
) -> AvailabilityRead:
    try:
        report = schedule.check_availability(
            caller.tenant_id, practitioner_id, start_utc, end_utc, exclude_id=exclude_appointment_id
        )
    except InvalidIntervalError as exc:
        raise _bad_window(exc) from exc
    return AvailabilityRead(
        practitioner_id=practitioner_id,
        start_utc=as_aware_utc(to_naive_utc(start_utc)),
        end_utc=as_aware_utc(to_naive_utc(end_utc)),
        available=not report.has_conflict,
        conflicts=[conflict_view(interval) for interval in report.conflicts],
    )


@router.get("/{practitioner_id}/schedule", response_model=List[AppointmentSummary])
def list_practitioner_schedule(
    practitioner_id: str,
    start_from: datetime,
    end_to: datetime,
    caller: RequestContext = Depends(get_request_context),
    schedule: ScheduleReader = Depends(get_schedule),
) -> List[AppointmentSummary]:
    try:
        return schedule.get_practitioner_schedule(caller.tenant_id, practitioner_id, start_from, end_to)
    except InvalidIntervalError as exc:
        raise _bad_window(exc) from exc


@router.get("/{practitioner_id}/free-slots", response_model=List[FreeSlot])
def list_practitioner_free_slots(
    practitioner_id: str,
    start_from: datetime,
    end_to: datetime,
    slot_minutes: int = Query(default=30, gt=0, le=480),
    caller: RequestContext = Depends(get_request_context),
    schedule: ScheduleReader = Depends(get_schedule),
) -> List[FreeSlot]:
    try:
        return schedule.list_free_slots(
            caller.tenant_id, practitioner_id, start_from, end_to, slot_minutes=slot_minutes
        )
    except ValueError as exc:
        raise _bad_window(exc) from exc
