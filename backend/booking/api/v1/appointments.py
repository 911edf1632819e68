from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status

from booking.api.deps import RequestContext, get_audit_context, get_lifecycle, get_request_context, get_schedule
from booking.schemas import (
    AppointmentCancelRequest,
    AppointmentConfirmRequest,
    AppointmentCreate,
    AppointmentDetailsUpdate,
    AppointmentRead,
    AppointmentRescheduleRequest,
    AppointmentTransitionRequest,
    BookingFailureRead,
    CancelResponse,
)
from booking.services.coordinator import BookingUnavailableError
from booking.services.lifecycle import AppointmentLifecycleManager, changes_from_update
from booking.services.mapping import conflict_view
from booking.services.results import AppointmentNotFoundError, BookingResult, FailureReason, PractitionerNotFoundError
from booking.services.schedule import ScheduleReader

router = APIRouter(prefix="/appointments", tags=["appointments"])

_FAILURE_STATUS = {
    FailureReason.VALIDATION: status.HTTP_400_BAD_REQUEST,
    FailureReason.CONFLICT: status.HTTP_409_CONFLICT,
    FailureReason.SYSTEM: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _not_found(exc: Exception) -> HTTPException:
    if isinstance(exc, PractitionerNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Practitioner not found")
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found")


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="The booking store is unavailable, please retry later",
    )


def _unwrap(result: BookingResult) -> AppointmentRead:
    if result.ok:
        return result.appointment
    failure = result.failure
    payload = BookingFailureRead(
        reason=failure.reason.value,
        code=failure.code,
        message=failure.message,
        conflicts=[conflict_view(interval) for interval in failure.conflicts],
        alternatives=failure.alternatives,
    )
    raise HTTPException(status_code=_FAILURE_STATUS[failure.reason], detail=payload.model_dump(mode="json"))


@router.post("", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def create_appointment_record(
    payload: AppointmentCreate,
    caller: RequestContext = Depends(get_request_context),
    context: dict = Depends(get_audit_context),
    lifecycle: AppointmentLifecycleManager = Depends(get_lifecycle),
) -> AppointmentRead:
    try:
        result = lifecycle.create(caller.tenant_id, payload, caller.user_id, context=context)
    except PractitionerNotFoundError as exc:
        raise _not_found(exc) from exc
    return _unwrap(result)


@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment_record(
    appointment_id: str,
    caller: RequestContext = Depends(get_request_context),
    schedule: ScheduleReader = Depends(get_schedule),
) -> AppointmentRead:
    try:
        return schedule.get_appointment(caller.tenant_id, appointment_id)
    except AppointmentNotFoundError as exc:
        raise _not_found(exc) from exc


@router.patch("/{appointment_id}", response_model=AppointmentRead)
def update_appointment_details(
    appointment_id: str,
    payload: AppointmentDetailsUpdate,
    caller: RequestContext = Depends(get_request_context),
    context: dict = Depends(get_audit_context),
    lifecycle: AppointmentLifecycleManager = Depends(get_lifecycle),
) -> AppointmentRead:
    try:
        result = lifecycle.update_details(
            caller.tenant_id,
            appointment_id,
            changes_from_update(payload),
            caller.user_id,
            context=context,
        )
    except AppointmentNotFoundError as exc:
        raise _not_found(exc) from exc
    return _unwrap(result)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
def reschedule_appointment_record(
    appointment_id: str,
    payload: AppointmentRescheduleRequest,
    caller: RequestContext = Depends(get_request_context),
    context: dict = Depends(get_audit_context),
    lifecycle: AppointmentLifecycleManager = Depends(get_lifecycle),
) -> AppointmentRead:
    try:
        result = lifecycle.reschedule(
            caller.tenant_id,
            appointment_id,
            payload.start_utc,
            payload.end_utc,
            caller.user_id,
            reason=payload.reason,
            context=context,
        )
    except (AppointmentNotFoundError, PractitionerNotFoundError) as exc:
        raise _not_found(exc) from exc
    return _unwrap(result)


@router.post("/{appointment_id}/cancel", response_model=CancelResponse)
def cancel_appointment_record(
    appointment_id: str,
    payload: Optional[AppointmentCancelRequest] = Body(default=None),
    caller: RequestContext = Depends(get_request_context),
    context: dict = Depends(get_audit_context),
    lifecycle: AppointmentLifecycleManager = Depends(get_lifecycle),
) -> CancelResponse:
    reason = payload.reason if payload else None
    try:
        cancelled = lifecycle.cancel(
            appointment_id, reason, caller.user_id, tenant_id=caller.tenant_id, context=context
        )
    except AppointmentNotFoundError as exc:
        raise _not_found(exc) from exc
    except BookingUnavailableError as exc:
        raise _unavailable() from exc
    return CancelResponse(cancelled=cancelled)


@router.post("/{appointment_id}/confirm", status_code=status.HTTP_204_NO_CONTENT)
def confirm_appointment_record(
    appointment_id: str,
    payload: Optional[AppointmentConfirmRequest] = Body(default=None),
    caller: RequestContext = Depends(get_request_context),
    context: dict = Depends(get_audit_context),
    lifecycle: AppointmentLifecycleManager = Depends(get_lifecycle),
) -> Response:
    confirmed_by = (payload.confirmed_by if payload else None) or caller.user_id
    try:
        lifecycle.confirm(appointment_id, confirmed_by, tenant_id=caller.tenant_id, context=context)
    except AppointmentNotFoundError as exc:
        raise _not_found(exc) from exc
    except BookingUnavailableError as exc:
        raise _unavailable() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{appointment_id}/status", response_model=AppointmentRead)
def transition_appointment_record(
    appointment_id: str,
    payload: AppointmentTransitionRequest,
    caller: RequestContext = Depends(get_request_context),
    context: dict = Depends(get_audit_context),
    lifecycle: AppointmentLifecycleManager = Depends(get_lifecycle),
) -> AppointmentRead:
    try:
        result = lifecycle.transition(
            appointment_id,
            payload.status,
            caller.user_id,
            tenant_id=caller.tenant_id,
            note=payload.note,
            context=context,
        )
    except AppointmentNotFoundError as exc:
        raise _not_found(exc) from exc
    return _unwrap(result)
