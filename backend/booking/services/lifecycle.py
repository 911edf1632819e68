from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from booking.core.config import Settings, settings
from booking.core.timeutils import duration_minutes, is_valid_timezone, to_naive_utc
from booking.models import CANCELLABLE_STATUSES, AppointmentStatus
from booking.models.enums import sources_for
from booking.schemas.appointment import AppointmentCreate, AppointmentDetailsUpdate
from booking.services.conflicts import validate_interval
from booking.services.coordinator import (
    BookingCoordinator,
    BookingUnavailableError,
    ChangeStatus,
    DetailChange,
    InsertAppointment,
    MoveAppointment,
    NewAppointment,
    SetDescription,
    SetNotes,
    SetPrice,
    SetServiceType,
    SetTitle,
    UpdateDetails,
)
from booking.services.results import BookingResult, FailureReason, InvalidIntervalError
from booking.services.schedule import ScheduleReader

logger = logging.getLogger(__name__)

ALTERNATIVE_SEARCH_WINDOW = timedelta(hours=8)


def changes_from_update(payload: AppointmentDetailsUpdate) -> List[DetailChange]:
    """Translate a PATCH body into detail commands, keeping only fields the caller sent."""
    sent = payload.model_fields_set
    changes: List[DetailChange] = []
    if "description" in sent:
        changes.append(SetDescription(payload.description))
    if "notes" in sent:
        changes.append(SetNotes(payload.notes))
    if "price" in sent:
        changes.append(SetPrice(payload.price))
    if "service_type" in sent and payload.service_type is not None:
        changes.append(SetServiceType(payload.service_type))
    if "title" in sent:
        changes.append(SetTitle(payload.title))
    return changes


class AppointmentLifecycleManager:
    def __init__(
        self,
        coordinator: BookingCoordinator,
        schedule: ScheduleReader,
        *,
        config: Settings = settings,
    ) -> None:
        self._coordinator = coordinator
        self._schedule = schedule
        self._config = config

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_interval(
        self, start: datetime, end: datetime
    ) -> Tuple[Optional[BookingResult], datetime, datetime]:
        start_utc, end_utc = to_naive_utc(start), to_naive_utc(end)
        try:
            validate_interval(start_utc, end_utc)
        except InvalidIntervalError as exc:
            return BookingResult.validation("INVALID_TIME_RANGE", str(exc)), start_utc, end_utc
        minutes = (end_utc - start_utc).total_seconds() / 60
        if minutes < self._config.min_duration_minutes or minutes > self._config.max_duration_minutes:
            return (
                BookingResult.validation(
                    "DURATION_OUT_OF_RANGE",
                    f"Appointments must last between {self._config.min_duration_minutes} "
                    f"and {self._config.max_duration_minutes} minutes",
                ),
                start_utc,
                end_utc,
            )
        return None, start_utc, end_utc

    def _with_alternatives(
        self,
        result: BookingResult,
        tenant_id: str,
        practitioner_id: Optional[str],
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> BookingResult:
        failure = result.failure
        if failure is None or failure.reason != FailureReason.CONFLICT or not practitioner_id:
            return result
        if self._config.alternative_slot_count <= 0:
            return result
        try:
            failure.alternatives = self._schedule.list_free_slots(
                tenant_id,
                practitioner_id,
                start_utc,
                max(start_utc + ALTERNATIVE_SEARCH_WINDOW, end_utc),
                slot_minutes=max(duration_minutes(start_utc, end_utc), 1),
                exclude_id=exclude_id,
                limit=self._config.alternative_slot_count,
            )
        except SQLAlchemyError:
            logger.warning("Could not compute alternative slots for practitioner %s", practitioner_id, exc_info=True)
        return result

    # ------------------------------------------------------------------
    # Interval operations
    # ------------------------------------------------------------------

    def create(
        self,
        tenant_id: str,
        request: AppointmentCreate,
        user_id: Optional[str],
        *,
        context: Optional[dict] = None,
    ) -> BookingResult:
        patient_id = (request.patient_id or "").strip()
        if not patient_id:
            return BookingResult.validation("PATIENT_REQUIRED", "A patient id is required")
        practitioner_id = (request.practitioner_id or "").strip() or None
        if practitioner_id is None and self._config.require_practitioner:
            return BookingResult.validation("PRACTITIONER_REQUIRED", "A practitioner id is required")

        invalid, start_utc, end_utc = self._validate_interval(request.start_utc, request.end_utc)
        if invalid is not None:
            return invalid

        timezone_name = request.timezone or self._config.default_timezone
        if not is_valid_timezone(timezone_name):
            return BookingResult.validation("INVALID_TIMEZONE", f"Unknown timezone '{timezone_name}'")

        operation = InsertAppointment(
            NewAppointment(
                tenant_id=tenant_id,
                patient_id=patient_id,
                practitioner_id=practitioner_id,
                service_type=request.service_type,
                start_utc=start_utc,
                end_utc=end_utc,
                timezone=timezone_name,
                title=request.title,
                description=request.description,
                notes=request.notes,
                price=request.price,
                idempotency_key=request.idempotency_key,
            )
        )
        result = self._coordinator.run_booking(
            tenant_id, practitioner_id, operation, actor_id=user_id, context=context
        )
        return self._with_alternatives(result, tenant_id, practitioner_id, start_utc, end_utc)

    def reschedule(
        self,
        tenant_id: str,
        appointment_id: str,
        new_start: datetime,
        new_end: datetime,
        user_id: Optional[str],
        *,
        reason: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> BookingResult:
        current = self._schedule.get_appointment(tenant_id, appointment_id)

        invalid, start_utc, end_utc = self._validate_interval(new_start, new_end)
        if invalid is not None:
            return invalid
        if current.status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
            return BookingResult.validation(
                "INVALID_STATUS", f"An appointment in status '{current.status.value}' cannot be rescheduled"
            )

        result = self._coordinator.run_booking(
            tenant_id,
            current.practitioner_id,
            MoveAppointment(appointment_id, start_utc, end_utc, reason),
            actor_id=user_id,
            context=context,
        )
        return self._with_alternatives(
            result, tenant_id, current.practitioner_id, start_utc, end_utc, exclude_id=appointment_id
        )

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def cancel(
        self,
        appointment_id: str,
        reason: Optional[str],
        user_id: Optional[str],
        *,
        tenant_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> bool:
        """Cancel the appointment unless it is already COMPLETED or CANCELLED.

        Returns ``False`` when the appointment is past cancelling. Store failures
        are not folded into that answer: they raise ``BookingUnavailableError``
        after the transaction is rolled back.
        """
        outcome = self._coordinator.run_status_change(
            ChangeStatus(
                appointment_id,
                AppointmentStatus.CANCELLED,
                CANCELLABLE_STATUSES,
                reason,
            ),
            actor_id=user_id,
            tenant_id=tenant_id,
            context=context,
        )
        return outcome.applied

    def confirm(
        self,
        appointment_id: str,
        confirmed_by: Optional[str],
        *,
        tenant_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> None:
        """Confirm a SCHEDULED appointment, a no-op in any other status.

        Raises ``BookingUnavailableError`` when the store fails.
        """
        self._coordinator.run_status_change(
            ChangeStatus(
                appointment_id,
                AppointmentStatus.CONFIRMED,
                frozenset({AppointmentStatus.SCHEDULED}),
            ),
            actor_id=confirmed_by,
            tenant_id=tenant_id,
            context=context,
        )

    def transition(
        self,
        appointment_id: str,
        target: AppointmentStatus,
        user_id: Optional[str],
        *,
        tenant_id: Optional[str] = None,
        note: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> BookingResult:
        target = AppointmentStatus(target)
        allowed_from = sources_for(target)
        if not allowed_from:
            return BookingResult.validation(
                "INVALID_TRANSITION", f"No appointment can move to status '{target.value}'"
            )
        try:
            outcome = self._coordinator.run_status_change(
                ChangeStatus(appointment_id, target, allowed_from, note),
                actor_id=user_id,
                tenant_id=tenant_id,
                context=context,
            )
        except BookingUnavailableError:
            return BookingResult.system()
        if not outcome.applied:
            return BookingResult.validation(
                "INVALID_TRANSITION",
                f"Cannot move an appointment from '{outcome.previous_status.value}' to '{target.value}'",
            )
        return BookingResult.succeeded(outcome.appointment)

    def start(self, appointment_id: str, user_id: Optional[str], **kwargs) -> BookingResult:
        return self.transition(appointment_id, AppointmentStatus.IN_PROGRESS, user_id, **kwargs)

    def complete(self, appointment_id: str, user_id: Optional[str], **kwargs) -> BookingResult:
        return self.transition(appointment_id, AppointmentStatus.COMPLETED, user_id, **kwargs)

    def mark_no_show(self, appointment_id: str, user_id: Optional[str], **kwargs) -> BookingResult:
        return self.transition(appointment_id, AppointmentStatus.NO_SHOW, user_id, **kwargs)

    # ------------------------------------------------------------------
    # Details
    # ------------------------------------------------------------------

    def update_details(
        self,
        tenant_id: str,
        appointment_id: str,
        changes: Sequence[DetailChange],
        user_id: Optional[str],
        *,
        context: Optional[dict] = None,
    ) -> BookingResult:
        return self._coordinator.run_details_update(
            tenant_id,
            UpdateDetails(appointment_id, tuple(changes)),
            actor_id=user_id,
            context=context,
        )
