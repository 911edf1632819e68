"""Transactional booking coordinator.

Every write to ``appointments`` goes through :class:`BookingCoordinator`. A
booking attempt locks the practitioner row, re-reads the practitioner's
active appointments, runs the conflict detector and then writes the
appointment, its reminders, status history and audit trail in the same
transaction. Conflicts roll back and are returned as values; transient
database failures are retried with exponential backoff.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, FrozenSet, List, Mapping, Optional, Tuple, TypeVar, Union

from sqlalchemy import text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from booking.core.config import Settings
from booking.core.timeutils import duration_minutes, utc_now
from booking.db.session import SessionFactory
from booking.models import (
    INACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
    AppointmentStatusHistory,
    Practitioner,
    ServiceType,
)
from booking.schemas.appointment import AppointmentRead
from booking.services import audit
from booking.services.audit_policy import ensure_appointment_metadata
from booking.services.conflicts import Candidate, Interval, has_conflict
from booking.services.mapping import build_appointment_read, interval_from_row
from booking.services.reminders import cancel_pending_reminders, derive_reminders, insert_reminders
from booking.services.results import (
    AppointmentNotFoundError,
    BookingError,
    BookingResult,
    FailureReason,
    PractitionerNotFoundError,
    is_transient_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Clock = Callable[[], datetime]

RESCHEDULABLE_STATUSES: FrozenSet[AppointmentStatus] = frozenset(
    {AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED}
)


class BookingUnavailableError(BookingError):
    """The store failed in a way retries could not fix."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, config.booking_max_attempts),
            base_delay=config.booking_retry_base_delay,
            max_delay=config.booking_retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter and delay:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return max(0.0, delay)


@dataclass(frozen=True)
class NewAppointment:
    tenant_id: str
    patient_id: str
    practitioner_id: Optional[str]
    service_type: ServiceType
    start_utc: datetime
    end_utc: datetime
    timezone: str
    title: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    price: Optional[Decimal] = None
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class InsertAppointment:
    appointment: NewAppointment


@dataclass(frozen=True)
class MoveAppointment:
    appointment_id: str
    start_utc: datetime
    end_utc: datetime
    reason: Optional[str] = None


IntervalOperation = Union[InsertAppointment, MoveAppointment]


@dataclass(frozen=True)
class ChangeStatus:
    appointment_id: str
    target: AppointmentStatus
    allowed_from: FrozenSet[AppointmentStatus]
    reason: Optional[str] = None


@dataclass(frozen=True)
class SetTitle:
    value: Optional[str]


@dataclass(frozen=True)
class SetDescription:
    value: Optional[str]


@dataclass(frozen=True)
class SetNotes:
    value: Optional[str]


@dataclass(frozen=True)
class SetPrice:
    value: Optional[Decimal]


@dataclass(frozen=True)
class SetServiceType:
    value: ServiceType


DetailChange = Union[SetTitle, SetDescription, SetNotes, SetPrice, SetServiceType]


@dataclass(frozen=True)
class UpdateDetails:
    appointment_id: str
    changes: Tuple[DetailChange, ...]


@dataclass
class StatusChangeOutcome:
    applied: bool
    previous_status: Optional[AppointmentStatus] = None
    appointment: Optional[AppointmentRead] = None
    reminders_cancelled: int = 0


@dataclass
class _Attempt:
    session: Session
    now: datetime
    actor_id: Optional[str]
    context: dict = field(default_factory=dict)


def _apply_detail(appointment: Appointment, change: DetailChange) -> str:
    if isinstance(change, SetTitle):
        appointment.title = change.value
        return "title"
    if isinstance(change, SetDescription):
        appointment.description = change.value
        return "description"
    if isinstance(change, SetNotes):
        appointment.notes = change.value
        return "notes"
    if isinstance(change, SetPrice):
        appointment.price = change.value
        return "price"
    if isinstance(change, SetServiceType):
        appointment.service_type = ServiceType(change.value).value
        return "service_type"
    raise TypeError(f"Unsupported appointment change: {type(change).__name__}")


class BookingCoordinator:
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        reminder_offsets: Optional[Mapping[str, int]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Clock = utc_now,
        transaction_timeout_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._reminder_offsets = reminder_offsets
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._transaction_timeout_ms = transaction_timeout_ms
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, session_factory: SessionFactory, config: Settings, *, clock: Clock = utc_now
    ) -> "BookingCoordinator":
        return cls(
            session_factory,
            reminder_offsets=config.reminder_offsets_minutes,
            retry_policy=RetryPolicy.from_settings(config),
            clock=clock,
            transaction_timeout_ms=config.transaction_timeout_ms,
        )

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def run_booking(
        self,
        tenant_id: str,
        practitioner_id: Optional[str],
        operation: IntervalOperation,
        *,
        actor_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> BookingResult:
        if isinstance(operation, InsertAppointment):
            work = self._insert
        elif isinstance(operation, MoveAppointment):
            work = self._move
        else:
            raise TypeError(f"Unsupported booking operation: {type(operation).__name__}")

        def attempt(session: Session) -> BookingResult:
            return work(
                _Attempt(session=session, now=self._clock(), actor_id=actor_id, context=context or {}),
                tenant_id,
                practitioner_id,
                operation,
            )

        try:
            return self._run(type(operation).__name__, attempt)
        except BookingUnavailableError:
            return BookingResult.system()

    def run_status_change(
        self,
        change: ChangeStatus,
        *,
        actor_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> StatusChangeOutcome:
        def attempt(session: Session) -> StatusChangeOutcome:
            return self._change_status(
                _Attempt(session=session, now=self._clock(), actor_id=actor_id, context=context or {}),
                change,
                tenant_id,
            )

        return self._run(f"ChangeStatus[{change.target.value}]", attempt)

    def run_details_update(
        self,
        tenant_id: str,
        command: UpdateDetails,
        *,
        actor_id: Optional[str] = None,
        context: Optional[dict] = None,
    ) -> BookingResult:
        def attempt(session: Session) -> BookingResult:
            return self._update_details(
                _Attempt(session=session, now=self._clock(), actor_id=actor_id, context=context or {}),
                tenant_id,
                command,
            )

        try:
            return self._run("UpdateDetails", attempt)
        except BookingUnavailableError:
            return BookingResult.system()

    # ------------------------------------------------------------------
    # Transaction and retry handling
    # ------------------------------------------------------------------

    def _run(self, label: str, work: Callable[[Session], T]) -> T:
        policy = self._retry_policy
        attempt = 0
        while True:
            attempt += 1
            session = self._session_factory()
            try:
                self._apply_timeouts(session)
                return work(session)
            except SQLAlchemyError as exc:
                session.rollback()
                if is_transient_error(exc) and attempt < policy.max_attempts:
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        "%s hit a transient database error (%s), retrying attempt %d/%d in %.3fs",
                        label,
                        exc.__class__.__name__,
                        attempt + 1,
                        policy.max_attempts,
                        delay,
                    )
                    self._sleep(delay)
                    continue
                logger.exception("%s failed after %d attempt(s)", label, attempt)
                raise BookingUnavailableError("Booking store unavailable") from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _apply_timeouts(self, session: Session) -> None:
        if not self._transaction_timeout_ms:
            return
        if session.get_bind().dialect.name != "postgresql":
            return
        timeout = int(self._transaction_timeout_ms)
        session.execute(text(f"SET LOCAL lock_timeout = {timeout}"))
        session.execute(text(f"SET LOCAL statement_timeout = {timeout}"))

    # ------------------------------------------------------------------
    # Locking and reads inside the transaction
    # ------------------------------------------------------------------

    def _lock_practitioner(self, session: Session, tenant_id: str, practitioner_id: str) -> Practitioner:
        practitioner = session.exec(
            select(Practitioner)
            .where(Practitioner.id == practitioner_id, Practitioner.tenant_id == tenant_id)
            .with_for_update()
        ).first()
        if practitioner is None:
            raise PractitionerNotFoundError(practitioner_id)
        return practitioner

    def _active_intervals(
        self,
        session: Session,
        tenant_id: str,
        practitioner_id: str,
        start_utc: datetime,
        end_utc: datetime,
    ) -> List[Interval]:
        rows = session.exec(
            select(Appointment)
            .where(
                Appointment.tenant_id == tenant_id,
                Appointment.practitioner_id == practitioner_id,
                Appointment.status.notin_([status.value for status in INACTIVE_STATUSES]),
                Appointment.start_utc < end_utc,
                Appointment.end_utc > start_utc,
            )
            .execution_options(populate_existing=True)
        ).all()
        return [interval_from_row(row) for row in rows]

    def _reload(self, session: Session, appointment_id: str) -> Optional[Appointment]:
        return session.exec(
            select(Appointment)
            .where(Appointment.id == appointment_id)
            .execution_options(populate_existing=True)
        ).first()

    def _lock_for_appointment(
        self, session: Session, appointment_id: str, tenant_id: Optional[str]
    ) -> Appointment:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None or (tenant_id is not None and appointment.tenant_id != tenant_id):
            raise AppointmentNotFoundError(appointment_id)
        if appointment.practitioner_id:
            self._lock_practitioner(session, appointment.tenant_id, appointment.practitioner_id)
        appointment = self._reload(session, appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _conflict(self, session: Session, label: str, conflicts: List[Interval]) -> BookingResult:
        session.rollback()
        logger.info("%s rejected: %d conflicting appointment(s)", label, len(conflicts))
        return BookingResult.failed(
            FailureReason.CONFLICT,
            "PRACTITIONER_OVERLAP",
            "The practitioner already has an appointment in this time range",
            conflicts=conflicts,
        )

    def _schedule_reminders(self, state: _Attempt, appointment: Appointment) -> None:
        specs = derive_reminders(appointment.start_utc, state.now, self._reminder_offsets)
        insert_reminders(state.session, appointment.id, specs, state.now)

    def _add_status_history(
        self,
        state: _Attempt,
        appointment_id: str,
        from_status: Optional[str],
        to_status: str,
        note: Optional[str] = None,
    ) -> None:
        state.session.add(
            AppointmentStatusHistory(
                appointment_id=appointment_id,
                from_status=from_status,
                to_status=to_status,
                changed_by=state.actor_id,
                changed_at=state.now,
                note=note,
            )
        )

    def _finish(self, state: _Attempt, appointment: Appointment) -> AppointmentRead:
        state.session.flush()
        read = build_appointment_read(state.session, appointment)
        state.session.commit()
        return read

    def _insert(
        self,
        state: _Attempt,
        tenant_id: str,
        practitioner_id: Optional[str],
        operation: InsertAppointment,
    ) -> BookingResult:
        session = state.session
        data = operation.appointment

        if practitioner_id is not None:
            practitioner = self._lock_practitioner(session, tenant_id, practitioner_id)
            if not practitioner.is_active:
                session.rollback()
                return BookingResult.validation("PRACTITIONER_INACTIVE", "The practitioner is not accepting bookings")

        if data.idempotency_key:
            existing = session.exec(
                select(Appointment).where(
                    Appointment.tenant_id == tenant_id,
                    Appointment.idempotency_key == data.idempotency_key,
                )
            ).first()
            if existing is not None:
                logger.info("Idempotent replay of create for appointment %s", existing.id)
                read = build_appointment_read(session, existing)
                session.rollback()
                return BookingResult.succeeded(read)

        if practitioner_id is not None:
            report = has_conflict(
                Candidate(tenant_id, practitioner_id, data.start_utc, data.end_utc),
                self._active_intervals(session, tenant_id, practitioner_id, data.start_utc, data.end_utc),
            )
            if report.has_conflict:
                return self._conflict(session, "Create", report.conflicts)

        appointment = Appointment(
            tenant_id=tenant_id,
            patient_id=data.patient_id,
            practitioner_id=practitioner_id,
            service_type=ServiceType(data.service_type).value,
            title=data.title,
            description=data.description,
            notes=data.notes,
            price=data.price,
            start_utc=data.start_utc,
            end_utc=data.end_utc,
            timezone=data.timezone,
            duration_minutes=duration_minutes(data.start_utc, data.end_utc),
            status=AppointmentStatus.SCHEDULED.value,
            idempotency_key=data.idempotency_key,
            created_by=state.actor_id,
            updated_by=state.actor_id,
            created_at=state.now,
            updated_at=state.now,
        )
        session.add(appointment)
        session.flush()

        self._schedule_reminders(state, appointment)
        self._add_status_history(state, appointment.id, None, appointment.status)
        audit.record_event(
            session,
            tenant_id=tenant_id,
            actor_id=state.actor_id,
            action="appointment.create",
            resource_type="appointment",
            resource_id=appointment.id,
            timestamp=state.now,
            metadata=ensure_appointment_metadata(
                patient_id=appointment.patient_id,
                extra={
                    "practitioner_id": practitioner_id,
                    "start_utc": appointment.start_utc.isoformat(),
                    "end_utc": appointment.end_utc.isoformat(),
                },
            ),
            context=state.context,
        )

        read = self._finish(state, appointment)
        logger.info(
            "Booked appointment %s for practitioner %s (%s - %s)",
            appointment.id,
            practitioner_id,
            appointment.start_utc.isoformat(),
            appointment.end_utc.isoformat(),
        )
        return BookingResult.succeeded(read)

    def _move(
        self,
        state: _Attempt,
        tenant_id: str,
        practitioner_id: Optional[str],
        operation: MoveAppointment,
    ) -> BookingResult:
        session = state.session

        if practitioner_id is not None:
            self._lock_practitioner(session, tenant_id, practitioner_id)

        appointment = self._reload(session, operation.appointment_id)
        if appointment is None or appointment.tenant_id != tenant_id:
            raise AppointmentNotFoundError(operation.appointment_id)
        if appointment.practitioner_id != practitioner_id:
            session.rollback()
            return BookingResult.validation(
                "PRACTITIONER_MISMATCH", "The appointment is not held by the requested practitioner"
            )
        if AppointmentStatus(appointment.status) not in RESCHEDULABLE_STATUSES:
            session.rollback()
            return BookingResult.validation(
                "INVALID_STATUS", f"An appointment in status '{appointment.status}' cannot be rescheduled"
            )

        if practitioner_id is not None:
            report = has_conflict(
                Candidate(tenant_id, practitioner_id, operation.start_utc, operation.end_utc),
                self._active_intervals(session, tenant_id, practitioner_id, operation.start_utc, operation.end_utc),
                exclude_id=appointment.id,
            )
            if report.has_conflict:
                return self._conflict(session, "Reschedule", report.conflicts)

        previous_start = appointment.start_utc
        previous_end = appointment.end_utc

        if appointment.original_scheduled_at is None:
            appointment.original_scheduled_at = previous_start
        appointment.start_utc = operation.start_utc
        appointment.end_utc = operation.end_utc
        appointment.duration_minutes = duration_minutes(operation.start_utc, operation.end_utc)
        appointment.rescheduled_count += 1
        appointment.version += 1
        appointment.updated_by = state.actor_id
        appointment.updated_at = state.now
        session.add(appointment)
        session.flush()

        cancel_pending_reminders(session, appointment.id, state.now)
        self._schedule_reminders(state, appointment)

        self._add_status_history(state, appointment.id, appointment.status, "rescheduled", operation.reason)
        audit.record_event(
            session,
            tenant_id=tenant_id,
            actor_id=state.actor_id,
            action="appointment.reschedule",
            resource_type="appointment",
            resource_id=appointment.id,
            timestamp=state.now,
            metadata=ensure_appointment_metadata(
                patient_id=appointment.patient_id,
                reason=operation.reason,
                extra={
                    "previous_start": previous_start.isoformat(),
                    "previous_end": previous_end.isoformat(),
                    "start_utc": appointment.start_utc.isoformat(),
                    "end_utc": appointment.end_utc.isoformat(),
                    "rescheduled_count": appointment.rescheduled_count,
                },
            ),
            context=state.context,
        )

        read = self._finish(state, appointment)
        logger.info("Rescheduled appointment %s to %s", appointment.id, appointment.start_utc.isoformat())
        return BookingResult.succeeded(read)

    def _change_status(
        self, state: _Attempt, change: ChangeStatus, tenant_id: Optional[str]
    ) -> StatusChangeOutcome:
        session = state.session
        appointment = self._lock_for_appointment(session, change.appointment_id, tenant_id)
        previous = AppointmentStatus(appointment.status)

        values = {
            "status": change.target.value,
            "updated_by": state.actor_id,
            "updated_at": state.now,
            "version": Appointment.version + 1,
        }
        if change.target == AppointmentStatus.CONFIRMED:
            values.update(confirmed_at=state.now, confirmed_by=state.actor_id)
        if change.target == AppointmentStatus.CANCELLED:
            values.update(cancelled_at=state.now, cancelled_by=state.actor_id, cancelled_reason=change.reason)

        result = session.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.status.in_([status.value for status in change.allowed_from]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            session.rollback()
            logger.info(
                "Status change of appointment %s to %s skipped, current status is %s",
                change.appointment_id,
                change.target.value,
                previous.value,
            )
            return StatusChangeOutcome(applied=False, previous_status=previous)

        reminders_cancelled = 0
        if change.target in TERMINAL_STATUSES:
            reminders_cancelled = cancel_pending_reminders(session, appointment.id, state.now)

        self._add_status_history(state, appointment.id, previous.value, change.target.value, change.reason)
        extra = {"status": change.target.value, "previous_status": previous.value}
        if change.target == AppointmentStatus.CANCELLED:
            extra["reminders_cancelled"] = reminders_cancelled
        audit.record_event(
            session,
            tenant_id=appointment.tenant_id,
            actor_id=state.actor_id,
            action=f"appointment.{_STATUS_ACTIONS[change.target]}",
            resource_type="appointment",
            resource_id=appointment.id,
            timestamp=state.now,
            metadata=ensure_appointment_metadata(
                patient_id=appointment.patient_id,
                reason=change.reason,
                extra=extra,
            ),
            context=state.context,
        )

        refreshed = self._reload(session, appointment.id)
        read = self._finish(state, refreshed)
        logger.info("Appointment %s moved from %s to %s", appointment.id, previous.value, change.target.value)
        return StatusChangeOutcome(
            applied=True,
            previous_status=previous,
            appointment=read,
            reminders_cancelled=reminders_cancelled,
        )

    def _update_details(self, state: _Attempt, tenant_id: str, command: UpdateDetails) -> BookingResult:
        session = state.session
        appointment = self._lock_for_appointment(session, command.appointment_id, tenant_id)
        if AppointmentStatus(appointment.status) in TERMINAL_STATUSES:
            session.rollback()
            return BookingResult.validation(
                "INVALID_STATUS", f"An appointment in status '{appointment.status}' cannot be edited"
            )

        changed_fields = [_apply_detail(appointment, change) for change in command.changes]
        if not changed_fields:
            read = build_appointment_read(session, appointment)
            session.rollback()
            return BookingResult.succeeded(read)

        appointment.version += 1
        appointment.updated_by = state.actor_id
        appointment.updated_at = state.now
        session.add(appointment)
        audit.record_event(
            session,
            tenant_id=tenant_id,
            actor_id=state.actor_id,
            action="appointment.update",
            resource_type="appointment",
            resource_id=appointment.id,
            timestamp=state.now,
            metadata=ensure_appointment_metadata(
                patient_id=appointment.patient_id,
                extra={"fields": sorted(set(changed_fields))},
            ),
            context=state.context,
        )
        return BookingResult.succeeded(self._finish(state, appointment))


_STATUS_ACTIONS = {
    AppointmentStatus.CONFIRMED: "confirm",
    AppointmentStatus.IN_PROGRESS: "start",
    AppointmentStatus.COMPLETED: "complete",
    AppointmentStatus.CANCELLED: "cancel",
    AppointmentStatus.NO_SHOW: "no_show",
    AppointmentStatus.SCHEDULED: "schedule",
}
