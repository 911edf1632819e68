"""Row <-> domain mapping at the storage boundary."""

from __future__ import annotations

from typing import List

from sqlmodel import Session, select

from booking.core.timeutils import as_aware_utc, to_local
from booking.models import (
    Appointment,
    AppointmentReminder,
    AppointmentStatus,
    AppointmentStatusHistory,
    ReminderStatus,
    ServiceType,
)
from booking.schemas.appointment import (
    AppointmentRead,
    AppointmentStatusRead,
    AppointmentSummary,
    ConflictingAppointment,
    ReminderRead,
)
from booking.services.conflicts import Interval


def interval_from_row(appointment: Appointment) -> Interval:
    return Interval(
        id=appointment.id,
        tenant_id=appointment.tenant_id,
        practitioner_id=appointment.practitioner_id,
        start=appointment.start_utc,
        end=appointment.end_utc,
        status=AppointmentStatus(appointment.status),
        patient_id=appointment.patient_id,
    )


def conflict_view(interval: Interval) -> ConflictingAppointment:
    return ConflictingAppointment(
        id=interval.id,
        patient_id=interval.patient_id,
        start_utc=as_aware_utc(interval.start),
        end_utc=as_aware_utc(interval.end),
        status=interval.status,
    )


def _summary_fields(appointment: Appointment) -> dict:
    return {
        "id": appointment.id,
        "tenant_id": appointment.tenant_id,
        "patient_id": appointment.patient_id,
        "practitioner_id": appointment.practitioner_id,
        "service_type": ServiceType(appointment.service_type),
        "start_utc": as_aware_utc(appointment.start_utc),
        "end_utc": as_aware_utc(appointment.end_utc),
        "timezone": appointment.timezone,
        "local_start": to_local(appointment.start_utc, appointment.timezone),
        "local_end": to_local(appointment.end_utc, appointment.timezone),
        "duration_minutes": appointment.duration_minutes,
        "status": AppointmentStatus(appointment.status),
    }


def build_summary(appointment: Appointment) -> AppointmentSummary:
    return AppointmentSummary(**_summary_fields(appointment))


def build_appointment_read(session: Session, appointment: Appointment) -> AppointmentRead:
    reminders: List[AppointmentReminder] = session.exec(
        select(AppointmentReminder)
        .where(
            AppointmentReminder.appointment_id == appointment.id,
            AppointmentReminder.status != ReminderStatus.CANCELLED.value,
        )
        .order_by(AppointmentReminder.scheduled_for)
    ).all()
    history: List[AppointmentStatusHistory] = session.exec(
        select(AppointmentStatusHistory)
        .where(AppointmentStatusHistory.appointment_id == appointment.id)
        .order_by(AppointmentStatusHistory.changed_at.desc())
    ).all()
    return AppointmentRead(
        **_summary_fields(appointment),
        title=appointment.title,
        description=appointment.description,
        notes=appointment.notes,
        price=appointment.price,
        created_at=as_aware_utc(appointment.created_at),
        updated_at=as_aware_utc(appointment.updated_at),
        created_by=appointment.created_by,
        updated_by=appointment.updated_by,
        confirmed_at=as_aware_utc(appointment.confirmed_at),
        confirmed_by=appointment.confirmed_by,
        cancelled_at=as_aware_utc(appointment.cancelled_at),
        cancelled_by=appointment.cancelled_by,
        cancelled_reason=appointment.cancelled_reason,
        rescheduled_count=appointment.rescheduled_count,
        original_scheduled_at=as_aware_utc(appointment.original_scheduled_at),
        version=appointment.version,
        reminders=[
            ReminderRead(
                id=reminder.id,
                reminder_type=reminder.reminder_type,
                scheduled_for=as_aware_utc(reminder.scheduled_for),
                status=reminder.status,
            )
            for reminder in reminders
        ],
        status_history=[
            AppointmentStatusRead(
                from_status=entry.from_status,
                to_status=entry.to_status,
                changed_at=as_aware_utc(entry.changed_at),
                changed_by=entry.changed_by,
                note=entry.note,
            )
            for entry in history
        ],
    )
