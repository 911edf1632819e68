from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Mapping, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from booking.db.session import SessionFactory
from booking.models import AppointmentReminder, ReminderStatus, ReminderType

DEFAULT_REMINDER_OFFSETS: Mapping[str, int] = {
    ReminderType.EMAIL.value: 24 * 60,
    ReminderType.SMS.value: 2 * 60,
    ReminderType.PUSH.value: 15,
}


@dataclass(frozen=True)
class ReminderSpec:
    reminder_type: ReminderType
    scheduled_for: datetime


def derive_reminders(
    start_utc: datetime,
    now: datetime,
    offsets_minutes: Optional[Mapping[str, int]] = None,
) -> List[ReminderSpec]:
    """Reminder specs for an appointment starting at ``start_utc``.

    Reminders that would fire at or before ``now`` are dropped. The result is
    ordered by ``scheduled_for``.
    """
    offsets = DEFAULT_REMINDER_OFFSETS if offsets_minutes is None else offsets_minutes
    specs: List[ReminderSpec] = []
    for reminder_type, minutes in offsets.items():
        scheduled_for = start_utc - timedelta(minutes=minutes)
        if scheduled_for > now:
            specs.append(ReminderSpec(reminder_type=ReminderType(reminder_type), scheduled_for=scheduled_for))
    specs.sort(key=lambda spec: spec.scheduled_for)
    return specs


def cancel_pending_reminders(session: Session, appointment_id: str, now: datetime) -> int:
    result = session.execute(
        update(AppointmentReminder)
        .where(
            AppointmentReminder.appointment_id == appointment_id,
            AppointmentReminder.status == ReminderStatus.PENDING.value,
        )
        .values(status=ReminderStatus.CANCELLED.value, updated_at=now)
    )
    return result.rowcount or 0


def insert_reminders(
    session: Session, appointment_id: str, specs: List[ReminderSpec], now: datetime
) -> List[AppointmentReminder]:
    rows = [
        AppointmentReminder(
            appointment_id=appointment_id,
            reminder_type=spec.reminder_type.value,
            scheduled_for=spec.scheduled_for,
            status=ReminderStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        for spec in specs
    ]
    session.add_all(rows)
    session.flush()
    return rows


class ReminderOutbox:
    """Polling interface for the external reminder dispatcher."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def fetch_due(self, now: datetime, limit: int = 100) -> List[AppointmentReminder]:
        with self._session_factory() as session:
            rows = session.exec(
                select(AppointmentReminder)
                .where(
                    AppointmentReminder.status == ReminderStatus.PENDING.value,
                    AppointmentReminder.scheduled_for <= now,
                )
                .order_by(AppointmentReminder.scheduled_for)
                .limit(limit)
            ).all()
            session.commit()
            return list(rows)

    def mark_sent(self, reminder_id: str, sent_at: datetime) -> bool:
        return self._finish(reminder_id, ReminderStatus.SENT, sent_at=sent_at, error=None, now=sent_at)

    def mark_failed(self, reminder_id: str, error: str, now: datetime) -> bool:
        return self._finish(reminder_id, ReminderStatus.FAILED, sent_at=None, error=error, now=now)

    def _finish(
        self,
        reminder_id: str,
        status: ReminderStatus,
        *,
        sent_at: Optional[datetime],
        error: Optional[str],
        now: datetime,
    ) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                update(AppointmentReminder)
                .where(
                    AppointmentReminder.id == reminder_id,
                    AppointmentReminder.status == ReminderStatus.PENDING.value,
                )
                .values(
                    status=status.value,
                    sent_at=sent_at,
                    error_message=error[:1000] if error else None,
                    attempts=AppointmentReminder.attempts + 1,
                    updated_at=now,
                )
            )
            session.commit()
            return bool(result.rowcount)
