from __future__ import annotations

import random
from datetime import datetime, timedelta

from sqlmodel import select

from booking.db.session import session_factory
from booking.models import AppointmentReminder, ReminderStatus, ReminderType
from booking.services.reminders import ReminderOutbox, derive_reminders
from booking.services.lifecycle import AppointmentLifecycleManager
from booking.tests.factories import NOW, TENANT_ID, USER_ID, at, make_request, query_all


def test_derives_email_sms_and_push_offsets() -> None:
    start = datetime(2030, 1, 3, 14, 0)

    specs = derive_reminders(start, NOW)

    assert [(spec.reminder_type, spec.scheduled_for) for spec in specs] == [
        (ReminderType.EMAIL, start - timedelta(hours=24)),
        (ReminderType.SMS, start - timedelta(hours=2)),
        (ReminderType.PUSH, start - timedelta(minutes=15)),
    ]


def test_reminders_in_the_past_are_dropped() -> None:
    start = NOW + timedelta(hours=1)

    specs = derive_reminders(start, NOW)

    assert [spec.reminder_type for spec in specs] == [ReminderType.PUSH]


def test_reminder_exactly_at_now_is_dropped() -> None:
    start = NOW + timedelta(minutes=15)

    assert derive_reminders(start, NOW) == []


def test_custom_offsets() -> None:
    start = NOW + timedelta(days=2)

    specs = derive_reminders(start, NOW, {"sms": 30})

    assert len(specs) == 1
    assert specs[0].reminder_type == ReminderType.SMS
    assert specs[0].scheduled_for == start - timedelta(minutes=30)


def test_derived_reminders_are_always_in_the_future() -> None:
    rng = random.Random(7)
    for _ in range(500):
        now = NOW + timedelta(minutes=rng.randint(0, 10_000))
        start = NOW + timedelta(minutes=rng.randint(-2_000, 12_000))
        for spec in derive_reminders(start, now):
            assert spec.scheduled_for > now


def test_outbox_returns_due_reminders_and_records_delivery(
    practitioners: None, lifecycle: AppointmentLifecycleManager
) -> None:
    result = lifecycle.create(TENANT_ID, make_request(at(14)), USER_ID)
    assert result.ok
    outbox = ReminderOutbox(session_factory)

    assert outbox.fetch_due(NOW) == []

    due = outbox.fetch_due(at(13, 0))
    assert {reminder.reminder_type for reminder in due} == {"email", "sms"}

    email = next(reminder for reminder in due if reminder.reminder_type == "email")
    sms = next(reminder for reminder in due if reminder.reminder_type == "sms")
    assert outbox.mark_sent(email.id, at(13, 1)) is True
    assert outbox.mark_failed(sms.id, "SMS gateway timeout", at(13, 1)) is True
    assert outbox.mark_sent(email.id, at(13, 2)) is False

    rows = {
        row.reminder_type: row
        for row in query_all(
            select(AppointmentReminder).where(AppointmentReminder.appointment_id == result.appointment.id)
        )
    }
    assert rows["email"].status == ReminderStatus.SENT.value
    assert rows["email"].attempts == 1
    assert rows["sms"].status == ReminderStatus.FAILED.value
    assert rows["sms"].error_message == "SMS gateway timeout"
    assert rows["push"].status == ReminderStatus.PENDING.value
    assert [reminder.reminder_type for reminder in outbox.fetch_due(at(14))] == ["push"]
