from __future__ import annotations

import builtins
from datetime import datetime

import pytest
from sqlalchemy import DateTime, inspect

from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from booking.db.session import engine, get_alembic_config, init_db
from booking.models import Appointment, AppointmentReminder, AppointmentStatusHistory, AuditEvent


def test_alembic_head_is_applied() -> None:
    init_db()
    config = get_alembic_config()
    script = ScriptDirectory.from_config(config)
    head_revision = script.get_current_head()

    with engine.connect() as connection:
        context = MigrationContext.configure(connection)
        current_revision = context.get_current_revision()

    assert current_revision == head_revision


def test_booking_tables_and_indexes_exist() -> None:
    init_db()
    inspector = inspect(engine)

    assert {
        "practitioners",
        "appointments",
        "appointment_reminders",
        "appointment_status_history",
        "audit_events",
    } <= set(inspector.get_table_names())
    index_names = {index["name"] for index in inspector.get_indexes("appointments")}
    assert "ix_appointments_practitioner_window" in index_names


def test_init_db_requires_alembic(monkeypatch: pytest.MonkeyPatch) -> None:
    import booking.db.session as session

    real_import = builtins.__import__

    def fake_import(name: str, *args: object, **kwargs: object):
        if name.startswith("alembic"):
            raise ImportError("mocked alembic missing")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", fake_import)

    with pytest.raises(RuntimeError) as excinfo:
        session.init_db()

    message = str(excinfo.value)
    assert "Alembic is required" in message
    assert "pip install -e ." in message


@pytest.mark.parametrize("model", [Appointment, AppointmentReminder, AppointmentStatusHistory, AuditEvent])
def test_instant_columns_store_naive_utc(model: type) -> None:
    columns = [column for column in model.__table__.columns if column.type.python_type is datetime]

    assert columns
    for column in columns:
        assert type(column.type) is DateTime, column.name
        assert column.type.timezone is False, column.name
