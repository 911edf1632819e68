from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[3]
BACKEND_ROOT = PROJECT_ROOT / "backend"

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

TEST_DATABASE = Path(tempfile.gettempdir()) / f"booking-tests-{os.getpid()}.db"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{TEST_DATABASE}")

import pytest  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlmodel import Session  # noqa: E402

from booking.core.config import settings  # noqa: E402
from booking.db.session import engine, init_db, session_factory  # noqa: E402
from booking.models import Practitioner  # noqa: E402
from booking.services.coordinator import BookingCoordinator, RetryPolicy  # noqa: E402
from booking.services.lifecycle import AppointmentLifecycleManager  # noqa: E402
from booking.services.schedule import ScheduleReader  # noqa: E402
from booking.tests.factories import (  # noqa: E402
    NOW,
    OTHER_PRACTITIONER_ID,
    PRACTITIONER_ID,
    TENANT_ID,
    FixedClock,
)

TABLES = (
    "audit_events",
    "appointment_status_history",
    "appointment_reminders",
    "appointments",
    "practitioners",
)


@pytest.fixture(autouse=True)
def prepare_database() -> None:
    init_db()
    with Session(engine) as session:
        for table in TABLES:
            session.execute(text(f"DELETE FROM {table}"))
        session.commit()
    yield


@pytest.fixture
def practitioners() -> None:
    with Session(engine) as db_session:
        db_session.add(Practitioner(id=PRACTITIONER_ID, tenant_id=TENANT_ID, display_name="Dr. Claire Martin"))
        db_session.add(Practitioner(id=OTHER_PRACTITIONER_ID, tenant_id=TENANT_ID, display_name="Dr. Paul Durand"))
        db_session.commit()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def coordinator(clock: FixedClock) -> BookingCoordinator:
    return BookingCoordinator(
        session_factory,
        reminder_offsets=settings.reminder_offsets_minutes,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0),
        clock=clock,
        sleep=lambda _delay: None,
    )


@pytest.fixture
def schedule() -> ScheduleReader:
    return ScheduleReader(session_factory)


@pytest.fixture
def lifecycle(coordinator: BookingCoordinator, schedule: ScheduleReader) -> AppointmentLifecycleManager:
    return AppointmentLifecycleManager(coordinator, schedule, config=settings)
