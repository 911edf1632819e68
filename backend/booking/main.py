from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booking.api.v1 import appointments, practitioners
from booking.core.config import Settings, settings
from booking.core.logging import configure_logging
from booking.core.timeutils import utc_now
from booking.db.session import SessionFactory, init_db, session_factory
from booking.services.coordinator import BookingCoordinator, Clock
from booking.services.lifecycle import AppointmentLifecycleManager
from booking.services.schedule import ScheduleReader


def create_app(
    config: Settings = settings,
    sessions: Optional[SessionFactory] = None,
    *,
    clock: Clock = utc_now,
    run_migrations: bool = True,
) -> FastAPI:
    configure_logging(config)
    sessions = sessions or session_factory

    application = FastAPI(title=config.project_name)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    schedule = ScheduleReader(sessions)
    coordinator = BookingCoordinator.from_settings(sessions, config, clock=clock)
    application.state.schedule = schedule
    application.state.coordinator = coordinator
    application.state.lifecycle = AppointmentLifecycleManager(coordinator, schedule, config=config)

    @application.on_event("startup")
    def on_startup() -> None:
        if run_migrations:
            init_db(config.database_url)

    @application.get("/healthz", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    application.include_router(appointments.router, prefix="/api/v1")
    application.include_router(practitioners.router, prefix="/api/v1")
    return application


app = create_app()
