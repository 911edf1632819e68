from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class ServiceType(str, Enum):
    CONSULTATION = "consultation"
    CLEANING = "cleaning"
    FILLING = "filling"
    ROOT_CANAL = "root_canal"
    EXTRACTION = "extraction"
    CROWN = "crown"
    IMPLANT = "implant"
    ORTHODONTICS = "orthodontics"
    EMERGENCY = "emergency"


class ReminderType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses that no longer occupy the practitioner's timeline
INACTIVE_STATUSES: FrozenSet[AppointmentStatus] = frozenset(
    {AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

TERMINAL_STATUSES: FrozenSet[AppointmentStatus] = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

# cancel() is a conditional update rather than a graph edge: it applies to any
# appointment that is not already COMPLETED or CANCELLED
CANCELLABLE_STATUSES: FrozenSet[AppointmentStatus] = frozenset(AppointmentStatus) - {
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
}

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def sources_for(target: AppointmentStatus) -> FrozenSet[AppointmentStatus]:
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )
