from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from booking.schemas.appointment import AppointmentRead, FreeSlot
    from booking.services.conflicts import Interval


class FailureReason(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    SYSTEM = "system"


@dataclass
class BookingFailure:
    reason: FailureReason
    code: str
    message: str
    conflicts: List["Interval"] = field(default_factory=list)
    alternatives: List["FreeSlot"] = field(default_factory=list)


@dataclass
class BookingResult:
    appointment: Optional["AppointmentRead"] = None
    failure: Optional[BookingFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def succeeded(cls, appointment: "AppointmentRead") -> "BookingResult":
        return cls(appointment=appointment)

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        code: str,
        message: str,
        *,
        conflicts: Optional[List["Interval"]] = None,
    ) -> "BookingResult":
        return cls(
            failure=BookingFailure(
                reason=reason,
                code=code,
                message=message,
                conflicts=list(conflicts or []),
            )
        )

    @classmethod
    def validation(cls, code: str, message: str) -> "BookingResult":
        return cls.failed(FailureReason.VALIDATION, code, message)

    @classmethod
    def system(cls) -> "BookingResult":
        return cls.failed(
            FailureReason.SYSTEM,
            "SYSTEM_UNAVAILABLE",
            "The booking could not be completed, please retry later",
        )


class BookingError(Exception):
    pass


class NotFoundError(BookingError):
    pass


class AppointmentNotFoundError(NotFoundError):
    pass


class PractitionerNotFoundError(NotFoundError):
    pass


class InvalidIntervalError(ValueError):
    pass


# SQLSTATE codes that mean "try the same transaction again"
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
TRANSIENT_MESSAGES = ("database is locked", "deadlock detected", "could not serialize access")


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, IntegrityError):
        message = str(exc).lower()
        return "unique" in message or "duplicate" in message
    if isinstance(exc, (OperationalError, DBAPIError)):
        if _sqlstate(exc) in TRANSIENT_SQLSTATES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in TRANSIENT_MESSAGES)
    return False
