from booking.models.appointment import Appointment, AppointmentReminder, AppointmentStatusHistory
from booking.models.audit import AuditEvent
from booking.models.enums import (
    ALLOWED_TRANSITIONS,
    CANCELLABLE_STATUSES,
    INACTIVE_STATUSES,
    TERMINAL_STATUSES,
    AppointmentStatus,
    ReminderStatus,
    ReminderType,
    ServiceType,
)
from booking.models.practitioner import Practitioner
