from booking.schemas.appointment import (
    AppointmentCancelRequest,
    AppointmentConfirmRequest,
    AppointmentCreate,
    AppointmentDetailsUpdate,
    AppointmentRead,
    AppointmentRescheduleRequest,
    AppointmentStatusRead,
    AppointmentSummary,
    AppointmentTransitionRequest,
    AvailabilityRead,
    BookingFailureRead,
    CancelResponse,
    ConflictingAppointment,
    FreeSlot,
    ReminderRead,
)
