from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from booking.models.enums import AppointmentStatus, ReminderStatus, ReminderType, ServiceType


class AppointmentCreate(BaseModel):
    patient_id: str
    practitioner_id: Optional[str] = None
    service_type: ServiceType
    start_utc: datetime
    end_utc: datetime
    timezone: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[Decimal] = Field(default=None, ge=0)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class AppointmentRescheduleRequest(BaseModel):
    start_utc: datetime
    end_utc: datetime
    reason: Optional[str] = Field(default=None, max_length=255)


class AppointmentCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class AppointmentConfirmRequest(BaseModel):
    confirmed_by: Optional[str] = None


class AppointmentTransitionRequest(BaseModel):
    status: AppointmentStatus
    note: Optional[str] = Field(default=None, max_length=255)


class AppointmentDetailsUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[Decimal] = Field(default=None, ge=0)
    service_type: Optional[ServiceType] = None


class ReminderRead(BaseModel):
    id: str
    reminder_type: ReminderType
    scheduled_for: datetime
    status: ReminderStatus


class AppointmentStatusRead(BaseModel):
    from_status: Optional[AppointmentStatus] = None
    to_status: str
    changed_at: datetime
    changed_by: Optional[str] = None
    note: Optional[str] = None


class AppointmentSummary(BaseModel):
    id: str
    tenant_id: str
    patient_id: str
    practitioner_id: Optional[str]
    service_type: ServiceType
    start_utc: datetime
    end_utc: datetime
    timezone: str
    local_start: datetime
    local_end: datetime
    duration_minutes: int
    status: AppointmentStatus


class AppointmentRead(AppointmentSummary):
    title: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    price: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_reason: Optional[str] = None
    rescheduled_count: int = 0
    original_scheduled_at: Optional[datetime] = None
    version: int = 1
    reminders: List[ReminderRead] = Field(default_factory=list)
    status_history: List[AppointmentStatusRead] = Field(default_factory=list)


class ConflictingAppointment(BaseModel):
    id: str
    patient_id: Optional[str] = None
    start_utc: datetime
    end_utc: datetime
    status: AppointmentStatus


class FreeSlot(BaseModel):
    start_utc: datetime
    end_utc: datetime


class AvailabilityRead(BaseModel):
    practitioner_id: str
    start_utc: datetime
    end_utc: datetime
    available: bool
    conflicts: List[ConflictingAppointment] = Field(default_factory=list)


class BookingFailureRead(BaseModel):
    reason: str
    code: str
    message: str
    conflicts: List[ConflictingAppointment] = Field(default_factory=list)
    alternatives: List[FreeSlot] = Field(default_factory=list)


class CancelResponse(BaseModel):
    cancelled: bool
