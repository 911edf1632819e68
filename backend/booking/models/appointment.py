from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, UniqueConstraint
from sqlmodel import Field, SQLModel

from booking.models.base import TimestampMixin, new_id


class Appointment(TimestampMixin, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("end_utc > start_utc", name="ck_appointments_time_order"),
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_appointments_idempotency"),
        Index("ix_appointments_practitioner_window", "practitioner_id", "start_utc", "end_utc"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    tenant_id: str = Field(index=True, max_length=64)
    patient_id: str = Field(index=True, max_length=64)
    practitioner_id: Optional[str] = Field(default=None, foreign_key="practitioners.id", max_length=36)
    service_type: str = Field(max_length=32)
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[Decimal] = Field(default=None, sa_type=Numeric(10, 2))
    start_utc: datetime = Field(sa_type=DateTime())
    end_utc: datetime = Field(sa_type=DateTime())
    timezone: str = Field(default="Europe/Paris", max_length=64)
    duration_minutes: int
    status: str = Field(default="scheduled", max_length=32, index=True)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)
    created_by: Optional[str] = Field(default=None, max_length=64)
    updated_by: Optional[str] = Field(default=None, max_length=64)
    confirmed_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    confirmed_by: Optional[str] = Field(default=None, max_length=64)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    cancelled_by: Optional[str] = Field(default=None, max_length=64)
    cancelled_reason: Optional[str] = Field(default=None, max_length=255)
    rescheduled_count: int = Field(default=0)
    original_scheduled_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    version: int = Field(default=1)


class AppointmentReminder(TimestampMixin, table=True):
    __tablename__ = "appointment_reminders"
    __table_args__ = (Index("ix_appointment_reminders_schedule", "scheduled_for", "status"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    appointment_id: str = Field(foreign_key="appointments.id", index=True, max_length=36)
    reminder_type: str = Field(max_length=16)
    scheduled_for: datetime = Field(sa_type=DateTime())
    status: str = Field(default="pending", max_length=16)
    sent_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    attempts: int = Field(default=0)
    error_message: Optional[str] = Field(default=None, max_length=1000)


class AppointmentStatusHistory(SQLModel, table=True):
    __tablename__ = "appointment_status_history"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    appointment_id: str = Field(foreign_key="appointments.id", index=True, max_length=36)
    from_status: Optional[str] = Field(default=None, max_length=32)
    to_status: str = Field(max_length=32)
    changed_by: Optional[str] = Field(default=None, max_length=64)
    changed_at: datetime = Field(sa_type=DateTime())
    note: Optional[str] = Field(default=None, max_length=255)
