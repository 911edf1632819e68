from __future__ import annotations

from sqlmodel import Field

from booking.models.base import TimestampMixin, new_id


class Practitioner(TimestampMixin, table=True):
    """Clinical staff member; the row is the booking lock for its timeline."""

    __tablename__ = "practitioners"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    tenant_id: str = Field(index=True, max_length=64)
    display_name: str = Field(max_length=255)
    timezone: str = Field(default="Europe/Paris", max_length=64)
    is_active: bool = Field(default=True)
