from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, JSON
from sqlmodel import Field, SQLModel

from booking.models.base import new_id


class AuditEvent(SQLModel, table=True):
    __tablename__ = "audit_events"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)
    tenant_id: Optional[str] = Field(default=None, index=True, max_length=64)
    actor_id: Optional[str] = Field(default=None, max_length=64)
    action: str = Field(max_length=100)
    resource_type: str = Field(max_length=50)
    resource_id: Optional[str] = Field(default=None, index=True, max_length=100)
    metadata_json: dict = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False, default=dict),
    )
    context: dict = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False, default=dict),
    )
    timestamp: datetime = Field(index=True, sa_type=DateTime())
