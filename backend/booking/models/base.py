from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, func
from sqlmodel import Field, SQLModel


def new_id() -> str:
    return str(uuid4())


class TimestampMixin(SQLModel):
    """Reusable created/updated timestamp columns for SQLModel tables."""

    created_at: datetime = Field(
        default=None,
        sa_type=DateTime(),
        sa_column_kwargs={
            "nullable": False,
            "server_default": func.now(),
        },
    )
    updated_at: datetime = Field(
        default=None,
        sa_type=DateTime(),
        sa_column_kwargs={
            "nullable": False,
            "server_default": func.now(),
            "onupdate": func.now(),
        },
    )
