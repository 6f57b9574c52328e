"""SQLAlchemy ORM model for the client records read by the verification pipeline.

The ``client_profiles`` table is owned by the client record service; only the
columns this pipeline reads or writes are mapped here.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ClientProfileRow(Base):
    """Client record (subset).

    Fields:
        - client_id: Primary key (UUID)
        - first_name / last_name: Legal names as registered
        - date_of_birth: Registered date of birth
        - email_address: Contact email (unique)
        - status: PENDING | ACTIVE | INACTIVE
        - agent_id: Agent who owns the record
        - updated_at: Last update timestamp
    """
    __tablename__ = "client_profiles"

    client_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    first_name: Mapped[str] = mapped_column(String)
    last_name: Mapped[str] = mapped_column(String)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    email_address: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    status: Mapped[str] = mapped_column(String, default="PENDING")
    agent_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
