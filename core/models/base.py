"""Declarative base and shared columns for the integration records.

Natural keys (user + provider, provider + event id, booking external id)
are unique constraints on each record; ``id`` is only a surrogate.
Timestamps are set on the Python side so an entity built right after a
flush already carries them.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from core.integrations.entities import utcnow


class Base(DeclarativeBase):
    pass


class RecordMixin:
    """Surrogate key plus created/updated timestamps (timezone-aware UTC)."""

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
