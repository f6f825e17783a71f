"""Async SQLAlchemy storage collaborators.

Each repository opens one short unit of work per operation through
``get_session_context`` (commit on success, rollback on error). The
unique constraints on the records enforce the natural keys; a lost insert
race on webhook events surfaces as an unclaimed event.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session_context
from core.integrations.entities import (
    Booking,
    ConnectionStatus,
    EventStatus,
    InboundEvent,
    IntegrationCredential,
    WebhookEvent,
    utcnow,
)
from core.models.records import BookingRecord, IntegrationCredentialRecord, WebhookEventRecord
from core.storage.base import BookingStore, CredentialStore, WebhookEventStore

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SqlCredentialStore(CredentialStore):
    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session = session_factory

    async def get(self, user_id: str, provider: str) -> IntegrationCredential | None:
        async with self._session() as session:
            stmt = select(IntegrationCredentialRecord).where(
                IntegrationCredentialRecord.user_id == user_id,
                IntegrationCredentialRecord.provider == provider,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return row.to_entity() if row else None

    async def upsert(self, credential: IntegrationCredential) -> IntegrationCredential:
        async with self._session() as session:
            stmt = select(IntegrationCredentialRecord).where(
                IntegrationCredentialRecord.user_id == credential.user_id,
                IntegrationCredentialRecord.provider == credential.provider,
            ).with_for_update()
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = IntegrationCredentialRecord()
                session.add(row)
            row.apply(credential)
            row.updated_at = utcnow()
            await session.flush()
            return row.to_entity()

    async def find_by_provider_user(
        self, provider: str, provider_user_id: str
    ) -> IntegrationCredential | None:
        async with self._session() as session:
            stmt = select(IntegrationCredentialRecord).where(
                IntegrationCredentialRecord.provider == provider,
                IntegrationCredentialRecord.provider_user_id == provider_user_id,
            )
            row = (await session.execute(stmt)).scalars().first()
            return row.to_entity() if row else None

    async def list_expiring(self, provider: str, before: datetime) -> list[IntegrationCredential]:
        async with self._session() as session:
            stmt = (
                select(IntegrationCredentialRecord)
                .where(
                    IntegrationCredentialRecord.provider == provider,
                    IntegrationCredentialRecord.status.in_(
                        [ConnectionStatus.CONNECTED.value, ConnectionStatus.ERROR.value]
                    ),
                    IntegrationCredentialRecord.expires_at.is_not(None),
                    IntegrationCredentialRecord.expires_at < before,
                )
                .order_by(IntegrationCredentialRecord.expires_at.asc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_entity() for row in rows]


class SqlWebhookEventStore(WebhookEventStore):
    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session = session_factory

    @staticmethod
    def _by_key(provider: str, event_id: str):
        return select(WebhookEventRecord).where(
            WebhookEventRecord.provider == provider,
            WebhookEventRecord.event_id == event_id,
        )

    async def get(self, provider: str, event_id: str) -> WebhookEvent | None:
        async with self._session() as session:
            row = (await session.execute(self._by_key(provider, event_id))).scalar_one_or_none()
            return row.to_entity() if row else None

    async def claim(
        self, event: InboundEvent, lease: timedelta, now: datetime
    ) -> tuple[WebhookEvent, bool]:
        try:
            async with self._session() as session:
                stmt = self._by_key(event.provider, event.event_id).with_for_update()
                row = (await session.execute(stmt)).scalar_one_or_none()

                if row is None:
                    row = WebhookEventRecord(
                        provider=event.provider,
                        event_id=event.event_id,
                        event_type=event.event_type,
                        payload=event.payload,
                        received_at=now,
                        claimed_at=now,
                        status=EventStatus.PENDING.value,
                        attempts=1,
                    )
                    session.add(row)
                    await session.flush()
                    return row.to_entity(), True

                if row.status == EventStatus.PROCESSED.value:
                    return row.to_entity(), False
                lease_start = row.claimed_at or row.received_at
                if row.status == EventStatus.PENDING.value and now - lease_start < lease:
                    return row.to_entity(), False

                row.status = EventStatus.PENDING.value
                row.attempts += 1
                row.claimed_at = now
                row.error = None
                await session.flush()
                return row.to_entity(), True
        except IntegrityError:
            # A concurrent delivery inserted the same key first.
            existing = await self.get(event.provider, event.event_id)
            if existing is None:
                raise
            return existing, False

    async def mark(
        self,
        provider: str,
        event_id: str,
        status: EventStatus,
        error: str | None = None,
    ) -> WebhookEvent | None:
        async with self._session() as session:
            row = (await session.execute(self._by_key(provider, event_id))).scalar_one_or_none()
            if row is None:
                return None
            row.status = status.value
            row.error = error
            if status == EventStatus.PROCESSED:
                row.processed_at = utcnow()
            await session.flush()
            return row.to_entity()


class SqlBookingStore(BookingStore):
    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session = session_factory

    async def get(self, external_id: str) -> Booking | None:
        async with self._session() as session:
            stmt = select(BookingRecord).where(BookingRecord.external_id == external_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return row.to_entity() if row else None

    async def save(self, booking: Booking) -> Booking:
        async with self._session() as session:
            stmt = select(BookingRecord).where(
                BookingRecord.external_id == booking.external_id
            ).with_for_update()
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = BookingRecord()
                session.add(row)
            row.apply(booking)
            row.updated_at = utcnow()
            await session.flush()
            return row.to_entity()

    async def update(self, external_id: str, **changes: Any) -> Booking | None:
        async with self._session() as session:
            stmt = select(BookingRecord).where(
                BookingRecord.external_id == external_id
            ).with_for_update()
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            for key, value in changes.items():
                if hasattr(row, key) and key not in ("id", "external_id", "provider", "created_at"):
                    setattr(row, key, value.value if hasattr(value, "value") else value)
            row.updated_at = utcnow()
            await session.flush()
            return row.to_entity()

    async def find_by_meeting_id(self, meeting_id: str) -> Booking | None:
        async with self._session() as session:
            stmt = select(BookingRecord).where(BookingRecord.meeting_id == meeting_id)
            row = (await session.execute(stmt)).scalars().first()
            return row.to_entity() if row else None
