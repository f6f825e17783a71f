"""Cal.com v2 REST adapter: webhook subscriptions and booking cancellation."""

from __future__ import annotations

import logging
from typing import Any

from core.integrations.adapter_base import AdapterBase, AdapterRequest

logger = logging.getLogger(__name__)

DEFAULT_TRIGGERS = ["BOOKING_CREATED", "BOOKING_RESCHEDULED", "BOOKING_CANCELLED"]
BOOKINGS_API_VERSION = "2024-08-13"


def _unwrap(data: Any, key: str) -> Any:
    # v2 responses use {"status": "success", "data": ...}; older ones name the key.
    if not isinstance(data, dict):
        return None
    return data.get(key, data.get("data"))


class CalAdapter(AdapterBase):
    name = "cal"

    async def list_webhooks(self, access_token: str) -> list[dict[str, Any]]:
        resp = await self.request(AdapterRequest("GET", "/webhooks"), access_token)
        return _unwrap(resp.data, "webhooks") or []

    async def register_webhook(
        self,
        access_token: str,
        subscriber_url: str,
        event_triggers: list[str] | None = None,
    ) -> dict[str, Any]:
        body = {
            "subscriberUrl": subscriber_url,
            "eventTriggers": list(event_triggers or DEFAULT_TRIGGERS),
            "active": True,
        }
        resp = await self.request(AdapterRequest("POST", "/webhooks", body=body), access_token)
        return _unwrap(resp.data, "webhook") or {}

    async def delete_webhook(self, access_token: str, webhook_id: int | str) -> None:
        await self.request(AdapterRequest("DELETE", f"/webhooks/{webhook_id}"), access_token)

    async def ensure_webhook(
        self,
        access_token: str,
        subscriber_url: str,
        event_triggers: list[str] | None = None,
    ) -> dict[str, Any]:
        """Keep exactly one active subscription for ``subscriber_url`` covering the triggers."""
        triggers = list(event_triggers or DEFAULT_TRIGGERS)
        for hook in await self.list_webhooks(access_token):
            if hook.get("subscriberUrl") != subscriber_url:
                continue
            if hook.get("active") and set(triggers) <= set(hook.get("eventTriggers") or []):
                return hook
            logger.info("Replacing outdated Cal.com webhook %s", hook.get("id"))
            await self.delete_webhook(access_token, hook["id"])
            break
        return await self.register_webhook(access_token, subscriber_url, triggers)

    async def cancel_booking(
        self, access_token: str, booking_uid: str, reason: str | None = None
    ) -> dict[str, Any]:
        req = AdapterRequest(
            "POST",
            f"/bookings/{booking_uid}/cancel",
            body={"cancellationReason": reason} if reason else {},
            headers={"cal-api-version": BOOKINGS_API_VERSION},
        )
        resp = await self.request(req, access_token)
        return _unwrap(resp.data, "booking") or {}
