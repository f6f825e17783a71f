"""Calendly REST adapter."""

from __future__ import annotations

from typing import Any

from core.integrations.adapter_base import AdapterBase, AdapterRequest


class CalendlyAdapter(AdapterBase):
    name = "calendly"

    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        resp = await self.request(AdapterRequest("GET", "/users/me"), access_token)
        return (resp.data or {}).get("resource", {})

    async def list_event_types(self, access_token: str, user_uri: str) -> list[dict[str, Any]]:
        req = AdapterRequest("GET", "/event_types", params={"user": user_uri, "active": "true"})
        resp = await self.request(req, access_token)
        return (resp.data or {}).get("collection", [])

    async def get_user_busy_times(
        self, access_token: str, user_uri: str, start_time: str, end_time: str
    ) -> list[dict[str, Any]]:
        """Busy intervals for ``user_uri``. Calendly caps the range at 7 days."""
        req = AdapterRequest(
            "GET",
            "/user_busy_times",
            params={"user": user_uri, "start_time": start_time, "end_time": end_time},
        )
        resp = await self.request(req, access_token)
        return (resp.data or {}).get("collection", [])

    async def cancel_event(self, access_token: str, event_uuid: str, reason: str = "") -> dict[str, Any]:
        req = AdapterRequest(
            "POST", f"/scheduled_events/{event_uuid}/cancellation", body={"reason": reason}
        )
        resp = await self.request(req, access_token)
        return (resp.data or {}).get("resource", {})
