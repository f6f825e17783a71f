"""Zoom REST adapter: meetings for booked sessions."""

from __future__ import annotations

from typing import Any

from core.integrations.adapter_base import AdapterBase, AdapterRequest

SCHEDULED_MEETING = 2


class ZoomAdapter(AdapterBase):
    name = "zoom"

    async def create_meeting(
        self,
        access_token: str,
        topic: str,
        start_time: str,
        duration_minutes: int,
        user_id: str = "me",
        timezone: str = "UTC",
    ) -> dict[str, Any]:
        body = {
            "topic": topic,
            "type": SCHEDULED_MEETING,
            "start_time": start_time,
            "duration": duration_minutes,
            "timezone": timezone,
            "settings": {"join_before_host": False, "waiting_room": True},
        }
        resp = await self.request(
            AdapterRequest("POST", f"/users/{user_id}/meetings", body=body), access_token
        )
        return resp.data or {}

    async def delete_meeting(self, access_token: str, meeting_id: int | str) -> None:
        await self.request(AdapterRequest("DELETE", f"/meetings/{meeting_id}"), access_token)
