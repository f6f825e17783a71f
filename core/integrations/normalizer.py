"""
Booking Normalizer — Provider-Agnostic Schema Mapping.

Maps Cal.com and Calendly booking payloads to one canonical booking
shape. Supports dot-path access (list indexes included, e.g.
``attendees.0.email``), transform functions, and per-provider mapping
configurations.
"""
from __future__ import annotations
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable


# ---------------------------------------------------------------------------
# Canonical schema
# ---------------------------------------------------------------------------

@dataclass
class NormalizedBooking:
    """Provider-agnostic booking representation."""
    external_id: str = ""
    title: str = ""
    start_time: str | None = None
    end_time: str | None = None
    attendee_email: str = ""
    attendee_name: str = ""
    organizer_id: str = ""
    cancellation_reason: str | None = None
    meeting_id: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    provider: str = ""


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------

@dataclass
class FieldMapping:
    """Maps a source provider field to a canonical target field."""
    source_field: str       # Dot-notation path, e.g. "attendees.0.email"
    target_field: str       # Canonical field name, e.g. "attendee_email"
    transform: str | None = None  # Optional transform name
    default: Any = None     # Default if source is missing


@dataclass
class SchemaMapping:
    """Complete mapping config for a provider + entity type."""
    provider: str
    entity_type: str  # booking
    mappings: list[FieldMapping] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Transform functions
# ---------------------------------------------------------------------------

def _iso(value: Any) -> str | None:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
    return str(value)


TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "lowercase": lambda v: str(v).lower() if v else "",
    "str": lambda v: str(v) if v is not None else "",
    "optional_str": lambda v: str(v) if v is not None else None,
    "strip": lambda v: str(v).strip() if v else "",
    "iso_datetime": _iso,
    "last_path_segment": lambda v: str(v).rstrip("/").rsplit("/", 1)[-1] if v else "",
}


# ---------------------------------------------------------------------------
# BookingNormalizer
# ---------------------------------------------------------------------------

class BookingNormalizer:
    """Normalizes provider payloads to ``NormalizedBooking`` using registered mappings."""

    def __init__(self, mappings: list[SchemaMapping] | None = None):
        self._mappings: dict[str, SchemaMapping] = {}  # key: {provider}:{entity_type}
        for mapping in mappings or []:
            self.register_mapping(mapping)

    def register_mapping(self, mapping: SchemaMapping) -> None:
        key = f"{mapping.provider}:{mapping.entity_type}"
        self._mappings[key] = mapping

    def normalize(self, provider: str, entity_type: str, raw_data: dict[str, Any]) -> dict[str, Any]:
        """
        Normalize raw provider data to canonical field names.

        Unknown providers pass the raw data through untouched.
        """
        result: dict[str, Any] = {"raw_data": raw_data, "provider": provider}
        mapping = self._mappings.get(f"{provider}:{entity_type}")
        if not mapping:
            return result

        for fm in mapping.mappings:
            value = get_path(raw_data, fm.source_field)
            if value is None:
                value = fm.default

            if fm.transform and fm.transform in TRANSFORMS:
                try:
                    value = TRANSFORMS[fm.transform](value)
                except (ValueError, TypeError, KeyError):
                    value = fm.default

            result[fm.target_field] = value

        return result

    def normalize_booking(self, provider: str, raw_data: dict[str, Any]) -> NormalizedBooking:
        data = self.normalize(provider, "booking", raw_data)
        names = {f.name for f in fields(NormalizedBooking)}
        return NormalizedBooking(**{k: v for k, v in data.items() if k in names})


def get_path(data: Any, path: str) -> Any:
    """Access nested values via dot notation; numeric parts index lists."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


# ---------------------------------------------------------------------------
# Provider mappings
# ---------------------------------------------------------------------------

CAL_BOOKING_MAPPING = SchemaMapping(
    provider="cal",
    entity_type="booking",
    mappings=[
        FieldMapping("uid", "external_id", "str"),
        FieldMapping("title", "title", "strip", ""),
        FieldMapping("startTime", "start_time", "iso_datetime"),
        FieldMapping("endTime", "end_time", "iso_datetime"),
        FieldMapping("attendees.0.email", "attendee_email", "lowercase", ""),
        FieldMapping("attendees.0.name", "attendee_name", "strip", ""),
        FieldMapping("organizer.id", "organizer_id", "str", ""),
        FieldMapping("cancellationReason", "cancellation_reason"),
        FieldMapping("videoCallData.id", "meeting_id", "optional_str"),
    ],
)

# Calendly invitee payloads: the invitee is the attendee, the scheduled
# event carries the times and the organizer (event_memberships).
CALENDLY_BOOKING_MAPPING = SchemaMapping(
    provider="calendly",
    entity_type="booking",
    mappings=[
        FieldMapping("scheduled_event.uri", "external_id", "last_path_segment", ""),
        FieldMapping("scheduled_event.name", "title", "strip", ""),
        FieldMapping("scheduled_event.start_time", "start_time", "iso_datetime"),
        FieldMapping("scheduled_event.end_time", "end_time", "iso_datetime"),
        FieldMapping("email", "attendee_email", "lowercase", ""),
        FieldMapping("name", "attendee_name", "strip", ""),
        FieldMapping("scheduled_event.event_memberships.0.user", "organizer_id", "str", ""),
        FieldMapping("cancellation.reason", "cancellation_reason"),
        FieldMapping("scheduled_event.location.data.id", "meeting_id", "optional_str"),
    ],
)

DEFAULT_BOOKING_MAPPINGS = [CAL_BOOKING_MAPPING, CALENDLY_BOOKING_MAPPING]
