"""Tests for the provider-agnostic booking normalizer."""
from core.integrations.normalizer import (
    DEFAULT_BOOKING_MAPPINGS,
    BookingNormalizer,
    FieldMapping,
    SchemaMapping,
    get_path,
)

CAL_PAYLOAD = {
    "uid": "bk_1",
    "title": "  Career coaching  ",
    "startTime": "2026-01-05T15:00:00Z",
    "endTime": "2026-01-05T15:45:00Z",
    "organizer": {"id": 42, "email": "coach@example.com"},
    "attendees": [{"email": "Mentee@Example.com", "name": "Sam Lee"}],
    "videoCallData": {"id": 987654321},
}

CALENDLY_PAYLOAD = {
    "uri": "https://api.calendly.com/scheduled_events/EV1/invitees/INV1",
    "email": "MENTEE@example.com",
    "name": "Sam Lee",
    "cancellation": {"reason": "Conflict"},
    "scheduled_event": {
        "uri": "https://api.calendly.com/scheduled_events/EV1",
        "name": "Intro call",
        "start_time": "2026-01-05T15:00:00Z",
        "end_time": "2026-01-05T15:30:00Z",
        "event_memberships": [{"user": "https://api.calendly.com/users/U1"}],
    },
}


def test_get_path_walks_dicts_and_lists():
    assert get_path(CAL_PAYLOAD, "attendees.0.email") == "Mentee@Example.com"
    assert get_path(CAL_PAYLOAD, "organizer.id") == 42
    assert get_path(CAL_PAYLOAD, "attendees.3.email") is None
    assert get_path(CAL_PAYLOAD, "missing.path") is None
    assert get_path(CAL_PAYLOAD, "title.nested") is None


def test_normalize_cal_booking():
    booking = BookingNormalizer(DEFAULT_BOOKING_MAPPINGS).normalize_booking("cal", CAL_PAYLOAD)

    assert booking.external_id == "bk_1"
    assert booking.title == "Career coaching"
    assert booking.start_time == "2026-01-05T15:00:00Z"
    assert booking.attendee_email == "mentee@example.com"
    assert booking.attendee_name == "Sam Lee"
    assert booking.organizer_id == "42"
    assert booking.meeting_id == "987654321"
    assert booking.cancellation_reason is None
    assert booking.provider == "cal"
    assert booking.raw_data is CAL_PAYLOAD


def test_normalize_calendly_booking():
    booking = BookingNormalizer(DEFAULT_BOOKING_MAPPINGS).normalize_booking("calendly", CALENDLY_PAYLOAD)

    assert booking.external_id == "EV1"
    assert booking.title == "Intro call"
    assert booking.attendee_email == "mentee@example.com"
    assert booking.organizer_id == "https://api.calendly.com/users/U1"
    assert booking.cancellation_reason == "Conflict"
    assert booking.meeting_id is None


def test_normalize_missing_fields_use_defaults():
    booking = BookingNormalizer(DEFAULT_BOOKING_MAPPINGS).normalize_booking("cal", {"uid": "bk_2"})
    assert booking.external_id == "bk_2"
    assert booking.title == ""
    assert booking.attendee_email == ""
    assert booking.start_time is None


def test_unknown_provider_passes_through():
    data = BookingNormalizer(DEFAULT_BOOKING_MAPPINGS).normalize("acme", "booking", {"id": 1})
    assert data == {"raw_data": {"id": 1}, "provider": "acme"}


def test_custom_mapping_with_epoch_millis():
    normalizer = BookingNormalizer()
    normalizer.register_mapping(
        SchemaMapping(
            provider="acme",
            entity_type="booking",
            mappings=[
                FieldMapping("ref", "external_id", "str"),
                FieldMapping("starts", "start_time", "iso_datetime"),
            ],
        )
    )
    booking = normalizer.normalize_booking("acme", {"ref": 5, "starts": 1_767_621_600_000})
    assert booking.external_id == "5"
    assert booking.start_time == "2026-01-05T14:00:00+00:00"
