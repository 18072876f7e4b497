"""Tests for reservation status merging."""

import pytest

from tablecall.models.reservation import Reservation, ReservationStatus, StatusUpdate
from tablecall.services.status_machine import (
    apply_status_event,
    format_confirmed_datetime,
    parse_party_size,
)


@pytest.fixture
def reservation(reservation_fields):
    return Reservation(**reservation_fields.model_dump(), id="r-1")


class TestApplyStatusEvent:
    """Tests for apply_status_event."""

    def test_status_always_wins(self, reservation):
        """Test that the event's status replaces the stored one."""
        confirmed = reservation.model_copy(update={"status": ReservationStatus.SUCCESS})

        merged = apply_status_event(
            confirmed, StatusUpdate(id="r-1", status=ReservationStatus.PENDING)
        )

        assert merged.status == ReservationStatus.PENDING

    def test_missing_fields_keep_previous_values(self, reservation):
        """Test that an event without details does not erase earlier ones."""
        confirmed = apply_status_event(
            reservation,
            StatusUpdate(
                id="r-1",
                status=ReservationStatus.SUCCESS,
                status_message="Reservation confirmed",
                final_date_time="Wednesday, April 23, 2025 at 7:30 PM",
                person_name="Jane",
                confirmed_party_size=4,
            ),
        )

        merged = apply_status_event(
            confirmed,
            StatusUpdate(
                id="r-1",
                status=ReservationStatus.SUCCESS,
                status_message="",
                person_name="   ",
            ),
        )

        assert merged.status_message == "Reservation confirmed"
        assert merged.final_date_time == "Wednesday, April 23, 2025 at 7:30 PM"
        assert merged.person_name == "Jane"
        assert merged.confirmed_party_size == 4

    def test_present_fields_overwrite(self, reservation):
        """Test that non-empty event fields replace stored values."""
        first = apply_status_event(
            reservation,
            StatusUpdate(
                id="r-1", status=ReservationStatus.PENDING, status_message="Calling"
            ),
        )

        merged = apply_status_event(
            first,
            StatusUpdate(
                id="r-1",
                status=ReservationStatus.ERROR,
                status_message="Reservation failed",
                status_details="Fully booked",
            ),
        )

        assert merged.status == ReservationStatus.ERROR
        assert merged.status_message == "Reservation failed"
        assert merged.status_details == "Fully booked"

    def test_idempotent(self, reservation):
        """Test that applying the same event twice gives the same record."""
        event = StatusUpdate(
            id="r-1",
            status=ReservationStatus.NOT_REACHED,
            status_message="Unable to connect with the restaurant",
        )

        once = apply_status_event(reservation, event)
        twice = apply_status_event(once, event)

        assert once == twice

    def test_client_fields_untouched(self, reservation):
        """Test that the requested fields are never modified."""
        merged = apply_status_event(
            reservation,
            StatusUpdate(
                id="r-1", status=ReservationStatus.SUCCESS, person_name="Janet"
            ),
        )

        assert merged.name == reservation.name
        assert merged.party_size == reservation.party_size
        assert merged.created_at == reservation.created_at

    def test_input_not_mutated(self, reservation):
        """Test that merging returns a new record."""
        apply_status_event(
            reservation,
            StatusUpdate(id="r-1", status=ReservationStatus.ERROR),
        )

        assert reservation.status == ReservationStatus.PENDING

    def test_rejects_other_reservation(self, reservation):
        """Test that an event for another reservation is refused."""
        with pytest.raises(ValueError, match="cannot be applied"):
            apply_status_event(
                reservation, StatusUpdate(id="r-2", status=ReservationStatus.ERROR)
            )


class TestFormatConfirmedDatetime:
    """Tests for format_confirmed_datetime."""

    def test_evening_time(self):
        """Test the display format for an ISO date and 24h time."""
        result = format_confirmed_datetime("2025-04-23", "19:30")

        assert result == "Wednesday, April 23, 2025 at 7:30 PM"

    def test_morning_time(self):
        """Test a time before noon."""
        result = format_confirmed_datetime("2025-01-05", "09:05")

        assert result == "Sunday, January 5, 2025 at 9:05 AM"

    @pytest.mark.parametrize(("date", "time"), [(None, "19:30"), ("2025-04-23", "")])
    def test_missing_part(self, date, time):
        """Test that nothing is produced without both parts."""
        assert format_confirmed_datetime(date, time) is None

    def test_unparseable_input_kept_verbatim(self):
        """Test free-form text is joined rather than dropped."""
        result = format_confirmed_datetime("next Friday", "half past seven")

        assert result == "next Friday half past seven"


class TestParsePartySize:
    """Tests for parse_party_size."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(4, 4), ("6", 6), (" 2 ", 2), (None, None), ("", None), ("four", None),
         (0, None), (-3, None), (True, None)],
    )
    def test_values(self, value, expected):
        """Test numeric and textual party sizes."""
        assert parse_party_size(value) == expected
