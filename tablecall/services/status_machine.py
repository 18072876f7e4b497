"""Status merge rules for reservation records."""

import logging
from datetime import datetime

from tablecall.models.reservation import Reservation, StatusUpdate

logger = logging.getLogger(__name__)

# Informational fields a status event may carry, in record order
MERGEABLE_FIELDS = (
    "status_message",
    "status_details",
    "final_date_time",
    "person_name",
    "confirmed_party_size",
    "special_instructions",
)


def format_confirmed_datetime(date: str | None, time: str | None) -> str | None:
    """Format a confirmed date and time for display.

    Produces text such as ``"Wednesday, April 23, 2025 at 7:30 PM"``. Inputs
    that do not parse are joined verbatim so a confirmation is never lost to a
    formatting problem.

    Args:
        date: Calendar date, ideally ``YYYY-MM-DD``
        time: Time of day, ideally ``HH:MM`` (24h)

    Returns:
        Display string, or None when either part is missing
    """
    if not date or not time:
        return None

    try:
        moment = datetime.fromisoformat(f"{date.strip()}T{time.strip()}")
    except ValueError:
        logger.debug(f"Could not parse confirmed date/time {date!r} {time!r}")
        return f"{date} {time}"

    clock = moment.strftime("%I:%M %p").lstrip("0")
    return f"{moment:%A, %B} {moment.day}, {moment.year} at {clock}"


def apply_status_event(current: Reservation, event: StatusUpdate) -> Reservation:
    """Merge a status event into a reservation.

    The event's status always wins. Optional fields overwrite the record only
    when present and non-empty, so earlier confirmations are never erased.
    Applying the same event twice yields the same record.

    Args:
        current: Stored reservation
        event: Incoming status event for the same reservation

    Returns:
        New reservation instance with the merged values
    """
    if event.id != current.id:
        msg = f"Status event for {event.id} cannot be applied to {current.id}"
        raise ValueError(msg)

    changes: dict = {"status": event.status}
    for field_name in MERGEABLE_FIELDS:
        value = getattr(event, field_name)
        if isinstance(value, str):
            value = value.strip()
        if value:
            changes[field_name] = value

    return current.model_copy(update=changes)


def parse_party_size(value) -> int | None:
    """Read a party size sent as a number or numeric text.

    Returns:
        Positive integer, or None when the value is missing or unusable
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        size = int(str(value).strip())
    except ValueError:
        logger.debug(f"Ignoring unparseable party size {value!r}")
        return None
    return size if size > 0 else None
