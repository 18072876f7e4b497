"""Outcome reports posted by the voice agent after a call."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tablecall.models.reservation import ReservationStatus, StatusUpdate
from tablecall.services.status_machine import (
    format_confirmed_datetime,
    parse_party_size,
)

DEFAULT_MESSAGE = "Reservation response received"

# Default message and details per reported status
STATUS_TEXT: dict[ReservationStatus, tuple[str | None, str | None]] = {
    ReservationStatus.SUCCESS: (
        None,
        "The restaurant has confirmed your reservation",
    ),
    ReservationStatus.ERROR: (
        "The restaurant was unable to accommodate the reservation",
        "The restaurant was unable to accommodate the reservation "
        "at the requested time",
    ),
    ReservationStatus.NOT_REACHED: (
        "Unable to connect with the restaurant",
        "We couldn't connect with the restaurant. "
        "The line may be busy or they might be closed.",
    ),
    ReservationStatus.PENDING: (None, None),
}


class AgentResponse(BaseModel):
    """Body of the agent-response callback.

    The agent platform sends either ``reservationId`` or ``reservation_id``,
    as text or a number. Only ``status`` is required, and that is checked by
    the endpoint so it can answer with a specific message.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    reservation_id: str | int | None = Field(
        None, validation_alias=AliasChoices("reservationId", "reservation_id")
    )
    status: str | None = None
    status_message: str | None = None
    confirmed_date: str | None = None
    confirmed_time: str | None = None
    special_instructions: str | None = None
    party_size: str | int | None = None
    person_name: str | None = None

    @property
    def normalized_reservation_id(self) -> str | None:
        if self.reservation_id is None or self.reservation_id == "":
            return None
        return str(self.reservation_id)

    def to_status_update(
        self, reservation_id: str, status: ReservationStatus
    ) -> StatusUpdate:
        """Translate the report into a status event.

        Args:
            reservation_id: Reservation the report applies to
            status: Validated reported status

        Returns:
            Status event with per-status default texts filled in
        """
        default_message, details = STATUS_TEXT[status]
        message = self.status_message or default_message or DEFAULT_MESSAGE

        final_date_time = None
        if status is ReservationStatus.SUCCESS:
            final_date_time = format_confirmed_datetime(
                self.confirmed_date, self.confirmed_time
            )

        return StatusUpdate(
            id=reservation_id,
            status=status,
            status_message=message,
            status_details=details,
            final_date_time=final_date_time,
            person_name=self.person_name,
            confirmed_party_size=parse_party_size(self.party_size),
            special_instructions=self.special_instructions,
        )
