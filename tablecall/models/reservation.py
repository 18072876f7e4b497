"""Data models for restaurant reservations."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_PARTY_SIZE = 20


class ReservationStatus(str, Enum):
    """Status of a reservation call."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    NOT_REACHED = "not-reached"

    @property
    def is_terminal(self) -> bool:
        return self is not ReservationStatus.PENDING


class _CamelModel(BaseModel):
    """Base model speaking camelCase JSON while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReservationCreate(_CamelModel):
    """Fields supplied by the client when requesting a reservation."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    name: str = Field(..., min_length=2, description="Name for the reservation")
    phone_number: str = Field(..., min_length=7, description="Restaurant phone number")
    party_size: int = Field(
        ..., ge=1, le=MAX_PARTY_SIZE, description="Number of people"
    )
    date: str = Field(..., min_length=1, description="Requested date (YYYY-MM-DD)")
    time: str = Field(..., min_length=1, description="Requested time (HH:MM)")
    special_requests: str | None = Field(None, description="Special requests or notes")


class Reservation(ReservationCreate):
    """A stored reservation and the outcome of its call."""

    id: str = Field(..., description="Opaque reservation identifier")
    status: ReservationStatus = Field(
        default=ReservationStatus.PENDING, description="Call outcome"
    )
    status_message: str | None = Field(None, description="Short status summary")
    status_details: str | None = Field(None, description="Long-form explanation")
    final_date_time: str | None = Field(
        None, description="Date and time confirmed by the restaurant"
    )
    person_name: str | None = Field(
        None, description="Name the restaurant booked the table under"
    )
    confirmed_party_size: int | None = Field(
        None, description="Party size confirmed by the restaurant"
    )
    special_instructions: str | None = Field(
        None, description="Special instructions from the restaurant"
    )
    created_at: datetime = Field(default_factory=datetime.now)


class StatusUpdate(_CamelModel):
    """A status event applied to a reservation.

    Only ``status`` is authoritative. Every other field is informational and
    replaces the stored value only when present and non-empty.
    """

    id: str
    status: ReservationStatus
    status_message: str | None = None
    status_details: str | None = None
    final_date_time: str | None = None
    person_name: str | None = None
    confirmed_party_size: int | None = None
    special_instructions: str | None = None
