"""Data models for the TableCall system."""

from tablecall.models.reservation import (
    MAX_PARTY_SIZE,
    Reservation,
    ReservationCreate,
    ReservationStatus,
    StatusUpdate,
)
from tablecall.models.session import (
    ConnectionState,
    LegSender,
    RelaySession,
    TransportConnection,
)

__all__ = [
    "MAX_PARTY_SIZE",
    "ConnectionState",
    "LegSender",
    "RelaySession",
    "Reservation",
    "ReservationCreate",
    "ReservationStatus",
    "StatusUpdate",
    "TransportConnection",
]
