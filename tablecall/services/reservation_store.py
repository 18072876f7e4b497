"""In-memory reservation repository."""

import itertools
import logging
import uuid
from datetime import datetime

from tablecall.models.reservation import (
    Reservation,
    ReservationCreate,
    ReservationStatus,
    StatusUpdate,
)
from tablecall.services.locks import KeyedLock
from tablecall.services.status_machine import apply_status_event

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 10


class ReservationStore:
    """Key-value store of reservation records.

    Records live in process memory and are lost on restart. Updates to the
    same reservation are serialized so interleaved status events cannot lose
    each other's fields.
    """

    def __init__(self) -> None:
        self._reservations: dict[str, Reservation] = {}
        self._order: dict[str, int] = {}
        self._sequence = itertools.count()
        self._locks = KeyedLock()

    @staticmethod
    def generate_reservation_id() -> str:
        """Generate a unique reservation identifier.

        Returns:
            UUID-based reservation ID
        """
        return str(uuid.uuid4())

    async def create(self, fields: ReservationCreate) -> Reservation:
        """Store a new reservation in ``pending`` state.

        Args:
            fields: Validated client input

        Returns:
            The stored reservation
        """
        reservation_id = self.generate_reservation_id()
        while reservation_id in self._reservations:
            reservation_id = self.generate_reservation_id()

        reservation = Reservation(
            **fields.model_dump(),
            id=reservation_id,
            status=ReservationStatus.PENDING,
            created_at=datetime.now(),
        )

        async with self._locks.hold(reservation_id):
            self._reservations[reservation_id] = reservation
            self._order[reservation_id] = next(self._sequence)

        logger.info(f"Created reservation {reservation_id} for {reservation.name}")
        return reservation

    async def get(self, reservation_id: str) -> Reservation | None:
        """Get a reservation by ID.

        Args:
            reservation_id: Reservation identifier

        Returns:
            Reservation or None if not found
        """
        return self._reservations.get(reservation_id)

    async def merge_status(self, update: StatusUpdate) -> Reservation | None:
        """Apply a status event to the stored reservation.

        Args:
            update: Status event naming the reservation to update

        Returns:
            The merged reservation, or None if the reservation does not exist
        """
        async with self._locks.hold(update.id):
            current = self._reservations.get(update.id)
            if current is None:
                logger.warning(f"Status update for unknown reservation {update.id}")
                return None

            merged = apply_status_event(current, update)
            self._reservations[update.id] = merged

        logger.info(
            f"Reservation {update.id} status {current.status.value} -> "
            f"{merged.status.value}: {merged.status_message}"
        )
        return merged

    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Reservation]:
        """List reservations, newest first.

        Args:
            limit: Maximum number of reservations to return

        Returns:
            Reservations sorted by creation time, descending
        """
        snapshot = list(self._reservations.values())
        snapshot.sort(
            key=lambda r: (r.created_at, self._order.get(r.id, -1)), reverse=True
        )
        return snapshot[: max(limit, 0)]

    def __len__(self) -> int:
        return len(self._reservations)
