"""Simulated restaurant conversations for calls that cannot be placed."""

import asyncio
import logging
import random
import re
from collections.abc import Callable, Sequence

import httpx

from tablecall.config import Config, get_config
from tablecall.models.reservation import ReservationStatus, StatusUpdate
from tablecall.services.reservation_store import ReservationStore

logger = logging.getLogger(__name__)

AGENT_RESPONSE_PATH = "/api/agent-response"

REJECTION_PATTERN = re.compile(r"\b(no|sorry|full)\b", re.IGNORECASE)

UNDELIVERED_MESSAGE = "Reservation failed"
UNDELIVERED_DETAILS = "The simulated call outcome could not be delivered"


def is_rejection(restaurant_responses: Sequence[str]) -> bool:
    """Check whether any restaurant reply turns the booking down."""
    return any(REJECTION_PATTERN.search(reply) for reply in restaurant_responses)


def build_outcome_payload(details: dict, success: bool) -> dict:
    """Build the agent-response body a real agent would send after the call.

    Args:
        details: Reservation details the agent was primed with
        success: Whether the restaurant accepted the booking

    Returns:
        JSON body for the agent-response callback
    """
    payload = {
        "reservationId": details.get("reservationId"),
        "status": (
            ReservationStatus.SUCCESS if success else ReservationStatus.ERROR
        ).value,
        "statusMessage": "Reservation confirmed" if success else "Reservation failed",
    }
    if success:
        payload.update(
            {
                "confirmedDate": details.get("date"),
                "confirmedTime": details.get("time"),
                "personName": details.get("personName"),
                "partySize": str(details.get("partySize") or ""),
                "specialInstructions": details.get("specialInstructions")
                or "No special requests",
            }
        )
    return payload


class ConversationSimulator:
    """Schedules simulated conversation outcomes, one per reservation.

    Outcomes are delivered over HTTP to the agent-response callback, the same
    entry point the real voice agent uses. Scheduling again for a reservation,
    or cancelling it, drops the outcome that was still waiting. When the
    callback cannot be reached and a store is attached, the reservation is
    failed directly so it does not stay pending.
    """

    def __init__(
        self,
        config: Config | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        rng: random.Random | None = None,
        store: ReservationStore | None = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self._client_factory = client_factory or self._default_client
        self._rng = rng or random.Random()
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.config.server_url, timeout=10.0)

    def next_delay(self) -> float:
        return self._rng.uniform(
            self.config.simulation_min_delay, self.config.simulation_max_delay
        )

    def decide_outcome(self, restaurant_responses: Sequence[str] = ()) -> bool:
        """Pick the simulated outcome.

        Args:
            restaurant_responses: Scripted restaurant replies, if any

        Returns:
            True for a confirmed booking
        """
        if not restaurant_responses:
            return self._rng.random() < self.config.simulation_success_rate
        return not is_rejection(restaurant_responses)

    def schedule(
        self,
        agent_id: str,
        details: dict,
        restaurant_responses: Sequence[str] = (),
    ) -> asyncio.Task[None] | None:
        """Schedule a simulated conversation for a reservation.

        Args:
            agent_id: Agent the conversation is attributed to
            details: Reservation details, must include ``reservationId``
            restaurant_responses: Scripted restaurant replies (optional)

        Returns:
            The scheduled task, or None when the reservation ID is missing
        """
        reservation_id = details.get("reservationId")
        if not reservation_id:
            logger.error("Missing reservationId in simulated conversation")
            return None

        self.cancel(reservation_id)

        delay = self.next_delay()
        logger.info(
            f"Simulating conversation with agent {agent_id} for reservation "
            f"{reservation_id} ({delay:.1f}s)"
        )
        task = asyncio.create_task(
            self._run(delay, dict(details), tuple(restaurant_responses)),
            name=f"simulation-{reservation_id}",
        )
        self._tasks[reservation_id] = task
        task.add_done_callback(lambda done: self._forget(reservation_id, done))
        return task

    def _forget(self, reservation_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(reservation_id) is task:
            del self._tasks[reservation_id]

    def cancel(self, reservation_id: str) -> bool:
        """Cancel the pending simulated outcome for a reservation.

        Returns:
            True if an outcome was still waiting
        """
        task = self._tasks.pop(reservation_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"Cancelled simulated conversation for {reservation_id}")
        return True

    def is_scheduled(self, reservation_id: str) -> bool:
        task = self._tasks.get(reservation_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        """Cancel every waiting outcome and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(
        self, delay: float, details: dict, restaurant_responses: tuple[str, ...]
    ) -> None:
        await asyncio.sleep(delay)
        success = self.decide_outcome(restaurant_responses)
        if await self.deliver(build_outcome_payload(details, success)):
            return
        if self.store is not None:
            await self.store.merge_status(
                StatusUpdate(
                    id=details["reservationId"],
                    status=ReservationStatus.ERROR,
                    status_message=UNDELIVERED_MESSAGE,
                    status_details=UNDELIVERED_DETAILS,
                )
            )

    async def deliver(self, payload: dict) -> bool:
        """Send an outcome to the agent-response callback.

        Returns:
            True if the callback accepted the outcome
        """
        logger.info(f"Sending simulated callback to {AGENT_RESPONSE_PATH}: {payload}")
        try:
            async with self._client_factory() as client:
                response = await client.post(AGENT_RESPONSE_PATH, json=payload)
        except httpx.HTTPError:
            logger.exception("Error sending simulation callback")
            return False

        if response.is_error:
            logger.error(
                f"Simulation callback failed: {response.status_code} {response.text}"
            )
            return False

        logger.info("Simulation callback sent successfully")
        return True
