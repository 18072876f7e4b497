"""Placing outbound reservation calls."""

import asyncio
import logging
import uuid

from tablecall.config import Config, get_config
from tablecall.models.reservation import Reservation, ReservationStatus, StatusUpdate
from tablecall.services.elevenlabs_service import AgentSession, ElevenLabsService
from tablecall.services.reservation_store import ReservationStore
from tablecall.services.simulation import ConversationSimulator
from tablecall.services.twilio_service import TwilioService, is_permission_error

logger = logging.getLogger(__name__)

CALL_STATUS_PATH = "/api/call-status"

CALLING_MESSAGE = "Calling restaurant..."
RETRY_MESSAGE = "Retrying reservation call"
SIMULATION_MESSAGE = "Simulating call - International number detected"
SIMULATION_DETAILS = (
    "Note: Your Twilio account needs international permissions enabled to make "
    "real calls to this number. Using simulation mode for demonstration purposes."
)
PERMISSIONS_MESSAGE = "International permissions required"
PERMISSIONS_DETAILS = (
    "Your Twilio account needs international permissions enabled to call this "
    "number. Please visit "
    "https://www.twilio.com/console/voice/calls/geo-permissions/low-risk "
    "to enable international calling."
)
FAILURE_MESSAGE = "Failed to initiate call"
FAILURE_DETAILS = (
    "There was an error connecting to the voice service. Please try again later."
)


def simulated_call_sid() -> str:
    return f"SIMULATED_CALL_{uuid.uuid4().hex[:8]}"


def agent_details(reservation: Reservation) -> dict:
    """Conversation context the voice agent is primed with."""
    return {
        "personName": reservation.name,
        "phoneNumber": reservation.phone_number,
        "date": reservation.date,
        "time": reservation.time,
        "partySize": reservation.party_size,
        "specialInstructions": reservation.special_requests,
        "reservationId": reservation.id,
    }


class CallInitiator:
    """Starts the restaurant call for a reservation.

    The call leaves the reservation ``pending``; terminal statuses only come
    from the agent and telephony callbacks. Every failure ends in a stored
    status so a polling client never waits on a call that was never placed.
    """

    def __init__(
        self,
        store: ReservationStore,
        twilio_service: TwilioService,
        agent_service: ElevenLabsService,
        simulator: ConversationSimulator,
        config: Config | None = None,
    ) -> None:
        self.store = store
        self.twilio_service = twilio_service
        self.agent_service = agent_service
        self.simulator = simulator
        self.config = config or get_config()

    @property
    def status_callback_url(self) -> str:
        return f"{self.config.server_url.rstrip('/')}{CALL_STATUS_PATH}"

    async def retry(self, reservation_id: str) -> Reservation | None:
        """Reset a reservation to ``pending`` ahead of a new call.

        Retrying is allowed from any status. A simulated outcome still waiting
        from the previous attempt is dropped.

        Args:
            reservation_id: Reservation to retry

        Returns:
            The reset reservation, or None if it does not exist
        """
        if await self.store.get(reservation_id) is None:
            return None

        self.simulator.cancel(reservation_id)
        return await self.store.merge_status(
            StatusUpdate(
                id=reservation_id,
                status=ReservationStatus.PENDING,
                status_message=RETRY_MESSAGE,
            )
        )

    async def initiate_call(self, reservation_id: str) -> str | None:
        """Place the outbound call for a reservation.

        Args:
            reservation_id: Reservation that was just created or retried

        Returns:
            Call SID (real or simulated), or None when the call failed
        """
        reservation = await self.store.get(reservation_id)
        if reservation is None:
            logger.error(f"Cannot call for missing reservation {reservation_id}")
            return None

        await self.store.merge_status(
            StatusUpdate(
                id=reservation_id,
                status=ReservationStatus.PENDING,
                status_message=CALLING_MESSAGE,
            )
        )

        try:
            call_sid = await self._place_call(reservation)
        except Exception as e:
            logger.exception(f"Error initiating call for reservation {reservation_id}")
            await self._record_failure(reservation_id, e)
            return None

        logger.info(
            f"Initiated call to {reservation.phone_number} for {reservation_id}"
        )
        logger.info("Waiting for callback from voice agent...")
        return call_sid

    async def _place_call(self, reservation: Reservation) -> str:
        details = agent_details(reservation)
        agent_session = await self.agent_service.prepare_agent(
            reservation.phone_number, details
        )

        twiml = self.twilio_service.build_stream_twiml(
            agent_id=agent_session.agent_id,
            session_id=agent_session.session_id,
            reservation_id=reservation.id,
        )

        try:
            return await asyncio.to_thread(
                self.twilio_service.initiate_call,
                reservation.phone_number,
                twiml,
                self.status_callback_url,
            )
        except Exception as e:
            if not is_permission_error(e):
                raise
            return await self._simulate_call(reservation, agent_session, details)

    async def _simulate_call(
        self, reservation: Reservation, agent_session: AgentSession, details: dict
    ) -> str:
        call_sid = simulated_call_sid()
        logger.info(
            f"Simulating call to international number {reservation.phone_number} "
            f"(Twilio permission issue): {call_sid}"
        )

        await self.store.merge_status(
            StatusUpdate(
                id=reservation.id,
                status=ReservationStatus.PENDING,
                status_message=SIMULATION_MESSAGE,
                status_details=SIMULATION_DETAILS,
            )
        )
        self.simulator.schedule(agent_session.agent_id, details)
        return call_sid

    async def _record_failure(self, reservation_id: str, error: Exception) -> None:
        if is_permission_error(error):
            message, details = PERMISSIONS_MESSAGE, PERMISSIONS_DETAILS
        else:
            message, details = FAILURE_MESSAGE, FAILURE_DETAILS

        await self.store.merge_status(
            StatusUpdate(
                id=reservation_id,
                status=ReservationStatus.ERROR,
                status_message=message,
                status_details=details,
            )
        )
