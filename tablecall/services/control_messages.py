"""Control messages sent by the voice agent over its relay connection."""

import json
import logging
import random
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from tablecall.models.reservation import Reservation, ReservationStatus, StatusUpdate
from tablecall.models.session import LegSender, RelaySession
from tablecall.services.reservation_store import ReservationStore
from tablecall.services.status_machine import (
    format_confirmed_datetime,
    parse_party_size,
)

logger = logging.getLogger(__name__)

CONFIRMED_MESSAGE = "Reservation confirmed"
CONFIRMED_DETAILS = "The restaurant has confirmed your reservation"
FAILED_MESSAGE = "Reservation failed"
FAILED_DETAILS = (
    "The restaurant was unable to accommodate the reservation at the requested time"
)

ALTERNATIVE_TIMES = ["18:30", "19:30", "20:00"]


class CompletionResult(BaseModel):
    """Outcome reported by the agent when the conversation ends."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: Any = None
    confirmed_date_time: str | None = Field(None, alias="confirmedDateTime")

    @property
    def succeeded(self) -> bool:
        return self.success is True


class CompletionMessage(BaseModel):
    """The agent finished the conversation."""

    model_config = ConfigDict(extra="allow")

    type: Literal["completion"]
    result: CompletionResult = Field(default_factory=CompletionResult)


class FunctionCallMessage(BaseModel):
    """The agent invokes a server-side function mid-conversation."""

    model_config = ConfigDict(extra="allow")

    type: Literal["function_call"]
    id: str | int | None = None
    function: str
    arguments: dict[str, Any] = Field(default_factory=dict)


ControlMessage = Annotated[
    CompletionMessage | FunctionCallMessage, Field(discriminator="type")
]

_control_adapter: TypeAdapter[CompletionMessage | FunctionCallMessage] = TypeAdapter(
    ControlMessage
)


def decode_control_message(
    frame: str | bytes,
) -> CompletionMessage | FunctionCallMessage | None:
    """Decode an agent-leg frame as a control message.

    Only frames starting with ``{`` are considered. Anything that does not
    decode into a known control message is media and yields None.

    Args:
        frame: Raw text or binary frame

    Returns:
        The decoded control message, or None
    """
    if isinstance(frame, bytes):
        if not frame.startswith(b"{"):
            return None
        try:
            text = frame.decode("utf-8")
        except UnicodeDecodeError:
            return None
    else:
        text = frame

    if not text.startswith("{"):
        return None

    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning(f"Failed to parse message as JSON: {e}")
        return None

    try:
        return _control_adapter.validate_python(data)
    except ValidationError:
        logger.debug(f"Not a control message: {data.get('type')!r}")
        return None


class ControlMessageInterpreter:
    """Turns agent control messages into replies and reservation updates."""

    def __init__(
        self, store: ReservationStore, rng: random.Random | None = None
    ) -> None:
        self.store = store
        self._rng = rng or random.Random()

    async def dispatch(
        self,
        message: CompletionMessage | FunctionCallMessage,
        session: RelaySession,
        reply_to: LegSender | None,
    ) -> Reservation | None:
        """Handle one control message for a session.

        Args:
            message: Decoded control message
            session: Session the message arrived on
            reply_to: Agent connection that sent the message

        Returns:
            The updated reservation, if the message changed one
        """
        if isinstance(message, CompletionMessage):
            return await self.handle_completion(session, message)
        return await self.handle_function_call(session, message, reply_to)

    async def handle_completion(
        self, session: RelaySession, message: CompletionMessage
    ) -> Reservation | None:
        logger.info(f"Conversation completed for session {session.session_id}")
        if not session.reservation_id:
            return None

        success = message.result.succeeded
        update = StatusUpdate(
            id=session.reservation_id,
            status=ReservationStatus.SUCCESS if success else ReservationStatus.ERROR,
            status_message=CONFIRMED_MESSAGE if success else FAILED_MESSAGE,
            status_details=CONFIRMED_DETAILS if success else FAILED_DETAILS,
            final_date_time=message.result.confirmed_date_time if success else None,
        )
        reservation = await self.store.merge_status(update)
        logger.info(
            f"Updated reservation {session.reservation_id} status to "
            f"{update.status.value}"
        )
        return reservation

    async def handle_function_call(
        self,
        session: RelaySession,
        message: FunctionCallMessage,
        reply_to: LegSender | None,
    ) -> Reservation | None:
        logger.info(f"Function call from voice agent: {message.function}")

        if message.function == "checkAvailability":
            await self._reply(
                reply_to,
                message,
                {"available": True, "alternativeTimes": list(ALTERNATIVE_TIMES)},
            )
            return None

        if message.function == "confirmReservation":
            confirmation_code = f"RES{self._rng.randrange(10000)}"
            await self._reply(
                reply_to,
                message,
                {"success": True, "confirmationCode": confirmation_code},
            )
            if not session.reservation_id:
                return None
            return await self._confirm(session.reservation_id, message.arguments)

        logger.info(f"Ignoring unrecognized function {message.function!r}")
        return None

    async def _confirm(
        self, reservation_id: str, arguments: dict
    ) -> Reservation | None:
        update = StatusUpdate(
            id=reservation_id,
            status=ReservationStatus.SUCCESS,
            status_message=CONFIRMED_MESSAGE,
            status_details=CONFIRMED_DETAILS,
            final_date_time=format_confirmed_datetime(
                _text(arguments.get("date")), _text(arguments.get("time"))
            ),
            person_name=_text(arguments.get("personName")),
            confirmed_party_size=parse_party_size(arguments.get("partySize")),
            special_instructions=_text(arguments.get("specialInstructions")),
        )
        return await self.store.merge_status(update)

    async def _reply(
        self,
        reply_to: LegSender | None,
        message: FunctionCallMessage,
        result: dict,
    ) -> None:
        if reply_to is None:
            logger.warning(f"No agent connection to answer {message.function}")
            return
        await reply_to.send(
            json.dumps({"type": "function_result", "id": message.id, "result": result})
        )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
