"""WebSocket relay between Twilio media streams and the ElevenLabs agent.

Twilio connects the answered call to ``/ws/stream`` (the transport leg) and
the voice agent connects to ``/ws/elevenlabs`` (the agent leg). Both supply
``agentId`` and ``sessionId`` query parameters; frames are relayed between
the legs that share a session ID.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import suppress

from fastapi import WebSocket, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tablecall.services.control_messages import (
    ControlMessageInterpreter,
    decode_control_message,
)
from tablecall.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

TRANSPORT_LEG = "stream"
AGENT_LEG = "elevenlabs"


class LegParams(BaseModel):
    """Connection-time parameters every relay leg must supply."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    agent_id: str = Field(..., alias="agentId", min_length=1)
    session_id: str = Field(..., alias="sessionId", min_length=1)
    reservation_id: str | None = Field(None, alias="reservationId")


class WebSocketLeg:
    """Send side of one relay WebSocket.

    Frames from concurrent forwarders are written one at a time, in the order
    they acquire the send lock.
    """

    def __init__(self, websocket: WebSocket, label: str) -> None:
        self.websocket = websocket
        self.label = label
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def send(self, frame: str | bytes) -> None:
        async with self._send_lock:
            if self.closed:
                return
            if isinstance(frame, bytes):
                await self.websocket.send_bytes(frame)
            else:
                await self.websocket.send_text(frame)

    async def close(
        self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str | None = None
    ) -> None:
        if self.closed:
            return
        self.closed = True
        async with self._send_lock:
            with suppress(RuntimeError):
                await self.websocket.close(code=code, reason=reason)
        logger.debug(f"Closed relay connection {self.label}")


class RelayLegHandler(ABC):
    """Receive loop for one relay leg.

    Frames from a single connection are handled strictly in arrival order.
    """

    leg_name = "relay"

    def __init__(
        self,
        websocket: WebSocket,
        params: LegParams,
        session_manager: SessionManager,
    ) -> None:
        self.websocket = websocket
        self.params = params
        self.session_manager = session_manager
        self.leg = WebSocketLeg(websocket, f"{self.leg_name}:{params.session_id}")

    async def run(self) -> None:
        """Register, accept the connection and relay frames until it closes."""
        await self.attach()
        try:
            await self.websocket.accept()
            await self._message_loop()
        finally:
            self.leg.closed = True
            await self.detach()

    async def _message_loop(self) -> None:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(
                    f"{self.leg_name} leg disconnected: {self.params.session_id}"
                )
                return

            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes")
            if frame is None:
                continue

            try:
                await self.handle_frame(frame)
            except Exception:
                logger.exception(f"Error handling {self.leg_name} frame")

    @abstractmethod
    async def attach(self) -> None:
        """Register this connection with the session registry."""

    @abstractmethod
    async def detach(self) -> None:
        """Unregister this connection once it has closed."""

    @abstractmethod
    async def handle_frame(self, frame: str | bytes) -> None:
        """Handle one frame received on this connection."""


class TransportLegHandler(RelayLegHandler):
    """Phone-call media stream: everything goes to the agent, or is dropped."""

    leg_name = "transport"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.connection_id: str | None = None

    async def attach(self) -> None:
        connection = await self.session_manager.attach_transport(
            session_id=self.params.session_id,
            agent_id=self.params.agent_id,
            handle=self.leg,
            reservation_id=self.params.reservation_id,
        )
        self.connection_id = connection.connection_id

    async def detach(self) -> None:
        if self.connection_id is not None:
            await self.session_manager.detach_transport(self.connection_id)

    async def handle_frame(self, frame: str | bytes) -> None:
        await self.session_manager.forward_to_agent(self.params.session_id, frame)


class AgentLegHandler(RelayLegHandler):
    """Voice agent connection: control messages are handled here, media fans out."""

    leg_name = "agent"

    def __init__(
        self,
        websocket: WebSocket,
        params: LegParams,
        session_manager: SessionManager,
        interpreter: ControlMessageInterpreter,
    ) -> None:
        super().__init__(websocket, params, session_manager)
        self.interpreter = interpreter

    async def attach(self) -> None:
        await self.session_manager.attach_agent(
            session_id=self.params.session_id,
            agent_id=self.params.agent_id,
            handle=self.leg,
            reservation_id=self.params.reservation_id,
        )

    async def detach(self) -> None:
        await self.session_manager.detach_agent(self.params.session_id, self.leg)

    async def handle_frame(self, frame: str | bytes) -> None:
        control = decode_control_message(frame)
        if control is None:
            await self.session_manager.forward_to_transports(
                self.params.session_id, frame
            )
            return

        session = self.session_manager.get_session(self.params.session_id)
        if session is None:
            logger.warning(
                f"Control message {control.type} for closed session "
                f"{self.params.session_id}"
            )
            return
        await self.interpreter.dispatch(control, session, reply_to=self.leg)


async def _reject(websocket: WebSocket, reason: str) -> None:
    # The close code only reaches the client once the handshake has completed.
    await websocket.accept()
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)


async def handle_relay_connection(
    websocket: WebSocket,
    leg: str,
    session_manager: SessionManager,
    interpreter: ControlMessageInterpreter,
) -> None:
    """Admit a relay connection and run it until it closes.

    Unknown leg paths and missing parameters are accepted and then closed
    with a policy violation; nothing is registered for them.

    Args:
        websocket: Incoming WebSocket
        leg: Path segment naming the leg (``stream`` or ``elevenlabs``)
        session_manager: Session registry
        interpreter: Handler for agent control messages
    """
    if leg not in (TRANSPORT_LEG, AGENT_LEG):
        logger.info(f"WebSocket connection rejected: Invalid path {leg}")
        await _reject(websocket, "Invalid WebSocket path")
        return

    try:
        params = LegParams.model_validate(dict(websocket.query_params))
    except ValidationError:
        logger.info(f"{leg} WebSocket connection rejected: Missing required parameters")
        await _reject(websocket, "Missing required parameters")
        return

    if leg == TRANSPORT_LEG:
        handler: RelayLegHandler = TransportLegHandler(
            websocket, params, session_manager
        )
    else:
        handler = AgentLegHandler(websocket, params, session_manager, interpreter)

    await handler.run()
