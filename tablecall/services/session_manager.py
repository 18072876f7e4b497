"""Registry of relay sessions pairing phone-call streams with agent connections."""

import logging
import time
import uuid

from tablecall.models.session import (
    ConnectionState,
    LegSender,
    RelaySession,
    TransportConnection,
)
from tablecall.services.locks import KeyedLock

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the transport-leg and agent-leg registries.

    A session is created by whichever leg references its ID first and lives
    until both of its legs have disconnected. Attach, detach
    and replace operations are serialized per session ID; different sessions
    never wait on each other.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, RelaySession] = {}
        self._transports: dict[str, TransportConnection] = {}
        self._transports_by_session: dict[str, dict[str, TransportConnection]] = {}
        self._locks = KeyedLock()

    @staticmethod
    def generate_connection_id() -> str:
        """Generate a unique transport connection identifier."""
        return f"twilio-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"

    def get_session(self, session_id: str) -> RelaySession | None:
        return self._sessions.get(session_id)

    def get_transport(self, connection_id: str) -> TransportConnection | None:
        return self._transports.get(connection_id)

    def transports_for(self, session_id: str) -> list[TransportConnection]:
        """Transport legs currently attached to a session."""
        return list(self._transports_by_session.get(session_id, {}).values())

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @property
    def transport_count(self) -> int:
        return len(self._transports)

    async def attach_transport(
        self,
        session_id: str,
        agent_id: str,
        handle: LegSender,
        reservation_id: str | None = None,
    ) -> TransportConnection:
        """Register a phone-call stream.

        Args:
            session_id: Session the stream belongs to
            agent_id: Voice agent driving the call
            handle: Sender for frames going to the phone call
            reservation_id: Reservation the call is for (optional)

        Returns:
            The registered transport connection
        """
        connection = TransportConnection(
            connection_id=self.generate_connection_id(),
            session_id=session_id,
            agent_id=agent_id,
            handle=handle,
            reservation_id=reservation_id,
        )

        async with self._locks.hold(session_id):
            self._transports[connection.connection_id] = connection
            self._transports_by_session.setdefault(session_id, {})[
                connection.connection_id
            ] = connection

            session = self._sessions.get(session_id)
            if session is None:
                self._sessions[session_id] = RelaySession(
                    session_id=session_id,
                    agent_id=agent_id,
                    reservation_id=reservation_id,
                    state=ConnectionState.CONNECTING,
                )
                logger.info(f"Created new relay session: {session_id}")
            elif session.reservation_id is None and reservation_id:
                session.reservation_id = reservation_id
                logger.info(f"Bound relay session {session_id} to {reservation_id}")

        logger.info(f"Transport connection established: {connection.connection_id}")
        return connection

    async def detach_transport(self, connection_id: str) -> bool:
        """Unregister a phone-call stream.

        When it was the session's last stream the session is torn down and its
        agent connection, if any, is closed.

        Args:
            connection_id: Transport connection identifier

        Returns:
            True if the session was torn down
        """
        connection = self._transports.get(connection_id)
        if connection is None:
            logger.warning(f"Attempted to detach unknown connection {connection_id}")
            return False

        session_id = connection.session_id
        agent_handle: LegSender | None = None

        async with self._locks.hold(session_id):
            if self._transports.pop(connection_id, None) is None:
                return False
            remaining = self._transports_by_session.get(session_id, {})
            remaining.pop(connection_id, None)
            logger.info(f"Transport connection closed: {connection_id}")

            if remaining:
                return False

            self._transports_by_session.pop(session_id, None)
            session = self._sessions.pop(session_id, None)
            if session is not None:
                agent_handle = session.handle
                session.handle = None
                session.state = ConnectionState.DISCONNECTED

        if agent_handle is not None:
            await agent_handle.close()
        logger.info(f"Cleaned up relay session: {session_id}")
        return True

    async def attach_agent(
        self,
        session_id: str,
        agent_id: str,
        handle: LegSender,
        reservation_id: str | None = None,
    ) -> RelaySession:
        """Make a voice agent connection the live agent leg of a session.

        A newer agent connection supersedes the previous one, which simply
        stops receiving frames.

        Args:
            session_id: Session to join
            agent_id: Voice agent identifier
            handle: Sender for frames going to the agent
            reservation_id: Reservation the conversation is for (optional)

        Returns:
            The session now bound to this connection
        """
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                session = RelaySession(
                    session_id=session_id,
                    agent_id=agent_id,
                    reservation_id=reservation_id,
                    state=ConnectionState.CONNECTED,
                    handle=handle,
                )
                self._sessions[session_id] = session
                logger.info(f"Created new relay session: {session_id}")
            else:
                if session.handle is not None and session.handle is not handle:
                    logger.info(f"Agent connection superseded for session {session_id}")
                session.handle = handle
                session.state = ConnectionState.CONNECTED
                if session.reservation_id is None and reservation_id:
                    session.reservation_id = reservation_id
                logger.info(f"Updated existing relay session: {session_id}")

        return session

    async def detach_agent(self, session_id: str, handle: LegSender) -> None:
        """Mark the agent leg of a session as gone.

        While a phone-call stream is still attached the session record stays
        so a replacement agent connection can resume it; otherwise both legs
        are gone and the session is removed. A superseded connection closing
        does not touch the live one.

        Args:
            session_id: Session the agent connection belonged to
            handle: Sender of the closing connection
        """
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None or session.handle is not handle:
                return

            session.handle = None
            session.state = ConnectionState.DISCONNECTED
            if not self._transports_by_session.get(session_id):
                del self._sessions[session_id]
                logger.info(f"Cleaned up relay session: {session_id}")
        logger.info(f"Agent connection closed: {session_id}")

    async def forward_to_agent(self, session_id: str, frame: str | bytes) -> bool:
        """Forward a phone-call frame to the session's live agent leg.

        Frames arriving while no agent is connected are dropped.

        Returns:
            True if the frame was delivered
        """
        session = self._sessions.get(session_id)
        handle = session.handle if session is not None else None
        if session is None or not session.is_connected or handle is None:
            logger.debug(f"No active agent connection for session {session_id}")
            return False

        try:
            await handle.send(frame)
        except Exception:
            logger.exception(f"Error forwarding frame to agent for {session_id}")
            return False
        return True

    async def forward_to_transports(self, session_id: str, frame: str | bytes) -> int:
        """Forward an agent frame to every phone-call stream of the session.

        Returns:
            Number of streams the frame was delivered to
        """
        delivered = 0
        for connection in self.transports_for(session_id):
            try:
                await connection.handle.send(frame)
            except Exception:
                logger.exception(
                    f"Error forwarding frame to {connection.connection_id}"
                )
                continue
            delivered += 1
        return delivered
