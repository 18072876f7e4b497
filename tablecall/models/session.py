"""Relay session records shared by the transport and agent legs."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class ConnectionState(str, Enum):
    """State of the agent leg of a relay session."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class LegSender(Protocol):
    """Anything the relay can push frames to and close."""

    async def send(self, frame: str | bytes) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass
class TransportConnection:
    """One phone-call media stream attached to a session."""

    connection_id: str
    session_id: str
    agent_id: str
    handle: LegSender
    reservation_id: str | None = None


@dataclass
class RelaySession:
    """Pairing of the transport legs of a call with at most one live agent leg."""

    session_id: str
    agent_id: str
    reservation_id: str | None = None
    state: ConnectionState = ConnectionState.CONNECTING
    handle: LegSender | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            self.created_at = datetime.now()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.handle is not None
