"""Services behind the TableCall API and media relay."""

from tablecall.services.call_initiator import CallInitiator
from tablecall.services.control_messages import (
    ControlMessageInterpreter,
    decode_control_message,
)
from tablecall.services.elevenlabs_service import AgentSession, ElevenLabsService
from tablecall.services.reservation_store import ReservationStore
from tablecall.services.session_manager import SessionManager
from tablecall.services.simulation import ConversationSimulator
from tablecall.services.status_machine import (
    apply_status_event,
    format_confirmed_datetime,
)
from tablecall.services.twilio_service import TwilioService

__all__ = [
    "AgentSession",
    "CallInitiator",
    "ControlMessageInterpreter",
    "ConversationSimulator",
    "ElevenLabsService",
    "ReservationStore",
    "SessionManager",
    "TwilioService",
    "apply_status_event",
    "decode_control_message",
    "format_confirmed_datetime",
]
