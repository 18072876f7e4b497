"""Twilio service for outbound reservation calls."""

import logging
from urllib.parse import urlencode

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import Connect, VoiceResponse

from tablecall.config import Config, get_config

logger = logging.getLogger(__name__)

# Twilio rejects calls to destinations outside the account's geo permissions
INTERNATIONAL_PERMISSION_ERROR = 21215

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


def is_permission_error(error: BaseException) -> bool:
    """Check whether an error is Twilio's geo-permission rejection."""
    return getattr(error, "code", None) == INTERNATIONAL_PERMISSION_ERROR


class TwilioService:
    """Service for placing outbound calls through Twilio.

    The call's audio is routed to this server's media-stream relay, which
    pairs it with the voice agent's conversation.
    """

    def __init__(self, config: Config | None = None) -> None:
        """Initialize the Twilio service."""
        self.config = config or get_config()
        if not self.config.has_twilio_config():
            logger.warning("Twilio not configured - service will not be functional")
            self.client = None
        else:
            self.client = Client(
                self.config.twilio_account_sid, self.config.twilio_auth_token
            )
            logger.info("Twilio service initialized")

    def is_configured(self) -> bool:
        """Check if Twilio is properly configured.

        Returns:
            True if Twilio credentials are set, False otherwise
        """
        return self.client is not None

    def build_stream_twiml(
        self,
        agent_id: str,
        session_id: str,
        reservation_id: str | None = None,
        greeting: str | None = None,
    ) -> str:
        """Build TwiML that connects the answered call to the relay.

        Without a public domain there is nowhere to stream to, so the call
        only plays the greeting.

        Args:
            agent_id: Voice agent driving the conversation
            session_id: Session shared with the agent leg
            reservation_id: Reservation the call is for
            greeting: Optional text spoken before the stream starts

        Returns:
            TwiML document
        """
        response = VoiceResponse()
        if greeting:
            response.say(greeting)

        if not self.config.public_domain:
            logger.warning("PUBLIC_DOMAIN not configured - call will not be relayed")
            if not greeting:
                response.say("Connecting your call to our reservation assistant.")
            return str(response)

        params = {"agentId": agent_id, "sessionId": session_id}
        if reservation_id:
            params["reservationId"] = reservation_id
        stream_url = f"wss://{self.config.public_domain}/ws/stream?{urlencode(params)}"

        connect = Connect()
        stream = connect.stream(url=stream_url)
        for name, value in params.items():
            stream.parameter(name=name, value=value)
        response.append(connect)
        return str(response)

    def initiate_call(
        self,
        to_number: str,
        twiml: str,
        status_callback: str | None = None,
    ) -> str:
        """Initiate an outbound call.

        Args:
            to_number: The phone number to call
            twiml: TwiML instructions for the answered call
            status_callback: URL for call status callbacks (optional)

        Returns:
            Call SID

        Raises:
            ValueError: If Twilio is not configured
            TwilioRestException: If Twilio rejects the call
        """
        if not self.client:
            msg = "Twilio is not configured"
            raise ValueError(msg)

        try:
            logger.info(f"Initiating call to {to_number}")

            call_params = {
                "to": to_number,
                "from_": self.config.twilio_phone_number,
                "twiml": twiml,
            }

            if status_callback:
                call_params["status_callback"] = status_callback
                call_params["status_callback_method"] = "POST"
                call_params["status_callback_event"] = STATUS_CALLBACK_EVENTS

            call = self.client.calls.create(**call_params)

        except TwilioRestException as e:
            if is_permission_error(e):
                logger.warning(f"Twilio geo permissions block calls to {to_number}")
            else:
                logger.exception("Failed to initiate call")
            raise
        else:
            logger.info(f"Call initiated with SID: {call.sid}")
            return call.sid
