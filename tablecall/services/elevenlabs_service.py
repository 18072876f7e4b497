"""ElevenLabs conversational agent integration."""

import logging
import uuid
from collections.abc import Callable

import httpx
from pydantic import BaseModel, Field

from tablecall.config import Config, get_config

logger = logging.getLogger(__name__)


class AgentSession(BaseModel):
    """Voice agent conversation prepared for a reservation call."""

    agent_id: str = Field(..., description="ElevenLabs agent driving the call")
    session_id: str = Field(..., description="Conversation/session identifier")
    simulated: bool = Field(
        False, description="True when no real conversation could be started"
    )


def build_dynamic_variables(details: dict) -> dict[str, str]:
    """Convert reservation details into the agent's dynamic variables.

    Args:
        details: Reservation details (personName, date, time, partySize,
            specialInstructions, reservationId)

    Returns:
        String-valued variables as the agent prompt expects them
    """
    return {
        "personName": details.get("personName") or "",
        "date": details.get("date") or "",
        "time": details.get("time") or "",
        "partySize": str(details.get("partySize") or ""),
        "specialInstructions": details.get("specialInstructions") or "",
        "reservationId": str(details.get("reservationId") or ""),
    }


def simulated_session_id() -> str:
    return f"simulated-call-{uuid.uuid4().hex[:8]}"


RESPONSE_TOOL_NAME = "agent-response"


def build_response_tool(callback_url: str) -> dict:
    """Describe the webhook the agent calls to report a reservation outcome.

    Args:
        callback_url: Public URL of the agent-response endpoint

    Returns:
        Tool definition in the ElevenLabs agent format
    """

    def text(description: str) -> dict:
        return {"type": "string", "description": description}

    return {
        "type": "webhook",
        "name": RESPONSE_TOOL_NAME,
        "description": (
            "Send the restaurant reservation outcome. Always call it when the "
            "conversation ends, using the exact parameter names. Only status is "
            "mandatory. Dates are YYYY-MM-DD and times HH:MM (24h)."
        ),
        "api_schema": {
            "url": callback_url,
            "method": "POST",
            "description": "Records the outcome of a restaurant reservation call.",
            "request_body_schema": {
                "type": "object",
                "description": "Reservation outcome keyed by the exact names below.",
                "properties": {
                    "reservationId": text(
                        "ID of the reservation, provided when the call started"
                    ),
                    "status": {
                        "type": "string",
                        "enum": ["success", "error", "not-reached"],
                        "description": (
                            "success (confirmed), error (declined) or "
                            "not-reached (no answer)"
                        ),
                    },
                    "statusMessage": text(
                        "Short explanation, required for error and not-reached"
                    ),
                    "confirmedDate": text("Confirmed date in YYYY-MM-DD format"),
                    "confirmedTime": text("Confirmed time in HH:MM format"),
                    "specialInstructions": text("Notes from the restaurant"),
                    "partySize": text("Final number of people agreed"),
                    "personName": text("Name the reservation was made under"),
                },
                "required": ["status"],
            },
        },
    }


class ElevenLabsService:
    """Client for the pre-configured ElevenLabs booking agent."""

    def __init__(
        self,
        config: Config | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        """Initialize the ElevenLabs service.

        Args:
            config: Application configuration
            client_factory: Builds the HTTP client used per request
        """
        self.config = config or get_config()
        self._client_factory = client_factory or self._default_client

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.elevenlabs_base_url,
            headers={"xi-api-key": self.config.elevenlabs_api_key or ""},
            timeout=15.0,
        )

    @property
    def agent_id(self) -> str:
        return self.config.elevenlabs_agent_id

    def is_configured(self) -> bool:
        return self.config.has_elevenlabs_config()

    async def prepare_agent(self, phone_number: str, details: dict) -> AgentSession:
        """Prime the booking agent with the reservation's details.

        Failures of the ElevenLabs API degrade to a simulated session so the
        call itself can still be placed.

        Args:
            phone_number: Restaurant phone number
            details: Reservation details for the agent's dynamic variables

        Returns:
            The agent session to pair with the phone call
        """
        variables = build_dynamic_variables(details)
        logger.info(
            f"Preparing agent {self.agent_id} for reservation "
            f"{variables['reservationId'] or 'not provided'}"
        )
        logger.debug(f"Agent variables: {variables}")

        if not self.is_configured():
            logger.warning("ElevenLabs not configured - using simulated session")
            return AgentSession(
                agent_id=self.agent_id,
                session_id=simulated_session_id(),
                simulated=True,
            )

        payload = {
            "agent_id": self.agent_id,
            "agent_phone_number_id": self.config.elevenlabs_phone_number_id,
            "to_number": phone_number,
            "conversation_initiation_client_data": {
                "dynamic_variables": variables,
                "custom_llm_extra_body": {},
            },
        }

        try:
            async with self._client_factory() as client:
                response = await client.post(
                    "/convai/twilio/outbound_call", json=payload
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("Error initiating ElevenLabs outbound call")
            logger.info("Falling back to simulated session")
            return AgentSession(
                agent_id=self.agent_id,
                session_id=simulated_session_id(),
                simulated=True,
            )

        session_id = (
            data.get("callSid")
            or data.get("conversation_id")
            or simulated_session_id()
        )
        logger.info(f"ElevenLabs conversation started: {session_id}")
        return AgentSession(agent_id=self.agent_id, session_id=session_id)

    async def register_response_tool(self, callback_url: str | None = None) -> dict:
        """Point the agent's outcome webhook at this server.

        Every other tool already configured on the agent is kept; a previous
        agent-response tool is replaced.

        Args:
            callback_url: Agent-response URL (defaults to the server URL's
                ``/api/agent-response``)

        Returns:
            The updated agent as returned by ElevenLabs

        Raises:
            ValueError: If no ElevenLabs API key is configured
            httpx.HTTPError: If ElevenLabs rejects either request
        """
        if not self.is_configured():
            raise ValueError("ElevenLabs is not configured")

        callback_url = (
            callback_url or f"{self.config.server_url.rstrip('/')}/api/agent-response"
        )
        agent_path = f"/convai/agents/{self.agent_id}"
        logger.info(f"Registering {RESPONSE_TOOL_NAME} tool at {callback_url}")

        async with self._client_factory() as client:
            response = await client.get(agent_path)
            response.raise_for_status()
            agent = response.json()

            prompt = (
                (agent.get("conversation_config") or {}).get("agent") or {}
            ).get("prompt") or {}
            other_tools = [
                tool
                for tool in prompt.get("tools") or []
                if tool.get("name") != RESPONSE_TOOL_NAME
            ]
            logger.info(f"Preserving {len(other_tools)} existing tools")

            tools = [*other_tools, build_response_tool(callback_url)]
            response = await client.patch(
                agent_path,
                json={"conversation_config": {"agent": {"prompt": {"tools": tools}}}},
            )
            response.raise_for_status()

        logger.info(f"Agent {self.agent_id} updated")
        return response.json()
