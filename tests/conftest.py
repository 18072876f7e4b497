"""Shared fixtures for TableCall tests."""

import json
import random

import httpx
import pytest
from twilio.base.exceptions import TwilioRestException

from tablecall.config import Config
from tablecall.models.reservation import ReservationCreate
from tablecall.services.elevenlabs_service import ElevenLabsService
from tablecall.services.reservation_store import ReservationStore
from tablecall.services.simulation import ConversationSimulator
from tablecall.services.twilio_service import (
    INTERNATIONAL_PERMISSION_ERROR,
    TwilioService,
)


class FakeLeg:
    """Records what the relay sends to one connection."""

    def __init__(self, name: str = "leg") -> None:
        self.name = name
        self.sent: list[str | bytes] = []
        self.closed = False
        self.close_code: int | None = None

    async def send(self, frame: str | bytes) -> None:
        self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = True
        self.close_code = code


class MockCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class MockCalls:
    """Stands in for ``Client.calls``; raises ``error`` when one is set."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.created: list[dict] = []

    def create(self, **kwargs):
        self.created.append(kwargs)
        if self.error is not None:
            raise self.error
        return MockCall(f"CA{len(self.created):032d}")


class MockClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = MockCalls(error)


@pytest.fixture
def permission_error() -> TwilioRestException:
    """Twilio rejection for a destination outside the geo permissions."""
    return TwilioRestException(
        status=400,
        uri="/Accounts/AC123/Calls.json",
        msg="Account not authorized to call +441234567890",
        code=INTERNATIONAL_PERMISSION_ERROR,
    )


@pytest.fixture
def config():
    """Configuration independent of the developer's environment."""
    return Config(
        _env_file=None,
        twilio_account_sid=None,
        twilio_auth_token=None,
        twilio_phone_number="+15550001111",
        elevenlabs_api_key=None,
        server_url="http://testserver",
        public_domain="relay.example.com",
        simulation_min_delay=0,
        simulation_max_delay=0,
    )


@pytest.fixture
def make_leg():
    return FakeLeg


@pytest.fixture
def store():
    return ReservationStore()


@pytest.fixture
def reservation_fields():
    return ReservationCreate(
        name="Jane Smith",
        phone_number="+15551234567",
        party_size=4,
        date="2025-04-23",
        time="19:30",
        special_requests="Window seat please",
    )


@pytest.fixture
def twilio_service(config):
    """Twilio service with a mock REST client that accepts every call."""
    service = TwilioService(config)
    service.client = MockClient()
    return service


@pytest.fixture
def agent_service(config):
    """ElevenLabs service without an API key, so sessions are simulated."""
    return ElevenLabsService(config)


@pytest.fixture
def delivered():
    """Bodies posted by the simulator."""
    return []


@pytest.fixture
def simulator(config, delivered):
    """Simulator whose callbacks are captured instead of sent."""

    def handler(request: httpx.Request) -> httpx.Response:
        delivered.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    return ConversationSimulator(
        config,
        client_factory=lambda: httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url=config.server_url
        ),
        rng=random.Random(7),
    )
