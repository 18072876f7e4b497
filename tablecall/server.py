"""FastAPI server for reservation calls and the Twilio/ElevenLabs media relay."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import (
    BackgroundTasks,
    Body,
    FastAPI,
    Query,
    Request,
    WebSocket,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tablecall.config import Config, get_config, setup_logging
from tablecall.models.reservation import (
    Reservation,
    ReservationCreate,
    ReservationStatus,
    StatusUpdate,
)
from tablecall.services.agent_response import AgentResponse
from tablecall.services.call_initiator import CallInitiator
from tablecall.services.control_messages import ControlMessageInterpreter
from tablecall.services.elevenlabs_service import ElevenLabsService
from tablecall.services.reservation_store import DEFAULT_LIST_LIMIT, ReservationStore
from tablecall.services.session_manager import SessionManager
from tablecall.services.simulation import ConversationSimulator
from tablecall.services.twilio_service import TwilioService
from tablecall.stream_handler import handle_relay_connection

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Everything the routes share for the lifetime of the app."""

    store: ReservationStore
    session_manager: SessionManager
    interpreter: ControlMessageInterpreter
    simulator: ConversationSimulator
    call_initiator: CallInitiator


def build_services(
    config: Config | None = None,
    *,
    store: ReservationStore | None = None,
    twilio_service: TwilioService | None = None,
    agent_service: ElevenLabsService | None = None,
    simulator: ConversationSimulator | None = None,
) -> AppServices:
    """Wire the application's services together.

    Any collaborator can be supplied, which is how tests swap in fakes.
    """
    config = config or get_config()
    store = store or ReservationStore()
    simulator = simulator or ConversationSimulator(config, store=store)
    call_initiator = CallInitiator(
        store=store,
        twilio_service=twilio_service or TwilioService(config),
        agent_service=agent_service or ElevenLabsService(config),
        simulator=simulator,
        config=config,
    )
    return AppServices(
        store=store,
        session_manager=SessionManager(),
        interpreter=ControlMessageInterpreter(store),
        simulator=simulator,
        call_initiator=call_initiator,
    )


def format_validation_error(exc: RequestValidationError | ValidationError) -> str:
    """Render validation errors as one human-readable sentence."""
    parts = []
    for error in exc.errors():
        location = ".".join(
            str(part) for part in error.get("loc", ()) if part not in ("body", "query")
        )
        message = error.get("msg", "Invalid value")
        parts.append(f'{message} at "{location}"' if location else message)
    return "Validation error: " + "; ".join(parts)


def create_app(services: AppServices | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built services; built from the environment when omitted

    Returns:
        Configured application
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Application lifespan manager."""
        config = get_config()
        logger.info(
            f"Starting TableCall server on {config.server_host}:{config.server_port}"
        )
        logger.info(f"Callback base URL: {config.server_url}")
        logger.info(f"Public domain: {config.public_domain or 'NOT CONFIGURED'}")

        if getattr(_app.state, "services", None) is None:
            _app.state.services = build_services(config)

        yield

        await _app.state.services.simulator.shutdown()
        logger.info("Shutting down TableCall server")

    app = FastAPI(
        title="TableCall API",
        description="Automated restaurant reservation calls",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400, content={"message": format_validation_error(exc)}
        )

    register_routes(app)
    return app


def get_services(request: Request) -> AppServices:
    """Services of the app serving this request."""
    return request.app.state.services


def _reservation_json(reservation: Reservation) -> dict:
    return reservation.model_dump(by_alias=True, mode="json")


def register_routes(app: FastAPI) -> None:
    """Attach the HTTP and WebSocket routes."""

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "service": "tablecall-api"}

    @app.post("/api/reservations", status_code=201)
    async def create_reservation(
        payload: ReservationCreate,
        request: Request,
        background_tasks: BackgroundTasks,
    ):
        """Store a reservation request and start calling the restaurant."""
        services = get_services(request)
        try:
            reservation = await services.store.create(payload)
        except Exception:
            logger.exception("Error creating reservation")
            return JSONResponse(
                status_code=500, content={"message": "Failed to create reservation"}
            )

        background_tasks.add_task(
            services.call_initiator.initiate_call, reservation.id
        )
        return _reservation_json(reservation)

    @app.get("/api/reservations/{reservation_id}")
    async def get_reservation(reservation_id: str, request: Request):
        """Return one reservation so the client can poll its status."""
        services = get_services(request)
        try:
            reservation = await services.store.get(reservation_id)
        except Exception:
            logger.exception("Error fetching reservation")
            return JSONResponse(
                status_code=500, content={"message": "Failed to fetch reservation"}
            )

        if reservation is None:
            return JSONResponse(
                status_code=404, content={"message": "Reservation not found"}
            )
        return _reservation_json(reservation)

    @app.get("/api/reservations")
    async def list_reservations(
        request: Request,
        limit: int = Query(DEFAULT_LIST_LIMIT, ge=0, description="Maximum results"),
    ):
        """Return the most recent reservations, newest first."""
        services = get_services(request)
        try:
            reservations = await services.store.list_recent(limit)
        except Exception:
            logger.exception("Error fetching reservations")
            return JSONResponse(
                status_code=500, content={"message": "Failed to fetch reservations"}
            )
        return [_reservation_json(reservation) for reservation in reservations]

    @app.post("/api/reservations/{reservation_id}/retry")
    async def retry_reservation(
        reservation_id: str, request: Request, background_tasks: BackgroundTasks
    ):
        """Reset a reservation to pending and call the restaurant again."""
        services = get_services(request)
        try:
            reservation = await services.call_initiator.retry(reservation_id)
        except Exception:
            logger.exception("Error retrying reservation")
            return JSONResponse(
                status_code=500, content={"message": "Failed to retry reservation"}
            )

        if reservation is None:
            return JSONResponse(
                status_code=404, content={"message": "Reservation not found"}
            )

        background_tasks.add_task(services.call_initiator.initiate_call, reservation_id)
        return {"message": "Reservation call retry initiated"}

    @app.post("/api/call-status")
    async def call_status_callback(update: StatusUpdate, request: Request):
        """Apply a status update reported by the telephony provider."""
        services = get_services(request)
        try:
            reservation = await services.store.merge_status(update)
        except Exception:
            logger.exception("Error updating reservation status")
            return JSONResponse(
                status_code=500,
                content={"message": "Failed to update reservation status"},
            )

        if reservation is None:
            return JSONResponse(
                status_code=404, content={"message": "Reservation not found"}
            )
        return _reservation_json(reservation)

    @app.post("/api/agent-response")
    async def agent_response_callback(request: Request, payload: dict = Body(...)):
        """Apply the outcome reported by the voice agent.

        Without a reservation ID the most recent reservation is updated. That
        guess is only safe while a single call is in flight.
        """
        services = get_services(request)
        logger.info(f"Received agent response: {payload}")

        try:
            response = AgentResponse.model_validate(payload)
        except ValidationError as e:
            return JSONResponse(
                status_code=400, content={"error": format_validation_error(e)}
            )

        if not response.status:
            logger.error("Missing required status parameter in agent response")
            return JSONResponse(
                status_code=400, content={"error": "Missing required status parameter"}
            )

        try:
            status = ReservationStatus(response.status)
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"error": f"Invalid status parameter: {response.status}"},
            )

        try:
            reservation_id = response.normalized_reservation_id
            if reservation_id is None:
                logger.warning(
                    "No reservationId provided, using most recent reservation"
                )
                recent = await services.store.list_recent(1)
                if not recent:
                    return JSONResponse(
                        status_code=404, content={"error": "No reservations found"}
                    )
                reservation_id = recent[0].id

            reservation = await services.store.merge_status(
                response.to_status_update(reservation_id, status)
            )
        except Exception:
            logger.exception("Error processing agent response")
            return JSONResponse(
                status_code=500, content={"error": "Failed to process agent response"}
            )

        if reservation is None:
            return JSONResponse(
                status_code=404, content={"error": "Reservation not found"}
            )

        return {
            "success": True,
            "message": "Agent response processed successfully",
            "reservation": _reservation_json(reservation),
        }

    @app.websocket("/ws/{leg}")
    async def relay_stream(websocket: WebSocket, leg: str):
        """Relay media between a phone call and its voice agent.

        ``/ws/stream`` carries the Twilio media stream and ``/ws/elevenlabs``
        the agent conversation. Both need ``agentId`` and ``sessionId`` query
        parameters.
        """
        services: AppServices = websocket.app.state.services
        logger.debug(f"WebSocket connection from {websocket.client} on {leg}")
        await handle_relay_connection(
            websocket, leg, services.session_manager, services.interpreter
        )


app = create_app()


def run_server():
    """Run the FastAPI server using uvicorn.

    This is the main entry point for the server.
    """
    setup_logging()

    config = get_config()

    uvicorn.run(
        "tablecall.server:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_server()
