"""
FastAPI application for the Patient Journey Engine.

Startup checks the stores (retried, then fatal) and resumes every
in-progress run before the app starts serving requests.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional
import logging

from fastapi import Body, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import Settings
from ..core import JourneyEngine, JourneyService, NodeExecutor, MessageSender
from ..models import RunStatus
from ..storage import JourneyStore, RunStore, create_stores
from ..utils import (
    NotFoundError,
    ProgressLogger,
    ValidationError,
    create_store_connect_retry,
)

logger = logging.getLogger(__name__)


def get_service(request: Request) -> JourneyService:
    return request.app.state.service


def create_app(
    settings: Optional[Settings] = None,
    journey_store: Optional[JourneyStore] = None,
    run_store: Optional[RunStore] = None,
    message_sender: Optional[MessageSender] = None
) -> FastAPI:
    """
    Create the journey API application.

    Args:
        settings: Application settings (loaded from the environment if omitted)
        journey_store: Journey store (built from settings if omitted)
        run_store: Run store (built from settings if omitted)
        message_sender: Delivery hook for MESSAGE nodes

    Returns:
        Configured FastAPI app
    """
    settings = settings or Settings()
    if journey_store is None or run_store is None:
        default_journeys, default_runs = create_stores(settings)
        journey_store = journey_store or default_journeys
        run_store = run_store or default_runs

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        connect = create_store_connect_retry(
            attempts=settings.store_connect_attempts,
            wait_seconds=settings.store_connect_wait_seconds
        )

        @connect
        async def check_stores() -> None:
            await journey_store.check()
            await run_store.check()

        logger.info("Checking journey and run stores...")
        await check_stores()

        progress = ProgressLogger()
        engine = JourneyEngine(
            journey_store,
            run_store,
            executor=NodeExecutor(message_sender=message_sender, progress=progress),
            progress=progress,
            max_steps_per_run=settings.max_steps_per_run
        )
        app.state.engine = engine
        app.state.service = JourneyService(journey_store, run_store, engine)

        logger.info("Resuming active journey runs...")
        await engine.resume_active_runs()

        logger.info("Patient Journey Engine ready")
        try:
            yield
        finally:
            await engine.shutdown()

    app = FastAPI(
        title="Patient Journey Engine",
        description="Orchestrates MESSAGE, DELAY and CONDITIONAL patient care journeys",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "invalid request") if errors else "invalid request"
        location = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
        return JSONResponse(status_code=400, content={"error": f"Invalid request {location}: {detail}"})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": f"{exc.kind} not found"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "environment": settings.environment,
        }

    @app.post("/api/journeys", status_code=201)
    async def create_journey(request: Request, draft: dict = Body(...)):
        journey = await get_service(request).submit_journey(draft)
        return {"journeyId": journey.id}

    @app.get("/api/journeys")
    async def list_journeys(request: Request):
        journeys = await get_service(request).list_journeys()
        return {"journeys": [journey.to_public_dict() for journey in journeys]}

    # Run routes are registered before /api/journeys/{journey_id} so "runs" is never read as an id
    @app.get("/api/journeys/runs")
    async def list_runs(request: Request, status: RunStatus = RunStatus.IN_PROGRESS):
        runs = await get_service(request).list_runs(status)
        return {"runs": [run.to_status_dict() for run in runs]}

    @app.get("/api/journeys/runs/{run_id}")
    async def get_run_status(request: Request, run_id: str):
        run = await get_service(request).get_run(run_id)
        return run.to_status_dict()

    @app.post("/api/journeys/runs/{run_id}/cancel")
    async def cancel_run(request: Request, run_id: str):
        run = await get_service(request).cancel_run(run_id)
        return run.to_status_dict()

    @app.get("/api/journeys/{journey_id}")
    async def get_journey(request: Request, journey_id: str):
        journey = await get_service(request).get_journey(journey_id)
        return journey.to_public_dict()

    @app.post("/api/journeys/{journey_id}/trigger", status_code=202)
    async def trigger_journey(
        request: Request,
        response: Response,
        journey_id: str,
        patient_context: Any = Body(...)
    ):
        run_id = await get_service(request).trigger(journey_id, patient_context)
        response.headers["Location"] = f"/api/journeys/runs/{run_id}"
        return {"runId": run_id}

    return app
