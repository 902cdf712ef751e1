"""
FastAPI Application Entry Point

Restaurant jobs & realtime core.

Endpoints:
    - POST   /api/jobs: Enqueue a job
    - GET    /api/jobs/{job_id}: Inspect a job
    - DELETE /api/jobs/{job_id}: Cancel a waiting job
    - GET    /api/jobs: Job counts per category and status
    - POST   /api/inventory/deductions: Synchronous stock deduction for an order
    - POST   /api/events/publish: Publish a realtime event into a room
    - POST   /api/events/broadcast: Send a realtime event to every connection
    - WS     /ws: Realtime room subscriptions
    - GET    /health: System health check
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from app.container import ServiceContainer
from app.core.config import Settings, get_settings, setup_logging
from app.jobs.errors import InvalidPayload, JobNotCancellable, JobNotFound
from app.realtime.hub import UnknownConnection
from app.realtime.rooms import InvalidRoom
from app.schemas import (
    DeductionRequest,
    DeductionResponse,
    ErrorResponse,
    EventBroadcastRequest,
    EventPublishRequest,
    EventPublishResponse,
    HealthResponse,
    JobCountsResponse,
    JobCreate,
    JobCreateResponse,
    JobResponse,
)
from app.services.notifications import BaseNotificationService

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def create_app(
    settings: Optional[Settings] = None,
    notifications: Optional[BaseNotificationService] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Defaults to the cached environment settings
        notifications: Override the ENV_MODE-selected notification service
    """
    settings = settings or get_settings()

    # =========================================================================
    # APPLICATION LIFECYCLE
    # =========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application startup and shutdown events.
        """
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Realtime backend: {settings.realtime_backend.value}")
        logger.info("=" * 60)

        if settings.use_real_services:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"⚠️ Missing production config: {missing}")

        container = await ServiceContainer.build(settings, notifications=notifications)
        app.state.container = container

        if settings.run_workers_in_api:
            container.start_workers()
            logger.info("✅ Worker pools running inside the API process")

        logger.info("✅ Application ready!")

        yield  # Application runs

        logger.info("Shutting down...")
        await container.shutdown()

    # =========================================================================
    # APPLICATION INSTANCE
    # =========================================================================

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Durable background jobs (notifications, stock deduction, scans, reports) "
            "and room-scoped realtime events for restaurant displays."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================

    @app.exception_handler(InvalidPayload)
    async def invalid_payload_handler(request: Request, exc: InvalidPayload) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(error=f"Invalid {exc.category} payload", detail=exc.detail).model_dump(),
        )

    @app.exception_handler(JobNotFound)
    async def job_not_found_handler(request: Request, exc: JobNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content=ErrorResponse(error=str(exc)).model_dump())

    @app.exception_handler(JobNotCancellable)
    async def job_not_cancellable_handler(request: Request, exc: JobNotCancellable) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(error=str(exc), detail={"status": exc.status}).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content=ErrorResponse(error="Internal server error").model_dump())

    # =========================================================================
    # ROOT & HEALTH ENDPOINTS
    # =========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """API root with navigation links."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "documentation": "/docs",
            "health": "/health",
            "websocket": "/ws",
        }

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
        """Verify all system components are operational."""

        async def check_store(factory) -> str:
            try:
                async with factory() as session:
                    await session.execute(text("SELECT 1"))
                return "healthy"
            except Exception as e:
                logger.error(f"Database health check failed: {e}")
                return f"unhealthy: {e}"

        db_status = await check_store(container.session_factory)
        queue_status = await check_store(container.queue_session_factory)

        # Check Redis
        redis_status = "healthy"
        try:
            client = aioredis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
            try:
                await client.ping()
            finally:
                await client.aclose()
        except Exception as e:
            redis_status = f"unhealthy: {e}"
            logger.error(f"Redis health check failed: {e}")

        notifications_status = "healthy" if await container.notifications.health_check() else "unhealthy"

        jobs = {}
        if queue_status == "healthy":
            jobs = await container.dispatcher.counts()

        overall = "operational" if all(
            s == "healthy" for s in [db_status, queue_status, redis_status, notifications_status]
        ) else "degraded"

        return HealthResponse(
            status=overall,
            database=db_status,
            queue_database=queue_status,
            redis=redis_status,
            notifications=notifications_status,
            connections=container.hub.connection_count,
            jobs=jobs,
            timestamp=datetime.now(),
        )

    # =========================================================================
    # JOB ENDPOINTS
    # =========================================================================

    @app.post(
        "/api/jobs",
        response_model=JobCreateResponse,
        status_code=201,
        responses={422: {"model": ErrorResponse}},
        tags=["Jobs"],
        summary="Enqueue Job",
    )
    async def create_job(
        job: JobCreate,
        container: ServiceContainer = Depends(get_container),
    ) -> JobCreateResponse:
        """Validate a payload against its category and persist it as a waiting job."""
        job_id = await container.dispatcher.enqueue(
            job.category,
            job.payload,
            delay=job.delay_seconds,
            priority=job.priority,
            max_attempts=job.max_attempts,
        )
        return JobCreateResponse(job_id=job_id, category=job.category)

    @app.get("/api/jobs", response_model=JobCountsResponse, tags=["Jobs"])
    async def job_counts(container: ServiceContainer = Depends(get_container)) -> JobCountsResponse:
        return JobCountsResponse(counts=await container.dispatcher.counts())

    @app.get(
        "/api/jobs/{job_id}",
        response_model=JobResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Jobs"],
    )
    async def get_job(job_id: str, container: ServiceContainer = Depends(get_container)) -> JobResponse:
        """Get a specific job by ID."""
        return JobResponse.model_validate(await container.dispatcher.get(job_id))

    @app.delete(
        "/api/jobs/{job_id}",
        status_code=204,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
        tags=["Jobs"],
    )
    async def cancel_job(job_id: str, container: ServiceContainer = Depends(get_container)) -> None:
        """Cancel a job that has not been picked up yet."""
        await container.dispatcher.cancel(job_id)

    # =========================================================================
    # INVENTORY ENDPOINTS
    # =========================================================================

    @app.post(
        "/api/inventory/deductions",
        response_model=DeductionResponse,
        tags=["Inventory"],
        summary="Deduct Stock For Order",
    )
    async def deduct_stock(
        request: DeductionRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> DeductionResponse:
        """
        Deduct recipe ingredients for an order's line items.

        Items without a recipe are skipped; shortages are reported, not raised.
        """
        logger.info(f"Deducting stock for order {request.order_id} at {request.location_id}")
        result = await container.deduction.deduct(
            request.order_id,
            request.location_id,
            [item.model_dump() for item in request.items],
        )
        return DeductionResponse(**result.to_dict())

    # =========================================================================
    # REALTIME ENDPOINTS
    # =========================================================================

    @app.post(
        "/api/events/publish",
        response_model=EventPublishResponse,
        tags=["Realtime"],
        summary="Publish Event",
    )
    async def publish_event(
        request: EventPublishRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> EventPublishResponse:
        """Publish an event into a room for producers outside this process."""
        delivered = await container.publisher.publish(request.room, request.event, request.payload)
        return EventPublishResponse(room=request.room, event=request.event.value, delivered=delivered)

    @app.post(
        "/api/events/broadcast",
        response_model=EventPublishResponse,
        tags=["Realtime"],
        summary="Broadcast Event",
    )
    async def broadcast_event(
        request: EventBroadcastRequest,
        container: ServiceContainer = Depends(get_container),
    ) -> EventPublishResponse:
        """Send an event to every connected client, regardless of rooms."""
        delivered = await container.publisher.broadcast(request.event, request.payload)
        return EventPublishResponse(event=request.event.value, delivered=delivered)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """
        Realtime subscriptions.

        Client frames: {"action": "join" | "leave", "room": "location:7"}
        Server frames: {"event": ..., "room": ..., "payload": ...}
        """
        hub = websocket.app.state.container.hub
        await websocket.accept()
        connection_id = await hub.connect(websocket.send_json)
        hub.send_to(connection_id, "connected", {"connection_id": connection_id})

        try:
            while True:
                raw = await websocket.receive_text()
                if not _handle_frame(hub, connection_id, raw):
                    # The hub purged it after a failed send; returning closes the socket
                    break
        except WebSocketDisconnect:
            logger.debug(f"WebSocket {connection_id} closed by client")
        finally:
            await hub.disconnect(connection_id)

    return app


def _handle_frame(hub, connection_id: str, raw: str) -> bool:
    """Apply one client frame. False once the hub has dropped the connection."""
    try:
        _apply_frame(hub, connection_id, raw)
    except UnknownConnection:
        logger.info(f"WebSocket {connection_id} was dropped by the hub, closing")
        return False
    return True


def _apply_frame(hub, connection_id: str, raw: str) -> None:
    try:
        frame: Any = json.loads(raw)
    except ValueError:
        hub.send_to(connection_id, "error", {"message": "frames must be JSON"})
        return
    if not isinstance(frame, dict):
        hub.send_to(connection_id, "error", {"message": "frames must be JSON objects"})
        return

    action = frame.get("action")
    room = frame.get("room")
    try:
        if action == "join":
            joined = hub.join(connection_id, room)
            hub.send_to(connection_id, "joined", {}, room=str(joined))
        elif action == "leave":
            left = hub.leave(connection_id, room)
            hub.send_to(connection_id, "left", {"was_member": left}, room=room)
        else:
            hub.send_to(connection_id, "error", {"message": f"unknown action {action!r}"})
    except InvalidRoom as e:
        hub.send_to(connection_id, "error", {"message": str(e)})


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
