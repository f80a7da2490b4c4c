"""FastAPI application for the P2P rendezvous signaling service."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .routers import signaling as signaling_router
from .schemas.signaling import HealthResponse, StatusResponse
from .services.signaling import (
    SignalingError,
    SignalingService,
    format_timestamp,
    get_signaling_service,
    service,
    utcnow,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    service.start_sweeper(settings.sweep_interval_seconds)
    logger.info(
        "%s started; sweeping peers idle for %ss every %ss",
        settings.service_name,
        settings.peer_timeout_seconds,
        settings.sweep_interval_seconds,
    )
    try:
        yield
    finally:
        await service.stop_sweeper()
        logger.info("%s shutting down", settings.service_name)


app = FastAPI(title=settings.service_name, version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    if settings.log_requests:
        logger.info("%s %s", request.method, request.url.path)
        if request.method == "POST" and logger.isEnabledFor(logging.DEBUG):
            body = await request.body()
            if body:
                logger.debug("  Body: %s", body.decode("utf-8", errors="replace"))
    return await call_next(request)


@app.exception_handler(SignalingError)
async def signaling_error_handler(_request: Request, exc: SignalingError) -> JSONResponse:
    """Render service errors with the ``{"error": ...}`` body clients expect."""

    logger.info("Rejected request: %s", exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.get("/", response_model=HealthResponse, tags=["meta"])
async def health(signaling: SignalingService = Depends(get_signaling_service)) -> HealthResponse:
    """Liveness probe with current peer and room counts."""

    return HealthResponse(
        status="running",
        service=settings.service_name,
        timestamp=format_timestamp(utcnow()),
        peers=signaling.peer_count,
        rooms=signaling.room_count,
    )


@app.head("/", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/status", response_model=StatusResponse, tags=["meta"])
async def status(signaling: SignalingService = Depends(get_signaling_service)) -> StatusResponse:
    return StatusResponse(
        status="online",
        peers=signaling.peer_count,
        rooms=signaling.room_count,
        uptime=signaling.uptime,
    )


app.include_router(signaling_router.router, tags=["signaling"])
