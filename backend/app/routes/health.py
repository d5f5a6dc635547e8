"""
PixPress Backend — Health & Diagnostics Routes
===============================================

What:  GET /health for monitoring, GET /api/formats for codec capabilities.
Who:   Called by container health checks, load balancers, and developers
       checking what the host's image stack can decode.

Status levels:
    - healthy:   converter available or intentionally absent
    - degraded:  converter circuit breaker is open (tier currently skipped)
"""

import logging
import time

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from app import __version__
from app.schemas.image import FormatsResponse, HealthResponse
from app.services.converter_service import converter_service
from app.services.image_service import image_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    converter = converter_service.status()
    overall = "degraded" if converter == "circuit_open" else "healthy"
    if overall != "healthy":
        logger.warning("Health check: converter %s", converter)

    return HealthResponse(
        status=overall,
        version=__version__,
        converter=converter,
        converter_tool=converter_service.tool,
        heif_support=image_service.heif_supported(),
        uptime_seconds=round(time.time() - _start_time, 2),
    )


@router.get(
    "/api/formats",
    response_model=FormatsResponse,
    summary="Image library capabilities",
    description="Versions of the image libraries and which formats they can decode and encode.",
)
async def list_formats() -> FormatsResponse:
    return await run_in_threadpool(image_service.codec_report)
