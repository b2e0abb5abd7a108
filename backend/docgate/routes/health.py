"""
DocGate Backend - Liveness Routes
=================================

What:  GET /api/health and GET / for load balancers and uptime probes.
How:   Answers from process state only. Collaborators are not probed, so a
       slow document service never makes the gateway look dead.

Both paths are exempt from rate limiting; origin policy still applies.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from docgate import __version__
from docgate.routing import HEALTH_PATH, ROOT_PATH
from docgate.schemas.responses import HealthResponse

router = APIRouter(tags=["Health"])

_start_time = time.monotonic()


@router.get(
    HEALTH_PATH,
    response_model=HealthResponse,
    summary="Service liveness check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status="OK",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        uptime_seconds=round(time.monotonic() - _start_time, 2),
    )


@router.get(ROOT_PATH, response_class=PlainTextResponse, include_in_schema=False)
async def root() -> str:
    return "API is running"
