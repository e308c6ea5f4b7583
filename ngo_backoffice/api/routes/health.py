"""GET /health — liveness plus audit pipeline counters."""

from __future__ import annotations

import time

from fastapi import APIRouter

from ngo_backoffice import __version__
from ngo_backoffice.api.dependencies import AuditDep
from ngo_backoffice.api.schemas import HealthResponse

router = APIRouter(tags=["health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health(audit: AuditDep) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        audit=audit.stats(),
    )
