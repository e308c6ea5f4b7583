"""GET /admin/security-events — security dashboard summary."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends

from ngo_backoffice.api.dependencies import AggregatorDep, RateLimited, RequirePermission
from ngo_backoffice.security.models import Permission, SessionClaims

router = APIRouter(prefix="/admin", tags=["security"])

ViewSecurityEvents = Annotated[
    SessionClaims, Depends(RequirePermission(Permission.VIEW_AUDIT_LOGS, "security_events"))
]


@router.get(
    "/security-events",
    summary="Summarise recent security events",
    dependencies=[Depends(RateLimited("read"))],
)
async def security_events(
    claims: ViewSecurityEvents,
    aggregator: AggregatorDep,
    period: Literal["24h", "7d", "30d"] = "24h",
) -> dict[str, Any]:
    return await aggregator.summarize(period)
