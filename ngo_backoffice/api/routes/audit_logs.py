"""GET /admin/audit-logs — filtered, paged audit trail."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from ngo_backoffice.api.dependencies import AuditDep, RateLimited, RequirePermission
from ngo_backoffice.exceptions import ValidationError
from ngo_backoffice.security.audit_records import AuditAction, AuditFilters
from ngo_backoffice.security.models import Permission, SessionClaims

router = APIRouter(prefix="/admin", tags=["audit"])

MAX_PAGE_SIZE = 200

ViewAuditLogs = Annotated[
    SessionClaims, Depends(RequirePermission(Permission.VIEW_AUDIT_LOGS, "audit_log"))
]


@router.get(
    "/audit-logs",
    summary="Query the audit trail",
    dependencies=[Depends(RateLimited("read"))],
)
async def list_audit_logs(
    claims: ViewAuditLogs,
    audit: AuditDep,
    admin_id: Annotated[str | None, Query(alias="adminId")] = None,
    resource: str | None = None,
    resource_id: Annotated[str | None, Query(alias="resourceId")] = None,
    action: str | None = None,
    start_date: Annotated[datetime | None, Query(alias="startDate")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1)] = 50,
) -> dict[str, Any]:
    limit = min(limit, MAX_PAGE_SIZE)
    try:
        action_filter = AuditAction(action).value if action else None
    except ValueError as exc:
        raise ValidationError.for_field("action", "Unknown audit action") from exc

    filters = AuditFilters(
        admin_id=admin_id,
        resource=resource,
        resource_id=resource_id,
        action=action_filter,
        start=start_date.timestamp() if start_date else None,
        end=end_date.timestamp() if end_date else None,
    )
    page_result = await audit.query(filters, page=page, limit=limit)
    return page_result.to_dict()
