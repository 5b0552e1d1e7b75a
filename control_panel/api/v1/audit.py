from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.api.dependencies.auth import require_super_admin
from control_panel.core.context import RequestContext
from control_panel.db.session import get_db_session
from control_panel.models.audit_log import AuditLogAction, AuditTargetType
from control_panel.schemas.audit import AuditLogEntryResponse, AuditLogsResponse
from control_panel.services.audit import MAX_AUDIT_LOG_LIMIT, AuditLogFilters, list_audit_logs


router = APIRouter(prefix="/api/v1/admin", tags=["audit"])


@router.get("/audit-logs", response_model=AuditLogsResponse)
async def get_audit_logs(
    target_type: AuditTargetType | None = Query(default=None, alias="targetType"),
    target_id: str | None = Query(default=None, alias="targetId", max_length=64),
    action: AuditLogAction | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_AUDIT_LOG_LIMIT),
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AuditLogsResponse:
    entries = await list_audit_logs(
        db,
        filters=AuditLogFilters(target_type=target_type, target_id=target_id, action=action),
        limit=limit,
    )
    return AuditLogsResponse(data=[AuditLogEntryResponse.from_entry(entry) for entry in entries])
