from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import UNKNOWN_PROVENANCE, RequestContext
from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.models.audit_log import AuditLog, AuditLogAction, AuditTargetType
from control_panel.models.user import User
from control_panel.schemas.audit import AUDIT_METADATA_TYPES, AuditMetadata


logger = logging.getLogger(__name__)

MAX_AUDIT_LOG_LIMIT = 200


@dataclass(frozen=True)
class AuditTarget:
    type: AuditTargetType
    id: object | None = None
    name: str | None = None


@dataclass(frozen=True)
class AuditLogEntry:
    log: AuditLog
    performer_name: str | None
    performer_email: str | None


@dataclass(frozen=True)
class AuditLogFilters:
    target_type: AuditTargetType | None = None
    target_id: str | None = None
    action: AuditLogAction | None = None


def build_audit_log(
    *,
    action: AuditLogAction,
    performed_by: uuid.UUID | None,
    target: AuditTarget,
    metadata: AuditMetadata,
    ip_address: str = UNKNOWN_PROVENANCE,
    user_agent: str = UNKNOWN_PROVENANCE,
) -> AuditLog:
    expected_type = AUDIT_METADATA_TYPES[action]
    if not isinstance(metadata, expected_type):
        raise TypeError(
            f"{action.value} requires {expected_type.__name__} metadata, got {type(metadata).__name__}"
        )
    return AuditLog(
        action=action,
        performed_by=performed_by,
        target_type=target.type,
        target_id=str(target.id) if target.id is not None else None,
        target_name=target.name,
        details=metadata.model_dump(mode="json", by_alias=True),
        ip_address=ip_address or UNKNOWN_PROVENANCE,
        user_agent=user_agent or UNKNOWN_PROVENANCE,
    )


async def record_audit_event(
    db: AsyncSession,
    *,
    action: AuditLogAction,
    performed_by: uuid.UUID | None,
    target: AuditTarget,
    metadata: AuditMetadata,
    ip_address: str = UNKNOWN_PROVENANCE,
    user_agent: str = UNKNOWN_PROVENANCE,
    reporter: FailureReporter = default_failure_reporter,
) -> AuditLog | None:
    """Append one audit row after the primary mutation has committed.

    The insert runs in its own savepoint so a failure here never undoes the
    mutation it describes; the failure is handed to ``reporter`` instead.
    """
    entry = build_audit_log(
        action=action,
        performed_by=performed_by,
        target=target,
        metadata=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        async with db.begin_nested():
            db.add(entry)
        try:
            await db.commit()
        except SQLAlchemyError:
            # Detached instances keep their loaded state through the rollback.
            db.expunge_all()
            await db.rollback()
            raise
    except SQLAlchemyError as exc:
        reporter.report(
            "audit_log_insert",
            exc,
            action=action.value,
            target_type=target.type.value,
            target_id=target.id,
        )
        return None
    logger.info("audit %s by %s on %s %s", action.value, performed_by, target.type.value, target.id)
    return entry


async def record_for_context(
    db: AsyncSession,
    ctx: RequestContext,
    *,
    action: AuditLogAction,
    target: AuditTarget,
    metadata: AuditMetadata,
    reporter: FailureReporter = default_failure_reporter,
) -> AuditLog | None:
    return await record_audit_event(
        db,
        action=action,
        performed_by=ctx.actor.id,
        target=target,
        metadata=metadata,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        reporter=reporter,
    )


async def list_audit_logs(
    db: AsyncSession,
    *,
    filters: AuditLogFilters | None = None,
    limit: int = 50,
) -> list[AuditLogEntry]:
    normalized_limit = max(1, min(limit, MAX_AUDIT_LOG_LIMIT))
    resolved_filters = filters or AuditLogFilters()

    query = select(AuditLog, User.name, User.email).outerjoin(User, User.id == AuditLog.performed_by)
    if resolved_filters.target_type is not None:
        query = query.where(AuditLog.target_type == resolved_filters.target_type)
    if resolved_filters.target_id is not None:
        query = query.where(AuditLog.target_id == str(resolved_filters.target_id))
    if resolved_filters.action is not None:
        query = query.where(AuditLog.action == resolved_filters.action)

    rows = (
        await db.execute(
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(normalized_limit)
        )
    ).all()
    return [
        AuditLogEntry(log=row[0], performer_name=row[1], performer_email=row[2])
        for row in rows
    ]
