from __future__ import annotations

import logging
import uuid
from typing import Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import RequestContext
from control_panel.core.errors import ConflictError, NotFoundError, ValidationFailedError
from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.models.audit_log import AuditLogAction, AuditTargetType
from control_panel.models.feature_flag import FeatureFlag
from control_panel.schemas.audit import FeatureFlagChangedMetadata
from control_panel.services.audit import AuditTarget, record_for_context


logger = logging.getLogger(__name__)

OrgListAction = Literal["enable", "disable"]


def evaluate_feature_flag(flag: FeatureFlag, organization_id: uuid.UUID | str | None = None) -> bool:
    """Global switch first, then the deny list, then the allow list."""
    if not flag.is_enabled:
        return False
    if organization_id is None:
        return True
    org_id = str(organization_id)
    if org_id in (flag.disabled_for_orgs or []):
        return False
    allowed = flag.enabled_for_orgs or []
    if allowed and org_id not in allowed:
        return False
    return True


def _merge_org_ids(current: list[str] | None, additions: list[str]) -> list[str]:
    merged: list[str] = []
    for org_id in [*(current or []), *additions]:
        if org_id not in merged:
            merged.append(org_id)
    return merged


def _flag_target(flag: FeatureFlag) -> AuditTarget:
    return AuditTarget(type=AuditTargetType.FEATURE_FLAG, id=flag.id, name=flag.key)


async def _get_flag(db: AsyncSession, flag_id: uuid.UUID) -> FeatureFlag:
    flag = await db.get(FeatureFlag, flag_id)
    if flag is None:
        raise NotFoundError("Feature flag not found.")
    return flag


async def create_feature_flag(
    db: AsyncSession,
    ctx: RequestContext,
    *,
    key: str,
    name: str,
    description: str | None = None,
    is_enabled: bool = False,
    reporter: FailureReporter = default_failure_reporter,
) -> FeatureFlag:
    normalized_key = key.strip().lower()
    cleaned_name = name.strip()
    if not normalized_key or not cleaned_name:
        raise ValidationFailedError("Feature flag key and name are required.")

    existing = await db.execute(select(FeatureFlag.id).where(FeatureFlag.key == normalized_key))
    if existing.first() is not None:
        raise ConflictError("A feature flag with this key already exists.")

    flag = FeatureFlag(
        id=uuid.uuid4(),
        key=normalized_key,
        name=cleaned_name,
        description=(description or "").strip() or None,
        is_enabled=is_enabled,
        enabled_for_orgs=[],
        disabled_for_orgs=[],
    )
    db.add(flag)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("A feature flag with this key already exists.") from exc

    logger.info("Feature flag %s created by %s", normalized_key, ctx.actor.id)
    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.FEATURE_FLAG_CHANGED,
        target=_flag_target(flag),
        metadata=FeatureFlagChangedMetadata(change="created", is_enabled=is_enabled),
        reporter=reporter,
    )
    return flag


async def toggle_feature_flag(
    db: AsyncSession,
    ctx: RequestContext,
    flag_id: uuid.UUID,
    *,
    is_enabled: bool,
    reporter: FailureReporter = default_failure_reporter,
) -> FeatureFlag:
    flag = await _get_flag(db, flag_id)
    flag.is_enabled = is_enabled
    await db.commit()

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.FEATURE_FLAG_CHANGED,
        target=_flag_target(flag),
        metadata=FeatureFlagChangedMetadata(change="toggled", is_enabled=is_enabled),
        reporter=reporter,
    )
    return flag


async def set_feature_flag_for_orgs(
    db: AsyncSession,
    ctx: RequestContext,
    flag_id: uuid.UUID,
    *,
    org_ids: list[str],
    action: OrgListAction,
    reporter: FailureReporter = default_failure_reporter,
) -> FeatureFlag:
    cleaned_ids = [str(org_id).strip() for org_id in org_ids if str(org_id).strip()]
    if not cleaned_ids:
        raise ValidationFailedError("At least one organization id is required.")

    flag = await _get_flag(db, flag_id)
    # JSON columns only register a change on reassignment.
    if action == "enable":
        flag.enabled_for_orgs = _merge_org_ids(flag.enabled_for_orgs, cleaned_ids)
    elif action == "disable":
        flag.disabled_for_orgs = _merge_org_ids(flag.disabled_for_orgs, cleaned_ids)
    else:
        raise ValidationFailedError("Action must be 'enable' or 'disable'.")
    await db.commit()

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.FEATURE_FLAG_CHANGED,
        target=_flag_target(flag),
        metadata=FeatureFlagChangedMetadata(change=action, org_ids=cleaned_ids),
        reporter=reporter,
    )
    return flag


async def list_feature_flags(db: AsyncSession) -> list[FeatureFlag]:
    query = select(FeatureFlag).order_by(FeatureFlag.name.asc(), FeatureFlag.key.asc())
    return list((await db.execute(query)).scalars().all())


async def is_feature_enabled(
    db: AsyncSession,
    key: str,
    organization_id: uuid.UUID | str | None = None,
) -> bool:
    flag = (
        await db.execute(select(FeatureFlag).where(FeatureFlag.key == key.strip().lower()))
    ).scalar_one_or_none()
    if flag is None:
        return False
    return evaluate_feature_flag(flag, organization_id)
