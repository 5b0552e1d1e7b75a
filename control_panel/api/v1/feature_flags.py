from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.api.dependencies.auth import get_failure_reporter, require_super_admin
from control_panel.core.context import RequestContext
from control_panel.core.errors import ControlPanelError
from control_panel.core.observability import FailureReporter
from control_panel.core.problems import error_response
from control_panel.db.session import get_db_session
from control_panel.schemas.admin import (
    CreateFeatureFlagRequest,
    FeatureFlagCheckResponse,
    FeatureFlagEnvelope,
    FeatureFlagResponse,
    FeatureFlagsListResponse,
    SetFeatureFlagOrgsRequest,
    ToggleFeatureFlagRequest,
)
from control_panel.services.feature_flags import (
    create_feature_flag,
    is_feature_enabled,
    list_feature_flags,
    set_feature_flag_for_orgs,
    toggle_feature_flag,
)


router = APIRouter(prefix="/api/v1/admin/feature-flags", tags=["feature-flags"])
public_router = APIRouter(prefix="/api/v1/feature-flags", tags=["feature-flags"])


@router.get("", response_model=FeatureFlagsListResponse)
async def list_flags(
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> FeatureFlagsListResponse:
    flags = await list_feature_flags(db)
    return FeatureFlagsListResponse(flags=[FeatureFlagResponse.from_flag(flag) for flag in flags])


@router.post("", response_model=FeatureFlagEnvelope, status_code=201)
async def create_flag(
    payload: CreateFeatureFlagRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> FeatureFlagEnvelope:
    try:
        flag = await create_feature_flag(
            db,
            ctx,
            key=payload.key,
            name=payload.name,
            description=payload.description,
            is_enabled=payload.is_enabled,
            reporter=reporter,
        )
    except ControlPanelError as exc:
        return error_response(exc)
    return FeatureFlagEnvelope(flag=FeatureFlagResponse.from_flag(flag))


@router.patch("/{flag_id}", response_model=FeatureFlagEnvelope)
async def toggle_flag(
    flag_id: uuid.UUID,
    payload: ToggleFeatureFlagRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> FeatureFlagEnvelope:
    try:
        flag = await toggle_feature_flag(db, ctx, flag_id, is_enabled=payload.is_enabled, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return FeatureFlagEnvelope(flag=FeatureFlagResponse.from_flag(flag))


@router.post("/{flag_id}/organizations", response_model=FeatureFlagEnvelope)
async def set_flag_organizations(
    flag_id: uuid.UUID,
    payload: SetFeatureFlagOrgsRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> FeatureFlagEnvelope:
    try:
        flag = await set_feature_flag_for_orgs(
            db,
            ctx,
            flag_id,
            org_ids=payload.org_ids,
            action=payload.action,
            reporter=reporter,
        )
    except ControlPanelError as exc:
        return error_response(exc)
    return FeatureFlagEnvelope(flag=FeatureFlagResponse.from_flag(flag))


@public_router.get("/{key}", response_model=FeatureFlagCheckResponse)
async def check_flag(
    key: str,
    organization_id: str | None = Query(default=None, alias="organizationId", max_length=64),
    db: AsyncSession = Depends(get_db_session),
) -> FeatureFlagCheckResponse:
    enabled = await is_feature_enabled(db, key, organization_id)
    return FeatureFlagCheckResponse(key=key, enabled=enabled)
