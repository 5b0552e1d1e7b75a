from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.api.dependencies.auth import get_email_sender, get_failure_reporter, require_super_admin
from control_panel.core.context import RequestContext
from control_panel.core.errors import ControlPanelError
from control_panel.core.observability import FailureReporter
from control_panel.core.problems import error_response
from control_panel.db.session import get_db_session
from control_panel.models.invitation import InvitationStatus
from control_panel.schemas.admin import (
    GrowthPointResponse,
    ImpersonationResponse,
    InviteSuperAdminRequest,
    PlatformStatsEnvelope,
    PlatformStatsResponse,
    SuperAdminInvitationsResponse,
    UserSearchResponse,
    UserSearchResultResponse,
)
from control_panel.schemas.audit import AuditLogEntryResponse, AuditLogsResponse
from control_panel.schemas.org import InvitationEnvelope, InvitationResponse
from control_panel.services.email import EmailSender
from control_panel.services.impersonation import issue_impersonation_token
from control_panel.services.invitations import (
    invite_super_admin,
    list_super_admin_invitations,
    revoke_super_admin_invitation,
)
from control_panel.services.stats import get_platform_stats, get_recent_activity, search_users


router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/super-admin-invitations", response_model=SuperAdminInvitationsResponse)
async def list_admin_invitations(
    status: InvitationStatus | None = Query(default=None),
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> SuperAdminInvitationsResponse:
    invitations = await list_super_admin_invitations(db, status=status)
    return SuperAdminInvitationsResponse(
        invitations=[InvitationResponse.from_invitation(item) for item in invitations]
    )


@router.post("/super-admin-invitations", response_model=InvitationEnvelope, status_code=201)
async def create_admin_invitation(
    payload: InviteSuperAdminRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    email_sender: EmailSender = Depends(get_email_sender),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> InvitationEnvelope:
    try:
        issued = await invite_super_admin(
            db,
            ctx,
            email=payload.email,
            email_sender=email_sender,
            reporter=reporter,
        )
    except ControlPanelError as exc:
        return error_response(exc)
    message = f"Invitation sent to {issued.invitation.email}"
    if not issued.email_sent:
        message = f"Invitation created for {issued.invitation.email}, but the email could not be sent."
    return InvitationEnvelope(message=message, invitation=InvitationResponse.from_invitation(issued.invitation))


@router.delete("/super-admin-invitations/{invitation_id}", response_model=InvitationEnvelope)
async def revoke_admin_invitation(
    invitation_id: uuid.UUID,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> InvitationEnvelope:
    try:
        invitation = await revoke_super_admin_invitation(db, ctx, invitation_id, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return InvitationEnvelope(
        message="Invitation revoked.",
        invitation=InvitationResponse.from_invitation(invitation),
    )


@router.get("/users", response_model=UserSearchResponse)
async def search_platform_users(
    q: str | None = Query(default=None, max_length=255),
    limit: int | None = Query(default=None, ge=1, le=200),
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> UserSearchResponse:
    results = await search_users(db, q, limit=limit)
    return UserSearchResponse(
        users=[
            UserSearchResultResponse(
                id=result.user.id,
                name=result.user.name,
                email=result.user.email,
                role=result.user.role,
                is_suspended=bool(result.user.is_suspended),
                organization_id=result.organization_id,
                organization_name=result.organization_name,
                created_at=result.user.created_at,
            )
            for result in results
        ]
    )


@router.post("/users/{user_id}/impersonate", response_model=ImpersonationResponse)
async def impersonate_user(
    user_id: uuid.UUID,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> ImpersonationResponse:
    try:
        issued = await issue_impersonation_token(db, ctx, user_id, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return ImpersonationResponse(magic_link=issued.magic_link, expires_at=issued.token.expires_at)


@router.get("/stats", response_model=PlatformStatsEnvelope)
async def platform_stats(
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> PlatformStatsEnvelope:
    stats = await get_platform_stats(db)
    return PlatformStatsEnvelope(
        stats=PlatformStatsResponse(
            total_revenue=stats.total_revenue,
            active_organizations=stats.active_organizations,
            total_organizations=stats.total_organizations,
            total_users=stats.total_users,
            growth=[
                GrowthPointResponse(
                    month=point.month,
                    new_organizations=point.new_organizations,
                    new_users=point.new_users,
                )
                for point in stats.growth
            ],
        )
    )


@router.get("/activity", response_model=AuditLogsResponse)
async def recent_activity(
    limit: int | None = Query(default=None, ge=1, le=200),
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AuditLogsResponse:
    entries = await get_recent_activity(db, limit=limit)
    return AuditLogsResponse(data=[AuditLogEntryResponse.from_entry(entry) for entry in entries])
