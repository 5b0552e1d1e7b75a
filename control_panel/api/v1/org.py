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
from control_panel.models.organization import OrganizationPlan, OrganizationStatus
from control_panel.models.user import UserRole
from control_panel.schemas.org import (
    CreateInvitationRequest,
    CreateOrganizationRequest,
    InvitationEnvelope,
    InvitationResponse,
    InviteOrganizationAdminRequest,
    OrganizationDetailResponse,
    OrganizationEnvelope,
    OrganizationMemberResponse,
    OrganizationResponse,
    OrganizationsListResponse,
    SuspendOrganizationRequest,
    UpdateOrganizationPlanRequest,
    UpdateOrganizationRequest,
)
from control_panel.services.email import EmailSender
from control_panel.services.invitations import create_invitation, invite_organization_admin, revoke_invitation
from control_panel.services.organizations import (
    activate_organization,
    create_organization,
    get_organization,
    list_organizations,
    suspend_organization,
    update_organization,
    update_organization_plan,
)


router = APIRouter(prefix="/api/v1/admin", tags=["organizations"])


@router.post("/organizations", response_model=OrganizationEnvelope, status_code=201)
async def create_org(
    payload: CreateOrganizationRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    email_sender: EmailSender = Depends(get_email_sender),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> OrganizationEnvelope:
    try:
        created = await create_organization(db, ctx, payload, email_sender=email_sender, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return OrganizationEnvelope(organization=OrganizationResponse.from_organization(created.organization))


@router.get("/organizations", response_model=OrganizationsListResponse)
async def list_orgs(
    status: OrganizationStatus | None = Query(default=None),
    plan: OrganizationPlan | None = Query(default=None),
    q: str | None = Query(default=None, max_length=255),
    limit: int = Query(default=100, ge=1, le=500),
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> OrganizationsListResponse:
    organizations = await list_organizations(db, status=status, plan=plan, search=q, limit=limit)
    return OrganizationsListResponse(
        organizations=[OrganizationResponse.from_organization(item) for item in organizations]
    )


@router.get("/organizations/{organization_id}", response_model=OrganizationDetailResponse)
async def get_org(
    organization_id: uuid.UUID,
    _: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> OrganizationDetailResponse:
    try:
        detail = await get_organization(db, organization_id)
    except ControlPanelError as exc:
        return error_response(exc)
    return OrganizationDetailResponse(
        organization=OrganizationResponse.from_organization(detail.organization),
        members=[
            OrganizationMemberResponse(
                id=row.member.id,
                user_id=row.member.user_id,
                name=row.name,
                email=row.email,
                role=row.member.role,
                created_at=row.member.created_at,
            )
            for row in detail.members
        ],
        user_count=detail.user_count,
    )


@router.patch("/organizations/{organization_id}", response_model=OrganizationEnvelope)
async def update_org(
    organization_id: uuid.UUID,
    payload: UpdateOrganizationRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> OrganizationEnvelope:
    try:
        organization = await update_organization(db, ctx, organization_id, payload, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return OrganizationEnvelope(organization=OrganizationResponse.from_organization(organization))


@router.post("/organizations/{organization_id}/suspend", response_model=OrganizationEnvelope)
async def suspend_org(
    organization_id: uuid.UUID,
    payload: SuspendOrganizationRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> OrganizationEnvelope:
    try:
        organization = await suspend_organization(
            db, ctx, organization_id, reason=payload.reason, reporter=reporter
        )
    except ControlPanelError as exc:
        return error_response(exc)
    return OrganizationEnvelope(organization=OrganizationResponse.from_organization(organization))


@router.post("/organizations/{organization_id}/activate", response_model=OrganizationEnvelope)
async def activate_org(
    organization_id: uuid.UUID,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> OrganizationEnvelope:
    try:
        organization = await activate_organization(db, ctx, organization_id, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return OrganizationEnvelope(organization=OrganizationResponse.from_organization(organization))


@router.put("/organizations/{organization_id}/plan", response_model=OrganizationEnvelope)
async def update_org_plan(
    organization_id: uuid.UUID,
    payload: UpdateOrganizationPlanRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> OrganizationEnvelope:
    try:
        organization = await update_organization_plan(
            db,
            ctx,
            organization_id,
            plan=payload.plan,
            monthly_revenue=payload.monthly_revenue,
            reporter=reporter,
        )
    except ControlPanelError as exc:
        return error_response(exc)
    return OrganizationEnvelope(organization=OrganizationResponse.from_organization(organization))


@router.post(
    "/organizations/{organization_id}/admin-invitations",
    response_model=InvitationEnvelope,
    status_code=201,
)
async def invite_org_admin(
    organization_id: uuid.UUID,
    payload: InviteOrganizationAdminRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    email_sender: EmailSender = Depends(get_email_sender),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> InvitationEnvelope:
    try:
        issued = await invite_organization_admin(
            db,
            ctx,
            organization_id=organization_id,
            email=payload.admin_email,
            name=payload.admin_name,
            email_sender=email_sender,
            reporter=reporter,
        )
    except ControlPanelError as exc:
        return error_response(exc)
    return InvitationEnvelope(
        message=f"Invitation sent to {issued.invitation.email}",
        invitation=InvitationResponse.from_invitation(issued.invitation),
    )


@router.post("/organizations/{organization_id}/invitations", response_model=InvitationEnvelope, status_code=201)
async def create_org_invitation(
    organization_id: uuid.UUID,
    payload: CreateInvitationRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    email_sender: EmailSender = Depends(get_email_sender),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> InvitationEnvelope:
    try:
        issued = await create_invitation(
            db,
            ctx,
            organization_id=organization_id,
            email=payload.email,
            role=UserRole(payload.role),
            supplier_id=payload.supplier_id,
            email_sender=email_sender,
            reporter=reporter,
        )
    except ControlPanelError as exc:
        return error_response(exc)
    return InvitationEnvelope(
        message=f"Invitation sent to {issued.invitation.email}",
        invitation=InvitationResponse.from_invitation(issued.invitation),
    )


@router.delete("/invitations/{invitation_id}", response_model=InvitationEnvelope)
async def revoke_org_invitation(
    invitation_id: uuid.UUID,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
) -> InvitationEnvelope:
    try:
        invitation = await revoke_invitation(db, ctx, invitation_id, reporter=reporter)
    except ControlPanelError as exc:
        return error_response(exc)
    return InvitationEnvelope(
        message="Invitation revoked.",
        invitation=InvitationResponse.from_invitation(invitation),
    )
