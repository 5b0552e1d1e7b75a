from __future__ import annotations

import datetime
import decimal
import logging
import re
import uuid
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import RequestContext, now_utc
from control_panel.core.errors import NotFoundError, SlugTakenError, ValidationFailedError
from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.models.audit_log import AuditLogAction, AuditTargetType
from control_panel.models.invitation import Invitation
from control_panel.models.member import Member
from control_panel.models.organization import Organization, OrganizationPlan, OrganizationStatus
from control_panel.models.user import User, UserRole
from control_panel.schemas.audit import (
    OrgActivatedMetadata,
    OrgCreatedMetadata,
    OrgPlanChangedMetadata,
    OrgSuspendedMetadata,
    OrgUpdatedMetadata,
)
from control_panel.schemas.org import CreateOrganizationRequest, UpdateOrganizationRequest
from control_panel.services.audit import AuditTarget, record_for_context
from control_panel.services.auth import find_user_by_email
from control_panel.services.email import EmailSender
from control_panel.services.invitations import (
    IssuedInvitation,
    require_email,
    send_organization_invite,
    stage_invitation,
)


logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
EDITABLE_FIELDS = ("name", "industry", "size", "contact_email", "phone", "website")
MAX_ORGANIZATION_LIST_LIMIT = 500


@dataclass(frozen=True)
class CreatedOrganization:
    organization: Organization
    pm_onboarding: str
    invitation: IssuedInvitation | None = None


@dataclass(frozen=True)
class OrganizationMemberRow:
    member: Member
    name: str
    email: str


@dataclass(frozen=True)
class OrganizationDetail:
    organization: Organization
    members: list[OrganizationMemberRow]
    user_count: int


def normalize_slug(slug: str) -> str:
    normalized = slug.strip().lower()
    if not SLUG_PATTERN.match(normalized):
        raise ValidationFailedError("Slug may only contain lowercase letters, digits and single hyphens.")
    return normalized


def _is_duplicate_slug_error(exc: IntegrityError) -> bool:
    if exc.orig is None:
        return False
    message = str(exc.orig).lower()
    return (
        "uq_organizations_slug" in message
        or "duplicate entry" in message
        or "unique constraint failed: organizations.slug" in message
    )


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


async def _get_organization(db: AsyncSession, organization_id: uuid.UUID) -> Organization:
    organization = await db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found.")
    return organization


async def create_organization(
    db: AsyncSession,
    ctx: RequestContext,
    payload: CreateOrganizationRequest,
    *,
    email_sender: EmailSender,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> CreatedOrganization:
    current_time = now or now_utc()
    name = payload.name.strip()
    if not name:
        raise ValidationFailedError("Organization name is required.")
    slug = normalize_slug(payload.slug)
    pm_email = require_email(payload.pm_email) if _clean_optional(payload.pm_email) else None
    pm_name = _clean_optional(payload.pm_name) if pm_email is not None else None

    existing_slug = await db.execute(select(Organization.id).where(Organization.slug == slug))
    if existing_slug.first() is not None:
        raise SlugTakenError()

    organization = Organization(
        id=uuid.uuid4(),
        name=name,
        slug=slug,
        industry=_clean_optional(payload.industry),
        size=_clean_optional(payload.size),
        contact_email=_clean_optional(payload.contact_email),
        phone=_clean_optional(payload.phone),
        website=_clean_optional(payload.website),
        plan=payload.plan,
        status=OrganizationStatus.TRIAL,
        monthly_revenue=decimal.Decimal("0"),
        created_by=ctx.actor.id,
        last_activity_at=current_time,
    )
    db.add(organization)

    pm_onboarding = "none"
    staged_invitation: Invitation | None = None
    try:
        await db.flush()
        if pm_email is not None:
            pm_user = await find_user_by_email(db, pm_email)
            if pm_user is not None:
                db.add(
                    Member(
                        id=uuid.uuid4(),
                        user_id=pm_user.id,
                        organization_id=organization.id,
                        role=UserRole.PM,
                    )
                )
                if pm_user.organization_id is None:
                    pm_user.organization_id = organization.id
                    if pm_user.role != UserRole.SUPER_ADMIN:
                        pm_user.role = UserRole.PM
                pm_onboarding = "member_attached"
            else:
                staged_invitation = await stage_invitation(
                    db,
                    organization_id=organization.id,
                    email=pm_email,
                    role=UserRole.PM,
                    invited_by=ctx.actor.id,
                    now=current_time,
                )
                pm_onboarding = "invitation_sent"
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if _is_duplicate_slug_error(exc):
            raise SlugTakenError() from exc
        raise

    await db.refresh(organization)
    logger.info("Organization %s (%s) created by %s", organization.id, slug, ctx.actor.id)

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.ORG_CREATED,
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=organization.id, name=organization.name),
        metadata=OrgCreatedMetadata(
            plan=organization.plan,
            pm_email=pm_email,
            pm_name=pm_name,
            pm_onboarding=pm_onboarding,
        ),
        reporter=reporter,
    )

    issued = None
    if staged_invitation is not None:
        issued = await send_organization_invite(
            staged_invitation,
            organization_name=organization.name,
            inviter_name=ctx.actor.name,
            email_sender=email_sender,
            recipient_name=pm_name,
            reporter=reporter,
        )
    return CreatedOrganization(organization=organization, pm_onboarding=pm_onboarding, invitation=issued)


async def suspend_organization(
    db: AsyncSession,
    ctx: RequestContext,
    organization_id: uuid.UUID,
    *,
    reason: str,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> Organization:
    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise ValidationFailedError("A suspension reason is required.")

    organization = await _get_organization(db, organization_id)
    organization.status = OrganizationStatus.SUSPENDED
    organization.suspended_at = now or now_utc()
    organization.suspended_by = ctx.actor.id
    organization.suspension_reason = cleaned_reason
    await db.commit()
    logger.info("Organization %s suspended by %s", organization.id, ctx.actor.id)

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.ORG_SUSPENDED,
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=organization.id, name=organization.name),
        metadata=OrgSuspendedMetadata(reason=cleaned_reason),
        reporter=reporter,
    )
    return organization


async def activate_organization(
    db: AsyncSession,
    ctx: RequestContext,
    organization_id: uuid.UUID,
    *,
    reporter: FailureReporter = default_failure_reporter,
) -> Organization:
    organization = await _get_organization(db, organization_id)
    previous_status = organization.status
    organization.status = OrganizationStatus.ACTIVE
    organization.suspended_at = None
    organization.suspended_by = None
    organization.suspension_reason = None
    await db.commit()
    logger.info("Organization %s activated by %s", organization.id, ctx.actor.id)

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.ORG_ACTIVATED,
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=organization.id, name=organization.name),
        metadata=OrgActivatedMetadata(previous_status=previous_status),
        reporter=reporter,
    )
    return organization


async def update_organization_plan(
    db: AsyncSession,
    ctx: RequestContext,
    organization_id: uuid.UUID,
    *,
    plan: OrganizationPlan,
    monthly_revenue: decimal.Decimal | None = None,
    reporter: FailureReporter = default_failure_reporter,
) -> Organization:
    revenue = decimal.Decimal(monthly_revenue if monthly_revenue is not None else 0)
    if not revenue.is_finite() or revenue < 0:
        raise ValidationFailedError("Monthly revenue must be zero or more.")
    revenue = revenue.quantize(decimal.Decimal("0.01"))

    organization = await _get_organization(db, organization_id)
    previous_plan = organization.plan
    organization.plan = plan
    organization.monthly_revenue = revenue
    await db.commit()

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.ORG_PLAN_CHANGED,
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=organization.id, name=organization.name),
        metadata=OrgPlanChangedMetadata(plan=plan, previous_plan=previous_plan, monthly_revenue=str(revenue)),
        reporter=reporter,
    )
    return organization


async def update_organization(
    db: AsyncSession,
    ctx: RequestContext,
    organization_id: uuid.UUID,
    changes: UpdateOrganizationRequest,
    *,
    reporter: FailureReporter = default_failure_reporter,
) -> Organization:
    organization = await _get_organization(db, organization_id)

    changed_fields: list[str] = []
    for field_name in EDITABLE_FIELDS:
        if field_name not in changes.model_fields_set:
            continue
        value = _clean_optional(getattr(changes, field_name))
        if field_name == "name" and value is None:
            raise ValidationFailedError("Organization name is required.")
        if getattr(organization, field_name) != value:
            setattr(organization, field_name, value)
            changed_fields.append(field_name)

    if not changed_fields:
        return organization

    await db.commit()
    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.ORG_UPDATED,
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=organization.id, name=organization.name),
        metadata=OrgUpdatedMetadata(changed_fields=changed_fields),
        reporter=reporter,
    )
    return organization


async def get_organization(db: AsyncSession, organization_id: uuid.UUID) -> OrganizationDetail:
    organization = await _get_organization(db, organization_id)

    member_rows = (
        await db.execute(
            select(Member, User.name, User.email)
            .join(User, User.id == Member.user_id)
            .where(Member.organization_id == organization_id)
            .order_by(Member.created_at.asc(), User.email.asc())
        )
    ).all()
    user_count = (
        await db.execute(select(func.count(User.id)).where(User.organization_id == organization_id))
    ).scalar_one()

    return OrganizationDetail(
        organization=organization,
        members=[OrganizationMemberRow(member=row[0], name=row[1], email=row[2]) for row in member_rows],
        user_count=int(user_count or 0),
    )


async def list_organizations(
    db: AsyncSession,
    *,
    status: OrganizationStatus | None = None,
    plan: OrganizationPlan | None = None,
    search: str | None = None,
    limit: int = 100,
) -> list[Organization]:
    query = select(Organization)
    if status is not None:
        query = query.where(Organization.status == status)
    if plan is not None:
        query = query.where(Organization.plan == plan)
    term = (search or "").strip().lower()
    if term:
        query = query.where(
            or_(
                func.lower(Organization.name).contains(term, autoescape=True),
                func.lower(Organization.slug).contains(term, autoescape=True),
                func.lower(Organization.contact_email).contains(term, autoescape=True),
            )
        )
    normalized_limit = max(1, min(limit, MAX_ORGANIZATION_LIST_LIMIT))
    query = query.order_by(Organization.created_at.desc(), Organization.name.asc()).limit(normalized_limit)
    return list((await db.execute(query)).scalars().all())
