"""Invitation lifecycle for super-admin, organization-admin and member invites.

Both invitation tables move through the same states::

    PENDING -> ACCEPTED
    PENDING -> REVOKED

Acceptance and revocation flip the status with a conditional update so a
token can only ever be consumed once, even by concurrent requests.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import UNKNOWN_PROVENANCE, RequestContext, as_utc, now_utc
from control_panel.core.errors import (
    AlreadyUsedError,
    ConflictError,
    ControlPanelError,
    EmailMismatchError,
    EmailTakenError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    RevokedError,
    ValidationFailedError,
)
from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.core.settings import settings
from control_panel.models.audit_log import AuditLogAction, AuditTargetType
from control_panel.models.invitation import Invitation, InvitationStatus, SuperAdminInvitation
from control_panel.models.member import Member
from control_panel.models.organization import Organization
from control_panel.models.supplier import Supplier, SupplierStatus
from control_panel.models.user import User, UserRole
from control_panel.schemas.audit import (
    InvitationCreatedMetadata,
    InvitationRevokedMetadata,
    MemberAddedMetadata,
    OrgAdminInvitedMetadata,
    SuperAdminInvitedMetadata,
    UserCreatedMetadata,
    UserRoleUpdatedMetadata,
)
from control_panel.security.password import MIN_PASSWORD_LENGTH, hash_password
from control_panel.security.tokens import generate_url_token
from control_panel.services.audit import AuditTarget, record_audit_event, record_for_context
from control_panel.services.auth import check_organization_access, find_user_by_email, normalize_email
from control_panel.services.email import (
    EmailSender,
    build_organization_invite_email,
    build_super_admin_invite_email,
    send_email_best_effort,
)
from control_panel.services.notifications import notify_user


logger = logging.getLogger(__name__)

DEFAULT_INVITER_NAME = "Admin"

AnyInvitation = Invitation | SuperAdminInvitation


@dataclass(frozen=True)
class IssuedInvitation:
    invitation: AnyInvitation
    link: str
    email_sent: bool


@dataclass(frozen=True)
class SuperAdminInvitePreview:
    email: str
    inviter_name: str
    expires_at: datetime.datetime


@dataclass(frozen=True)
class InvitationPreview:
    invitation: Invitation
    organization_name: str


@dataclass(frozen=True)
class AcceptedInvitation:
    user: User
    role: UserRole
    organization_id: uuid.UUID | None


def invitation_expiry(issued_at: datetime.datetime) -> datetime.datetime:
    return issued_at + datetime.timedelta(days=settings.invitation_ttl_days)


def super_admin_invite_link(token: str) -> str:
    return f"{settings.admin_app_url.rstrip('/')}/invite/admin/{token}"


def organization_invite_link(token: str) -> str:
    return f"{settings.admin_app_url.rstrip('/')}/invite/{token}"


def check_invitation_state(invitation: AnyInvitation, now: datetime.datetime) -> None:
    if invitation.status == InvitationStatus.ACCEPTED:
        raise AlreadyUsedError("This invitation has already been used.")
    if invitation.status == InvitationStatus.REVOKED:
        raise RevokedError()
    if now > as_utc(invitation.expires_at):
        raise ExpiredError("This invitation has expired.")


def require_email(email: str) -> str:
    normalized = normalize_email(email)
    local, _, domain = normalized.partition("@")
    if not local or "." not in domain:
        raise ValidationFailedError("A valid email address is required.")
    return normalized


def _require_account_fields(name: str | None, password: str | None) -> str:
    cleaned_name = (name or "").strip()
    if not cleaned_name:
        raise ValidationFailedError("Name is required.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationFailedError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return cleaned_name


async def _ensure_email_available(db: AsyncSession, email: str) -> None:
    if await find_user_by_email(db, email) is not None:
        raise EmailTakenError()


async def _load_by_token(db: AsyncSession, model: type[AnyInvitation], token: str) -> AnyInvitation:
    invitation = (await db.execute(select(model).where(model.token == token))).scalar_one_or_none()
    if invitation is None:
        raise NotFoundError("Invitation not found.")
    return invitation


async def _transition(
    db: AsyncSession,
    model: type[AnyInvitation],
    invitation_id: uuid.UUID,
    status: InvitationStatus,
    *,
    accepted_user_id: uuid.UUID | None = None,
) -> None:
    values: dict[str, object] = {"status": status}
    if accepted_user_id is not None:
        values["accepted_user_id"] = accepted_user_id
    result = await db.execute(
        update(model)
        .where(model.id == invitation_id, model.status == InvitationStatus.PENDING)
        .values(**values)
    )
    if result.rowcount == 0:
        raise AlreadyUsedError("This invitation has already been used.")


async def stage_invitation(
    db: AsyncSession,
    *,
    organization_id: uuid.UUID,
    email: str,
    role: UserRole,
    invited_by: uuid.UUID | None,
    supplier_id: uuid.UUID | None = None,
    now: datetime.datetime | None = None,
) -> Invitation:
    """Add a PENDING invitation to the session; the caller commits."""
    if role == UserRole.SUPER_ADMIN:
        raise ValidationFailedError("Super admins are invited through the admin invitation flow.")

    pending_query = select(Invitation.id).where(
        func.lower(Invitation.email) == email,
        Invitation.organization_id == organization_id,
        Invitation.status == InvitationStatus.PENDING,
    )
    if (await db.execute(pending_query)).first() is not None:
        raise ConflictError("A pending invitation already exists for this email.")

    invitation = Invitation(
        id=uuid.uuid4(),
        token=generate_url_token(),
        email=email,
        organization_id=organization_id,
        role=role,
        status=InvitationStatus.PENDING,
        invited_by=invited_by,
        supplier_id=supplier_id,
        expires_at=invitation_expiry(now or now_utc()),
    )
    db.add(invitation)
    return invitation


async def send_organization_invite(
    invitation: Invitation,
    *,
    organization_name: str,
    inviter_name: str | None,
    email_sender: EmailSender,
    recipient_name: str | None = None,
    reporter: FailureReporter = default_failure_reporter,
) -> IssuedInvitation:
    link = organization_invite_link(invitation.token)
    message = build_organization_invite_email(
        recipient=invitation.email,
        invite_link=link,
        organization_name=organization_name,
        role=invitation.role.value,
        inviter_name=inviter_name,
        recipient_name=recipient_name,
    )
    sent = await send_email_best_effort(email_sender, message, reporter=reporter)
    return IssuedInvitation(invitation=invitation, link=link, email_sent=sent)


async def _get_organization(db: AsyncSession, organization_id: uuid.UUID) -> Organization:
    organization = await db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found.")
    return organization


async def _issue_organization_invitation(
    db: AsyncSession,
    ctx: RequestContext,
    organization: Organization,
    *,
    email: str,
    role: UserRole,
    supplier_id: uuid.UUID | None,
    now: datetime.datetime | None,
) -> Invitation:
    if not check_organization_access(ctx.actor, organization.id):
        raise ForbiddenError()
    invitation = await stage_invitation(
        db,
        organization_id=organization.id,
        email=email,
        role=role,
        invited_by=ctx.actor.id,
        supplier_id=supplier_id,
        now=now,
    )
    await db.commit()
    logger.info("Invitation %s issued for %s as %s", invitation.id, email, role.value)
    return invitation


async def invite_super_admin(
    db: AsyncSession,
    ctx: RequestContext,
    *,
    email: str,
    email_sender: EmailSender,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> IssuedInvitation:
    normalized_email = require_email(email)
    existing = await find_user_by_email(db, normalized_email)
    if existing is not None and existing.role == UserRole.SUPER_ADMIN:
        raise ConflictError("This user is already a super admin.")

    invitation = SuperAdminInvitation(
        id=uuid.uuid4(),
        token=generate_url_token(),
        email=normalized_email,
        invited_by=ctx.actor.id,
        status=InvitationStatus.PENDING,
        expires_at=invitation_expiry(now or now_utc()),
    )
    db.add(invitation)
    await db.commit()
    logger.info("Super admin invitation %s issued for %s", invitation.id, normalized_email)

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.SUPER_ADMIN_INVITED,
        target=AuditTarget(type=AuditTargetType.INVITATION, id=invitation.id, name=normalized_email),
        metadata=SuperAdminInvitedMetadata(email=normalized_email),
        reporter=reporter,
    )

    link = super_admin_invite_link(invitation.token)
    message = build_super_admin_invite_email(
        recipient=normalized_email,
        invite_link=link,
        inviter_name=ctx.actor.name or DEFAULT_INVITER_NAME,
    )
    sent = await send_email_best_effort(email_sender, message, reporter=reporter)
    return IssuedInvitation(invitation=invitation, link=link, email_sent=sent)


def _notify_inviter(db: AsyncSession, invitation: SuperAdminInvitation) -> None:
    if invitation.invited_by is None:
        return
    notify_user(
        db,
        invitation.invited_by,
        title="Super Admin invitation accepted",
        message=f"{invitation.email} accepted your Super Admin invitation.",
    )


async def validate_super_admin_invitation(
    db: AsyncSession,
    token: str,
    *,
    now: datetime.datetime | None = None,
    check_email_available: bool = False,
) -> SuperAdminInvitePreview:
    query = (
        select(SuperAdminInvitation, User.name)
        .outerjoin(User, User.id == SuperAdminInvitation.invited_by)
        .where(SuperAdminInvitation.token == token)
    )
    row = (await db.execute(query)).first()
    if row is None:
        raise NotFoundError("Invitation not found.")
    invitation, inviter_name = row
    check_invitation_state(invitation, now or now_utc())
    if check_email_available:
        await _ensure_email_available(db, invitation.email)
    return SuperAdminInvitePreview(
        email=invitation.email,
        inviter_name=inviter_name or DEFAULT_INVITER_NAME,
        expires_at=as_utc(invitation.expires_at),
    )


async def accept_super_admin_invitation_new_account(
    db: AsyncSession,
    token: str,
    *,
    name: str | None,
    password: str | None,
    ip_address: str = UNKNOWN_PROVENANCE,
    user_agent: str = UNKNOWN_PROVENANCE,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> AcceptedInvitation:
    invitation = await _load_by_token(db, SuperAdminInvitation, token)
    check_invitation_state(invitation, now or now_utc())
    cleaned_name = _require_account_fields(name, password)
    await _ensure_email_available(db, invitation.email)

    user_id = uuid.uuid4()
    try:
        await _transition(
            db,
            SuperAdminInvitation,
            invitation.id,
            InvitationStatus.ACCEPTED,
            accepted_user_id=user_id,
        )
        user = User(
            id=user_id,
            email=invitation.email,
            name=cleaned_name,
            role=UserRole.SUPER_ADMIN,
            password_hash=hash_password(password or ""),
            email_verified=True,
            is_suspended=False,
        )
        db.add(user)
        _notify_inviter(db, invitation)
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise EmailTakenError() from exc
    except ControlPanelError:
        await db.rollback()
        raise

    logger.info("Super admin invitation %s accepted by new user %s", invitation.id, user.id)
    await record_audit_event(
        db,
        action=AuditLogAction.USER_CREATED,
        performed_by=invitation.invited_by,
        target=AuditTarget(type=AuditTargetType.USER, id=user.id, name=user.email),
        metadata=UserCreatedMetadata(role=UserRole.SUPER_ADMIN, invited_via="admin_invitation"),
        ip_address=ip_address,
        user_agent=user_agent,
        reporter=reporter,
    )
    return AcceptedInvitation(user=user, role=UserRole.SUPER_ADMIN, organization_id=None)


async def accept_super_admin_invitation_existing_account(
    db: AsyncSession,
    token: str,
    user: User,
    *,
    ip_address: str = UNKNOWN_PROVENANCE,
    user_agent: str = UNKNOWN_PROVENANCE,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> AcceptedInvitation:
    invitation = await _load_by_token(db, SuperAdminInvitation, token)
    check_invitation_state(invitation, now or now_utc())
    if normalize_email(user.email) != normalize_email(invitation.email):
        raise EmailMismatchError()

    previous_role = user.role
    try:
        await _transition(
            db,
            SuperAdminInvitation,
            invitation.id,
            InvitationStatus.ACCEPTED,
            accepted_user_id=user.id,
        )
        user.role = UserRole.SUPER_ADMIN
        _notify_inviter(db, invitation)
        await db.commit()
    except ControlPanelError:
        await db.rollback()
        raise

    logger.info("Super admin invitation %s accepted by existing user %s", invitation.id, user.id)
    await record_audit_event(
        db,
        action=AuditLogAction.USER_ROLE_UPDATED,
        performed_by=user.id,
        target=AuditTarget(type=AuditTargetType.USER, id=user.id, name=user.email),
        metadata=UserRoleUpdatedMetadata(
            previous_role=previous_role,
            new_role=UserRole.SUPER_ADMIN,
            invited_via="admin_invitation",
        ),
        ip_address=ip_address,
        user_agent=user_agent,
        reporter=reporter,
    )
    return AcceptedInvitation(user=user, role=UserRole.SUPER_ADMIN, organization_id=user.organization_id)


async def invite_organization_admin(
    db: AsyncSession,
    ctx: RequestContext,
    *,
    organization_id: uuid.UUID,
    email: str,
    name: str | None = None,
    email_sender: EmailSender,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> IssuedInvitation:
    normalized_email = require_email(email)
    invitee_name = (name or "").strip() or None
    organization = await _get_organization(db, organization_id)
    organization_name = organization.name
    invitation = await _issue_organization_invitation(
        db,
        ctx,
        organization,
        email=normalized_email,
        role=UserRole.ADMIN,
        supplier_id=None,
        now=now,
    )

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.ORG_ADMIN_INVITED,
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=organization_id, name=organization_name),
        metadata=OrgAdminInvitedMetadata(
            email=normalized_email,
            name=invitee_name,
            invitation_id=invitation.id,
        ),
        reporter=reporter,
    )
    return await send_organization_invite(
        invitation,
        organization_name=organization_name,
        inviter_name=ctx.actor.name,
        email_sender=email_sender,
        recipient_name=invitee_name,
        reporter=reporter,
    )


async def create_invitation(
    db: AsyncSession,
    ctx: RequestContext,
    *,
    organization_id: uuid.UUID,
    email: str,
    role: UserRole,
    supplier_id: uuid.UUID | None = None,
    email_sender: EmailSender,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> IssuedInvitation:
    normalized_email = require_email(email)
    organization = await _get_organization(db, organization_id)
    organization_name = organization.name
    if supplier_id is not None:
        supplier = await db.get(Supplier, supplier_id)
        if supplier is None or supplier.organization_id != organization_id:
            raise NotFoundError("Supplier not found.")

    invitation = await _issue_organization_invitation(
        db,
        ctx,
        organization,
        email=normalized_email,
        role=role,
        supplier_id=supplier_id,
        now=now,
    )

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.INVITATION_CREATED,
        target=AuditTarget(type=AuditTargetType.INVITATION, id=invitation.id, name=normalized_email),
        metadata=InvitationCreatedMetadata(
            email=normalized_email,
            role=role,
            organization_id=organization_id,
            supplier_id=supplier_id,
        ),
        reporter=reporter,
    )
    return await send_organization_invite(
        invitation,
        organization_name=organization_name,
        inviter_name=ctx.actor.name,
        email_sender=email_sender,
        reporter=reporter,
    )


async def get_invitation_preview(
    db: AsyncSession,
    token: str,
    *,
    now: datetime.datetime | None = None,
) -> InvitationPreview:
    query = (
        select(Invitation, Organization.name)
        .join(Organization, Organization.id == Invitation.organization_id)
        .where(Invitation.token == token)
    )
    row = (await db.execute(query)).first()
    if row is None:
        raise NotFoundError("Invitation not found.")
    invitation, organization_name = row
    check_invitation_state(invitation, now or now_utc())
    return InvitationPreview(invitation=invitation, organization_name=organization_name)


async def _apply_membership(db: AsyncSession, invitation: Invitation, user: User) -> None:
    # Accepting an organization invite never demotes a platform operator.
    if user.role != UserRole.SUPER_ADMIN:
        user.role = invitation.role
    user.organization_id = invitation.organization_id

    member = (
        await db.execute(
            select(Member).where(
                Member.user_id == user.id,
                Member.organization_id == invitation.organization_id,
            )
        )
    ).scalar_one_or_none()
    if member is None:
        db.add(
            Member(
                id=uuid.uuid4(),
                user_id=user.id,
                organization_id=invitation.organization_id,
                role=invitation.role,
            )
        )
    else:
        member.role = invitation.role

    if invitation.supplier_id is not None and invitation.role == UserRole.SUPPLIER:
        supplier = await db.get(Supplier, invitation.supplier_id)
        if supplier is not None:
            supplier.user_id = user.id
            supplier.status = SupplierStatus.ONBOARDING
            user.supplier_id = supplier.id


async def _record_member_added(
    db: AsyncSession,
    invitation: Invitation,
    user: User,
    *,
    performed_by: uuid.UUID | None,
    ip_address: str,
    user_agent: str,
    reporter: FailureReporter,
) -> None:
    await record_audit_event(
        db,
        action=AuditLogAction.MEMBER_ADDED,
        performed_by=performed_by,
        target=AuditTarget(type=AuditTargetType.USER, id=user.id, name=user.email),
        metadata=MemberAddedMetadata(
            organization_id=invitation.organization_id,
            role=invitation.role,
            supplier_id=invitation.supplier_id,
        ),
        ip_address=ip_address,
        user_agent=user_agent,
        reporter=reporter,
    )


async def accept_invitation(
    db: AsyncSession,
    token: str,
    user: User,
    *,
    ip_address: str = UNKNOWN_PROVENANCE,
    user_agent: str = UNKNOWN_PROVENANCE,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> AcceptedInvitation:
    invitation = await _load_by_token(db, Invitation, token)
    check_invitation_state(invitation, now or now_utc())
    if normalize_email(user.email) != normalize_email(invitation.email):
        raise EmailMismatchError()

    try:
        await _transition(
            db,
            Invitation,
            invitation.id,
            InvitationStatus.ACCEPTED,
            accepted_user_id=user.id,
        )
        await _apply_membership(db, invitation, user)
        await db.commit()
    except ControlPanelError:
        await db.rollback()
        raise

    logger.info("Invitation %s accepted by existing user %s", invitation.id, user.id)
    await _record_member_added(
        db,
        invitation,
        user,
        performed_by=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        reporter=reporter,
    )
    return AcceptedInvitation(user=user, role=invitation.role, organization_id=invitation.organization_id)


async def accept_invitation_new_account(
    db: AsyncSession,
    token: str,
    *,
    name: str | None,
    password: str | None,
    ip_address: str = UNKNOWN_PROVENANCE,
    user_agent: str = UNKNOWN_PROVENANCE,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> AcceptedInvitation:
    invitation = await _load_by_token(db, Invitation, token)
    check_invitation_state(invitation, now or now_utc())
    cleaned_name = _require_account_fields(name, password)
    await _ensure_email_available(db, invitation.email)

    user_id = uuid.uuid4()
    try:
        await _transition(
            db,
            Invitation,
            invitation.id,
            InvitationStatus.ACCEPTED,
            accepted_user_id=user_id,
        )
        user = User(
            id=user_id,
            email=invitation.email,
            name=cleaned_name,
            role=invitation.role,
            organization_id=invitation.organization_id,
            password_hash=hash_password(password or ""),
            email_verified=True,
            is_suspended=False,
        )
        db.add(user)
        await db.flush()
        await _apply_membership(db, invitation, user)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise EmailTakenError() from exc
    except ControlPanelError:
        await db.rollback()
        raise

    logger.info("Invitation %s accepted by new user %s", invitation.id, user.id)
    await record_audit_event(
        db,
        action=AuditLogAction.USER_CREATED,
        performed_by=invitation.invited_by,
        target=AuditTarget(type=AuditTargetType.USER, id=user.id, name=user.email),
        metadata=UserCreatedMetadata(role=invitation.role, invited_via="organization_invitation"),
        ip_address=ip_address,
        user_agent=user_agent,
        reporter=reporter,
    )
    await _record_member_added(
        db,
        invitation,
        user,
        performed_by=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        reporter=reporter,
    )
    return AcceptedInvitation(user=user, role=invitation.role, organization_id=invitation.organization_id)


async def _revoke(
    db: AsyncSession,
    ctx: RequestContext,
    model: type[AnyInvitation],
    invitation_id: uuid.UUID,
    *,
    kind: str,
    reporter: FailureReporter,
) -> AnyInvitation:
    invitation = await db.get(model, invitation_id)
    if invitation is None:
        raise NotFoundError("Invitation not found.")
    if invitation.status == InvitationStatus.ACCEPTED:
        raise AlreadyUsedError("This invitation has already been used.")
    if invitation.status == InvitationStatus.REVOKED:
        raise RevokedError("This invitation has already been revoked.")

    try:
        await _transition(db, model, invitation.id, InvitationStatus.REVOKED)
        await db.commit()
    except ControlPanelError:
        await db.rollback()
        raise

    logger.info("Invitation %s revoked by %s", invitation.id, ctx.actor.id)
    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.INVITATION_REVOKED,
        target=AuditTarget(type=AuditTargetType.INVITATION, id=invitation.id, name=invitation.email),
        metadata=InvitationRevokedMetadata(email=invitation.email, kind=kind),
        reporter=reporter,
    )
    return invitation


async def revoke_invitation(
    db: AsyncSession,
    ctx: RequestContext,
    invitation_id: uuid.UUID,
    *,
    reporter: FailureReporter = default_failure_reporter,
) -> Invitation:
    return await _revoke(db, ctx, Invitation, invitation_id, kind="organization", reporter=reporter)


async def revoke_super_admin_invitation(
    db: AsyncSession,
    ctx: RequestContext,
    invitation_id: uuid.UUID,
    *,
    reporter: FailureReporter = default_failure_reporter,
) -> SuperAdminInvitation:
    return await _revoke(db, ctx, SuperAdminInvitation, invitation_id, kind="super_admin", reporter=reporter)


async def list_super_admin_invitations(
    db: AsyncSession,
    *,
    status: InvitationStatus | None = None,
) -> list[SuperAdminInvitation]:
    query = select(SuperAdminInvitation)
    if status is not None:
        query = query.where(SuperAdminInvitation.status == status)
    query = query.order_by(SuperAdminInvitation.created_at.desc(), SuperAdminInvitation.id.desc())
    return list((await db.execute(query)).scalars().all())
