from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from urllib.parse import urlencode

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import RequestContext, as_utc, now_utc
from control_panel.core.errors import (
    AlreadyUsedError,
    CannotImpersonateAdminError,
    ExpiredError,
    InvalidTokenError,
    NotFoundError,
)
from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.core.settings import settings
from control_panel.models.audit_log import AuditLogAction, AuditTargetType
from control_panel.models.impersonation_token import ImpersonationToken
from control_panel.models.user import User, UserRole
from control_panel.schemas.audit import UserImpersonatedMetadata
from control_panel.security.tokens import generate_url_token
from control_panel.services.audit import AuditTarget, record_for_context


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedImpersonation:
    token: ImpersonationToken
    magic_link: str
    target: User


@dataclass(frozen=True)
class ConsumedImpersonation:
    target: User
    super_admin_id: uuid.UUID


def impersonation_link(token: str) -> str:
    return f"{settings.main_app_url.rstrip('/')}/api/auth/impersonate?{urlencode({'token': token})}"


async def issue_impersonation_token(
    db: AsyncSession,
    ctx: RequestContext,
    target_user_id: uuid.UUID,
    *,
    reporter: FailureReporter = default_failure_reporter,
    now: datetime.datetime | None = None,
) -> IssuedImpersonation:
    target = await db.get(User, target_user_id)
    if target is None:
        raise NotFoundError("User not found.")
    if target.role == UserRole.SUPER_ADMIN:
        raise CannotImpersonateAdminError()

    issued_at = now or now_utc()
    impersonation = ImpersonationToken(
        id=uuid.uuid4(),
        token=generate_url_token(),
        super_admin_id=ctx.actor.id,
        target_user_id=target.id,
        expires_at=issued_at + datetime.timedelta(minutes=settings.impersonation_ttl_minutes),
    )
    db.add(impersonation)
    await db.commit()
    logger.info("Impersonation token %s issued by %s for %s", impersonation.id, ctx.actor.id, target.id)

    await record_for_context(
        db,
        ctx,
        action=AuditLogAction.USER_IMPERSONATED,
        target=AuditTarget(type=AuditTargetType.USER, id=target.id, name=target.email),
        metadata=UserImpersonatedMetadata(target_user=target.email, expires_at=impersonation.expires_at),
        reporter=reporter,
    )
    return IssuedImpersonation(
        token=impersonation,
        magic_link=impersonation_link(impersonation.token),
        target=target,
    )


async def consume_impersonation_token(
    db: AsyncSession,
    token: str,
    *,
    now: datetime.datetime | None = None,
) -> ConsumedImpersonation:
    """Redeem a token exactly once.

    The used/expired check and the ``used_at`` stamp are a single UPDATE, so
    of two concurrent consumers only one sees a matched row.
    """
    current_time = now or now_utc()
    result = await db.execute(
        update(ImpersonationToken)
        .where(
            ImpersonationToken.token == token,
            ImpersonationToken.used_at.is_(None),
            ImpersonationToken.expires_at >= current_time,
        )
        .values(used_at=current_time)
        .execution_options(synchronize_session=False)
    )

    row = (
        await db.execute(
            select(
                ImpersonationToken.target_user_id,
                ImpersonationToken.super_admin_id,
                ImpersonationToken.used_at,
                ImpersonationToken.expires_at,
            ).where(ImpersonationToken.token == token)
        )
    ).first()

    if result.rowcount == 0:
        if row is None:
            raise InvalidTokenError()
        if row.used_at is not None:
            raise AlreadyUsedError("This impersonation link has already been used.")
        if as_utc(row.expires_at) < current_time:
            raise ExpiredError("This impersonation link has expired.")
        raise InvalidTokenError()

    await db.commit()
    target = await db.get(User, row.target_user_id)
    if target is None:
        raise NotFoundError("User not found.")
    logger.info("Impersonation token for %s consumed", target.id)
    return ConsumedImpersonation(target=target, super_admin_id=row.super_admin_id)
