from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import as_utc, now_utc
from control_panel.core.errors import ForbiddenError, UnauthenticatedError
from control_panel.models.auth_session import Session
from control_panel.models.user import User, UserRole
from control_panel.security.password import argon2_hasher, verify_password
from control_panel.security.tokens import (
    SessionTokenValidationError,
    issue_session_token,
    validate_session_token,
)


logger = logging.getLogger(__name__)

DUMMY_PASSWORD_HASH = argon2_hasher.hash("control-panel-dummy-password")


@dataclass(frozen=True)
class AuthenticatedSession:
    user: User
    session: Session


@dataclass(frozen=True)
class SignInResult:
    token: str
    expires_at: datetime.datetime
    user: User


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_user_by_email(db: AsyncSession, email: str) -> User | None:
    query = select(User).where(func.lower(User.email) == normalize_email(email))
    return (await db.execute(query)).scalar_one_or_none()


async def start_session(
    db: AsyncSession,
    user: User,
    *,
    client_ip: str,
    user_agent: str,
    now: datetime.datetime | None = None,
) -> SignInResult:
    current_time = now or now_utc()
    auth_session = Session(
        id=uuid.uuid4(),
        user_id=user.id,
        ip_address=client_ip,
        user_agent=user_agent,
        expires_at=current_time,
    )
    token, expires_at = issue_session_token(
        session_id=auth_session.id,
        user_id=user.id,
        email=user.email,
        now=current_time,
    )
    auth_session.expires_at = expires_at
    db.add(auth_session)
    await db.commit()
    logger.info("Session %s started for user %s", auth_session.id, user.id)
    return SignInResult(token=token, expires_at=expires_at, user=user)


async def sign_in(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    client_ip: str,
    user_agent: str,
    now: datetime.datetime | None = None,
) -> SignInResult:
    user = await find_user_by_email(db, email)
    if user is None:
        verify_password(DUMMY_PASSWORD_HASH, password)
        raise UnauthenticatedError("Invalid email or password.")
    if not verify_password(user.password_hash, password):
        raise UnauthenticatedError("Invalid email or password.")
    return await start_session(db, user, client_ip=client_ip, user_agent=user_agent, now=now)


async def resolve_session(
    db: AsyncSession,
    token: str,
    *,
    now: datetime.datetime | None = None,
) -> AuthenticatedSession:
    try:
        claims = validate_session_token(token)
    except SessionTokenValidationError as exc:
        raise UnauthenticatedError() from exc

    current_time = now or now_utc()
    auth_session = await db.get(Session, claims.sid)
    if (
        auth_session is None
        or auth_session.revoked_at is not None
        or as_utc(auth_session.expires_at) <= current_time
        or auth_session.user_id != claims.sub
    ):
        raise UnauthenticatedError()

    user = await db.get(User, claims.sub)
    if user is None or normalize_email(user.email) != normalize_email(claims.email):
        raise UnauthenticatedError()
    return AuthenticatedSession(user=user, session=auth_session)


async def sign_out(
    db: AsyncSession,
    token: str,
    *,
    now: datetime.datetime | None = None,
) -> None:
    current = await resolve_session(db, token, now=now)
    current.session.revoked_at = now or now_utc()
    await db.commit()
    logger.info("Session %s revoked", current.session.id)


def ensure_super_admin(user: User) -> User:
    if user.role != UserRole.SUPER_ADMIN:
        raise ForbiddenError("Super admin access required.")
    if user.is_suspended:
        raise ForbiddenError("This account is suspended.")
    return user


def check_organization_access(user: User, organization_id: uuid.UUID | None) -> bool:
    """Hook for organization-level access rules.

    Suspended organizations are blocked by the tenant application's own
    middleware; nothing is enforced here yet.
    """
    return True
