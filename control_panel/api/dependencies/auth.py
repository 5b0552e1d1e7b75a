from __future__ import annotations

import datetime

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import UNKNOWN_PROVENANCE, RequestContext, now_utc
from control_panel.core.errors import ForbiddenError, UnauthenticatedError
from control_panel.core.observability import FailureReporter, default_failure_reporter
from control_panel.core.settings import settings
from control_panel.db.session import get_db_session
from control_panel.models.user import User
from control_panel.services.auth import AuthenticatedSession, ensure_super_admin, resolve_session
from control_panel.services.email import EmailSender, build_email_sender


bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Not authenticated.") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def client_ip_from_request(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded_for.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_PROVENANCE


def user_agent_from_request(request: Request) -> str:
    return request.headers.get("user-agent") or UNKNOWN_PROVENANCE


def read_session_token(request: Request, credentials: HTTPAuthorizationCredentials | None = None) -> str | None:
    for cookie_name in settings.session_cookie_names:
        value = request.cookies.get(cookie_name)
        if value:
            return value
    if credentials is not None and credentials.scheme.lower() == "bearer" and credentials.credentials.strip():
        return credentials.credentials.strip()
    return None


def set_session_cookie(response: Response, token: str, expires_at: datetime.datetime) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=max(0, int((expires_at - now_utc()).total_seconds())),
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )


def clear_session_cookies(response: Response) -> None:
    for cookie_name in settings.session_cookie_names:
        response.delete_cookie(key=cookie_name, path="/")


async def get_session_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    token = read_session_token(request, credentials)
    if token is None:
        raise _unauthorized("Missing session token.")
    return token


async def get_current_session(
    token: str = Depends(get_session_token),
    db: AsyncSession = Depends(get_db_session),
) -> AuthenticatedSession:
    try:
        return await resolve_session(db, token)
    except UnauthenticatedError as exc:
        raise _unauthorized("Invalid or expired session.") from exc


async def get_optional_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> AuthenticatedSession | None:
    token = read_session_token(request, credentials)
    if token is None:
        return None
    try:
        return await resolve_session(db, token)
    except UnauthenticatedError:
        return None


async def get_current_user(current: AuthenticatedSession = Depends(get_current_session)) -> User:
    return current.user


async def require_super_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> RequestContext:
    try:
        ensure_super_admin(current_user)
    except ForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    return RequestContext(
        actor=current_user,
        ip_address=client_ip_from_request(request),
        user_agent=user_agent_from_request(request),
    )


def get_email_sender() -> EmailSender:
    return build_email_sender()


def get_failure_reporter() -> FailureReporter:
    return default_failure_reporter


def get_now() -> datetime.datetime:
    return now_utc()
