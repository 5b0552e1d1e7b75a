from __future__ import annotations

import datetime
import secrets
import uuid
from dataclasses import dataclass

import jwt
from jwt import InvalidTokenError

from control_panel.core.settings import settings


ALGORITHM = "HS256"
RANDOM_TOKEN_BYTES = 24


class SessionTokenValidationError(Exception):
    pass


@dataclass(frozen=True)
class SessionTokenPayload:
    sid: uuid.UUID
    sub: uuid.UUID
    email: str
    iat: datetime.datetime
    exp: datetime.datetime
    iss: str


def generate_url_token() -> str:
    """Unguessable single-use token for invitation and impersonation links (32 chars)."""
    return secrets.token_urlsafe(RANDOM_TOKEN_BYTES)


def issue_session_token(
    *,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    email: str,
    now: datetime.datetime | None = None,
    expires_in: datetime.timedelta | None = None,
) -> tuple[str, datetime.datetime]:
    issued_at = now or datetime.datetime.now(datetime.UTC)
    expiry = issued_at + (expires_in or datetime.timedelta(days=settings.session_ttl_days))
    payload = {
        "sid": str(session_id),
        "sub": str(user_id),
        "email": email,
        "iss": settings.session_issuer,
        "iat": int(issued_at.timestamp()),
        "exp": int(expiry.timestamp()),
    }
    token = jwt.encode(payload, settings.session_secret, algorithm=ALGORITHM)
    return token, expiry


def validate_session_token(token: str) -> SessionTokenPayload:
    try:
        payload = jwt.decode(
            token,
            settings.session_secret,
            algorithms=[ALGORITHM],
            issuer=settings.session_issuer,
            options={"require": ["sid", "sub", "email", "iat", "exp", "iss"]},
        )
    except InvalidTokenError as exc:
        raise SessionTokenValidationError("invalid session token") from exc

    try:
        return SessionTokenPayload(
            sid=uuid.UUID(payload["sid"]),
            sub=uuid.UUID(payload["sub"]),
            email=str(payload["email"]),
            iat=datetime.datetime.fromtimestamp(int(payload["iat"]), tz=datetime.UTC),
            exp=datetime.datetime.fromtimestamp(int(payload["exp"]), tz=datetime.UTC),
            iss=str(payload["iss"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise SessionTokenValidationError("malformed session token payload") from exc
