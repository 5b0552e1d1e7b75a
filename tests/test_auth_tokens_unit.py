from __future__ import annotations

import datetime
import uuid

import jwt
import pytest

from control_panel.core.settings import settings
from control_panel.security.password import hash_password, verify_password
from control_panel.security.tokens import (
    SessionTokenValidationError,
    generate_url_token,
    issue_session_token,
    validate_session_token,
)


def test_issue_and_validate_session_token_round_trip() -> None:
    now = datetime.datetime.now(datetime.UTC).replace(microsecond=0)
    session_id = uuid.uuid4()
    user_id = uuid.uuid4()

    token, expiry = issue_session_token(
        session_id=session_id,
        user_id=user_id,
        email="unit@example.com",
        now=now,
    )
    payload = validate_session_token(token)

    assert payload.sid == session_id
    assert payload.sub == user_id
    assert payload.email == "unit@example.com"
    assert payload.iss == settings.session_issuer
    assert payload.iat == now
    assert payload.exp == expiry
    assert expiry - now == datetime.timedelta(days=settings.session_ttl_days)


def test_validate_session_token_rejects_expired_token() -> None:
    token, _ = issue_session_token(
        session_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        email="expired@example.com",
        now=datetime.datetime.now(datetime.UTC),
        expires_in=datetime.timedelta(seconds=-1),
    )

    with pytest.raises(SessionTokenValidationError):
        validate_session_token(token)


def test_validate_session_token_rejects_foreign_signature() -> None:
    now = datetime.datetime.now(datetime.UTC)
    forged = jwt.encode(
        {
            "sid": str(uuid.uuid4()),
            "sub": str(uuid.uuid4()),
            "email": "forged@example.com",
            "iss": settings.session_issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + datetime.timedelta(hours=1)).timestamp()),
        },
        "not-the-session-secret-but-long-enough-for-hs256",
        algorithm="HS256",
    )

    with pytest.raises(SessionTokenValidationError):
        validate_session_token(forged)


def test_validate_session_token_rejects_malformed_subject() -> None:
    now = datetime.datetime.now(datetime.UTC)
    token = jwt.encode(
        {
            "sid": "not-a-uuid",
            "sub": str(uuid.uuid4()),
            "email": "broken@example.com",
            "iss": settings.session_issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + datetime.timedelta(hours=1)).timestamp()),
        },
        settings.session_secret,
        algorithm="HS256",
    )

    with pytest.raises(SessionTokenValidationError):
        validate_session_token(token)


def test_url_tokens_are_unique_and_url_safe() -> None:
    tokens = {generate_url_token() for _ in range(50)}

    assert len(tokens) == 50
    for token in tokens:
        assert len(token) == 32
        assert all(ch.isalnum() or ch in "-_" for ch in token)


def test_password_hash_verifies_only_the_original_password() -> None:
    password_hash = hash_password("correct horse battery")

    assert verify_password(password_hash, "correct horse battery") is True
    assert verify_password(password_hash, "wrong horse battery") is False
    assert verify_password(None, "correct horse battery") is False
