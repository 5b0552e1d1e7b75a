from __future__ import annotations

import uuid
from typing import AsyncIterator

import pytest
from fastapi import Depends, FastAPI
from fastapi.security import HTTPAuthorizationCredentials
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from control_panel.api.dependencies.auth import (
    client_ip_from_request,
    read_session_token,
    require_super_admin,
    user_agent_from_request,
)
from control_panel.api.middleware import is_public_path
from control_panel.core.context import RequestContext
from control_panel.core.errors import ForbiddenError
from control_panel.db.session import get_db_session
from control_panel.models.user import User, UserRole
from control_panel.services.auth import ensure_super_admin


def _request(headers: list[tuple[bytes, bytes]], client: tuple[str, int] | None = ("10.0.0.2", 4321)) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": headers,
            "client": client,
        }
    )


def _build_test_app() -> FastAPI:
    app = FastAPI()

    @app.get("/privileged")
    async def privileged(ctx: RequestContext = Depends(require_super_admin)) -> dict[str, str]:
        return {"actor": ctx.actor.email, "ip": ctx.ip_address, "userAgent": ctx.user_agent}

    return app


def test_client_ip_prefers_first_forwarded_hop() -> None:
    request = _request([(b"x-forwarded-for", b"203.0.113.9, 10.0.0.1")])

    assert client_ip_from_request(request) == "203.0.113.9"


def test_client_ip_falls_back_to_peer_then_unknown() -> None:
    assert client_ip_from_request(_request([])) == "10.0.0.2"
    assert client_ip_from_request(_request([], client=None)) == "unknown"
    assert user_agent_from_request(_request([])) == "unknown"


def test_read_session_token_prefers_cookie_over_bearer() -> None:
    request = _request([(b"cookie", b"control-panel.session_token=from-cookie")])
    credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="from-header")

    assert read_session_token(request, credentials) == "from-cookie"
    assert read_session_token(_request([]), credentials) == "from-header"
    assert read_session_token(_request([]), None) is None


def test_public_paths_are_limited_to_known_prefixes() -> None:
    assert is_public_path("/health")
    assert is_public_path("/api/v1/auth/sign-in")
    assert is_public_path("/api/v1/impersonation/consume")
    assert is_public_path("/api/v1/feature-flags/new-dashboard")
    assert not is_public_path("/api/v1/admin/organizations")
    assert not is_public_path("/api/v1/admin/feature-flags")
    assert not is_public_path("/api/v1/authority")


def test_ensure_super_admin_rejects_other_roles_and_suspended_accounts() -> None:
    pm = User(id=uuid.uuid4(), email="pm@example.com", name="PM", role=UserRole.PM, is_suspended=False)
    suspended = User(
        id=uuid.uuid4(),
        email="root@example.com",
        name="Root",
        role=UserRole.SUPER_ADMIN,
        is_suspended=True,
    )
    active = User(
        id=uuid.uuid4(),
        email="ops@example.com",
        name="Ops",
        role=UserRole.SUPER_ADMIN,
        is_suspended=False,
    )

    with pytest.raises(ForbiddenError):
        ensure_super_admin(pm)
    with pytest.raises(ForbiddenError):
        ensure_super_admin(suspended)
    assert ensure_super_admin(active) is active


@pytest.mark.asyncio
async def test_require_super_admin_builds_request_context(session_factory, make_user, login) -> None:
    admin = await make_user("ops@platform.test", role=UserRole.SUPER_ADMIN)
    headers = await login(admin)
    app = _build_test_app()

    async def override_get_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            "/privileged",
            headers={**headers, "x-forwarded-for": "198.51.100.7", "user-agent": "ops-console"},
        )

    assert response.status_code == 200
    assert response.json() == {"actor": "ops@platform.test", "ip": "198.51.100.7", "userAgent": "ops-console"}


@pytest.mark.asyncio
async def test_require_super_admin_rejects_non_admin_and_missing_session(session_factory, make_user, login) -> None:
    pm = await make_user("pm@tenant.test", role=UserRole.PM)
    suspended = await make_user("former@platform.test", role=UserRole.SUPER_ADMIN, is_suspended=True)
    app = _build_test_app()

    async def override_get_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.get("/privileged")
        garbage = await client.get("/privileged", headers={"Authorization": "Bearer not-a-jwt"})
        wrong_role = await client.get("/privileged", headers=await login(pm))
        frozen = await client.get("/privileged", headers=await login(suspended))

    assert missing.status_code == 401
    assert garbage.status_code == 401
    assert wrong_role.status_code == 403
    assert frozen.status_code == 403
