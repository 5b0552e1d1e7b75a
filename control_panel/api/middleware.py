from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from control_panel.core.problems import failure_response
from control_panel.core.settings import settings


PUBLIC_PATH_PREFIXES = (
    "/health",
    "/api/v1/auth/",
    "/api/v1/impersonation/",
    "/api/v1/feature-flags/",
    "/docs",
    "/openapi.json",
)


def is_public_path(path: str) -> bool:
    return any(path == prefix.rstrip("/") or path.startswith(prefix) for prefix in PUBLIC_PATH_PREFIXES)


def has_session_credentials(request: Request) -> bool:
    if any(request.cookies.get(name) for name in settings.session_cookie_names):
        return True
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    return scheme.lower() == "bearer" and bool(token.strip())


class SessionGateMiddleware(BaseHTTPMiddleware):
    """Cheap edge check: protected paths need a session cookie or bearer token.

    Only presence is checked here; the route dependencies validate the session.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)
        if not has_session_credentials(request):
            return failure_response(status=401, error="Not authenticated.", code="unauthenticated")
        return await call_next(request)
