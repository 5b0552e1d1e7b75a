import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from control_panel.api.middleware import SessionGateMiddleware
from control_panel.api.v1.admin import router as admin_router
from control_panel.api.v1.audit import router as audit_router
from control_panel.api.v1.auth import router as auth_router
from control_panel.api.v1.feature_flags import public_router as feature_flags_public_router
from control_panel.api.v1.feature_flags import router as feature_flags_router
from control_panel.api.v1.impersonation import router as impersonation_router
from control_panel.api.v1.notifications import router as notifications_router
from control_panel.api.v1.org import router as org_router
from control_panel.core.problems import describe_validation_errors, failure_response, unexpected_response
from control_panel.core.settings import settings
from control_panel.db import model_registry as _model_registry  # noqa: F401


logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

STATUS_CODES = {
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
}


app = FastAPI(title="Platform Control Panel API")
app.add_middleware(SessionGateMiddleware)
app.include_router(auth_router)
app.include_router(org_router)
app.include_router(admin_router)
app.include_router(audit_router)
app.include_router(feature_flags_router)
app.include_router(feature_flags_public_router)
app.include_router(impersonation_router)
app.include_router(notifications_router)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = failure_response(
        status=exc.status_code,
        error=str(exc.detail),
        code=STATUS_CODES.get(exc.status_code, "validation_failed" if exc.status_code < 500 else "unexpected"),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return failure_response(status=400, error=describe_validation_errors(exc.errors()), code="validation_failed")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return unexpected_response(f"{request.method} {request.url.path}", exc)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("control_panel.main:app", host=settings.app_host, port=settings.app_port, reload=True)
