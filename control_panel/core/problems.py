import logging
from collections.abc import Mapping, Sequence
from typing import Any

from fastapi.responses import JSONResponse

from control_panel.core.errors import ControlPanelError


logger = logging.getLogger(__name__)


def failure_response(status: int, error: str, code: str = "unexpected") -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "success": False,
            "error": error,
            "code": code,
        },
    )


def describe_validation_errors(errors: Sequence[Mapping[str, Any]]) -> str:
    if not errors:
        return "Invalid input."
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = str(first.get("msg", "Invalid value"))
    return f"{field}: {message}" if field else message


def error_response(exc: ControlPanelError) -> JSONResponse:
    return failure_response(status=exc.status_code, error=exc.message, code=exc.code)


def unexpected_response(operation: str, exc: BaseException, error: str = "Something went wrong.") -> JSONResponse:
    logger.error("%s failed", operation, exc_info=exc)
    return failure_response(status=500, error=error, code="unexpected")
