import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.api.dependencies.auth import get_now
from control_panel.core.errors import ControlPanelError
from control_panel.core.problems import error_response
from control_panel.db.session import get_db_session
from control_panel.schemas.auth import (
    AuthenticatedUserResponse,
    ImpersonationConsumeRequest,
    ImpersonationConsumeResponse,
)
from control_panel.services.impersonation import consume_impersonation_token


router = APIRouter(prefix="/api/v1/impersonation", tags=["impersonation"])


@router.post("/consume", response_model=ImpersonationConsumeResponse)
async def consume_token(
    payload: ImpersonationConsumeRequest,
    db: AsyncSession = Depends(get_db_session),
    now: datetime.datetime = Depends(get_now),
) -> ImpersonationConsumeResponse:
    try:
        consumed = await consume_impersonation_token(db, payload.token, now=now)
    except ControlPanelError as exc:
        return error_response(exc)
    return ImpersonationConsumeResponse(target_user=AuthenticatedUserResponse.from_user(consumed.target))
