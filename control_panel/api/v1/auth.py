import datetime

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.api.dependencies.auth import (
    client_ip_from_request,
    clear_session_cookies,
    get_current_session,
    get_failure_reporter,
    get_now,
    get_optional_session,
    get_session_token,
    set_session_cookie,
    user_agent_from_request,
)
from control_panel.core.errors import ControlPanelError, UnauthenticatedError, ValidationFailedError
from control_panel.core.observability import FailureReporter
from control_panel.core.problems import error_response
from control_panel.db.session import get_db_session
from control_panel.schemas.auth import (
    AcceptAdminInviteRequest,
    AcceptAdminInviteResponse,
    AcceptInvitationRequest,
    AcceptInvitationResponse,
    AuthenticatedUserResponse,
    FinalizeAdminInviteRequest,
    InvitationPreviewResponse,
    SessionResponse,
    SignInRequest,
    ValidateAdminInviteResponse,
)
from control_panel.schemas.base import SuccessResponse
from control_panel.services.auth import AuthenticatedSession, sign_in, sign_out, start_session
from control_panel.services.invitations import (
    accept_invitation,
    accept_invitation_new_account,
    accept_super_admin_invitation_existing_account,
    accept_super_admin_invitation_new_account,
    get_invitation_preview,
    validate_super_admin_invitation,
)


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/sign-in", response_model=SessionResponse)
async def sign_in_route(
    payload: SignInRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
) -> SessionResponse:
    try:
        result = await sign_in(
            db,
            email=payload.email,
            password=payload.password,
            client_ip=client_ip_from_request(request),
            user_agent=user_agent_from_request(request),
        )
    except ControlPanelError as exc:
        return error_response(exc)
    set_session_cookie(response, result.token, result.expires_at)
    return SessionResponse(user=AuthenticatedUserResponse.from_user(result.user), expires_at=result.expires_at)


@router.post("/sign-out", response_model=SuccessResponse)
async def sign_out_route(
    response: Response,
    token: str = Depends(get_session_token),
    db: AsyncSession = Depends(get_db_session),
) -> SuccessResponse:
    try:
        await sign_out(db, token)
    except ControlPanelError as exc:
        return error_response(exc)
    clear_session_cookies(response)
    return SuccessResponse(message="Signed out.")


@router.get("/session", response_model=SessionResponse)
async def get_session_route(current: AuthenticatedSession = Depends(get_current_session)) -> SessionResponse:
    return SessionResponse(
        user=AuthenticatedUserResponse.from_user(current.user),
        expires_at=current.session.expires_at,
    )


@router.get("/invitations/{token}", response_model=InvitationPreviewResponse)
async def invitation_preview_route(
    token: str,
    db: AsyncSession = Depends(get_db_session),
    now: datetime.datetime = Depends(get_now),
) -> InvitationPreviewResponse:
    try:
        preview = await get_invitation_preview(db, token, now=now)
    except ControlPanelError as exc:
        return error_response(exc)
    return InvitationPreviewResponse(
        email=preview.invitation.email,
        role=preview.invitation.role,
        organization_id=preview.invitation.organization_id,
        organization_name=preview.organization_name,
        expires_at=preview.invitation.expires_at,
    )


@router.post("/accept-invitation", response_model=AcceptInvitationResponse)
async def accept_invitation_route(
    payload: AcceptInvitationRequest,
    request: Request,
    current: AuthenticatedSession | None = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
    now: datetime.datetime = Depends(get_now),
) -> AcceptInvitationResponse:
    provenance = {
        "ip_address": client_ip_from_request(request),
        "user_agent": user_agent_from_request(request),
    }
    try:
        if current is not None:
            accepted = await accept_invitation(
                db, payload.token, current.user, reporter=reporter, now=now, **provenance
            )
        elif payload.name and payload.password:
            accepted = await accept_invitation_new_account(
                db,
                payload.token,
                name=payload.name,
                password=payload.password,
                reporter=reporter,
                now=now,
                **provenance,
            )
        else:
            raise UnauthenticatedError("Sign in or provide a name and password to accept this invitation.")
    except ControlPanelError as exc:
        return error_response(exc)
    return AcceptInvitationResponse(role=accepted.role, organization_id=accepted.organization_id)


@router.get("/validate-admin-invite", response_model=ValidateAdminInviteResponse)
async def validate_admin_invite_route(
    token: str = Query(default=""),
    db: AsyncSession = Depends(get_db_session),
    now: datetime.datetime = Depends(get_now),
) -> ValidateAdminInviteResponse:
    try:
        if not token.strip():
            raise ValidationFailedError("Token is required.")
        preview = await validate_super_admin_invitation(db, token.strip(), now=now)
    except ControlPanelError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"valid": False, "error": exc.code},
        )
    return ValidateAdminInviteResponse(
        valid=True,
        email=preview.email,
        inviter_name=preview.inviter_name,
        expires_at=preview.expires_at,
    )


@router.post("/accept-admin-invite", response_model=AcceptAdminInviteResponse)
async def accept_admin_invite_route(
    payload: AcceptAdminInviteRequest,
    request: Request,
    current: AuthenticatedSession | None = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
    now: datetime.datetime = Depends(get_now),
) -> AcceptAdminInviteResponse:
    try:
        if payload.existing_user:
            if current is None:
                raise UnauthenticatedError("Sign in with the invited email to accept this invitation.")
            accepted = await accept_super_admin_invitation_existing_account(
                db,
                payload.token,
                current.user,
                ip_address=client_ip_from_request(request),
                user_agent=user_agent_from_request(request),
                reporter=reporter,
                now=now,
            )
            return AcceptAdminInviteResponse(
                validated=True,
                email=accepted.user.email,
                message="You are now a super admin.",
            )

        preview = await validate_super_admin_invitation(db, payload.token, now=now, check_email_available=True)
    except ControlPanelError as exc:
        return error_response(exc)
    return AcceptAdminInviteResponse(
        validated=True,
        email=preview.email,
        message="Invitation validated. Choose a name and password to finish.",
    )


@router.put("/accept-admin-invite", response_model=AcceptAdminInviteResponse)
async def finalize_admin_invite_route(
    payload: FinalizeAdminInviteRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    reporter: FailureReporter = Depends(get_failure_reporter),
    now: datetime.datetime = Depends(get_now),
) -> AcceptAdminInviteResponse:
    client_ip = client_ip_from_request(request)
    user_agent = user_agent_from_request(request)
    try:
        accepted = await accept_super_admin_invitation_new_account(
            db,
            payload.token,
            name=payload.name,
            password=payload.password,
            ip_address=client_ip,
            user_agent=user_agent,
            reporter=reporter,
            now=now,
        )
    except ControlPanelError as exc:
        return error_response(exc)

    session = await start_session(db, accepted.user, client_ip=client_ip, user_agent=user_agent)
    set_session_cookie(response, session.token, session.expires_at)
    return AcceptAdminInviteResponse(
        validated=True,
        email=accepted.user.email,
        message="Account created.",
    )
