from __future__ import annotations

import datetime
import uuid
from typing import Any

from pydantic import Field

from control_panel.models.user import UserRole
from control_panel.schemas.base import ApiModel


class SignInRequest(ApiModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=4096)


class AuthenticatedUserResponse(ApiModel):
    id: uuid.UUID
    email: str
    name: str
    role: UserRole
    organization_id: uuid.UUID | None
    is_suspended: bool

    @classmethod
    def from_user(cls, user: Any) -> "AuthenticatedUserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            organization_id=user.organization_id,
            is_suspended=bool(user.is_suspended),
        )


class SessionResponse(ApiModel):
    success: bool = True
    user: AuthenticatedUserResponse
    expires_at: datetime.datetime | None = None


class AcceptInvitationRequest(ApiModel):
    token: str = Field(min_length=1, max_length=128)
    name: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, max_length=4096)


class AcceptInvitationResponse(ApiModel):
    success: bool = True
    role: UserRole
    organization_id: uuid.UUID


class AcceptAdminInviteRequest(ApiModel):
    token: str = Field(min_length=1, max_length=128)
    name: str | None = Field(default=None, max_length=255)
    password: str | None = Field(default=None, max_length=4096)
    existing_user: bool = False


class AcceptAdminInviteResponse(ApiModel):
    success: bool = True
    validated: bool = False
    email: str | None = None
    message: str


class FinalizeAdminInviteRequest(ApiModel):
    token: str = Field(min_length=1, max_length=128)
    name: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=4096)


class ValidateAdminInviteResponse(ApiModel):
    valid: bool
    error: str | None = None
    email: str | None = None
    inviter_name: str | None = None
    expires_at: datetime.datetime | None = None


class InvitationPreviewResponse(ApiModel):
    success: bool = True
    email: str
    role: UserRole
    organization_id: uuid.UUID
    organization_name: str
    expires_at: datetime.datetime


class ImpersonationConsumeRequest(ApiModel):
    token: str = Field(min_length=1, max_length=128)


class ImpersonationConsumeResponse(ApiModel):
    success: bool = True
    target_user: AuthenticatedUserResponse
