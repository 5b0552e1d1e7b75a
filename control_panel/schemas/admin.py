from __future__ import annotations

import datetime
import decimal
import uuid
from typing import Any, Literal

from pydantic import Field

from control_panel.models.user import UserRole
from control_panel.schemas.base import ApiModel
from control_panel.schemas.org import InvitationResponse


class InviteSuperAdminRequest(ApiModel):
    email: str = Field(min_length=3, max_length=320)


class SuperAdminInvitationsResponse(ApiModel):
    success: bool = True
    invitations: list[InvitationResponse]


class ImpersonationResponse(ApiModel):
    success: bool = True
    magic_link: str
    expires_at: datetime.datetime


class GrowthPointResponse(ApiModel):
    month: str
    new_organizations: int
    new_users: int


class PlatformStatsResponse(ApiModel):
    total_revenue: decimal.Decimal
    active_organizations: int
    total_organizations: int
    total_users: int
    growth: list[GrowthPointResponse]


class PlatformStatsEnvelope(ApiModel):
    success: bool = True
    stats: PlatformStatsResponse


class UserSearchResultResponse(ApiModel):
    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    is_suspended: bool
    organization_id: uuid.UUID | None
    organization_name: str | None
    created_at: datetime.datetime | None


class UserSearchResponse(ApiModel):
    success: bool = True
    users: list[UserSearchResultResponse]


class CreateFeatureFlagRequest(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    key: str = Field(min_length=1, max_length=128, pattern=r"^[a-z0-9][a-z0-9_.-]*$")
    description: str | None = Field(default=None, max_length=2000)
    is_enabled: bool = False


class ToggleFeatureFlagRequest(ApiModel):
    is_enabled: bool


class SetFeatureFlagOrgsRequest(ApiModel):
    org_ids: list[str] = Field(min_length=1)
    action: Literal["enable", "disable"]


class FeatureFlagResponse(ApiModel):
    id: uuid.UUID
    key: str
    name: str
    description: str | None
    is_enabled: bool
    enabled_for_orgs: list[str]
    disabled_for_orgs: list[str]

    @classmethod
    def from_flag(cls, flag: Any) -> "FeatureFlagResponse":
        return cls(
            id=flag.id,
            key=flag.key,
            name=flag.name,
            description=flag.description,
            is_enabled=bool(flag.is_enabled),
            enabled_for_orgs=list(flag.enabled_for_orgs or []),
            disabled_for_orgs=list(flag.disabled_for_orgs or []),
        )


class FeatureFlagEnvelope(ApiModel):
    success: bool = True
    flag: FeatureFlagResponse


class FeatureFlagsListResponse(ApiModel):
    success: bool = True
    flags: list[FeatureFlagResponse]


class FeatureFlagCheckResponse(ApiModel):
    key: str
    enabled: bool


class NotificationResponse(ApiModel):
    id: uuid.UUID
    title: str
    message: str
    link: str | None
    read_at: datetime.datetime | None
    created_at: datetime.datetime | None

    @classmethod
    def from_notification(cls, notification: Any) -> "NotificationResponse":
        return cls(
            id=notification.id,
            title=notification.title,
            message=notification.message,
            link=notification.link,
            read_at=notification.read_at,
            created_at=notification.created_at,
        )


class NotificationsResponse(ApiModel):
    success: bool = True
    notifications: list[NotificationResponse]


class MarkNotificationsReadRequest(ApiModel):
    notification_ids: list[uuid.UUID] = Field(max_length=100)


class MarkNotificationsReadResponse(ApiModel):
    success: bool = True
    updated: int
