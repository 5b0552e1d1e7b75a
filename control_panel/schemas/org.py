from __future__ import annotations

import datetime
import decimal
import uuid
from typing import Any, Literal

from pydantic import Field

from control_panel.models.organization import OrganizationPlan, OrganizationStatus
from control_panel.models.user import UserRole
from control_panel.schemas.base import ApiModel


class CreateOrganizationRequest(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=128)
    industry: str | None = Field(default=None, max_length=128)
    size: str | None = Field(default=None, max_length=64)
    contact_email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    website: str | None = Field(default=None, max_length=255)
    plan: OrganizationPlan = OrganizationPlan.FREE
    pm_email: str | None = Field(default=None, max_length=320)
    pm_name: str | None = Field(default=None, max_length=255)


class UpdateOrganizationRequest(ApiModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    industry: str | None = Field(default=None, max_length=128)
    size: str | None = Field(default=None, max_length=64)
    contact_email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    website: str | None = Field(default=None, max_length=255)


class SuspendOrganizationRequest(ApiModel):
    reason: str = Field(default="", max_length=2000)


class UpdateOrganizationPlanRequest(ApiModel):
    plan: OrganizationPlan
    monthly_revenue: decimal.Decimal | None = None


class InviteOrganizationAdminRequest(ApiModel):
    admin_email: str = Field(min_length=3, max_length=320)
    admin_name: str | None = Field(default=None, max_length=255)


class CreateInvitationRequest(ApiModel):
    email: str = Field(min_length=3, max_length=320)
    role: Literal["ADMIN", "PM", "SUPPLIER", "QA", "SITE_RECEIVER"]
    supplier_id: uuid.UUID | None = None


class OrganizationResponse(ApiModel):
    id: uuid.UUID
    name: str
    slug: str
    industry: str | None
    size: str | None
    contact_email: str | None
    phone: str | None
    website: str | None
    plan: OrganizationPlan
    status: OrganizationStatus
    monthly_revenue: decimal.Decimal
    last_activity_at: datetime.datetime | None
    suspended_at: datetime.datetime | None
    suspended_by: uuid.UUID | None
    suspension_reason: str | None
    created_at: datetime.datetime | None

    @classmethod
    def from_organization(cls, organization: Any) -> "OrganizationResponse":
        return cls(
            id=organization.id,
            name=organization.name,
            slug=organization.slug,
            industry=organization.industry,
            size=organization.size,
            contact_email=organization.contact_email,
            phone=organization.phone,
            website=organization.website,
            plan=organization.plan,
            status=organization.status,
            monthly_revenue=organization.monthly_revenue or decimal.Decimal("0"),
            last_activity_at=organization.last_activity_at,
            suspended_at=organization.suspended_at,
            suspended_by=organization.suspended_by,
            suspension_reason=organization.suspension_reason,
            created_at=organization.created_at,
        )


class OrganizationEnvelope(ApiModel):
    success: bool = True
    organization: OrganizationResponse


class OrganizationsListResponse(ApiModel):
    success: bool = True
    organizations: list[OrganizationResponse]


class OrganizationMemberResponse(ApiModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    email: str
    role: UserRole
    created_at: datetime.datetime | None


class OrganizationDetailResponse(ApiModel):
    success: bool = True
    organization: OrganizationResponse
    members: list[OrganizationMemberResponse]
    user_count: int


class InvitationResponse(ApiModel):
    id: uuid.UUID
    email: str
    role: UserRole | None = None
    organization_id: uuid.UUID | None = None
    status: str
    expires_at: datetime.datetime

    @classmethod
    def from_invitation(cls, invitation: Any) -> "InvitationResponse":
        return cls(
            id=invitation.id,
            email=invitation.email,
            role=getattr(invitation, "role", None),
            organization_id=getattr(invitation, "organization_id", None),
            status=invitation.status.value,
            expires_at=invitation.expires_at,
        )


class InvitationEnvelope(ApiModel):
    success: bool = True
    message: str | None = None
    invitation: InvitationResponse
