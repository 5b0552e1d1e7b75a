from __future__ import annotations

import datetime
import uuid
from typing import Any, Literal

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from control_panel.models.audit_log import AuditLogAction
from control_panel.models.organization import OrganizationPlan, OrganizationStatus
from control_panel.models.user import UserRole
from control_panel.schemas.base import ApiModel


class AuditMetadata(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", frozen=True)


class OrgCreatedMetadata(AuditMetadata):
    plan: OrganizationPlan
    pm_email: str | None = None
    pm_name: str | None = None
    pm_onboarding: Literal["none", "member_attached", "invitation_sent"] = "none"


class OrgUpdatedMetadata(AuditMetadata):
    changed_fields: list[str]


class OrgSuspendedMetadata(AuditMetadata):
    reason: str


class OrgActivatedMetadata(AuditMetadata):
    previous_status: OrganizationStatus | None = None


class OrgPlanChangedMetadata(AuditMetadata):
    plan: OrganizationPlan
    previous_plan: OrganizationPlan | None = None
    monthly_revenue: str


class OrgAdminInvitedMetadata(AuditMetadata):
    email: str
    name: str | None = None
    invitation_id: uuid.UUID


class SuperAdminInvitedMetadata(AuditMetadata):
    email: str


class InvitationCreatedMetadata(AuditMetadata):
    email: str
    role: UserRole
    organization_id: uuid.UUID
    supplier_id: uuid.UUID | None = None


class InvitationRevokedMetadata(AuditMetadata):
    email: str
    kind: Literal["organization", "super_admin"]


class UserCreatedMetadata(AuditMetadata):
    role: UserRole
    invited_via: Literal["admin_invitation", "organization_invitation"]


class UserRoleUpdatedMetadata(AuditMetadata):
    previous_role: UserRole | None = None
    new_role: UserRole
    invited_via: Literal["admin_invitation", "organization_invitation"]


class MemberAddedMetadata(AuditMetadata):
    organization_id: uuid.UUID
    role: UserRole
    supplier_id: uuid.UUID | None = None


class UserImpersonatedMetadata(AuditMetadata):
    target_user: str
    expires_at: datetime.datetime


class FeatureFlagChangedMetadata(AuditMetadata):
    change: Literal["created", "toggled", "enable", "disable"]
    is_enabled: bool | None = None
    org_ids: list[str] = []


AUDIT_METADATA_TYPES: dict[AuditLogAction, type[AuditMetadata]] = {
    AuditLogAction.ORG_CREATED: OrgCreatedMetadata,
    AuditLogAction.ORG_UPDATED: OrgUpdatedMetadata,
    AuditLogAction.ORG_SUSPENDED: OrgSuspendedMetadata,
    AuditLogAction.ORG_ACTIVATED: OrgActivatedMetadata,
    AuditLogAction.ORG_PLAN_CHANGED: OrgPlanChangedMetadata,
    AuditLogAction.ORG_ADMIN_INVITED: OrgAdminInvitedMetadata,
    AuditLogAction.SUPER_ADMIN_INVITED: SuperAdminInvitedMetadata,
    AuditLogAction.INVITATION_CREATED: InvitationCreatedMetadata,
    AuditLogAction.INVITATION_REVOKED: InvitationRevokedMetadata,
    AuditLogAction.USER_CREATED: UserCreatedMetadata,
    AuditLogAction.USER_ROLE_UPDATED: UserRoleUpdatedMetadata,
    AuditLogAction.MEMBER_ADDED: MemberAddedMetadata,
    AuditLogAction.USER_IMPERSONATED: UserImpersonatedMetadata,
    AuditLogAction.FEATURE_FLAG_CHANGED: FeatureFlagChangedMetadata,
}


def parse_audit_metadata(action: AuditLogAction, raw: dict[str, Any] | None) -> AuditMetadata | None:
    metadata_type = AUDIT_METADATA_TYPES.get(action)
    if metadata_type is None or raw is None:
        return None
    return metadata_type.model_validate(raw)


def _coerce_datetime(value: datetime.datetime) -> datetime.datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=datetime.UTC)


class AuditLogEntryResponse(ApiModel):
    id: uuid.UUID
    action: AuditLogAction
    performed_by: uuid.UUID | None
    performer_name: str | None = None
    performer_email: str | None = None
    target_type: str | None
    target_id: str | None
    target_name: str | None
    metadata: dict[str, Any]
    ip_address: str
    user_agent: str
    created_at: datetime.datetime

    @classmethod
    def from_entry(cls, entry: Any) -> "AuditLogEntryResponse":
        log = entry.log
        return cls(
            id=log.id,
            action=log.action,
            performed_by=log.performed_by,
            performer_name=entry.performer_name,
            performer_email=entry.performer_email,
            target_type=log.target_type.value if log.target_type is not None else None,
            target_id=log.target_id,
            target_name=log.target_name,
            metadata=dict(log.details or {}),
            ip_address=log.ip_address,
            user_agent=log.user_agent,
            created_at=_coerce_datetime(log.created_at),
        )


class AuditLogsResponse(ApiModel):
    success: bool = True
    data: list[AuditLogEntryResponse]
