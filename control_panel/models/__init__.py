from control_panel.models.audit_log import AuditLog, AuditLogAction, AuditTargetType
from control_panel.models.auth_session import Session
from control_panel.models.feature_flag import FeatureFlag
from control_panel.models.impersonation_token import ImpersonationToken
from control_panel.models.invitation import Invitation, InvitationStatus, SuperAdminInvitation
from control_panel.models.member import Member
from control_panel.models.notification import Notification
from control_panel.models.organization import Organization, OrganizationPlan, OrganizationStatus
from control_panel.models.supplier import Supplier, SupplierStatus
from control_panel.models.user import User, UserRole

__all__ = [
    "AuditLog",
    "AuditLogAction",
    "AuditTargetType",
    "FeatureFlag",
    "ImpersonationToken",
    "Invitation",
    "InvitationStatus",
    "Member",
    "Notification",
    "Organization",
    "OrganizationPlan",
    "OrganizationStatus",
    "Session",
    "SuperAdminInvitation",
    "Supplier",
    "SupplierStatus",
    "User",
    "UserRole",
]
