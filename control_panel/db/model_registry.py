"""Import all models so SQLAlchemy metadata is fully populated."""

from control_panel.models.audit_log import AuditLog  # noqa: F401
from control_panel.models.auth_session import Session  # noqa: F401
from control_panel.models.feature_flag import FeatureFlag  # noqa: F401
from control_panel.models.impersonation_token import ImpersonationToken  # noqa: F401
from control_panel.models.invitation import Invitation, SuperAdminInvitation  # noqa: F401
from control_panel.models.member import Member  # noqa: F401
from control_panel.models.notification import Notification  # noqa: F401
from control_panel.models.organization import Organization  # noqa: F401
from control_panel.models.supplier import Supplier  # noqa: F401
from control_panel.models.user import User  # noqa: F401
