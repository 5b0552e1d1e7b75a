from __future__ import annotations

import datetime
import enum
import uuid

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from control_panel.db.base import Base


class AuditLogAction(str, enum.Enum):
    ORG_CREATED = "ORG_CREATED"
    ORG_UPDATED = "ORG_UPDATED"
    ORG_SUSPENDED = "ORG_SUSPENDED"
    ORG_ACTIVATED = "ORG_ACTIVATED"
    ORG_PLAN_CHANGED = "ORG_PLAN_CHANGED"
    ORG_ADMIN_INVITED = "ORG_ADMIN_INVITED"
    SUPER_ADMIN_INVITED = "SUPER_ADMIN_INVITED"
    INVITATION_CREATED = "INVITATION_CREATED"
    INVITATION_REVOKED = "INVITATION_REVOKED"
    USER_CREATED = "USER_CREATED"
    USER_ROLE_UPDATED = "USER_ROLE_UPDATED"
    MEMBER_ADDED = "MEMBER_ADDED"
    USER_IMPERSONATED = "USER_IMPERSONATED"
    FEATURE_FLAG_CHANGED = "FEATURE_FLAG_CHANGED"


class AuditTargetType(str, enum.Enum):
    ORGANIZATION = "ORGANIZATION"
    USER = "USER"
    FEATURE_FLAG = "FEATURE_FLAG"
    INVITATION = "INVITATION"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    action: Mapped[AuditLogAction] = mapped_column(
        Enum(AuditLogAction, name="audit_log_action", native_enum=True),
        nullable=False,
        index=True,
    )
    performed_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    target_type: Mapped[AuditTargetType | None] = mapped_column(
        Enum(AuditTargetType, name="audit_target_type", native_enum=True),
        nullable=True,
    )
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    target_name: Mapped[str | None] = mapped_column(String(320), nullable=True)
    # "metadata" is reserved on declarative classes.
    details: Mapped[dict[str, object]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.UTC),
        server_default=func.now(),
        index=True,
    )
