"""Create append-only audit_logs and feature_flags tables.

Revision ID: 0003_create_audit_logs_and_feature_flags
Revises: 0002_create_invitations_and_impersonation_tokens
Create Date: 2026-10-19 00:00:03
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0003_create_audit_logs_and_feature_flags"
down_revision: Union[str, None] = "0002_create_invitations_and_impersonation_tokens"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


audit_log_action_enum = sa.Enum(
    "ORG_CREATED",
    "ORG_UPDATED",
    "ORG_SUSPENDED",
    "ORG_ACTIVATED",
    "ORG_PLAN_CHANGED",
    "ORG_ADMIN_INVITED",
    "SUPER_ADMIN_INVITED",
    "INVITATION_CREATED",
    "INVITATION_REVOKED",
    "USER_CREATED",
    "USER_ROLE_UPDATED",
    "MEMBER_ADDED",
    "USER_IMPERSONATED",
    "FEATURE_FLAG_CHANGED",
    name="audit_log_action",
)
audit_target_type_enum = sa.Enum(
    "ORGANIZATION",
    "USER",
    "FEATURE_FLAG",
    "INVITATION",
    name="audit_target_type",
)


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("action", audit_log_action_enum, nullable=False),
        sa.Column("performed_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("target_type", audit_target_type_enum, nullable=True),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("target_name", sa.String(length=320), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)
    op.execute(
        """
        CREATE TRIGGER trg_audit_logs_prevent_update
        BEFORE UPDATE ON audit_logs
        FOR EACH ROW
        SIGNAL SQLSTATE '45000'
        SET MESSAGE_TEXT = 'audit_logs is append-only'
        """
    )

    op.create_table(
        "feature_flags",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("enabled_for_orgs", sa.JSON(), nullable=False, server_default=sa.text("(JSON_ARRAY())")),
        sa.Column("disabled_for_orgs", sa.JSON(), nullable=False, server_default=sa.text("(JSON_ARRAY())")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("key", name="uq_feature_flags_key"),
    )


def downgrade() -> None:
    op.drop_table("feature_flags")
    op.execute("DROP TRIGGER IF EXISTS trg_audit_logs_prevent_update")
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_target_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
