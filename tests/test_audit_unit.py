from __future__ import annotations

import datetime
import uuid
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from sqlalchemy.exc import OperationalError

from control_panel.models.audit_log import AuditLogAction, AuditTargetType
from control_panel.models.organization import OrganizationPlan
from control_panel.schemas.audit import (
    OrgCreatedMetadata,
    OrgSuspendedMetadata,
    UserImpersonatedMetadata,
    parse_audit_metadata,
)
from control_panel.services.audit import AuditTarget, build_audit_log, record_audit_event


def test_build_audit_log_rejects_metadata_of_another_action() -> None:
    with pytest.raises(TypeError, match="ORG_SUSPENDED requires OrgSuspendedMetadata"):
        build_audit_log(
            action=AuditLogAction.ORG_SUSPENDED,
            performed_by=uuid.uuid4(),
            target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=uuid.uuid4(), name="Acme"),
            metadata=OrgCreatedMetadata(plan=OrganizationPlan.FREE),
        )


def test_build_audit_log_stores_camel_case_json_metadata() -> None:
    target_id = uuid.uuid4()
    expires_at = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)

    log = build_audit_log(
        action=AuditLogAction.USER_IMPERSONATED,
        performed_by=None,
        target=AuditTarget(type=AuditTargetType.USER, id=target_id, name="pm@acme.test"),
        metadata=UserImpersonatedMetadata(target_user="pm@acme.test", expires_at=expires_at),
        ip_address="",
        user_agent="",
    )

    assert log.target_id == str(target_id)
    assert log.details == {"targetUser": "pm@acme.test", "expiresAt": "2026-03-01T12:00:00Z"}
    assert log.ip_address == "unknown"
    assert log.user_agent == "unknown"


def test_parse_audit_metadata_uses_the_action_payload_type() -> None:
    parsed = parse_audit_metadata(AuditLogAction.ORG_SUSPENDED, {"reason": "non-payment"})

    assert isinstance(parsed, OrgSuspendedMetadata)
    assert parsed.reason == "non-payment"
    assert parse_audit_metadata(AuditLogAction.ORG_SUSPENDED, None) is None


@pytest.mark.asyncio
async def test_record_audit_event_reports_insert_failure_instead_of_raising() -> None:
    db = AsyncMock()
    db.add = Mock()
    db.begin_nested = Mock(side_effect=OperationalError("SAVEPOINT sa_savepoint_1", {}, Exception("disk I/O error")))
    reporter = Mock()
    target_id = uuid.uuid4()

    result = await record_audit_event(
        db,
        action=AuditLogAction.ORG_SUSPENDED,
        performed_by=uuid.uuid4(),
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=target_id, name="Acme"),
        metadata=OrgSuspendedMetadata(reason="non-payment"),
        reporter=reporter,
    )

    assert result is None
    db.commit.assert_not_awaited()
    reporter.report.assert_called_once()
    event, exc = reporter.report.call_args.args
    assert event == "audit_log_insert"
    assert isinstance(exc, OperationalError)
    assert reporter.report.call_args.kwargs == {
        "action": "ORG_SUSPENDED",
        "target_type": "ORGANIZATION",
        "target_id": target_id,
    }


@pytest.mark.asyncio
async def test_failed_audit_commit_rolls_the_session_back() -> None:
    db = AsyncMock()
    db.add = Mock()
    db.expunge_all = Mock()
    db.begin_nested = Mock(return_value=MagicMock())
    db.commit.side_effect = OperationalError("COMMIT", {}, Exception("database is locked"))
    reporter = Mock()

    result = await record_audit_event(
        db,
        action=AuditLogAction.ORG_SUSPENDED,
        performed_by=uuid.uuid4(),
        target=AuditTarget(type=AuditTargetType.ORGANIZATION, id=uuid.uuid4(), name="Acme"),
        metadata=OrgSuspendedMetadata(reason="non-payment"),
        reporter=reporter,
    )

    assert result is None
    db.expunge_all.assert_called_once()
    db.rollback.assert_awaited_once()
    assert reporter.report.call_args.args[0] == "audit_log_insert"
