from __future__ import annotations

import datetime
import uuid
from unittest.mock import AsyncMock

import pytest

from control_panel.core.errors import AlreadyUsedError, ExpiredError, RevokedError, ValidationFailedError
from control_panel.models.invitation import InvitationStatus, SuperAdminInvitation
from control_panel.models.user import UserRole
from control_panel.services.invitations import (
    check_invitation_state,
    invitation_expiry,
    require_email,
    stage_invitation,
)


EXPIRES_AT = datetime.datetime(2026, 3, 8, 12, 0, tzinfo=datetime.UTC)


def _invitation(status: InvitationStatus) -> SuperAdminInvitation:
    return SuperAdminInvitation(
        id=uuid.uuid4(),
        token="token",
        email="alice@example.com",
        status=status,
        expires_at=EXPIRES_AT,
    )


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (InvitationStatus.ACCEPTED, AlreadyUsedError),
        (InvitationStatus.REVOKED, RevokedError),
        (InvitationStatus.PENDING, ExpiredError),
    ],
)
def test_status_is_checked_before_expiry(status: InvitationStatus, error: type[Exception]) -> None:
    later = EXPIRES_AT + datetime.timedelta(days=1)

    with pytest.raises(error):
        check_invitation_state(_invitation(status), later)


def test_pending_invitation_is_usable_up_to_expiry() -> None:
    check_invitation_state(_invitation(InvitationStatus.PENDING), EXPIRES_AT)


def test_naive_expiry_is_treated_as_utc() -> None:
    invitation = _invitation(InvitationStatus.PENDING)
    invitation.expires_at = EXPIRES_AT.replace(tzinfo=None)

    with pytest.raises(ExpiredError):
        check_invitation_state(invitation, EXPIRES_AT + datetime.timedelta(seconds=1))


def test_invitation_expiry_is_seven_days() -> None:
    assert invitation_expiry(EXPIRES_AT) - EXPIRES_AT == datetime.timedelta(days=7)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Alice@Example.COM", "alice@example.com"),
        ("  bob@acme.test ", "bob@acme.test"),
    ],
)
def test_require_email_normalizes(raw: str, expected: str) -> None:
    assert require_email(raw) == expected


@pytest.mark.parametrize("raw", ["", "alice", "@example.com", "alice@localhost"])
def test_require_email_rejects_malformed_addresses(raw: str) -> None:
    with pytest.raises(ValidationFailedError):
        require_email(raw)


@pytest.mark.asyncio
async def test_stage_invitation_refuses_super_admin_role() -> None:
    db = AsyncMock()

    with pytest.raises(ValidationFailedError):
        await stage_invitation(
            db,
            organization_id=uuid.uuid4(),
            email="alice@example.com",
            role=UserRole.SUPER_ADMIN,
            invited_by=uuid.uuid4(),
        )

    db.execute.assert_not_awaited()
    db.add.assert_not_called()
