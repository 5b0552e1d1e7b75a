from __future__ import annotations

import datetime

import pytest
from sqlalchemy import func, select

from control_panel.api.dependencies.auth import get_now
from control_panel.core.settings import settings
from control_panel.main import app
from control_panel.models.audit_log import AuditLog, AuditLogAction
from control_panel.models.invitation import InvitationStatus, SuperAdminInvitation
from control_panel.models.user import User, UserRole


def _sent_link(email_sender) -> str:
    message = email_sender.sent[-1]
    links = [line for line in (message.text or "").splitlines() if "/invite/admin/" in line]
    assert len(links) == 1
    return links[0].strip()


def _sent_token(email_sender) -> str:
    return _sent_link(email_sender).rsplit("/", 1)[-1]


async def _invite(client, headers, email: str) -> str:
    response = await client.post(
        "/api/v1/admin/super-admin-invitations",
        json={"email": email},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["invitation"]["id"]


@pytest.mark.asyncio
async def test_invite_validate_then_expire(client, make_user, login, email_sender, session_factory) -> None:
    bob = await make_user("bob@platform.test", name="bob", role=UserRole.SUPER_ADMIN)

    await _invite(client, await login(bob), "Alice@Example.com")
    assert len(email_sender.sent) == 1
    message = email_sender.sent[0]
    assert message.to == "alice@example.com"
    assert "bob" in message.html
    token = _sent_token(email_sender)

    valid = await client.get("/api/v1/auth/validate-admin-invite", params={"token": token})
    assert valid.status_code == 200
    body = valid.json()
    assert body["valid"] is True
    assert body["email"] == "alice@example.com"
    assert body["inviterName"] == "bob"

    async with session_factory() as session:
        invitation = (
            await session.execute(select(SuperAdminInvitation).where(SuperAdminInvitation.token == token))
        ).scalar_one()
        expires_at = invitation.expires_at.replace(tzinfo=datetime.UTC)

    app.dependency_overrides[get_now] = lambda: expires_at + datetime.timedelta(seconds=1)
    expired = await client.get("/api/v1/auth/validate-admin-invite", params={"token": token})

    assert expired.status_code == 400
    assert expired.json() == {"valid": False, "error": "expired"}


@pytest.mark.asyncio
async def test_invite_writes_audit_entry_and_link_points_at_admin_app(
    client, admin_headers, email_sender, session_factory
) -> None:
    invitation_id = await _invite(client, admin_headers, "carol@example.com")

    link = _sent_link(email_sender)
    assert link.startswith(f"{settings.admin_app_url.rstrip('/')}/invite/admin/")

    async with session_factory() as session:
        audit = (
            await session.execute(select(AuditLog).where(AuditLog.action == AuditLogAction.SUPER_ADMIN_INVITED))
        ).scalar_one()

    assert audit.target_id == invitation_id
    assert audit.details == {"email": "carol@example.com"}
    assert audit.user_agent == "pytest"


@pytest.mark.asyncio
async def test_inviting_an_existing_super_admin_conflicts(client, admin_headers, super_admin) -> None:
    response = await client.post(
        "/api/v1/admin/super-admin-invitations",
        json={"email": super_admin.email.upper()},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_unknown_token_is_not_found(client) -> None:
    response = await client.get("/api/v1/auth/validate-admin-invite", params={"token": "missing"})

    assert response.status_code == 404
    assert response.json() == {"valid": False, "error": "not_found"}


@pytest.mark.asyncio
async def test_two_phase_accept_creates_super_admin_once(
    client, admin_headers, email_sender, session_factory
) -> None:
    await _invite(client, admin_headers, "dave@example.com")
    token = _sent_token(email_sender)

    validated = await client.post("/api/v1/auth/accept-admin-invite", json={"token": token})
    assert validated.status_code == 200
    assert validated.json()["validated"] is True
    assert validated.json()["email"] == "dave@example.com"

    finalized = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "Dave", "password": "LongEnough1"},
    )
    assert finalized.status_code == 200
    assert finalized.json()["message"] == "Account created."
    assert finalized.cookies.get(settings.session_cookie_name)

    replay = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "Dave Again", "password": "LongEnough1"},
    )
    assert replay.status_code == 400
    assert replay.json()["code"] == "already_used"

    revalidate = await client.get("/api/v1/auth/validate-admin-invite", params={"token": token})
    assert revalidate.json() == {"valid": False, "error": "already_used"}

    async with session_factory() as session:
        users = (
            await session.execute(select(User).where(User.email == "dave@example.com"))
        ).scalars().all()
        invitation = (
            await session.execute(select(SuperAdminInvitation).where(SuperAdminInvitation.token == token))
        ).scalar_one()
        created_audits = (
            await session.execute(
                select(func.count(AuditLog.id)).where(AuditLog.action == AuditLogAction.USER_CREATED)
            )
        ).scalar_one()

    assert len(users) == 1
    assert users[0].role == UserRole.SUPER_ADMIN
    assert users[0].name == "Dave"
    assert invitation.status == InvitationStatus.ACCEPTED
    assert invitation.accepted_user_id == users[0].id
    assert created_audits == 1


@pytest.mark.asyncio
async def test_finalize_validates_account_fields_without_consuming_token(
    client, admin_headers, email_sender, session_factory
) -> None:
    await _invite(client, admin_headers, "erin@example.com")
    token = _sent_token(email_sender)

    short_password = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "Erin", "password": "short"},
    )
    blank_name = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "   ", "password": "LongEnough1"},
    )

    assert short_password.status_code == 400
    assert short_password.json()["code"] == "validation_failed"
    assert blank_name.json()["code"] == "validation_failed"

    async with session_factory() as session:
        invitation = (
            await session.execute(select(SuperAdminInvitation).where(SuperAdminInvitation.token == token))
        ).scalar_one()
    assert invitation.status == InvitationStatus.PENDING


@pytest.mark.asyncio
async def test_new_account_path_rejects_taken_email(client, admin_headers, email_sender, make_user) -> None:
    await make_user("frank@example.com", role=UserRole.PM)
    await _invite(client, admin_headers, "frank@example.com")
    token = _sent_token(email_sender)

    validated = await client.post("/api/v1/auth/accept-admin-invite", json={"token": token})
    finalized = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "Frank", "password": "LongEnough1"},
    )

    assert validated.status_code == 400
    assert validated.json()["code"] == "email_taken"
    assert finalized.json()["code"] == "email_taken"


@pytest.mark.asyncio
async def test_existing_account_is_promoted_when_emails_match(
    client, admin_headers, email_sender, make_user, login, session_factory
) -> None:
    grace = await make_user("grace@example.com", role=UserRole.PM)
    await _invite(client, admin_headers, "grace@example.com")
    token = _sent_token(email_sender)

    response = await client.post(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "existingUser": True},
        headers=await login(grace),
    )

    assert response.status_code == 200
    assert response.json()["message"] == "You are now a super admin."
    async with session_factory() as session:
        promoted = await session.get(User, grace.id)
        audit = (
            await session.execute(select(AuditLog).where(AuditLog.action == AuditLogAction.USER_ROLE_UPDATED))
        ).scalar_one()
    assert promoted.role == UserRole.SUPER_ADMIN
    assert audit.details == {
        "previousRole": "PM",
        "newRole": "SUPER_ADMIN",
        "invitedVia": "admin_invitation",
    }


@pytest.mark.asyncio
async def test_existing_account_with_other_email_is_rejected(
    client, admin_headers, email_sender, make_user, login, session_factory
) -> None:
    mallory = await make_user("mallory@example.com", role=UserRole.PM)
    await _invite(client, admin_headers, "heidi@example.com")
    token = _sent_token(email_sender)

    response = await client.post(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "existingUser": True},
        headers=await login(mallory),
    )
    anonymous = await client.post(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "existingUser": True},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "email_mismatch"
    assert anonymous.status_code == 401
    async with session_factory() as session:
        unchanged = await session.get(User, mallory.id)
    assert unchanged.role == UserRole.PM


@pytest.mark.asyncio
async def test_revoked_invitation_cannot_be_used_or_revoked_twice(
    client, admin_headers, email_sender
) -> None:
    invitation_id = await _invite(client, admin_headers, "ivan@example.com")
    token = _sent_token(email_sender)

    revoked = await client.delete(f"/api/v1/admin/super-admin-invitations/{invitation_id}", headers=admin_headers)
    again = await client.delete(f"/api/v1/admin/super-admin-invitations/{invitation_id}", headers=admin_headers)
    validate = await client.get("/api/v1/auth/validate-admin-invite", params={"token": token})
    finalize = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "Ivan", "password": "LongEnough1"},
    )

    assert revoked.status_code == 200
    assert revoked.json()["invitation"]["status"] == "REVOKED"
    assert again.json()["code"] == "revoked"
    assert validate.json() == {"valid": False, "error": "revoked"}
    assert finalize.json()["code"] == "revoked"


@pytest.mark.asyncio
async def test_list_super_admin_invitations_filters_by_status(client, admin_headers) -> None:
    first = await _invite(client, admin_headers, "judy@example.com")
    await _invite(client, admin_headers, "ken@example.com")
    await client.delete(f"/api/v1/admin/super-admin-invitations/{first}", headers=admin_headers)

    everything = await client.get("/api/v1/admin/super-admin-invitations", headers=admin_headers)
    pending = await client.get(
        "/api/v1/admin/super-admin-invitations",
        params={"status": "PENDING"},
        headers=admin_headers,
    )

    assert {item["email"] for item in everything.json()["invitations"]} == {"judy@example.com", "ken@example.com"}
    assert [item["email"] for item in pending.json()["invitations"]] == ["ken@example.com"]
