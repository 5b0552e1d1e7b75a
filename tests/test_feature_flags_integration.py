from __future__ import annotations

import pytest
from sqlalchemy import select

from control_panel.models.audit_log import AuditLog, AuditLogAction


async def _create_flag(client, headers, key: str = "new-dashboard", **extra) -> dict:
    response = await client.post(
        "/api/v1/admin/feature-flags",
        json={"key": key, "name": "New dashboard", **extra},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["flag"]


@pytest.mark.asyncio
async def test_create_flag_defaults_to_off_and_rejects_duplicate_key(client, admin_headers) -> None:
    flag = await _create_flag(client, admin_headers, description="Redesigned overview")

    duplicate = await client.post(
        "/api/v1/admin/feature-flags",
        json={"key": "new-dashboard", "name": "Again"},
        headers=admin_headers,
    )
    listing = await client.get("/api/v1/admin/feature-flags", headers=admin_headers)

    assert flag["isEnabled"] is False
    assert flag["enabledForOrgs"] == []
    assert flag["disabledForOrgs"] == []
    assert flag["description"] == "Redesigned overview"
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "conflict"
    assert [item["key"] for item in listing.json()["flags"]] == ["new-dashboard"]


@pytest.mark.asyncio
async def test_public_check_follows_global_switch_and_org_lists(client, admin_headers, make_org) -> None:
    acme = await make_org("Acme", slug="acme")
    beta = await make_org("Beta", slug="beta")
    flag = await _create_flag(client, admin_headers)

    off = await client.get("/api/v1/feature-flags/new-dashboard")
    toggled = await client.patch(
        f"/api/v1/admin/feature-flags/{flag['id']}",
        json={"isEnabled": True},
        headers=admin_headers,
    )
    on = await client.get("/api/v1/feature-flags/new-dashboard", params={"organizationId": str(beta.id)})

    denied = await client.post(
        f"/api/v1/admin/feature-flags/{flag['id']}/organizations",
        json={"orgIds": [str(beta.id)], "action": "disable"},
        headers=admin_headers,
    )
    beta_check = await client.get("/api/v1/feature-flags/new-dashboard", params={"organizationId": str(beta.id)})
    acme_check = await client.get("/api/v1/feature-flags/new-dashboard", params={"organizationId": str(acme.id)})

    assert off.json() == {"key": "new-dashboard", "enabled": False}
    assert toggled.json()["flag"]["isEnabled"] is True
    assert on.json()["enabled"] is True
    assert denied.json()["flag"]["disabledForOrgs"] == [str(beta.id)]
    assert beta_check.json()["enabled"] is False
    assert acme_check.json()["enabled"] is True


@pytest.mark.asyncio
async def test_allow_list_restricts_and_merges_without_duplicates(client, admin_headers, make_org) -> None:
    acme = await make_org("Acme", slug="acme")
    beta = await make_org("Beta", slug="beta")
    flag = await _create_flag(client, admin_headers, isEnabled=True)
    url = f"/api/v1/admin/feature-flags/{flag['id']}/organizations"

    await client.post(url, json={"orgIds": [str(acme.id)], "action": "enable"}, headers=admin_headers)
    merged = await client.post(
        url,
        json={"orgIds": [str(acme.id), str(beta.id)], "action": "enable"},
        headers=admin_headers,
    )
    outsider = await client.get("/api/v1/feature-flags/new-dashboard", params={"organizationId": "someone-else"})

    assert merged.status_code == 200
    assert merged.json()["flag"]["enabledForOrgs"] == [str(acme.id), str(beta.id)]
    assert outsider.json()["enabled"] is False


@pytest.mark.asyncio
async def test_unknown_flag_is_off_and_unknown_id_is_not_found(client, admin_headers) -> None:
    check = await client.get("/api/v1/feature-flags/does-not-exist")
    toggle = await client.patch(
        "/api/v1/admin/feature-flags/00000000-0000-0000-0000-000000000000",
        json={"isEnabled": True},
        headers=admin_headers,
    )

    assert check.status_code == 200
    assert check.json() == {"key": "does-not-exist", "enabled": False}
    assert toggle.status_code == 404
    assert toggle.json()["code"] == "not_found"


@pytest.mark.asyncio
async def test_every_flag_change_is_audited(client, admin_headers, session_factory) -> None:
    flag = await _create_flag(client, admin_headers)
    await client.patch(f"/api/v1/admin/feature-flags/{flag['id']}", json={"isEnabled": True}, headers=admin_headers)
    await client.post(
        f"/api/v1/admin/feature-flags/{flag['id']}/organizations",
        json={"orgIds": ["org-1"], "action": "enable"},
        headers=admin_headers,
    )

    async with session_factory() as session:
        logs = (
            await session.execute(
                select(AuditLog)
                .where(AuditLog.action == AuditLogAction.FEATURE_FLAG_CHANGED)
                .order_by(AuditLog.created_at.asc())
            )
        ).scalars().all()

    assert [log.details["change"] for log in logs] == ["created", "toggled", "enable"]
    assert all(log.target_name == "new-dashboard" for log in logs)
    assert logs[2].details["orgIds"] == ["org-1"]


@pytest.mark.asyncio
async def test_flag_administration_requires_super_admin(client, make_user, login) -> None:
    pm = await make_user("pm@acme.test")

    response = await client.get("/api/v1/admin/feature-flags", headers=await login(pm))

    assert response.status_code == 403
