from __future__ import annotations

import pytest
from sqlalchemy import func, select

from control_panel.core.problems import describe_validation_errors
from control_panel.models.organization import Organization


def test_describe_validation_errors_names_the_field() -> None:
    errors = [{"type": "missing", "loc": ("body", "token"), "msg": "Field required"}]

    assert describe_validation_errors(errors) == "token: Field required"
    assert describe_validation_errors([]) == "Invalid input."


@pytest.mark.asyncio
async def test_accept_invitation_without_token_is_a_validation_failure(client) -> None:
    response = await client.post("/api/v1/auth/accept-invitation", json={})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "token: Field required",
        "code": "validation_failed",
    }


@pytest.mark.asyncio
async def test_create_organization_without_name_is_rejected(client, admin_headers, session_factory) -> None:
    response = await client.post("/api/v1/admin/organizations", json={"slug": "acme"}, headers=admin_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "validation_failed"
    assert body["error"].startswith("name:")
    async with session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Organization))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_malformed_path_id_uses_the_same_envelope(client, admin_headers) -> None:
    response = await client.post("/api/v1/admin/organizations/not-a-uuid/activate", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"
    assert response.json()["error"].startswith("organization_id:")
