from __future__ import annotations

import datetime
import uuid

import pytest
from sqlalchemy import select

from control_panel.models.notification import Notification
from control_panel.models.user import UserRole
from control_panel.services.notifications import (
    RECENT_NOTIFICATION_LIMIT,
    list_unread_notifications,
    mark_notifications_read,
    notify_user,
)


BASE_TIME = datetime.datetime(2026, 10, 1, 9, 0, tzinfo=datetime.UTC)


async def _seed(db, user_id: uuid.UUID, count: int, *, read: bool = False) -> list[Notification]:
    notifications = []
    for index in range(count):
        notification = notify_user(db, user_id, title=f"Note {index}", message=f"Message {index}")
        notification.created_at = BASE_TIME + datetime.timedelta(minutes=index)
        if read:
            notification.read_at = BASE_TIME
        notifications.append(notification)
    await db.commit()
    return notifications


@pytest.mark.asyncio
async def test_unread_list_is_newest_first_and_capped(db, super_admin) -> None:
    await _seed(db, super_admin.id, RECENT_NOTIFICATION_LIMIT + 2)
    await _seed(db, super_admin.id, 1, read=True)

    unread = await list_unread_notifications(db, super_admin.id)

    assert len(unread) == RECENT_NOTIFICATION_LIMIT
    assert unread[0].title == f"Note {RECENT_NOTIFICATION_LIMIT + 1}"
    assert unread[-1].title == "Note 2"
    assert all(item.read_at is None for item in unread)


@pytest.mark.asyncio
async def test_marking_nothing_issues_no_update(db, super_admin) -> None:
    await _seed(db, super_admin.id, 1)

    assert await mark_notifications_read(db, super_admin.id, []) == 0
    assert len(await list_unread_notifications(db, super_admin.id)) == 1


@pytest.mark.asyncio
async def test_list_route_returns_only_the_callers_unread(
    client, admin_headers, super_admin, make_user, db
) -> None:
    other = await make_user("ops@platform.test", role=UserRole.SUPER_ADMIN)
    await _seed(db, super_admin.id, 2)
    await _seed(db, other.id, 3)

    response = await client.get("/api/v1/admin/notifications", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [item["title"] for item in body["notifications"]] == ["Note 1", "Note 0"]
    assert set(body["notifications"][0]) == {"id", "title", "message", "link", "readAt", "createdAt"}


@pytest.mark.asyncio
async def test_mark_read_only_touches_the_callers_notifications(
    client, admin_headers, super_admin, make_user, db, session_factory
) -> None:
    other = await make_user("ops@platform.test", role=UserRole.SUPER_ADMIN)
    mine = await _seed(db, super_admin.id, 2)
    theirs = await _seed(db, other.id, 1)

    response = await client.post(
        "/api/v1/admin/notifications/read",
        json={"notificationIds": [str(mine[0].id), str(theirs[0].id)]},
        headers=admin_headers,
    )
    replay = await client.post(
        "/api/v1/admin/notifications/read",
        json={"notificationIds": [str(mine[0].id)]},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "updated": 1}
    assert replay.json() == {"success": True, "updated": 0}
    async with session_factory() as session:
        rows = {
            row.id: row.read_at
            for row in (await session.execute(select(Notification))).scalars().all()
        }
    assert rows[mine[0].id] is not None
    assert rows[mine[1].id] is None
    assert rows[theirs[0].id] is None


@pytest.mark.asyncio
async def test_mark_read_rejects_malformed_ids(client, admin_headers) -> None:
    response = await client.post(
        "/api/v1/admin/notifications/read",
        json={"notificationIds": ["not-a-uuid"]},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"


@pytest.mark.asyncio
async def test_notifications_require_a_super_admin(client, make_user, login) -> None:
    pm = await make_user("pm@example.com", role=UserRole.PM)

    response = await client.get("/api/v1/admin/notifications", headers=await login(pm))

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_accepted_super_admin_invitation_notifies_the_inviter(
    client, admin_headers, email_sender
) -> None:
    created = await client.post(
        "/api/v1/admin/super-admin-invitations",
        json={"email": "ivy@example.com"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    token = (email_sender.sent[-1].text or "").split("/invite/admin/", 1)[1].split()[0]

    finalized = await client.put(
        "/api/v1/auth/accept-admin-invite",
        json={"token": token, "name": "Ivy", "password": "LongEnough1"},
    )
    assert finalized.status_code == 200
    # The acceptance set Ivy's session cookie, which outranks the bearer header.
    client.cookies.clear()

    response = await client.get("/api/v1/admin/notifications", headers=admin_headers)

    notifications = response.json()["notifications"]
    assert len(notifications) == 1
    assert notifications[0]["title"] == "Super Admin invitation accepted"
    assert notifications[0]["message"] == "ivy@example.com accepted your Super Admin invitation."
    assert notifications[0]["readAt"] is None
