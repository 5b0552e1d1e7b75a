from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import now_utc
from control_panel.models.notification import Notification


logger = logging.getLogger(__name__)

RECENT_NOTIFICATION_LIMIT = 20


def notify_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    title: str,
    message: str,
    link: str | None = None,
) -> Notification:
    """Stage a notification; it is persisted by the caller's commit."""
    notification = Notification(
        id=uuid.uuid4(),
        user_id=user_id,
        title=title,
        message=message,
        link=link,
    )
    db.add(notification)
    return notification


async def list_unread_notifications(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    limit: int = RECENT_NOTIFICATION_LIMIT,
) -> list[Notification]:
    normalized_limit = max(1, min(limit, RECENT_NOTIFICATION_LIMIT))
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(normalized_limit)
    )
    return list(result.scalars().all())


async def mark_notifications_read(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_ids: Sequence[uuid.UUID],
    *,
    now: datetime.datetime | None = None,
) -> int:
    # Ids owned by another user, or already read, are skipped silently.
    if not notification_ids:
        return 0
    result = await db.execute(
        update(Notification)
        .where(
            Notification.id.in_(list(notification_ids)),
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
        )
        .values(read_at=now or now_utc())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Marked %s notifications read for %s", result.rowcount, user_id)
    return result.rowcount
