from __future__ import annotations

import datetime
import decimal
import uuid
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.core.context import now_utc
from control_panel.core.settings import settings
from control_panel.models.member import Member
from control_panel.models.organization import Organization, OrganizationStatus
from control_panel.models.user import User
from control_panel.services.audit import AuditLogEntry, list_audit_logs


@dataclass(frozen=True)
class GrowthPoint:
    month: str
    new_organizations: int
    new_users: int


@dataclass(frozen=True)
class PlatformStats:
    total_revenue: decimal.Decimal
    active_organizations: int
    total_organizations: int
    total_users: int
    growth: list[GrowthPoint]


@dataclass(frozen=True)
class UserSearchResult:
    user: User
    organization_id: uuid.UUID | None
    organization_name: str | None


def _month_start(value: datetime.datetime, months_back: int = 0) -> datetime.datetime:
    month_index = value.year * 12 + (value.month - 1) - months_back
    return value.replace(
        year=month_index // 12,
        month=month_index % 12 + 1,
        day=1,
        hour=0,
        minute=0,
        second=0,
        microsecond=0,
    )


async def _count(db: AsyncSession, query) -> int:
    return int((await db.execute(query)).scalar_one() or 0)


async def get_platform_stats(db: AsyncSession, *, now: datetime.datetime | None = None) -> PlatformStats:
    current_time = now or now_utc()

    revenue = (
        await db.execute(
            select(func.coalesce(func.sum(Organization.monthly_revenue), 0)).where(
                Organization.status == OrganizationStatus.ACTIVE
            )
        )
    ).scalar_one()
    activity_cutoff = current_time - datetime.timedelta(days=settings.active_org_window_days)
    active_organizations = await _count(
        db,
        select(func.count(Organization.id)).where(
            Organization.status == OrganizationStatus.ACTIVE,
            Organization.last_activity_at >= activity_cutoff,
        ),
    )
    total_organizations = await _count(db, select(func.count(Organization.id)))
    total_users = await _count(db, select(func.count(User.id)))

    growth: list[GrowthPoint] = []
    for months_back in range(settings.growth_series_months - 1, -1, -1):
        start = _month_start(current_time, months_back)
        end = _month_start(current_time, months_back - 1)
        new_organizations = await _count(
            db,
            select(func.count(Organization.id)).where(
                Organization.created_at >= start,
                Organization.created_at < end,
            ),
        )
        new_users = await _count(
            db,
            select(func.count(User.id)).where(User.created_at >= start, User.created_at < end),
        )
        growth.append(
            GrowthPoint(
                month=start.strftime("%Y-%m"),
                new_organizations=new_organizations,
                new_users=new_users,
            )
        )

    return PlatformStats(
        total_revenue=decimal.Decimal(str(revenue or 0)).quantize(decimal.Decimal("0.01")),
        active_organizations=active_organizations,
        total_organizations=total_organizations,
        total_users=total_users,
        growth=growth,
    )


async def get_recent_activity(db: AsyncSession, *, limit: int | None = None) -> list[AuditLogEntry]:
    return await list_audit_logs(db, limit=limit or settings.recent_activity_limit)


async def search_users(
    db: AsyncSession,
    query: str | None,
    *,
    limit: int | None = None,
) -> list[UserSearchResult]:
    statement = select(User, Organization.name).outerjoin(
        Organization, Organization.id == User.organization_id
    )
    term = (query or "").strip().lower()
    if term:
        # _ and % in emails are literal characters, not wildcards.
        statement = statement.where(
            or_(
                func.lower(User.name).contains(term, autoescape=True),
                func.lower(User.email).contains(term, autoescape=True),
            )
        )
    statement = statement.order_by(User.created_at.desc(), User.email.asc()).limit(
        limit or settings.user_search_limit
    )
    rows = (await db.execute(statement)).all()

    # Users without a primary organization fall back to their oldest membership.
    unattached_ids = [row[0].id for row in rows if row[0].organization_id is None]
    memberships: dict[uuid.UUID, tuple[uuid.UUID, str]] = {}
    if unattached_ids:
        membership_rows = (
            await db.execute(
                select(Member.user_id, Organization.id, Organization.name)
                .join(Organization, Organization.id == Member.organization_id)
                .where(Member.user_id.in_(unattached_ids))
                .order_by(Member.created_at.asc())
            )
        ).all()
        for user_id, organization_id, organization_name in membership_rows:
            memberships.setdefault(user_id, (organization_id, organization_name))

    results: list[UserSearchResult] = []
    for user, organization_name in rows:
        if user.organization_id is not None:
            results.append(
                UserSearchResult(
                    user=user,
                    organization_id=user.organization_id,
                    organization_name=organization_name,
                )
            )
            continue
        fallback = memberships.get(user.id)
        results.append(
            UserSearchResult(
                user=user,
                organization_id=fallback[0] if fallback else None,
                organization_name=fallback[1] if fallback else None,
            )
        )
    return results
