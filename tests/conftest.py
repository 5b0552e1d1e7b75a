from __future__ import annotations

import datetime
import decimal
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from control_panel.api.dependencies.auth import get_email_sender, get_failure_reporter
from control_panel.core.context import RequestContext
from control_panel.db import model_registry  # noqa: F401
from control_panel.db.base import Base
from control_panel.db.session import get_db_session
from control_panel.main import app
from control_panel.models.organization import Organization, OrganizationPlan, OrganizationStatus
from control_panel.models.user import User, UserRole
from control_panel.security.password import hash_password
from control_panel.services.auth import start_session
from control_panel.services.email import EmailDeliveryError, EmailMessage


@dataclass
class CapturingEmailSender:
    sent: list[EmailMessage] = field(default_factory=list)

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)


@dataclass
class FailingEmailSender:
    attempts: int = 0

    async def send(self, message: EmailMessage) -> None:
        self.attempts += 1
        raise EmailDeliveryError("resend responded 503: unavailable")


@dataclass
class RecordingFailureReporter:
    events: list[tuple[str, BaseException, dict[str, object]]] = field(default_factory=list)

    def report(self, event: str, exc: BaseException, **context: object) -> None:
        self.events.append((event, exc, context))


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def email_sender() -> CapturingEmailSender:
    return CapturingEmailSender()


@pytest.fixture
def failing_email_sender() -> FailingEmailSender:
    return FailingEmailSender()


@pytest.fixture
def reporter() -> RecordingFailureReporter:
    return RecordingFailureReporter()


@pytest_asyncio.fixture
async def client(session_factory, email_sender, reporter) -> AsyncIterator[AsyncClient]:
    async def override_get_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_failure_reporter] = lambda: reporter
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
            yield http_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """Persist a user in its own session; the returned instance is detached."""

    async def _make_user(
        email: str,
        *,
        name: str | None = None,
        role: UserRole = UserRole.PM,
        password: str | None = None,
        organization_id: uuid.UUID | None = None,
        is_suspended: bool = False,
        created_at: datetime.datetime | None = None,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email,
            name=name or email.split("@")[0].title(),
            role=role,
            organization_id=organization_id,
            password_hash=hash_password(password) if password else None,
            is_suspended=is_suspended,
            email_verified=True,
        )
        if created_at is not None:
            user.created_at = created_at
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_org(session_factory):
    async def _make_org(
        name: str,
        *,
        slug: str | None = None,
        status: OrganizationStatus = OrganizationStatus.TRIAL,
        plan: OrganizationPlan = OrganizationPlan.FREE,
        monthly_revenue: str = "0",
        last_activity_at: datetime.datetime | None = None,
        created_at: datetime.datetime | None = None,
    ) -> Organization:
        organization = Organization(
            id=uuid.uuid4(),
            name=name,
            slug=slug or name.lower().replace(" ", "-"),
            status=status,
            plan=plan,
            monthly_revenue=decimal.Decimal(monthly_revenue),
            last_activity_at=last_activity_at,
        )
        if created_at is not None:
            organization.created_at = created_at
        async with session_factory() as session:
            session.add(organization)
            await session.commit()
        return organization

    return _make_org


@pytest.fixture
def login(session_factory):
    async def _login(user: User) -> dict[str, str]:
        async with session_factory() as session:
            result = await start_session(session, user, client_ip="127.0.0.1", user_agent="pytest")
        return {"Authorization": f"Bearer {result.token}", "user-agent": "pytest"}

    return _login


@pytest_asyncio.fixture
async def super_admin(make_user) -> User:
    return await make_user("root@platform.test", name="Root Admin", role=UserRole.SUPER_ADMIN)


@pytest_asyncio.fixture
async def admin_headers(super_admin, login) -> dict[str, str]:
    return await login(super_admin)


@pytest.fixture
def ctx(super_admin) -> RequestContext:
    return RequestContext(actor=super_admin, ip_address="10.0.0.1", user_agent="pytest")
