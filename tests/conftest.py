"""Shared fixtures: an in-memory database, fake Discord and Stripe, and an API client."""

from __future__ import annotations

from typing import AsyncIterator

import hikari
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from guildhall.shared.config import Settings
from guildhall.shared.context import AppContext
from guildhall.shared.database import (
    close_database,
    create_session_factory,
    enable_sqlite_savepoints,
    init_database,
)
from guildhall.web.api.app import create_api
from guildhall.web.api.security import issue_token
from guildhall.web.crud import (
    AuditLogOperations,
    EntitlementOperations,
    GuildConfigOperations,
    TemplateOperations,
)

from mocks import ADMIN_ID, GUILD_ID, STRANGER_ID, USER_ID, FakePayments, FakePlatform


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        dashboard_jwt_secret="test-secret",
        dashboard_base_url="https://dashboard.example.com",
        discord_application_id="123456789012345678",
        admin_user_ids=ADMIN_ID,
    )


@pytest.fixture
def platform() -> FakePlatform:
    platform = FakePlatform()
    platform.add_guild(GUILD_ID)
    platform.add_member(ADMIN_ID, permissions=hikari.Permissions.ADMINISTRATOR)
    platform.add_member(USER_ID)
    return platform


@pytest.fixture
def payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
async def context(settings, platform, payments) -> AsyncIterator[AppContext]:
    # One shared connection so every session sees the same in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    await init_database(engine)
    yield AppContext(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        payments=payments,
        platform=platform,
    )
    await close_database(engine)


@pytest.fixture
async def session(context) -> AsyncIterator[AsyncSession]:
    async with context.session_factory() as session:
        yield session


@pytest.fixture
def audit(session) -> AuditLogOperations:
    return AuditLogOperations(session)


@pytest.fixture
def entitlements(session, payments) -> EntitlementOperations:
    return EntitlementOperations(session, payments)


@pytest.fixture
def templates(session) -> TemplateOperations:
    return TemplateOperations(session)


@pytest.fixture
def configs(session) -> GuildConfigOperations:
    return GuildConfigOperations(session)


@pytest.fixture
async def client(context) -> AsyncIterator[AsyncClient]:
    app = create_api(context)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers(settings) -> dict:
    return {"Authorization": f"Bearer {issue_token(settings, 'dash-admin', ADMIN_ID)}"}


@pytest.fixture
def user_headers(settings) -> dict:
    return {"Authorization": f"Bearer {issue_token(settings, 'dash-user', USER_ID)}"}


@pytest.fixture
def stranger_headers(settings) -> dict:
    return {"Authorization": f"Bearer {issue_token(settings, 'dash-stranger', STRANGER_ID)}"}
