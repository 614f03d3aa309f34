"""
Shared pytest fixtures for the TaskHub API unit tests.

Every test gets its own SQLite database file (through aiosqlite) in pytest's tmp_path,
so tests never share state. Async tests and fixtures run with the AnyIO pytest plugin.

Two ways in:
- db: an AsyncSession on a freshly created schema, for testing crud functions directly.
- client: an httpx AsyncClient talking to a full app built by create_app (lifespan included).
"""

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import (
    APISettings,
    DBSettings,
    PermissionSettings,
    ProjectSettings,
    SessionSettings,
    Settings,
)
from taskhub_api.db import build_engine, build_sessionmaker, create_all_tables
from taskhub_api.taskhub_api import create_app
from tests.helpers.api_setup import FIRST_ADMIN_PASSWORD, FIRST_ADMIN_USERNAME, SESSION_COOKIE


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for a throwaway db, with the random expired session sweep switched off."""
    return Settings(
        api=APISettings(
            environment="test",
            log_level="INFO",
            first_admin_username=FIRST_ADMIN_USERNAME,
            first_admin_password=SecretStr(FIRST_ADMIN_PASSWORD),
        ),
        database=DBSettings(url=SecretStr(f"sqlite+aiosqlite:///{tmp_path / 'taskhub_test.db'}"), echo_db_output=False),
        sessions=SessionSettings(
            duration_seconds=3600, cookie_name=SESSION_COOKIE, cookie_secure=False, cleanup_probability=0.0
        ),
        projects=ProjectSettings(max_depth=10, archive_cascades_tasks=False),
        permissions=PermissionSettings(legacy_project_access=True),
    )


@pytest.fixture
async def db(anyio_backend, test_settings) -> AsyncGenerator[AsyncSession, None]:
    engine = build_engine(test_settings)
    await create_all_tables(engine)
    session_factory = build_sessionmaker(engine)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def app(anyio_backend, test_settings):
    """The app with its lifespan running, so tables and the first admin exist."""
    app = create_app(test_settings)
    async with app.router.lifespan_context(app):
        yield app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
async def app_db(app) -> AsyncGenerator[AsyncSession, None]:
    """A session on the same db as the app, for setting up data behind the API's back."""
    async with app.state.sessionmaker() as session:
        yield session
