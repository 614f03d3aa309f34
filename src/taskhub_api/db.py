"""
Handles connection between FastAPI and the relational db.

The engine and session factory are created once per app by create_app (see taskhub_api.py)
and stored on app.state, get_db hands out sessions from that factory.
Nothing in here creates an engine at import time.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from alembic import command
from alembic.config import Config
from alembic.util.exc import CommandError
from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from taskhub_api.api_config import Settings
from taskhub_api.crud.users import create_user, get_all_users
from taskhub_api.models import Base
from taskhub_api.models.users import UserRole, UserStatus
from taskhub_api.schemas.users import UserCreate

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine. For SQLite, foreign keys are switched on so ON DELETE CASCADE works."""
    url = settings.database.url.get_secret_value()
    engine = create_async_engine(
        url=url,
        echo=settings.database.echo_db_output,
        pool_pre_ping=True,
    )
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session. To be used in FastAPI endpoints."""
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.sessionmaker
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Transaction boundary for multi-statement mutations.

    Everything executed on the session inside the block is committed together,
    or rolled back together if anything raises.
    A rollback expires every object loaded in the session, so under async they must be
    refreshed (or re-fetched) before their attributes are read again.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def health_check_db(engine: AsyncEngine) -> bool:
    """Check if the database connection is healthy."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create all tables straight from the models. Only used for local development and tests."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def check_db_migrations_up_to_date() -> None:
    """
    Checks if the DB is at HEAD (has applied all migrations) and raise an error if not.
    """
    alembic_config_path = Path(__file__).parent / "alembic.ini"
    try:
        alembic_cfg = Config(file_=alembic_config_path)
        command.check(alembic_cfg)

    except CommandError:
        logger.error(
            """
            It seems like database migrations are pending. You need to run them before continuing.

            From the package directory run:
                alembic -c src/taskhub_api/alembic.ini upgrade head

            WARNING: take a database backup first in deployed environments.
            Exiting...
            """
        )
        raise


async def create_first_admin_user(session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
    """
    Create the first admin user if:
    1. no admin users already exists in the db.
    2. FIRST_ADMIN_USERNAME and FIRST_ADMIN_PASSWORD env vars are set.
    """
    admin_username = settings.api.first_admin_username
    admin_password = settings.api.first_admin_password

    if admin_username == "NOT_SET" or admin_password.get_secret_value() == "NOT_SET":
        logger.info(
            "No first admin env vars set (FIRST_ADMIN_USERNAME, FIRST_ADMIN_PASSWORD), skipping first admin creation"
        )
        return

    async with session_factory() as db:
        admin_users = await get_all_users(db=db, admins_only=True)

        if len(admin_users) > 0:
            logger.info("At least 1 admin user already exists, skipping first admin user auto creation")
            return

        user_info = UserCreate(username=admin_username, password=admin_password)
        admin_user = await create_user(db=db, user_data=user_info, role=UserRole.ADMIN, status=UserStatus.APPROVED)
    logger.info(f"First admin user created with username: {admin_user.username}")
