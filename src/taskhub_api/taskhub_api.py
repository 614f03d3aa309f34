"""
The API server for TaskHub.

create_app builds a fully wired FastAPI app from a Settings instance:
the db engine and session factory live on app.state, so nothing is shared between apps.
"""

import asyncio
import logging
import random
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, Request

from taskhub_api.api_config import Settings, settings as default_settings
from taskhub_api.crud.auth import cleanup_expired_sessions
from taskhub_api.db import (
    build_engine,
    build_sessionmaker,
    check_db_migrations_up_to_date,
    create_all_tables,
    create_first_admin_user,
    health_check_db,
)
from taskhub_api.exception_handlers import register_exception_handlers
from taskhub_api.routes.admin import admin_router
from taskhub_api.routes.analytics import analytics_router
from taskhub_api.routes.auth import auth_router
from taskhub_api.routes.core import core_router
from taskhub_api.routes.projects import projects_router
from taskhub_api.routes.quick_links import quick_links_router
from taskhub_api.routes.tags import tags_router
from taskhub_api.routes.tasks import tasks_router
from taskhub_api.routes.time_sessions import time_sessions_router

logger = logging.getLogger(__name__)

LOCAL_ENVIRONMENTS = ("local_dev", "test")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


async def _sweep_expired_sessions(app: FastAPI) -> None:
    """Runs detached from the request that triggered it, a failure is only logged."""
    try:
        async with app.state.sessionmaker() as db:
            await cleanup_expired_sessions(db)
    except Exception:
        logger.exception("Expired session cleanup failed")


def _schedule_session_sweep(app: FastAPI) -> None:
    task = asyncio.create_task(_sweep_expired_sessions(app))
    # Keep a reference until done, the event loop only holds weak references to tasks.
    app.state.background_tasks.add(task)
    task.add_done_callback(app.state.background_tasks.discard)


def create_app(settings: Settings = default_settings) -> FastAPI:
    logging.basicConfig(level=settings.api.log_level, handlers=[logging.StreamHandler(sys.stdout)])

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Lifespan context manager that handles startup and shutdown of API server"""
        # startup
        logger.info("Starting up TaskHub API...")

        settings.validate_api_settings()
        logger.info("All API settings are correctly set.")

        engine = build_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = build_sessionmaker(engine)

        if not await health_check_db(engine):
            raise ConnectionError("Could not connect to the database or db unhealthy. Exiting...")
        logger.info("Database connection healthy.")

        if settings.api.environment in LOCAL_ENVIRONMENTS:
            await create_all_tables(engine)
        else:
            # alembic's env.py starts its own event loop, so it cannot run on this one.
            await asyncio.to_thread(check_db_migrations_up_to_date)

        await create_first_admin_user(app.state.sessionmaker, settings)
        logger.info("TaskHub API startup events complete.")

        yield

        # cleanup
        logger.info("Shutting down, closing any DB connections")
        for task in list(app.state.background_tasks):
            task.cancel()
        await engine.dispose()

    app = FastAPI(lifespan=lifespan, title="TaskHub API", docs_url="/api/docs")
    app.state.settings = settings
    app.state.background_tasks = set()

    @app.middleware("http")
    async def expired_session_sweep(request: Request, call_next):
        """On a small share of requests, clean up expired sessions in the background."""
        if random.random() < settings.sessions.cleanup_probability:
            _schedule_session_sweep(request.app)
        return await call_next(request)

    @app.middleware("http")
    async def no_cache_headers(request: Request, call_next):
        """Responses depend on the session cookie, so browsers and proxies must not cache them."""
        response = await call_next(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(projects_router, prefix="/api/projects", tags=["projects"])
    app.include_router(tasks_router, prefix="/api/tasks", tags=["tasks"])
    app.include_router(tags_router, prefix="/api/tags", tags=["tags"])
    app.include_router(time_sessions_router, prefix="/api/time-sessions", tags=["time-sessions"])
    app.include_router(quick_links_router, prefix="/api/quick-links", tags=["quick-links"])
    app.include_router(analytics_router, prefix="/api/analytics", tags=["analytics"])
    app.include_router(admin_router, prefix="/api/admin", tags=["admin"])
    app.include_router(core_router, prefix="/api", tags=["core"])

    register_exception_handlers(app)
    return app


def main():
    uvicorn.run("taskhub_api.taskhub_api:create_app", factory=True, host="127.0.0.1", port=8000, reload=True)


if __name__ == "__main__":
    main()
