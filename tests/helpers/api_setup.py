"""
Helper functions for setting up TaskHub data in the test databases.

Users, projects and tasks are inserted straight through the db session, which is quicker than
going through the API and lets tests build states (e.g. a pending user) the API would not allow.
"""

from httpx import AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.users import create_user
from taskhub_api.models.projects import ProjectDB
from taskhub_api.models.tasks import TaskDB, TaskStatus
from taskhub_api.models.users import UserDB, UserRole, UserStatus
from taskhub_api.schemas.projects import ProjectCreate
from taskhub_api.schemas.users import UserCreate
from taskhub_api.security import Identity

FIRST_ADMIN_USERNAME = "admin"
FIRST_ADMIN_PASSWORD = "badpassword"
DEFAULT_PASSWORD = "password123"
SESSION_COOKIE = "session-id"


async def make_user(
    db: AsyncSession,
    username: str,
    role: UserRole = UserRole.MEMBER,
    status: UserStatus = UserStatus.APPROVED,
    password: str = DEFAULT_PASSWORD,
) -> UserDB:
    return await create_user(
        db,
        user_data=UserCreate(username=username, email=f"{username}@example.com", password=SecretStr(password)),
        role=role,
        status=status,
    )


async def make_identity(db: AsyncSession, username: str, role: UserRole = UserRole.MEMBER) -> Identity:
    return Identity.from_user(await make_user(db, username=username, role=role))


async def make_project(
    db: AsyncSession, name: str, parent_id: int | None = None, is_public: bool = True, **kwargs
) -> ProjectDB:
    """Insert a project directly, computing path and depth from the parent. No creator grant."""
    parent = await db.get(ProjectDB, parent_id) if parent_id is not None else None
    project = ProjectDB(
        name=name,
        parent_id=parent_id,
        is_public=is_public,
        path=name if parent is None else f"{parent.path}/{name}",
        depth=0 if parent is None else parent.depth + 1,
        **kwargs,
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)
    return project


async def make_task(
    db: AsyncSession,
    project_id: int,
    title: str = "A task",
    status: TaskStatus = TaskStatus.TODO,
    estimated_minutes: int = 60,
    estimated_intensity: int = 3,
    **kwargs,
) -> TaskDB:
    task = TaskDB(
        project_id=project_id,
        title=title,
        status=status,
        estimated_minutes=estimated_minutes,
        estimated_intensity=estimated_intensity,
        **kwargs,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def login(client: AsyncClient, username: str, password: str = DEFAULT_PASSWORD) -> AsyncClient:
    """Log in and keep the session cookie on the client for the following requests."""
    client.cookies.clear()
    response = await client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    session_id = response.cookies[SESSION_COOKIE]
    client.cookies.clear()
    client.cookies.set(SESSION_COOKIE, session_id)
    return client


def project_create(name: str, parent_id: int | None = None, is_public: bool = True) -> ProjectCreate:
    return ProjectCreate(name=name, parent_id=parent_id, is_public=is_public)
