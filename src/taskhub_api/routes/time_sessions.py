"""
Routes for time tracking: the start/stop timer and manually entered time sessions.

Reading needs VIEW_ONLY access to the session's project, everything else EDITOR.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.tasks import get_task_by_id_or_raise
from taskhub_api.crud.time_sessions import (
    TimeSessionFilters,
    create_time_session,
    delete_time_session,
    get_active_sessions,
    get_time_session_by_id_or_raise,
    list_time_sessions,
    start_timer,
    stop_timer,
    update_time_session,
)
from taskhub_api.db import get_db
from taskhub_api.deps import authorize_project, get_current_identity, get_identity, get_settings
from taskhub_api.models.projects import PermissionLevel
from taskhub_api.routes.tasks import visible_project_ids
from taskhub_api.schemas.time_sessions import (
    TimerStart,
    TimerStop,
    TimeSessionCreate,
    TimeSessionResponse,
    TimeSessionUpdate,
)
from taskhub_api.security import Identity

time_sessions_router = APIRouter()


@time_sessions_router.get("", response_model=list[TimeSessionResponse], status_code=status.HTTP_200_OK)
async def list_time_sessions_endpoint(
    task_id: int | None = None,
    project_id: int | None = None,
    is_active: bool | None = None,
    started_after: datetime | None = None,
    started_before: datetime | None = None,
    limit: int = Query(1000, ge=1, le=5000),
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    filters = TimeSessionFilters(
        task_id=task_id,
        project_id=project_id,
        is_active=is_active,
        started_after=started_after,
        started_before=started_before,
        limit=limit,
    )
    if project_id is not None:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    else:
        filters.project_ids = await visible_project_ids(db, identity, settings)

    sessions = await list_time_sessions(db, filters)
    return [TimeSessionResponse.model_validate(session) for session in sessions]


@time_sessions_router.post("", response_model=TimeSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_time_session_endpoint(
    session_data: TimeSessionCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Manually add a block of time to a task or project."""
    project_id = session_data.project_id
    if session_data.task_id is not None:
        task = await get_task_by_id_or_raise(db=db, id=session_data.task_id)
        project_id = task.project_id
    if project_id is not None:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.EDITOR)

    session = await create_time_session(db, session_data=session_data)
    return TimeSessionResponse.model_validate(session)


@time_sessions_router.get("/active", response_model=list[TimeSessionResponse], status_code=status.HTTP_200_OK)
async def get_active_sessions_endpoint(
    task_id: int | None = None,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    sessions = await get_active_sessions(
        db, task_id=task_id, project_ids=await visible_project_ids(db, identity, settings)
    )
    return [TimeSessionResponse.model_validate(session) for session in sessions]


@time_sessions_router.post("/start", response_model=TimeSessionResponse, status_code=status.HTTP_201_CREATED)
async def start_timer_endpoint(
    start_data: TimerStart,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Start the timer on a task. A timer already running on the task is stopped first."""
    task = await get_task_by_id_or_raise(db=db, id=start_data.task_id)
    await authorize_project(db, identity, settings, task.project_id, PermissionLevel.EDITOR)
    session = await start_timer(db, task_id=start_data.task_id, description=start_data.description)
    return TimeSessionResponse.model_validate(session)


@time_sessions_router.post("/stop", response_model=TimeSessionResponse, status_code=status.HTTP_200_OK)
async def stop_timer_endpoint(
    stop_data: TimerStop,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Stop a running timer, by session_id or by task_id."""
    if stop_data.session_id is not None and stop_data.task_id is None:
        existing = await get_time_session_by_id_or_raise(db=db, id=stop_data.session_id)
        await authorize_project(db, identity, settings, existing.project_id, PermissionLevel.EDITOR)
    elif stop_data.task_id is not None and stop_data.session_id is None:
        task = await get_task_by_id_or_raise(db=db, id=stop_data.task_id)
        await authorize_project(db, identity, settings, task.project_id, PermissionLevel.EDITOR)

    session = await stop_timer(db, session_id=stop_data.session_id, task_id=stop_data.task_id)
    return TimeSessionResponse.model_validate(session)


@time_sessions_router.get("/{session_id}", response_model=TimeSessionResponse, status_code=status.HTTP_200_OK)
async def get_time_session_endpoint(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    session = await get_time_session_by_id_or_raise(db=db, id=session_id)
    await authorize_project(db, identity, settings, session.project_id, PermissionLevel.VIEW_ONLY)
    return TimeSessionResponse.model_validate(session)


@time_sessions_router.put("/{session_id}", response_model=TimeSessionResponse, status_code=status.HTTP_200_OK)
async def update_time_session_endpoint(
    session_id: int,
    session_data: TimeSessionUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    session = await get_time_session_by_id_or_raise(db=db, id=session_id)
    await authorize_project(db, identity, settings, session.project_id, PermissionLevel.EDITOR)
    session = await update_time_session(db, session_id=session_id, session_data=session_data)
    return TimeSessionResponse.model_validate(session)


@time_sessions_router.delete("/{session_id}", status_code=status.HTTP_200_OK)
async def delete_time_session_endpoint(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    session = await get_time_session_by_id_or_raise(db=db, id=session_id)
    await authorize_project(db, identity, settings, session.project_id, PermissionLevel.EDITOR)
    await delete_time_session(db, session_id=session_id)
    return {"message": "Time session deleted successfully", "id": session_id}
