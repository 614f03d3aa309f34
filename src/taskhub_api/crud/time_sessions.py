"""
CRUD operations for time sessions, including the start/stop timer.

At most one session per task is active at a time. Starting a timer stops the
task's other active sessions in the same transaction as inserting the new one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.projects import get_project_by_id
from taskhub_api.crud.tasks import get_task_by_id_or_raise
from taskhub_api.db import atomic
from taskhub_api.exceptions import NotFoundError, ProjectNotFoundError, TimeSessionNotFoundError, ValidationError
from taskhub_api.models.tasks import TaskStatus
from taskhub_api.models.time_sessions import TimeSessionDB
from taskhub_api.schemas.time_sessions import TimeSessionCreate, TimeSessionUpdate
from taskhub_api.security import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class TimeSessionFilters:
    """Filters for listing time sessions. Fields left as None are not filtered on."""

    task_id: int | None = None
    project_id: int | None = None
    project_ids: list[int] | None = None
    is_active: bool | None = None
    started_after: datetime | None = None
    started_before: datetime | None = None
    limit: int = 1000


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end."""
    return int((as_utc(end) - as_utc(start)).total_seconds())


def _close_session(session: TimeSessionDB, end_time: datetime) -> None:
    session.end_time = end_time
    session.duration = max(seconds_between(session.start_time, end_time), 0)
    session.is_active = False


async def get_time_session_by_id(db: AsyncSession, id: int) -> TimeSessionDB | None:
    """Get time session by ID."""
    return await db.get(entity=TimeSessionDB, ident=id)


async def get_time_session_by_id_or_raise(db: AsyncSession, id: int) -> TimeSessionDB:
    session = await get_time_session_by_id(db=db, id=id)
    if session is None:
        raise TimeSessionNotFoundError()
    return session


async def get_active_sessions(
    db: AsyncSession, task_id: int | None = None, project_ids: list[int] | None = None
) -> list[TimeSessionDB]:
    """Running sessions, most recently started first."""
    stmt = select(TimeSessionDB).where(TimeSessionDB.is_active.is_(True))
    if task_id is not None:
        stmt = stmt.where(TimeSessionDB.task_id == task_id)
    if project_ids is not None:
        stmt = stmt.where(TimeSessionDB.project_id.in_(project_ids))
    result = await db.execute(stmt.order_by(TimeSessionDB.start_time.desc(), TimeSessionDB.id.desc()))
    return list(result.scalars().all())


async def _stop_active_sessions_for_task(db: AsyncSession, task_id: int, end_time: datetime) -> int:
    active_sessions = await get_active_sessions(db, task_id=task_id)
    for session in active_sessions:
        _close_session(session, end_time=end_time)
    return len(active_sessions)


async def start_timer(db: AsyncSession, task_id: int, description: str | None = None) -> TimeSessionDB:
    """
    Start tracking time on a task.

    Any session already running for the task is stopped first, and a TODO task moves to IN_PROGRESS.
    All of it happens in one transaction.
    """
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    now = utc_now()

    async with atomic(db):
        stopped = await _stop_active_sessions_for_task(db, task_id=task_id, end_time=now)
        session = TimeSessionDB(
            task_id=task.id,
            project_id=task.project_id,
            description=description,
            start_time=now,
            is_active=True,
        )
        db.add(session)
        if task.status == TaskStatus.TODO:
            task.status = TaskStatus.IN_PROGRESS

    await db.refresh(session)
    logger.info(f"Timer started: session_id={session.id}, task_id={task_id}, stopped {stopped} running session(s)")
    return session


async def stop_timer(db: AsyncSession, session_id: int | None = None, task_id: int | None = None) -> TimeSessionDB:
    """
    Stop a running session, found either by its id or by the task it tracks (exactly one must be given).
    Duration is the whole seconds since the session started.
    """
    if (session_id is None) == (task_id is None):
        raise ValidationError("Provide exactly one of session_id or task_id")

    if session_id is not None:
        session = await get_time_session_by_id(db=db, id=session_id)
        if session is None or not session.is_active:
            raise NotFoundError("No active time session found")
    else:
        active_sessions = await get_active_sessions(db, task_id=task_id)
        if not active_sessions:
            raise NotFoundError("No active time session found for this task")
        session = active_sessions[0]

    _close_session(session, end_time=utc_now())
    await db.commit()
    await db.refresh(session)
    logger.info(f"Timer stopped: session_id={session.id}, duration={session.duration}s")
    return session


async def create_time_session(db: AsyncSession, session_data: TimeSessionCreate) -> TimeSessionDB:
    """
    Manually add a block of time. The project comes from the task when a task is given.
    Duration is derived from start and end time when not given.
    """
    if session_data.task_id is None and session_data.project_id is None:
        raise ValidationError("Either task_id or project_id is required")
    if session_data.duration is not None and session_data.duration < 0:
        raise ValidationError("Duration cannot be negative")
    if session_data.end_time is not None and as_utc(session_data.end_time) < as_utc(session_data.start_time):
        raise ValidationError("End time cannot be before start time")
    if session_data.is_active and session_data.end_time is not None:
        raise ValidationError("An active session cannot have an end time")

    project_id = session_data.project_id
    if session_data.task_id is not None:
        task = await get_task_by_id_or_raise(db=db, id=session_data.task_id)
        project_id = task.project_id
    elif await get_project_by_id(db=db, id=project_id) is None:
        raise ProjectNotFoundError()

    duration = session_data.duration
    if duration is None and session_data.end_time is not None:
        duration = seconds_between(session_data.start_time, session_data.end_time)

    async with atomic(db):
        if session_data.is_active and session_data.task_id is not None:
            await _stop_active_sessions_for_task(db, task_id=session_data.task_id, end_time=utc_now())
        session = TimeSessionDB(
            task_id=session_data.task_id,
            project_id=project_id,
            description=session_data.description,
            start_time=session_data.start_time,
            end_time=session_data.end_time,
            duration=None if session_data.is_active else duration,
            is_active=session_data.is_active,
        )
        db.add(session)

    await db.refresh(session)
    return session


async def list_time_sessions(db: AsyncSession, filters: TimeSessionFilters) -> list[TimeSessionDB]:
    """Sessions matching filters, most recently started first."""
    stmt = select(TimeSessionDB)
    if filters.task_id is not None:
        stmt = stmt.where(TimeSessionDB.task_id == filters.task_id)
    if filters.project_id is not None:
        stmt = stmt.where(TimeSessionDB.project_id == filters.project_id)
    if filters.project_ids is not None:
        stmt = stmt.where(TimeSessionDB.project_id.in_(filters.project_ids))
    if filters.is_active is not None:
        stmt = stmt.where(TimeSessionDB.is_active.is_(filters.is_active))
    if filters.started_after is not None:
        stmt = stmt.where(TimeSessionDB.start_time >= filters.started_after)
    if filters.started_before is not None:
        stmt = stmt.where(TimeSessionDB.start_time < filters.started_before)

    stmt = stmt.order_by(TimeSessionDB.start_time.desc(), TimeSessionDB.id.desc()).limit(filters.limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_time_session(db: AsyncSession, session_id: int, session_data: TimeSessionUpdate) -> TimeSessionDB:
    """
    Edit a session. Changing start or end time of a stopped session recomputes its duration.
    The session is only modified once all checks have passed.
    """
    session = await get_time_session_by_id_or_raise(db=db, id=session_id)
    changes = {
        field: value
        for field, value in session_data.model_dump(exclude_unset=True).items()
        if value is not None or field not in ("start_time", "duration")
    }

    if changes.get("duration") is not None and changes["duration"] < 0:
        raise ValidationError("Duration cannot be negative")
    if session.is_active and changes.get("end_time") is not None:
        raise ValidationError("Stop the timer instead of setting an end time on an active session")

    start_time = changes.get("start_time", session.start_time)
    end_time = changes.get("end_time", session.end_time)
    if end_time is not None:
        if as_utc(end_time) < as_utc(start_time):
            raise ValidationError("End time cannot be before start time")
        if "duration" not in changes and ("start_time" in changes or "end_time" in changes):
            changes["duration"] = seconds_between(start_time, end_time)

    for field, value in changes.items():
        setattr(session, field, value)

    await db.commit()
    await db.refresh(session)
    return session


async def delete_time_session(db: AsyncSession, session_id: int) -> TimeSessionDB:
    session = await get_time_session_by_id_or_raise(db=db, id=session_id)
    await db.delete(session)
    await db.commit()
    return session
