"""
Unit tests for time sessions and the start/stop timer.

utc_now is patched where it is looked up (taskhub_api.crud.time_sessions) to control durations.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from taskhub_api.crud.time_sessions import (
    TimeSessionFilters,
    create_time_session,
    delete_time_session,
    get_active_sessions,
    get_time_session_by_id,
    list_time_sessions,
    start_timer,
    stop_timer,
    update_time_session,
)
from taskhub_api.exceptions import NotFoundError, TaskNotFoundError, ValidationError
from taskhub_api.models.tasks import TaskStatus
from taskhub_api.schemas.time_sessions import TimeSessionCreate, TimeSessionUpdate
from tests.helpers.api_setup import make_project, make_task

pytestmark = pytest.mark.anyio

T0 = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)
PATCH_TARGET = "taskhub_api.crud.time_sessions.utc_now"


@pytest.fixture
async def task(db):
    project = await make_project(db, "Work")
    return await make_task(db, project.id)


async def test_start_timer_moves_todo_task_to_in_progress(db, task):
    with patch(PATCH_TARGET, return_value=T0):
        session = await start_timer(db, task.id, description="deep work")

    await db.refresh(task)
    assert session.is_active is True
    assert session.task_id == task.id
    assert session.project_id == task.project_id
    assert session.description == "deep work"
    assert session.end_time is None
    assert session.duration is None
    assert task.status == TaskStatus.IN_PROGRESS


async def test_start_timer_keeps_other_statuses(db):
    project = await make_project(db, "Work")
    archived = await make_task(db, project.id, status=TaskStatus.ARCHIVED)

    with patch(PATCH_TARGET, return_value=T0):
        await start_timer(db, archived.id)

    await db.refresh(archived)
    assert archived.status == TaskStatus.ARCHIVED


async def test_second_start_stops_the_first(db, task):
    """
    Two starts 90 seconds apart on the same task:
    the first session is stopped with duration 90 and only the second one is active.
    """
    with patch(PATCH_TARGET, side_effect=[T0, T0 + timedelta(seconds=90)]):
        first = await start_timer(db, task.id)
        second = await start_timer(db, task.id)

    await db.refresh(first)
    assert first.is_active is False
    assert first.duration == 90
    assert first.end_time is not None

    active = await get_active_sessions(db, task_id=task.id)
    assert [session.id for session in active] == [second.id]


async def test_start_timer_on_missing_task(db):
    with pytest.raises(TaskNotFoundError):
        await start_timer(db, 9999)


async def test_stop_timer_by_task_id(db, task):
    with patch(PATCH_TARGET, side_effect=[T0, T0 + timedelta(minutes=25)]):
        started = await start_timer(db, task.id)
        stopped = await stop_timer(db, task_id=task.id)

    assert stopped.id == started.id
    assert stopped.is_active is False
    assert stopped.duration == 25 * 60
    assert await get_active_sessions(db, task_id=task.id) == []


async def test_stop_timer_by_session_id(db, task):
    with patch(PATCH_TARGET, side_effect=[T0, T0 + timedelta(seconds=5)]):
        started = await start_timer(db, task.id)
        stopped = await stop_timer(db, session_id=started.id)

    assert stopped.duration == 5


@pytest.mark.parametrize("kwargs", [{}, {"session_id": 1, "task_id": 1}])
async def test_stop_timer_needs_exactly_one_id(db, kwargs):
    with pytest.raises(ValidationError):
        await stop_timer(db, **kwargs)


async def test_stop_timer_without_active_session(db, task):
    with pytest.raises(NotFoundError):
        await stop_timer(db, task_id=task.id)

    with patch(PATCH_TARGET, side_effect=[T0, T0 + timedelta(seconds=1)]):
        started = await start_timer(db, task.id)
        await stop_timer(db, session_id=started.id)

    # Stopping an already stopped session is not found either.
    with pytest.raises(NotFoundError):
        await stop_timer(db, session_id=started.id)


async def test_create_time_session_derives_duration_and_project(db, task):
    session = await create_time_session(
        db,
        TimeSessionCreate(task_id=task.id, start_time=T0, end_time=T0 + timedelta(minutes=30)),
    )

    assert session.project_id == task.project_id
    assert session.duration == 30 * 60
    assert session.is_active is False


async def test_create_time_session_validation(db, task):
    with pytest.raises(ValidationError):
        await create_time_session(db, TimeSessionCreate(start_time=T0))

    with pytest.raises(ValidationError):
        await create_time_session(
            db, TimeSessionCreate(task_id=task.id, start_time=T0, end_time=T0 - timedelta(seconds=1))
        )


async def test_update_time_session_recomputes_duration(db, task):
    session = await create_time_session(
        db, TimeSessionCreate(task_id=task.id, start_time=T0, end_time=T0 + timedelta(minutes=10))
    )

    updated = await update_time_session(
        db, session.id, TimeSessionUpdate(end_time=T0 + timedelta(minutes=20), description="longer")
    )

    assert updated.duration == 20 * 60
    assert updated.description == "longer"

    with pytest.raises(ValidationError):
        await update_time_session(db, session.id, TimeSessionUpdate(end_time=T0 - timedelta(minutes=1)))


async def test_rejected_update_leaves_session_unchanged(db, task):
    session = await create_time_session(
        db, TimeSessionCreate(task_id=task.id, start_time=T0, end_time=T0 + timedelta(minutes=10))
    )

    with pytest.raises(ValidationError):
        await update_time_session(
            db, session.id, TimeSessionUpdate(start_time=T0 + timedelta(hours=1), description="invalid")
        )

    assert session not in db.dirty
    await db.commit()
    await db.refresh(session)
    assert session.duration == 10 * 60
    assert session.description is None


async def test_list_and_delete_time_sessions(db, task):
    project = await make_project(db, "Other")
    kept = await create_time_session(
        db, TimeSessionCreate(task_id=task.id, start_time=T0, end_time=T0 + timedelta(minutes=1))
    )
    project_level = await create_time_session(
        db,
        TimeSessionCreate(
            project_id=project.id, start_time=T0 + timedelta(hours=1), end_time=T0 + timedelta(hours=2)
        ),
    )

    listed = await list_time_sessions(db, TimeSessionFilters())
    assert [session.id for session in listed] == [project_level.id, kept.id]

    only_task = await list_time_sessions(db, TimeSessionFilters(task_id=task.id))
    assert [session.id for session in only_task] == [kept.id]

    await delete_time_session(db, kept.id)
    assert await get_time_session_by_id(db, kept.id) is None
