"""
CRUD operations for tasks and tags.

Status rules:
- A task only becomes DONE through complete_task, which records the actual intensity.
- An ARCHIVED task can only go back to TODO.
- Reopening a DONE task clears completed_at.
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskhub_api.db import atomic
from taskhub_api.exceptions import ConflictError, NotFoundError, TaskNotFoundError, ValidationError
from taskhub_api.models.tasks import TagDB, TaskDB, TaskPriority, TaskStatus
from taskhub_api.schemas.tasks import TagCreate, TaskCreate, TaskUpdate
from taskhub_api.security import utc_now

logger = logging.getLogger(__name__)

MIN_INTENSITY = 1
MAX_INTENSITY = 5


@dataclass
class TaskFilters:
    """
    Filters for listing tasks. Fields left as None are not filtered on.

    project_ids limits the result to a set of projects (e.g. the ones visible to the user),
    project_id narrows down to a single one.
    """

    project_id: int | None = None
    project_ids: list[int] | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    board_column: str | None = None
    search: str | None = None
    include_archived: bool = False
    limit: int = 1000


@dataclass
class TaskCompletion:
    task: TaskDB
    time_accuracy: int | None
    intensity_match: bool


def calculate_time_accuracy(estimated_minutes: int, actual_minutes: int | None) -> int | None:
    """
    Percentage difference of actual vs estimated minutes, rounded half up.
    e.g. estimated 60, actual 90 -> 50. Negative when the task took less time than estimated.
    """
    if actual_minutes is None or not estimated_minutes:
        return None
    return math.floor((actual_minutes - estimated_minutes) / estimated_minutes * 100 + 0.5)


async def get_task_by_id(db: AsyncSession, id: int) -> TaskDB | None:
    """Get task by ID, with its tags loaded."""
    stmt = (
        select(TaskDB)
        .where(TaskDB.id == id)
        .options(selectinload(TaskDB.tags))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_task_by_id_or_raise(db: AsyncSession, id: int) -> TaskDB:
    task = await get_task_by_id(db=db, id=id)
    if task is None:
        raise TaskNotFoundError()
    return task


async def _next_position(db: AsyncSession, project_id: int, board_column: str | None) -> int:
    stmt = select(func.max(TaskDB.position)).where(TaskDB.project_id == project_id)
    if board_column is None:
        stmt = stmt.where(TaskDB.board_column.is_(None))
    else:
        stmt = stmt.where(TaskDB.board_column == board_column)
    result = await db.execute(stmt)
    current_max = result.scalar_one_or_none()
    return 0 if current_max is None else current_max + 1


async def create_task(db: AsyncSession, task_data: TaskCreate) -> TaskDB:
    """Create a new task, appended to the end of its board column unless a position is given."""
    if task_data.status == TaskStatus.DONE:
        raise ValidationError("A task can only be marked as done by completing it")

    task = TaskDB(**task_data.model_dump())
    if task.position is None:
        task.position = await _next_position(db, project_id=task_data.project_id, board_column=task_data.board_column)

    db.add(task)
    await db.commit()
    logger.info(f"Task created: id={task.id}, project_id={task.project_id}")
    return await get_task_by_id_or_raise(db=db, id=task.id)


async def list_tasks(db: AsyncSession, filters: TaskFilters) -> list[TaskDB]:
    """Tasks matching filters, ordered by board column and position, then newest first."""
    stmt = select(TaskDB).options(selectinload(TaskDB.tags))

    if filters.project_id is not None:
        stmt = stmt.where(TaskDB.project_id == filters.project_id)
    if filters.project_ids is not None:
        stmt = stmt.where(TaskDB.project_id.in_(filters.project_ids))
    if filters.status is not None:
        stmt = stmt.where(TaskDB.status == filters.status)
    elif not filters.include_archived:
        stmt = stmt.where(TaskDB.status != TaskStatus.ARCHIVED)
    if filters.priority is not None:
        stmt = stmt.where(TaskDB.priority == filters.priority)
    if filters.board_column is not None:
        stmt = stmt.where(TaskDB.board_column == filters.board_column)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(TaskDB.title.ilike(pattern), TaskDB.description.ilike(pattern)))

    stmt = stmt.order_by(TaskDB.board_column, TaskDB.position, TaskDB.created_at.desc(), TaskDB.id.desc())
    result = await db.execute(stmt.limit(filters.limit))
    return list(result.scalars().all())


def _check_status_transition(current: TaskStatus, new: TaskStatus) -> None:
    if new == current:
        return
    if new == TaskStatus.DONE:
        raise ValidationError("A task can only be marked as done by completing it")
    if current == TaskStatus.ARCHIVED and new != TaskStatus.TODO:
        raise ValidationError("An archived task can only be moved back to todo")


async def update_task(db: AsyncSession, task_id: int, task_data: TaskUpdate) -> TaskDB:
    """Partial update, only fields sent by the client are changed."""
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    changes = task_data.model_dump(exclude_unset=True)

    new_status = changes.pop("status", None)
    if new_status is not None:
        _check_status_transition(current=task.status, new=new_status)
        if task.status == TaskStatus.DONE and new_status != TaskStatus.DONE:
            task.completed_at = None
        task.status = new_status

    for field, value in changes.items():
        if value is None and field in ("title", "priority", "estimated_minutes", "estimated_intensity"):
            continue
        setattr(task, field, value)

    await db.commit()
    return await get_task_by_id_or_raise(db=db, id=task_id)


async def delete_task(db: AsyncSession, task_id: int) -> TaskDB:
    """Delete a task, its time sessions go with it (ON DELETE CASCADE)."""
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    await db.delete(task)
    await db.commit()
    logger.info(f"Task deleted: id={task_id}, project_id={task.project_id}")
    return task


async def complete_task(
    db: AsyncSession, task_id: int, actual_intensity: int, actual_minutes: int | None = None
) -> TaskCompletion:
    """
    Mark a task as done, recording how intense it actually was (1-5) and optionally how long it took.

    Returns the task plus how the actuals compare to the estimates.
    """
    if not MIN_INTENSITY <= actual_intensity <= MAX_INTENSITY:
        raise ValidationError(f"Actual intensity must be between {MIN_INTENSITY} and {MAX_INTENSITY}")
    if actual_minutes is not None and actual_minutes < 0:
        raise ValidationError("Actual minutes cannot be negative")

    task = await get_task_by_id_or_raise(db=db, id=task_id)
    if task.status == TaskStatus.DONE:
        raise ConflictError("Task is already completed")

    task.status = TaskStatus.DONE
    task.actual_intensity = actual_intensity
    task.actual_minutes = actual_minutes
    task.completed_at = utc_now()
    await db.commit()

    task = await get_task_by_id_or_raise(db=db, id=task_id)
    logger.info(f"Task completed: id={task_id}, intensity={actual_intensity}, minutes={actual_minutes}")
    return TaskCompletion(
        task=task,
        time_accuracy=calculate_time_accuracy(task.estimated_minutes, actual_minutes),
        intensity_match=actual_intensity == task.estimated_intensity,
    )


async def get_tasks_by_ids(db: AsyncSession, task_ids: list[int]) -> list[TaskDB]:
    """Tasks in the same order as task_ids. Raises if any id does not exist."""
    result = await db.execute(select(TaskDB).where(TaskDB.id.in_(task_ids)).options(selectinload(TaskDB.tags)))
    tasks_by_id = {task.id: task for task in result.scalars().all()}

    missing = [task_id for task_id in task_ids if task_id not in tasks_by_id]
    if missing:
        raise TaskNotFoundError(f"Task(s) not found: {missing}")
    return [tasks_by_id[task_id] for task_id in task_ids]


async def reorder_tasks(db: AsyncSession, task_ids: list[int], board_column: str | None = None) -> list[TaskDB]:
    """
    Give the tasks positions 0..n-1 in the order of task_ids, in one transaction.
    With board_column set, the tasks are also moved into that column.
    """
    if len(set(task_ids)) != len(task_ids):
        raise ValidationError("Task ids must be unique")

    tasks = await get_tasks_by_ids(db, task_ids)
    async with atomic(db):
        for position, task in enumerate(tasks):
            task.position = position
            if board_column is not None:
                task.board_column = board_column

    return [await get_task_by_id_or_raise(db=db, id=task_id) for task_id in task_ids]


async def list_in_progress_tasks(db: AsyncSession, project_ids: list[int] | None = None) -> list[TaskDB]:
    return await list_tasks(db, TaskFilters(project_ids=project_ids, status=TaskStatus.IN_PROGRESS))


async def archive_completed_tasks(
    db: AsyncSession, older_than_days: int = 30, project_ids: list[int] | None = None
) -> int:
    """Archive DONE tasks completed more than older_than_days ago. Returns the number of archived tasks."""
    cutoff = utc_now() - timedelta(days=older_than_days)
    stmt = update(TaskDB).where(TaskDB.status == TaskStatus.DONE, TaskDB.completed_at < cutoff)
    if project_ids is not None:
        stmt = stmt.where(TaskDB.project_id.in_(project_ids))

    result = await db.execute(stmt.values(status=TaskStatus.ARCHIVED).execution_options(synchronize_session=False))
    await db.commit()
    archived = result.rowcount or 0
    logger.info(f"Archived {archived} completed task(s) older than {older_than_days} days")
    return archived


### Tags below ###


async def list_tags(db: AsyncSession) -> list[TagDB]:
    result = await db.execute(select(TagDB).order_by(TagDB.name))
    return list(result.scalars().all())


async def create_tag(db: AsyncSession, tag_data: TagCreate) -> TagDB:
    existing = await db.execute(select(TagDB.id).where(TagDB.name == tag_data.name))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"A tag named '{tag_data.name}' already exists")

    tag = TagDB(**tag_data.model_dump())
    db.add(tag)
    await db.commit()
    await db.refresh(tag)
    return tag


async def set_task_tags(db: AsyncSession, task_id: int, tag_ids: list[int]) -> TaskDB:
    """Replace the tags of a task with tag_ids."""
    task = await get_task_by_id_or_raise(db=db, id=task_id)

    unique_ids = list(dict.fromkeys(tag_ids))
    tags = []
    if unique_ids:
        result = await db.execute(select(TagDB).where(TagDB.id.in_(unique_ids)))
        tags = list(result.scalars().all())
        missing = set(unique_ids) - {tag.id for tag in tags}
        if missing:
            raise NotFoundError(f"Tag(s) not found: {sorted(missing)}")

    task.tags = tags
    await db.commit()
    return await get_task_by_id_or_raise(db=db, id=task_id)
