"""
Routes for tasks. The same tasks back the todo list and the kanban board.

Reading needs VIEW_ONLY access to the task's project, everything else EDITOR.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.permissions import find_visible_projects
from taskhub_api.crud.tasks import (
    TaskFilters,
    complete_task,
    create_task,
    delete_task,
    get_task_by_id_or_raise,
    get_tasks_by_ids,
    list_in_progress_tasks,
    list_tasks,
    reorder_tasks,
    set_task_tags,
    update_task,
)
from taskhub_api.db import get_db
from taskhub_api.deps import authorize_project, get_current_identity, get_identity, get_settings
from taskhub_api.models.projects import PermissionLevel
from taskhub_api.models.tasks import TaskPriority, TaskStatus
from taskhub_api.schemas.tasks import (
    TaskComplete,
    TaskCompletionResponse,
    TaskCreate,
    TaskReorder,
    TaskResponse,
    TaskTagsUpdate,
    TaskUpdate,
)
from taskhub_api.security import Identity

tasks_router = APIRouter()


async def visible_project_ids(db: AsyncSession, identity: Identity | None, settings: Settings) -> list[int]:
    """Ids of every project the caller can see, used to scope listings that are not limited to one project."""
    visible = await find_visible_projects(
        db, identity=identity, use_legacy_access=settings.permissions.legacy_project_access
    )
    return [entry.project.id for entry in visible]


@tasks_router.get("", response_model=list[TaskResponse], status_code=status.HTTP_200_OK)
async def list_tasks_endpoint(
    project_id: int | None = None,
    task_status: TaskStatus | None = Query(None, alias="status"),
    priority: TaskPriority | None = None,
    board_column: str | None = None,
    search: str | None = Query(None, max_length=255),
    include_archived: bool = False,
    limit: int = Query(1000, ge=1, le=5000),
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    filters = TaskFilters(
        project_id=project_id,
        status=task_status,
        priority=priority,
        board_column=board_column,
        search=search,
        include_archived=include_archived,
        limit=limit,
    )
    if project_id is not None:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    else:
        filters.project_ids = await visible_project_ids(db, identity, settings)

    tasks = await list_tasks(db, filters)
    return [TaskResponse.model_validate(task) for task in tasks]


@tasks_router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task_endpoint(
    task_data: TaskCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, task_data.project_id, PermissionLevel.EDITOR)
    task = await create_task(db, task_data=task_data)
    return TaskResponse.model_validate(task)


@tasks_router.get("/in-progress", response_model=list[TaskResponse], status_code=status.HTTP_200_OK)
async def list_in_progress_tasks_endpoint(
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    tasks = await list_in_progress_tasks(db, project_ids=await visible_project_ids(db, identity, settings))
    return [TaskResponse.model_validate(task) for task in tasks]


@tasks_router.post("/reorder", response_model=list[TaskResponse], status_code=status.HTTP_200_OK)
async def reorder_tasks_endpoint(
    reorder_data: TaskReorder,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Set the order of tasks (positions 0..n-1), optionally moving them all into board_column."""
    tasks = await get_tasks_by_ids(db, reorder_data.task_ids)
    for project_id in {task.project_id for task in tasks}:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.EDITOR)

    tasks = await reorder_tasks(db, task_ids=reorder_data.task_ids, board_column=reorder_data.board_column)
    return [TaskResponse.model_validate(task) for task in tasks]


@tasks_router.get("/{task_id}", response_model=TaskResponse, status_code=status.HTTP_200_OK)
async def get_task_endpoint(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    await authorize_project(db, identity, settings, task.project_id, PermissionLevel.VIEW_ONLY)
    return TaskResponse.model_validate(task)


@tasks_router.put("/{task_id}", response_model=TaskResponse, status_code=status.HTTP_200_OK)
async def update_task_endpoint(
    task_id: int,
    task_data: TaskUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    await authorize_project(db, identity, settings, task.project_id, PermissionLevel.EDITOR)
    task = await update_task(db, task_id=task_id, task_data=task_data)
    return TaskResponse.model_validate(task)


@tasks_router.delete("/{task_id}", status_code=status.HTTP_200_OK)
async def delete_task_endpoint(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    await authorize_project(db, identity, settings, task.project_id, PermissionLevel.EDITOR)
    await delete_task(db, task_id=task_id)
    return {"message": "Task deleted successfully", "id": task_id}


@tasks_router.post("/{task_id}/complete", response_model=TaskCompletionResponse, status_code=status.HTTP_200_OK)
async def complete_task_endpoint(
    task_id: int,
    completion_data: TaskComplete,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Mark the task as done with the actual intensity (1-5) and optionally the actual minutes spent."""
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    await authorize_project(db, identity, settings, task.project_id, PermissionLevel.EDITOR)

    completion = await complete_task(
        db,
        task_id=task_id,
        actual_intensity=completion_data.actual_intensity,
        actual_minutes=completion_data.actual_minutes,
    )
    return TaskCompletionResponse(
        task=TaskResponse.model_validate(completion.task),
        time_accuracy=completion.time_accuracy,
        intensity_match=completion.intensity_match,
    )


@tasks_router.put("/{task_id}/tags", response_model=TaskResponse, status_code=status.HTTP_200_OK)
async def set_task_tags_endpoint(
    task_id: int,
    tags_data: TaskTagsUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Replace all tags of the task."""
    task = await get_task_by_id_or_raise(db=db, id=task_id)
    await authorize_project(db, identity, settings, task.project_id, PermissionLevel.EDITOR)
    task = await set_task_tags(db, task_id=task_id, tag_ids=tags_data.tag_ids)
    return TaskResponse.model_validate(task)
