"""
Pydantic schemas for tasks and tags.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from taskhub_api.models.tasks import TaskPriority, TaskStatus


class TagResponse(BaseModel):
    id: int
    name: str
    color: str | None = None

    model_config = ConfigDict(from_attributes=True)


class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str | None = Field(None, max_length=50)

    model_config = ConfigDict(str_strip_whitespace=True)


class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = Field(None, max_length=5000)
    link_url: str | None = Field(None, max_length=2000)
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_minutes: int = Field(..., ge=1, le=1440)
    estimated_intensity: int = Field(..., ge=1, le=5)
    due_date: datetime | None = None
    board_column: str | None = Field(None, max_length=100)
    position: int | None = Field(None, ge=0)

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)


class TaskCreate(TaskBase):
    project_id: int
    status: TaskStatus = TaskStatus.TODO


class TaskUpdate(BaseModel):
    """All fields optional, only the fields sent are changed."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = Field(None, max_length=5000)
    link_url: str | None = Field(None, max_length=2000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    estimated_minutes: int | None = Field(None, ge=1, le=1440)
    estimated_intensity: int | None = Field(None, ge=1, le=5)
    due_date: datetime | None = None
    board_column: str | None = Field(None, max_length=100)
    position: int | None = Field(None, ge=0)

    model_config = ConfigDict(str_strip_whitespace=True)


class TaskComplete(BaseModel):
    """
    The intensity range is checked in crud.tasks.complete_task rather than here,
    so an out of range value is reported like any other domain validation error.
    """

    actual_intensity: int
    actual_minutes: int | None = Field(None, ge=0, le=1440)


class TaskReorder(BaseModel):
    task_ids: list[int] = Field(..., min_length=1)
    board_column: str | None = Field(None, max_length=100)


class TaskTagsUpdate(BaseModel):
    tag_ids: list[int] = Field(default_factory=list)


class TaskResponse(TaskBase):
    """Response schema, aka returned by API endpoints."""

    id: int
    project_id: int
    status: TaskStatus
    actual_minutes: int | None = None
    actual_intensity: int | None = None
    completed_at: datetime | None = None
    tags: list[TagResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class TaskCompletionResponse(BaseModel):
    """
    time_accuracy: percentage difference between actual and estimated minutes
    (negative means faster than estimated), None when no actual minutes were given.
    """

    task: TaskResponse
    time_accuracy: int | None
    intensity_match: bool


class ArchiveCompletedResponse(BaseModel):
    archived_count: int
