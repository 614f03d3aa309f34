"""
Pydantic schemas for time tracking.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TimerStart(BaseModel):
    task_id: int
    description: str | None = Field(None, max_length=2000)


class TimerStop(BaseModel):
    """Exactly one of session_id or task_id must be given."""

    session_id: int | None = None
    task_id: int | None = None


class TimeSessionCreate(BaseModel):
    """Manual time entry. Either task_id or project_id is required, the project is taken from the task if given."""

    task_id: int | None = None
    project_id: int | None = None
    description: str | None = Field(None, max_length=2000)
    start_time: datetime
    end_time: datetime | None = None
    duration: int | None = None
    is_active: bool = False

    model_config = ConfigDict(str_strip_whitespace=True)


class TimeSessionUpdate(BaseModel):
    description: str | None = Field(None, max_length=2000)
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = None

    model_config = ConfigDict(str_strip_whitespace=True)


class TimeSessionResponse(BaseModel):
    """Response schema, aka returned by API endpoints."""

    id: int
    task_id: int | None
    project_id: int
    description: str | None
    start_time: datetime
    end_time: datetime | None
    duration: int | None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
