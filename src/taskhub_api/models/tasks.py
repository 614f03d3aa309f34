"""
Task DB Model, plus free-form tags attached to tasks.
"""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub_api.models.base import Base, BaseDBModel, str_enum


class TaskStatus(StrEnum):
    """
    Status of a task. A task only becomes DONE through completion,
    which records the actual intensity (and optionally actual minutes).
    """

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    ARCHIVED = "archived"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


task_tags = Table(
    "task_tags",
    Base.metadata,
    Column("task_id", ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class TaskDB(BaseDBModel):
    """
    DB Model for a task. The same rows back both the todo list and the kanban board
    (board_column + position).

    id, created_at and updated_at are inherited from BaseDBModel.
    """

    __tablename__ = "tasks"

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    link_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(str_enum(TaskStatus, "task_status"), default=TaskStatus.TODO, index=True)
    priority: Mapped[TaskPriority] = mapped_column(str_enum(TaskPriority, "priority"), default=TaskPriority.MEDIUM)

    estimated_minutes: Mapped[int] = mapped_column(Integer)
    estimated_intensity: Mapped[int] = mapped_column(Integer)
    actual_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_intensity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    board_column: Mapped[str | None] = mapped_column(String(100), nullable=True)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tags: Mapped[list["TagDB"]] = relationship("TagDB", secondary=task_tags, back_populates="tasks")

    def __repr__(self) -> str:
        return f"<TaskDB id={self.id}, project_id={self.project_id}, title={self.title}, status={self.status}>"


class TagDB(Base):
    """DB Model for a free-form label. Does not inherit from BaseDBModel, tags carry no timestamps."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    color: Mapped[str | None] = mapped_column(String(50), nullable=True)

    tasks: Mapped[list["TaskDB"]] = relationship("TaskDB", secondary=task_tags, back_populates="tags")

    def __repr__(self) -> str:
        return f"<TagDB id={self.id}, name={self.name}>"
