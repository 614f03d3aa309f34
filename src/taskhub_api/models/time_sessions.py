"""
Time session DB Model. One row per timer run (or manually entered block of time).
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from taskhub_api.models.base import BaseDBModel


class TimeSessionDB(BaseDBModel):
    """
    DB model for a tracked block of time.

    end_time and duration (in whole seconds) stay NULL while the session is running.
    At most one session per task is active at a time, crud.time_sessions.start_timer stops the others.
    """

    __tablename__ = "time_sessions"

    task_id: Mapped[int | None] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,  # project level sessions are not tied to a task
        index=True,
    )
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    def __repr__(self) -> str:
        return f"<TimeSessionDB id={self.id}, task_id={self.task_id}, is_active={self.is_active}>"
