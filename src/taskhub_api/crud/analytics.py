"""
Daily analytics: tracked minutes and completed tasks per day.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.exceptions import ValidationError
from taskhub_api.models.tasks import TaskDB, TaskStatus
from taskhub_api.models.time_sessions import TimeSessionDB
from taskhub_api.security import as_utc, utc_now

MAX_DAYS = 365


@dataclass
class DailyStats:
    day: date
    total_minutes: int = 0
    completed_tasks: int = 0


async def get_daily_analytics(
    db: AsyncSession, days: int = 7, project_ids: list[int] | None = None, today: date | None = None
) -> list[DailyStats]:
    """
    Per day (UTC) totals for the last `days` days, today included. Every day is present, oldest first.

    Minutes come from stopped time sessions (by start day), completed tasks by their completion day.
    """
    if not 1 <= days <= MAX_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_DAYS}")

    today = today or utc_now().date()
    first_day = today - timedelta(days=days - 1)
    window_start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
    window_end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=timezone.utc)

    stats = {first_day + timedelta(days=offset): DailyStats(day=first_day + timedelta(days=offset)) for offset in range(days)}

    session_stmt = select(TimeSessionDB.start_time, TimeSessionDB.duration).where(
        TimeSessionDB.start_time >= window_start,
        TimeSessionDB.start_time < window_end,
        TimeSessionDB.duration.is_not(None),
    )
    task_stmt = select(TaskDB.completed_at).where(
        TaskDB.status.in_([TaskStatus.DONE, TaskStatus.ARCHIVED]),
        TaskDB.completed_at >= window_start,
        TaskDB.completed_at < window_end,
    )
    if project_ids is not None:
        session_stmt = session_stmt.where(TimeSessionDB.project_id.in_(project_ids))
        task_stmt = task_stmt.where(TaskDB.project_id.in_(project_ids))

    seconds_per_day: dict[date, int] = {}
    for start_time, duration in (await db.execute(session_stmt)).all():
        day = as_utc(start_time).date()
        seconds_per_day[day] = seconds_per_day.get(day, 0) + duration
    for day, seconds in seconds_per_day.items():
        if day in stats:
            stats[day].total_minutes = seconds // 60

    for (completed_at,) in (await db.execute(task_stmt)).all():
        day = as_utc(completed_at).date()
        if day in stats:
            stats[day].completed_tasks += 1

    return [stats[day] for day in sorted(stats)]
