"""
Pydantic schemas for analytics.
"""

from datetime import date

from pydantic import BaseModel


class DailyAnalyticsEntry(BaseModel):
    day: date
    total_minutes: int = 0
    completed_tasks: int = 0


class DailyAnalyticsResponse(BaseModel):
    days: int
    entries: list[DailyAnalyticsEntry]
    total_minutes: int
    total_completed_tasks: int
