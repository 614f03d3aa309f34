"""
Routes for analytics.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.analytics import MAX_DAYS, get_daily_analytics
from taskhub_api.db import get_db
from taskhub_api.deps import authorize_project, get_identity, get_settings
from taskhub_api.models.projects import PermissionLevel
from taskhub_api.routes.tasks import visible_project_ids
from taskhub_api.schemas.analytics import DailyAnalyticsEntry, DailyAnalyticsResponse
from taskhub_api.security import Identity

analytics_router = APIRouter()


@analytics_router.get("/daily", response_model=DailyAnalyticsResponse, status_code=status.HTTP_200_OK)
async def get_daily_analytics_endpoint(
    days: int = Query(7, ge=1, le=MAX_DAYS),
    project_id: int | None = None,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    """Tracked minutes and completed tasks per day for the last `days` days, over the projects the caller can see."""
    if project_id is not None:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
        project_ids = [project_id]
    else:
        project_ids = await visible_project_ids(db, identity, settings)

    daily = await get_daily_analytics(db, days=days, project_ids=project_ids)
    entries = [
        DailyAnalyticsEntry(day=entry.day, total_minutes=entry.total_minutes, completed_tasks=entry.completed_tasks)
        for entry in daily
    ]
    return DailyAnalyticsResponse(
        days=days,
        entries=entries,
        total_minutes=sum(entry.total_minutes for entry in entries),
        total_completed_tasks=sum(entry.completed_tasks for entry in entries),
    )
