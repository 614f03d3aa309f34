"""
Admin only routes for user management and housekeeping.

NOTE: All routes in here should depend on get_current_admin_identity.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.activity import log_user_activity
from taskhub_api.crud.projects import count_projects_by_status
from taskhub_api.crud.tasks import archive_completed_tasks
from taskhub_api.crud.users import admin_update_user, get_all_users
from taskhub_api.db import get_db
from taskhub_api.deps import client_ip, get_current_admin_identity
from taskhub_api.models.projects import ProjectStatus
from taskhub_api.models.users import UserStatus
from taskhub_api.schemas.tasks import ArchiveCompletedResponse
from taskhub_api.schemas.users import AdminUserUpdate, UserResponse
from taskhub_api.security import Identity

logger = logging.getLogger(__name__)

admin_router = APIRouter()


@admin_router.get("/users", response_model=list[UserResponse], status_code=status.HTTP_200_OK)
async def get_all_users_endpoint(
    user_status: UserStatus | None = Query(None, alias="status"),
    limit: int = Query(1000, ge=1, le=5000),
    db: AsyncSession = Depends(get_db),
    current_admin: Identity = Depends(get_current_admin_identity),
):
    users = await get_all_users(db, limit=limit, status=user_status)
    return [UserResponse.model_validate(user) for user in users]


@admin_router.patch("/users/{user_id}", response_model=UserResponse, status_code=status.HTTP_200_OK)
async def update_user_endpoint(
    user_id: int,
    update_data: AdminUserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_admin: Identity = Depends(get_current_admin_identity),
):
    """Approve/suspend a user or change their global role."""
    user = await admin_update_user(db, user_id=user_id, update_data=update_data, acting_admin_id=current_admin.user_id)
    await log_user_activity(
        db,
        user_id=current_admin.user_id,
        action="admin_update_user",
        resource_type="user",
        resource_id=user_id,
        ip_address=client_ip(request),
        details=update_data.model_dump(exclude_none=True),
    )
    logger.info(f"Admin user: {current_admin.username} updated user: {user.username}")
    return UserResponse.model_validate(user)


@admin_router.get("/projects/status-counts", status_code=status.HTTP_200_OK)
async def get_project_status_counts_endpoint(
    db: AsyncSession = Depends(get_db),
    current_admin: Identity = Depends(get_current_admin_identity),
) -> dict[ProjectStatus, int]:
    return await count_projects_by_status(db)


@admin_router.post(
    "/tasks/archive-completed", response_model=ArchiveCompletedResponse, status_code=status.HTTP_200_OK
)
async def archive_completed_tasks_endpoint(
    older_than_days: int = Query(30, ge=0),
    db: AsyncSession = Depends(get_db),
    current_admin: Identity = Depends(get_current_admin_identity),
):
    """Archive every task that was completed more than older_than_days ago."""
    archived = await archive_completed_tasks(db, older_than_days=older_than_days)
    logger.info(f"Admin user: {current_admin.username} archived {archived} completed task(s)")
    return ArchiveCompletedResponse(archived_count=archived)
