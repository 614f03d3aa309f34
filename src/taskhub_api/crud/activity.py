"""
Append only log of user actions (logins, signups, permission changes, admin actions).
"""

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.models.user_activities import UserActivityDB

logger = logging.getLogger(__name__)


async def log_user_activity(
    db: AsyncSession,
    user_id: int | None,
    action: str,
    resource_type: str | None = None,
    resource_id: int | None = None,
    ip_address: str | None = None,
    details: dict[str, Any] | None = None,
) -> UserActivityDB:
    """Record what a user did. details is stored as JSON, values that are not JSON types are stringified."""
    activity = UserActivityDB(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_address=ip_address,
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(activity)
    await db.commit()
    await db.refresh(activity)
    logger.debug(f"Activity logged: user_id={user_id}, action={action}, {resource_type}={resource_id}")
    return activity


async def get_user_activities(db: AsyncSession, user_id: int | None = None, limit: int = 100) -> list[UserActivityDB]:
    """Most recent activities first, optionally for a single user."""
    stmt = select(UserActivityDB)
    if user_id is not None:
        stmt = stmt.where(UserActivityDB.user_id == user_id)
    result = await db.execute(stmt.order_by(UserActivityDB.id.desc()).limit(limit))
    return list(result.scalars().all())
