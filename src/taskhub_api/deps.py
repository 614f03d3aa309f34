"""
Request identity and shared dependencies for FastAPI routes.

Identity is resolved from the session cookie by get_identity:
- No cookie, an unknown or expired session, or an anonymous session: identity is None.
- A session of a user that is not (or no longer) approved: identity is None too.
- Otherwise: an Identity with the user's id, role and status.

Routes that need a logged in user depend on get_current_identity, admin only routes on
get_current_admin_identity. Both use get_identity as a sub-dependency, so all checks in it are ran.
(see here: https://fastapi.tiangolo.com/yo/advanced/security/oauth2-scopes/#dependency-tree-and-scopes)

Project level checks go through crud.permissions, see authorize_project.
"""

import logging
from typing import Annotated

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.auth import delete_session_cookie, get_session_user, validate_session
from taskhub_api.crud.permissions import require_permission
from taskhub_api.db import get_db
from taskhub_api.exceptions import AuthenticationError, AuthorizationError
from taskhub_api.models.projects import PermissionLevel, ProjectDB
from taskhub_api.models.users import UserStatus
from taskhub_api.security import Identity

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    """The Settings instance the app was created with."""
    return request.app.state.settings


async def get_identity(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Identity | None:
    """
    Resolve who is making the request from the session cookie. Returns None for anonymous visitors.
    A cookie that does not point to a valid session is cleared.
    """
    session_id = request.cookies.get(settings.sessions.cookie_name)
    if not session_id:
        return None

    session = await validate_session(db=db, session_id=session_id)
    if session is None:
        delete_session_cookie(response, cookie_name=settings.sessions.cookie_name)
        return None

    user = await get_session_user(db=db, session=session)
    if user is None:
        return None

    if user.status != UserStatus.APPROVED:
        logger.info(f"Session of non approved user_id={user.id} treated as anonymous")
        return None

    return Identity.from_user(user)


async def get_current_identity(identity: Annotated[Identity | None, Depends(get_identity)]) -> Identity:
    """Raises AuthenticationError if not logged in. Use in routes where the user must be logged in."""
    if identity is None:
        raise AuthenticationError("Authentication required")
    return identity


async def get_current_admin_identity(identity: Annotated[Identity, Depends(get_current_identity)]) -> Identity:
    """Verify current user has admin access."""
    if not identity.is_admin:
        raise AuthorizationError("Admin access required")
    return identity


async def authorize_project(
    db: AsyncSession,
    identity: Identity | None,
    settings: Settings,
    project_id: int,
    required_level: PermissionLevel,
) -> ProjectDB:
    """Route helper around crud.permissions.require_permission, returns the project if access is granted."""
    return await require_permission(
        db,
        identity=identity,
        project_id=project_id,
        required_level=required_level,
        use_legacy_access=settings.permissions.legacy_project_access,
    )


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
