"""
Permission resolver for projects.

Decides whether an identity may act on a project at a required PermissionLevel.
Anonymous visitors are passed around as identity=None.

Order of evaluation in resolve_permission:
1. Anonymous: only VIEW_ONLY on public projects.
2. Global admin: always granted.
3. VIEW_ONLY on a public project: granted.
4. The project_users grant row, compared with the level hierarchy.
5. If there is no grant row, the legacy users.project_access list (grants at most EDITOR).
"""

import json
import logging
from dataclasses import dataclass

from sqlalchemy import delete, or_, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskhub_api.exceptions import AuthorizationError, ProjectNotFoundError
from taskhub_api.models.projects import PermissionLevel, ProjectDB, ProjectUserDB
from taskhub_api.models.users import UserDB
from taskhub_api.security import Identity, utc_now

logger = logging.getLogger(__name__)

LEGACY_MAX_LEVEL = PermissionLevel.EDITOR


@dataclass
class VisibleProject:
    """A project the identity can see. permission is None if visible only because it is public (or to admins)."""

    project: ProjectDB
    permission: PermissionLevel | None


def has_required_level(user_level: PermissionLevel, required_level: PermissionLevel) -> bool:
    """
    Check if a user's permission level meets or exceeds the required level.
    (If you have EDITOR access, you also have VIEW_ONLY access, etc.)
    """
    level_hierarchy = {
        PermissionLevel.VIEW_ONLY: 1,
        PermissionLevel.EDITOR: 2,
        PermissionLevel.PROJECT_ADMIN: 3,
    }
    return level_hierarchy[user_level] >= level_hierarchy[required_level]


def legacy_project_access(user: UserDB) -> list[int]:
    """
    Compatibility shim for the deprecated users.project_access column, a JSON list of project ids.
    Anything that does not parse to a list of ints is treated as no access.
    """
    raw = user.project_access
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Could not parse legacy project_access for user_id={user.id}, treating as no access")
        return []

    if not isinstance(parsed, list):
        logger.warning(f"Legacy project_access for user_id={user.id} is not a list, treating as no access")
        return []
    return [item for item in parsed if isinstance(item, int) and not isinstance(item, bool)]


async def get_user_permission(db: AsyncSession, user_id: int, project_id: int) -> PermissionLevel | None:
    """Get the level a user was granted in a project, None if no grant row exists."""
    stmt = select(ProjectUserDB.permission_level).where(
        ProjectUserDB.user_id == user_id,
        ProjectUserDB.project_id == project_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _legacy_level(db: AsyncSession, user_id: int, project_id: int) -> PermissionLevel | None:
    user = await db.get(UserDB, user_id)
    if user is None:
        return None
    if project_id in legacy_project_access(user):
        return LEGACY_MAX_LEVEL
    return None


async def resolve_permission(
    db: AsyncSession,
    identity: Identity | None,
    project_id: int,
    required_level: PermissionLevel,
    use_legacy_access: bool = True,
) -> bool:
    """Decide if identity may act on project_id at required_level. Never writes, missing projects resolve to False."""
    project = await db.get(ProjectDB, project_id)
    if project is None:
        return False

    if identity is None:
        return required_level == PermissionLevel.VIEW_ONLY and project.is_public

    if identity.is_admin:
        return True

    if required_level == PermissionLevel.VIEW_ONLY and project.is_public:
        return True

    granted_level = await get_user_permission(db, user_id=identity.user_id, project_id=project_id)
    if granted_level is None and use_legacy_access:
        granted_level = await _legacy_level(db, user_id=identity.user_id, project_id=project_id)

    if granted_level is None:
        return False
    return has_required_level(user_level=granted_level, required_level=required_level)


async def require_permission(
    db: AsyncSession,
    identity: Identity | None,
    project_id: int,
    required_level: PermissionLevel,
    use_legacy_access: bool = True,
) -> ProjectDB:
    """
    Like resolve_permission but raises instead of returning False, returns the project on success.

    Anonymous visitors are told a private project does not exist (404) rather than
    that they lack permission (403), so project existence is not leaked.
    """
    project = await db.get(ProjectDB, project_id)
    if project is None:
        raise ProjectNotFoundError()

    allowed = await resolve_permission(
        db,
        identity=identity,
        project_id=project_id,
        required_level=required_level,
        use_legacy_access=use_legacy_access,
    )
    if allowed:
        return project

    if identity is None and not project.is_public:
        raise ProjectNotFoundError()
    raise AuthorizationError(f"You need {required_level.value} permission on this project")


async def find_visible_projects(
    db: AsyncSession, identity: Identity | None, use_legacy_access: bool = True
) -> list[VisibleProject]:
    """
    All projects the identity can see, ordered by (depth, name).

    - admin: every project, permission None (admins need no grant).
    - anonymous: public projects only.
    - member: public projects plus the ones they have a grant for, annotated with the grant level.
    """
    order = (ProjectDB.depth, ProjectDB.name)

    if identity is not None and identity.is_admin:
        result = await db.execute(select(ProjectDB).order_by(*order))
        return [VisibleProject(project=project, permission=None) for project in result.scalars().all()]

    if identity is None:
        result = await db.execute(select(ProjectDB).where(ProjectDB.is_public.is_(True)).order_by(*order))
        return [VisibleProject(project=project, permission=None) for project in result.scalars().all()]

    grant_levels = await _get_grant_levels(db, user_id=identity.user_id)
    if use_legacy_access:
        user = await db.get(UserDB, identity.user_id)
        if user is not None:
            for project_id in legacy_project_access(user):
                grant_levels.setdefault(project_id, LEGACY_MAX_LEVEL)

    stmt = select(ProjectDB).where(or_(ProjectDB.is_public.is_(True), ProjectDB.id.in_(list(grant_levels)))).order_by(
        *order
    )
    result = await db.execute(stmt)
    return [VisibleProject(project=project, permission=grant_levels.get(project.id)) for project in result.scalars().all()]


async def _get_grant_levels(db: AsyncSession, user_id: int) -> dict[int, PermissionLevel]:
    stmt = select(ProjectUserDB.project_id, ProjectUserDB.permission_level).where(ProjectUserDB.user_id == user_id)
    result = await db.execute(stmt)
    return {project_id: level for project_id, level in result.all()}


async def grant_permission(
    db: AsyncSession,
    user_id: int,
    project_id: int,
    permission_level: PermissionLevel,
    granted_by: int | None,
    commit: bool = True,
) -> ProjectUserDB:
    """
    Give a user a permission level in a project.
    Idempotent: an existing grant for the same (user, project) pair is overwritten.
    """
    values = {
        "user_id": user_id,
        "project_id": project_id,
        "permission_level": permission_level,
        "granted_by": granted_by,
        "granted_at": utc_now(),
    }
    insert = postgresql_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
    stmt = insert(ProjectUserDB).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "project_id"],
        set_={
            "permission_level": stmt.excluded.permission_level,
            "granted_by": stmt.excluded.granted_by,
            "granted_at": stmt.excluded.granted_at,
            "updated_at": utc_now(),
        },
    )
    await db.execute(stmt)
    if commit:
        await db.commit()

    logger.info(f"Granted {permission_level.value} on project_id={project_id} to user_id={user_id} by {granted_by}")

    result = await db.execute(
        select(ProjectUserDB)
        .where(ProjectUserDB.user_id == user_id, ProjectUserDB.project_id == project_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def revoke_permission(db: AsyncSession, user_id: int, project_id: int) -> bool:
    """Remove a user's grant in a project. Returns False if there was nothing to remove."""
    stmt = delete(ProjectUserDB).where(ProjectUserDB.user_id == user_id, ProjectUserDB.project_id == project_id)
    result = await db.execute(stmt)
    await db.commit()

    removed = result.rowcount > 0
    if removed:
        logger.info(f"Revoked access to project_id={project_id} for user_id={user_id}")
    return removed


async def list_project_users(db: AsyncSession, project_id: int) -> list[ProjectUserDB]:
    """All grants of a project with the user details loaded, oldest grant first."""
    stmt = (
        select(ProjectUserDB)
        .where(ProjectUserDB.project_id == project_id)
        .options(selectinload(ProjectUserDB.user))
        .order_by(ProjectUserDB.granted_at, ProjectUserDB.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
