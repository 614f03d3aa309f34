"""
Routes for projects, the project tree and project permission grants.

Reads are open to anonymous visitors for public projects. Every route checks access
through crud.permissions (via deps.authorize_project) with the level it needs:
- VIEW_ONLY: reading a project, its tree views and stats.
- EDITOR: on the parent when creating a subproject or moving a project under it.
- PROJECT_ADMIN: editing, moving, archiving and deleting the project, managing its grants.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.activity import log_user_activity
from taskhub_api.crud.permissions import (
    find_visible_projects,
    get_user_permission,
    grant_permission,
    list_project_users,
    revoke_permission,
)
from taskhub_api.crud.project_stats import ProjectDirectStats, get_subtree_stats
from taskhub_api.crud.projects import (
    ProjectFilters,
    ProjectTree,
    ProjectTreeNode,
    archive_project,
    create_project,
    delete_project,
    find_ancestors,
    find_descendants,
    get_breadcrumb,
    get_project_tree,
    list_projects,
    move_project,
    reactivate_project,
    set_expanded,
    update_project,
)
from taskhub_api.crud.users import get_user_by_email, get_user_by_id_or_raise, get_user_by_username
from taskhub_api.db import get_db
from taskhub_api.deps import authorize_project, client_ip, get_current_identity, get_identity, get_settings
from taskhub_api.exceptions import ConflictError, UserNotFoundError, ValidationError
from taskhub_api.models.projects import PermissionLevel, ProjectDB, ProjectStatus, ProjectUserDB
from taskhub_api.schemas.projects import (
    ProjectArchiveRequest,
    ProjectArchiveResponse,
    ProjectCreate,
    ProjectDeleteResponse,
    ProjectDirectStatsResponse,
    ProjectExpandedUpdate,
    ProjectMove,
    ProjectResponse,
    ProjectSubtreeStatsResponse,
    ProjectTreeEntryResponse,
    ProjectTreeNodeResponse,
    ProjectTreeResponse,
    ProjectUpdate,
    ProjectUserGrant,
    ProjectUserResponse,
    ProjectUserUpdate,
    VisibleProjectResponse,
)
from taskhub_api.security import Identity

logger = logging.getLogger(__name__)

projects_router = APIRouter()


def _stats_response(stats: ProjectDirectStats | None) -> ProjectDirectStatsResponse | None:
    if stats is None:
        return None
    return ProjectDirectStatsResponse(**stats.to_dict())


def _tree_node_response(node: ProjectTreeNode) -> ProjectTreeNodeResponse:
    return ProjectTreeNodeResponse(
        **ProjectResponse.model_validate(node.project).model_dump(),
        children=[_tree_node_response(child) for child in node.children],
        has_children=node.has_children,
        direct_stats=_stats_response(node.direct_stats),
        subtree_stats=_stats_response(node.subtree_stats),
    )


def project_tree_response(tree: ProjectTree) -> ProjectTreeResponse:
    """Helper to convert a ProjectTree to its response, the flat map references children by id."""
    flat_map = {
        project_id: ProjectTreeEntryResponse(
            **ProjectResponse.model_validate(node.project).model_dump(),
            child_ids=[child.project.id for child in node.children],
            direct_stats=_stats_response(node.direct_stats),
            subtree_stats=_stats_response(node.subtree_stats),
        )
        for project_id, node in tree.flat_map.items()
    }
    return ProjectTreeResponse(
        roots=[_tree_node_response(root) for root in tree.roots],
        flat_map=flat_map,
        max_depth=tree.max_depth,
    )


def project_user_response_from_db(grant: ProjectUserDB) -> ProjectUserResponse:
    """Helper function to convert ProjectUserDB to ProjectUserResponse."""
    return ProjectUserResponse(
        user_id=grant.user_id,
        username=grant.user.username,
        email=grant.user.email,
        permission_level=grant.permission_level,
        granted_by=grant.granted_by,
        granted_at=grant.granted_at,
    )


async def _visible_ids(db: AsyncSession, identity: Identity | None, settings: Settings) -> set[int]:
    visible = await find_visible_projects(
        db, identity=identity, use_legacy_access=settings.permissions.legacy_project_access
    )
    return {entry.project.id for entry in visible}


async def _only_visible(
    db: AsyncSession, identity: Identity | None, settings: Settings, projects: list[ProjectDB]
) -> list[ProjectResponse]:
    visible_ids = await _visible_ids(db, identity, settings)
    return [ProjectResponse.model_validate(project) for project in projects if project.id in visible_ids]


@projects_router.get("", response_model=list[VisibleProjectResponse], status_code=status.HTTP_200_OK)
async def list_projects_endpoint(
    project_status: ProjectStatus | None = Query(None, alias="status"),
    is_active: bool | None = None,
    parent_id: int | None = None,
    roots_only: bool = False,
    search: str | None = Query(None, max_length=255),
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    """List the projects visible to the caller, annotated with their permission level."""
    filters = ProjectFilters(
        status=project_status, is_active=is_active, parent_id=parent_id, roots_only=roots_only, search=search
    )
    visible = await list_projects(
        db, identity=identity, filters=filters, use_legacy_access=settings.permissions.legacy_project_access
    )
    return [
        VisibleProjectResponse(**ProjectResponse.model_validate(entry.project).model_dump(), user_permission=entry.permission)
        for entry in visible
    ]


@projects_router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project_endpoint(
    proj_data: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Create a project. Creating a subproject needs EDITOR access to the parent."""
    if proj_data.parent_id is not None:
        await authorize_project(db, identity, settings, proj_data.parent_id, PermissionLevel.EDITOR)

    project = await create_project(db=db, proj_data=proj_data, creator=identity, max_depth=settings.projects.max_depth)
    return ProjectResponse.model_validate(project)


@projects_router.get("/tree", response_model=ProjectTreeResponse, status_code=status.HTTP_200_OK)
async def get_project_tree_endpoint(
    include_stats: bool = False,
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    tree = await get_project_tree(
        db,
        identity=identity,
        include_stats=include_stats,
        active_only=active_only,
        use_legacy_access=settings.permissions.legacy_project_access,
    )
    return project_tree_response(tree)


@projects_router.put("/tree", response_model=ProjectResponse, status_code=status.HTTP_200_OK)
async def set_project_expanded_endpoint(
    expanded_data: ProjectExpandedUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Persist the expanded/collapsed state of a project in the tree view."""
    await authorize_project(db, identity, settings, expanded_data.project_id, PermissionLevel.EDITOR)
    project = await set_expanded(db, project_id=expanded_data.project_id, is_expanded=expanded_data.is_expanded)
    return ProjectResponse.model_validate(project)


@projects_router.get("/{project_id}", response_model=ProjectResponse, status_code=status.HTTP_200_OK)
async def get_project_endpoint(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    project = await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    return ProjectResponse.model_validate(project)


async def _update_project(
    project_id: int, proj_data: ProjectUpdate, db: AsyncSession, identity: Identity, settings: Settings
) -> ProjectResponse:
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    if "parent_id" in proj_data.model_fields_set and proj_data.parent_id is not None:
        await authorize_project(db, identity, settings, proj_data.parent_id, PermissionLevel.EDITOR)

    project = await update_project(
        db, project_id=project_id, proj_data=proj_data, max_depth=settings.projects.max_depth
    )
    logger.info(f"User {identity.username} updated project id={project_id}")
    return ProjectResponse.model_validate(project)


@projects_router.put("/{project_id}", response_model=ProjectResponse, status_code=status.HTTP_200_OK)
async def update_project_endpoint(
    project_id: int,
    proj_data: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    return await _update_project(project_id, proj_data, db, identity, settings)


@projects_router.patch("/{project_id}", response_model=ProjectResponse, status_code=status.HTTP_200_OK)
async def patch_project_endpoint(
    project_id: int,
    proj_data: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Same as PUT, only fields sent are changed."""
    return await _update_project(project_id, proj_data, db, identity, settings)


@projects_router.delete("/{project_id}", response_model=ProjectDeleteResponse, status_code=status.HTTP_200_OK)
async def delete_project_endpoint(
    project_id: int,
    force: bool = Query(False, description="Also delete the project if it still has tasks"),
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    project = await delete_project(db, project_id=project_id, force=force)
    logger.info(f"User {identity.username} deleted project: {project.path}")
    return ProjectDeleteResponse(project=ProjectResponse.model_validate(project))


@projects_router.get("/{project_id}/ancestors", response_model=list[ProjectResponse], status_code=status.HTTP_200_OK)
async def get_ancestors_endpoint(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    """Ancestors of the project that the caller can see, root first."""
    await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    return await _only_visible(db, identity, settings, await find_ancestors(db, project_id))


@projects_router.get(
    "/{project_id}/descendants", response_model=list[ProjectResponse], status_code=status.HTTP_200_OK
)
async def get_descendants_endpoint(
    project_id: int,
    max_depth: int | None = Query(None, ge=1, description="Levels below the project to include, all if not set"),
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    return await _only_visible(db, identity, settings, await find_descendants(db, project_id, max_depth=max_depth))


@projects_router.get("/{project_id}/breadcrumb", response_model=list[ProjectResponse], status_code=status.HTTP_200_OK)
async def get_breadcrumb_endpoint(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    return await _only_visible(db, identity, settings, await get_breadcrumb(db, project_id))


@projects_router.get(
    "/{project_id}/stats", response_model=ProjectSubtreeStatsResponse, status_code=status.HTTP_200_OK
)
async def get_project_stats_endpoint(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
):
    """Task stats of the project itself (direct) and summed over the part of its subtree the caller can see."""
    await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    stats = await get_subtree_stats(db, project_id, visible_ids=await _visible_ids(db, identity, settings))
    return ProjectSubtreeStatsResponse(
        **stats.total.to_dict(),
        project_id=stats.project_id,
        subproject_count=stats.subproject_count,
        direct=_stats_response(stats.direct),
    )


@projects_router.post("/{project_id}/move", response_model=ProjectResponse, status_code=status.HTTP_200_OK)
async def move_project_endpoint(
    project_id: int,
    move_data: ProjectMove,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    if move_data.new_parent_id is not None:
        await authorize_project(db, identity, settings, move_data.new_parent_id, PermissionLevel.EDITOR)

    project = await move_project(
        db, project_id=project_id, new_parent_id=move_data.new_parent_id, max_depth=settings.projects.max_depth
    )
    return ProjectResponse.model_validate(project)


@projects_router.post("/{project_id}/archive", response_model=ProjectArchiveResponse, status_code=status.HTTP_200_OK)
async def archive_project_endpoint(
    project_id: int,
    archive_data: ProjectArchiveRequest | None = None,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Archive the project, with cascade=true also all of its subprojects."""
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    cascade = archive_data.cascade if archive_data else False

    archived_count, project = await archive_project(
        db, project_id=project_id, cascade=cascade, cascade_tasks=settings.projects.archive_cascades_tasks
    )
    return ProjectArchiveResponse(archived_count=archived_count, project=ProjectResponse.model_validate(project))


@projects_router.post("/{project_id}/reactivate", response_model=ProjectResponse, status_code=status.HTTP_200_OK)
async def reactivate_project_endpoint(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    project = await reactivate_project(db, project_id=project_id)
    return ProjectResponse.model_validate(project)


### Project permission grants below ###


@projects_router.get("/{project_id}/users", response_model=list[ProjectUserResponse], status_code=status.HTTP_200_OK)
async def list_project_users_endpoint(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    grants = await list_project_users(db, project_id=project_id)
    return [project_user_response_from_db(grant) for grant in grants]


@projects_router.post(
    "/{project_id}/users", response_model=ProjectUserResponse, status_code=status.HTTP_201_CREATED
)
async def grant_project_user_endpoint(
    project_id: int,
    grant_data: ProjectUserGrant,
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Give a user (looked up by username or email) access to the project."""
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)

    if grant_data.username:
        user = await get_user_by_username(db, grant_data.username)
    elif grant_data.user_email:
        user = await get_user_by_email(db, grant_data.user_email)
    else:
        raise ValidationError("Provide a username or user_email")
    if user is None:
        raise UserNotFoundError()

    if await get_user_permission(db, user_id=user.id, project_id=project_id) is not None:
        raise ConflictError("User already has access to this project, update their permission level instead")

    grant = await grant_permission(
        db,
        user_id=user.id,
        project_id=project_id,
        permission_level=grant_data.permission_level,
        granted_by=identity.user_id,
    )
    await log_user_activity(
        db,
        user_id=identity.user_id,
        action="grant_permission",
        resource_type="project",
        resource_id=project_id,
        ip_address=client_ip(request),
        details={"user_id": user.id, "permission_level": grant_data.permission_level.value},
    )
    await db.refresh(grant, attribute_names=["user"])
    return project_user_response_from_db(grant)


@projects_router.put(
    "/{project_id}/users/{user_id}", response_model=ProjectUserResponse, status_code=status.HTTP_200_OK
)
async def update_project_user_endpoint(
    project_id: int,
    user_id: int,
    update_data: ProjectUserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Set a user's permission level in the project, creating the grant if it does not exist yet."""
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    await get_user_by_id_or_raise(db=db, id=user_id)

    grant = await grant_permission(
        db,
        user_id=user_id,
        project_id=project_id,
        permission_level=update_data.permission_level,
        granted_by=identity.user_id,
    )
    await log_user_activity(
        db,
        user_id=identity.user_id,
        action="update_permission",
        resource_type="project",
        resource_id=project_id,
        ip_address=client_ip(request),
        details={"user_id": user_id, "permission_level": update_data.permission_level.value},
    )
    await db.refresh(grant, attribute_names=["user"])
    return project_user_response_from_db(grant)


@projects_router.delete("/{project_id}/users/{user_id}", status_code=status.HTTP_200_OK)
async def revoke_project_user_endpoint(
    project_id: int,
    user_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    """Remove a user's access grant. Removing a grant that does not exist is not an error."""
    await authorize_project(db, identity, settings, project_id, PermissionLevel.PROJECT_ADMIN)
    removed = await revoke_permission(db, user_id=user_id, project_id=project_id)
    if removed:
        await log_user_activity(
            db,
            user_id=identity.user_id,
            action="revoke_permission",
            resource_type="project",
            resource_id=project_id,
            ip_address=client_ip(request),
            details={"user_id": user_id},
        )
    return {"removed": removed}
