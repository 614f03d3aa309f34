"""
CRUD operations for projects and the project hierarchy.

Projects form a tree through parent_id. path ("A/B/C") and depth (0 for roots) are
denormalized onto every row and kept in sync for the whole subtree on rename and move,
so ancestor and descendant lookups are single path-prefix queries.

Sibling names are unique (roots included) which makes path unique per project.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.permissions import VisibleProject, find_visible_projects, grant_permission
from taskhub_api.crud.project_stats import ProjectDirectStats, aggregate_tree_stats, get_direct_stats
from taskhub_api.db import atomic
from taskhub_api.exceptions import ConflictError, ProjectNotFoundError, ValidationError
from taskhub_api.models.projects import PermissionLevel, ProjectDB, ProjectStatus
from taskhub_api.models.tasks import TaskDB, TaskStatus
from taskhub_api.schemas.projects import ProjectCreate, ProjectUpdate
from taskhub_api.security import Identity

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"


@dataclass
class ProjectFilters:
    """
    Filters for listing projects. Fields left as None are not filtered on.

    parent_id filters on direct children of that project, roots_only on top level projects,
    they cannot be combined.
    """

    status: ProjectStatus | None = None
    is_active: bool | None = None
    parent_id: int | None = None
    roots_only: bool = False
    search: str | None = None

    def __post_init__(self):
        if self.roots_only and self.parent_id is not None:
            raise ValidationError("Filter on either parent_id or roots_only, not both")


@dataclass
class ProjectTreeNode:
    project: ProjectDB
    permission: PermissionLevel | None = None
    children: list["ProjectTreeNode"] = field(default_factory=list)
    direct_stats: ProjectDirectStats | None = None
    subtree_stats: ProjectDirectStats | None = None

    @property
    def has_children(self) -> bool:
        return len(self.children) > 0


@dataclass
class ProjectTree:
    """roots holds the top level nodes, flat_map every node keyed by project id."""

    roots: list[ProjectTreeNode]
    flat_map: dict[int, ProjectTreeNode]
    max_depth: int


def child_path(parent: ProjectDB | None, name: str) -> str:
    if parent is None:
        return name
    return f"{parent.path}{PATH_SEPARATOR}{name}"


async def get_project_by_id(db: AsyncSession, id: int) -> ProjectDB | None:
    """Get project by ID."""
    return await db.get(entity=ProjectDB, ident=id)


async def _get_project_or_raise(db: AsyncSession, project_id: int) -> ProjectDB:
    project = await get_project_by_id(db=db, id=project_id)
    if project is None:
        raise ProjectNotFoundError()
    return project


async def _ensure_unique_sibling_name(
    db: AsyncSession, parent_id: int | None, name: str, exclude_id: int | None = None
) -> None:
    stmt = select(ProjectDB.id).where(ProjectDB.name == name)
    if parent_id is None:
        stmt = stmt.where(ProjectDB.parent_id.is_(None))
    else:
        stmt = stmt.where(ProjectDB.parent_id == parent_id)
    if exclude_id is not None:
        stmt = stmt.where(ProjectDB.id != exclude_id)

    result = await db.execute(stmt.limit(1))
    if result.scalar_one_or_none() is not None:
        location = "at the root level" if parent_id is None else "under this parent"
        raise ConflictError(f"A project named '{name}' already exists {location}")


def _check_max_depth(depth: int, max_depth: int) -> None:
    if depth > max_depth:
        raise ValidationError(f"Project hierarchy cannot exceed {max_depth} levels")


async def create_project(
    db: AsyncSession, proj_data: ProjectCreate, creator: Identity, max_depth: int = 10
) -> ProjectDB:
    """
    Create a new project, as a root or under proj_data.parent_id.

    The creator is granted PROJECT_ADMIN on the new project in the same transaction,
    unless they are a global admin (who need no grant).
    """
    parent = None
    if proj_data.parent_id is not None:
        parent = await get_project_by_id(db=db, id=proj_data.parent_id)
        if parent is None:
            raise ProjectNotFoundError("Parent project not found")

    depth = 0 if parent is None else parent.depth + 1
    _check_max_depth(depth=depth, max_depth=max_depth)
    await _ensure_unique_sibling_name(db, parent_id=proj_data.parent_id, name=proj_data.name)

    async with atomic(db):
        project = ProjectDB(
            **proj_data.model_dump(),
            created_by=creator.user_id,
            path=child_path(parent, proj_data.name),
            depth=depth,
        )
        db.add(project)
        await db.flush()

        if not creator.is_admin:
            await grant_permission(
                db,
                user_id=creator.user_id,
                project_id=project.id,
                permission_level=PermissionLevel.PROJECT_ADMIN,
                granted_by=creator.user_id,
                commit=False,
            )

    await db.refresh(project)
    logger.info(f"Project created: id={project.id}, path={project.path} by user_id={creator.user_id}")
    return project


async def list_projects(
    db: AsyncSession, identity: Identity | None, filters: ProjectFilters, use_legacy_access: bool = True
) -> list[VisibleProject]:
    """Projects visible to identity, narrowed down by filters. Ordered by (depth, name)."""
    visible = await find_visible_projects(db, identity=identity, use_legacy_access=use_legacy_access)

    search = filters.search.lower() if filters.search else None
    selected = []
    for entry in visible:
        project = entry.project
        if filters.status is not None and project.status != filters.status:
            continue
        if filters.is_active is not None and project.is_active != filters.is_active:
            continue
        if filters.parent_id is not None and project.parent_id != filters.parent_id:
            continue
        if filters.roots_only and project.parent_id is not None:
            continue
        if search and search not in project.name.lower() and search not in (project.description or "").lower():
            continue
        selected.append(entry)
    return selected


async def _find_descendants_by_path(db: AsyncSession, path: str) -> list[ProjectDB]:
    stmt = (
        select(ProjectDB)
        .where(ProjectDB.path.startswith(path + PATH_SEPARATOR, autoescape=True))
        .order_by(ProjectDB.depth, ProjectDB.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _relocate_subtree(db: AsyncSession, project: ProjectDB, new_path: str, new_depth: int) -> int:
    """
    Set a new path and depth on project and rewrite them on every descendant.
    Does not commit, the caller owns the transaction. Returns the number of descendants rewritten.
    """
    old_path = project.path
    depth_delta = new_depth - project.depth
    descendants = await _find_descendants_by_path(db, old_path)

    project.path = new_path
    project.depth = new_depth
    for descendant in descendants:
        descendant.path = new_path + descendant.path[len(old_path) :]
        descendant.depth = descendant.depth + depth_delta

    await db.flush()
    return len(descendants)


async def _subtree_height(db: AsyncSession, project: ProjectDB) -> int:
    """How many levels there are below project (0 for a leaf)."""
    stmt = select(func.max(ProjectDB.depth)).where(
        ProjectDB.path.startswith(project.path + PATH_SEPARATOR, autoescape=True)
    )
    result = await db.execute(stmt)
    deepest = result.scalar_one_or_none()
    return 0 if deepest is None else deepest - project.depth


async def _check_move(
    db: AsyncSession, project: ProjectDB, new_parent_id: int | None, name: str, max_depth: int
) -> ProjectDB | None:
    """Validate moving project (to be called name) under new_parent_id. Returns the new parent, None for root."""
    if new_parent_id == project.id:
        raise ValidationError("Cannot move a project into itself (circular reference)")

    new_parent = None
    if new_parent_id is not None:
        new_parent = await get_project_by_id(db=db, id=new_parent_id)
        if new_parent is None:
            raise ProjectNotFoundError("New parent project not found")
        if new_parent.path.startswith(project.path + PATH_SEPARATOR):
            raise ValidationError("Cannot move a project into one of its descendants (circular reference)")

    new_depth = 0 if new_parent is None else new_parent.depth + 1
    _check_max_depth(depth=new_depth + await _subtree_height(db, project), max_depth=max_depth)
    await _ensure_unique_sibling_name(db, parent_id=new_parent_id, name=name, exclude_id=project.id)
    return new_parent


async def _move(db: AsyncSession, project: ProjectDB, new_parent: ProjectDB | None) -> None:
    """Re-parent an already validated move, see _check_move. Does not commit."""
    old_path = project.path
    new_depth = 0 if new_parent is None else new_parent.depth + 1
    project.parent_id = None if new_parent is None else new_parent.id
    rewritten = await _relocate_subtree(db, project, new_path=child_path(new_parent, project.name), new_depth=new_depth)
    logger.info(
        f"Project moved: id={project.id}, {old_path} -> {project.path}, {rewritten} descendant(s) rewritten"
    )


async def move_project(db: AsyncSession, project_id: int, new_parent_id: int | None, max_depth: int = 10) -> ProjectDB:
    """
    Move a project (and its subtree) under new_parent_id, or to the root level if None.

    Rejects moves into the project itself or into any of its descendants.
    All checks run before the transaction opens, so a rejected move leaves the session untouched.
    """
    project = await _get_project_or_raise(db, project_id)
    if new_parent_id == project.parent_id:
        return project

    new_parent = await _check_move(db, project, new_parent_id=new_parent_id, name=project.name, max_depth=max_depth)
    async with atomic(db):
        await _move(db, project=project, new_parent=new_parent)

    await db.refresh(project)
    return project


async def update_project(db: AsyncSession, project_id: int, proj_data: ProjectUpdate, max_depth: int = 10) -> ProjectDB:
    """
    Partial update, only fields sent by the client are changed.
    A rename rewrites the path of the whole subtree, a parent_id in the payload moves the project.
    """
    project = await _get_project_or_raise(db, project_id)
    changes = proj_data.model_dump(exclude_unset=True)
    new_parent_given = "parent_id" in changes
    new_parent_id = changes.pop("parent_id", None)
    new_name = changes.pop("name", None)

    rename = new_name is not None and new_name != project.name
    move = new_parent_given and new_parent_id != project.parent_id
    name = new_name if rename else project.name

    new_parent = None
    if move:
        new_parent = await _check_move(db, project, new_parent_id=new_parent_id, name=name, max_depth=max_depth)
    elif rename:
        await _ensure_unique_sibling_name(db, parent_id=project.parent_id, name=name, exclude_id=project.id)

    async with atomic(db):
        for key, value in changes.items():
            if value is None and key not in ("description", "color"):
                continue
            setattr(project, key, value)

        if rename:
            project.name = new_name
            parent_path = project.path.rsplit(PATH_SEPARATOR, 1)[0] if project.parent_id is not None else None
            new_path = new_name if parent_path is None else f"{parent_path}{PATH_SEPARATOR}{new_name}"
            await _relocate_subtree(db, project, new_path=new_path, new_depth=project.depth)
            logger.info(f"Project renamed: id={project.id}, new path={project.path}")

        if move:
            await _move(db, project=project, new_parent=new_parent)

    await db.refresh(project)
    return project


async def count_subtree_tasks(db: AsyncSession, project: ProjectDB) -> int:
    """Tasks of the project and of all its descendants."""
    subtree_ids = select(ProjectDB.id).where(
        or_(ProjectDB.id == project.id, ProjectDB.path.startswith(project.path + PATH_SEPARATOR, autoescape=True))
    )
    stmt = select(func.count(TaskDB.id)).where(TaskDB.project_id.in_(subtree_ids))
    result = await db.execute(stmt)
    return result.scalar_one()


async def delete_project(db: AsyncSession, project_id: int, force: bool = False) -> ProjectDB:
    """
    Delete a project. Subprojects, tasks, links, time sessions and grants go with it (ON DELETE CASCADE).
    Refuses if the project or any of its subprojects still has tasks, unless force is set.
    """
    project = await _get_project_or_raise(db, project_id)

    task_count = await count_subtree_tasks(db, project)
    if task_count > 0 and not force:
        raise ConflictError(f"Project has {task_count} task(s) in its subtree. Use force=true to delete it anyway.")

    async with atomic(db):
        await db.execute(delete(ProjectDB).where(ProjectDB.id == project_id))

    logger.info(f"Project deleted: id={project_id}, path={project.path}, force={force}")
    return project


async def find_ancestors(db: AsyncSession, project_id: int) -> list[ProjectDB]:
    """All ancestors of a project, root first. Resolved from the path prefixes in a single query."""
    project = await _get_project_or_raise(db, project_id)
    if project.parent_id is None:
        return []

    parts = project.path.split(PATH_SEPARATOR)
    prefixes = [PATH_SEPARATOR.join(parts[:i]) for i in range(1, len(parts))]
    stmt = select(ProjectDB).where(ProjectDB.path.in_(prefixes)).order_by(ProjectDB.depth)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_descendants(db: AsyncSession, project_id: int, max_depth: int | None = None) -> list[ProjectDB]:
    """
    All descendants of a project ordered by (depth, name).
    max_depth bounds the depth relative to the project (1 = children only), None for no bound.
    """
    project = await _get_project_or_raise(db, project_id)
    stmt = select(ProjectDB).where(ProjectDB.path.startswith(project.path + PATH_SEPARATOR, autoescape=True))
    if max_depth is not None:
        stmt = stmt.where(ProjectDB.depth <= project.depth + max_depth)
    result = await db.execute(stmt.order_by(ProjectDB.depth, ProjectDB.name))
    return list(result.scalars().all())


async def find_children(db: AsyncSession, project_id: int) -> list[ProjectDB]:
    """Direct children of a project ordered by name."""
    stmt = select(ProjectDB).where(ProjectDB.parent_id == project_id).order_by(ProjectDB.name)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_roots(db: AsyncSession) -> list[ProjectDB]:
    stmt = select(ProjectDB).where(ProjectDB.parent_id.is_(None)).order_by(ProjectDB.name)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_breadcrumb(db: AsyncSession, project_id: int) -> list[ProjectDB]:
    """Ancestors followed by the project itself."""
    ancestors = await find_ancestors(db, project_id)
    project = await _get_project_or_raise(db, project_id)
    return [*ancestors, project]


async def set_expanded(db: AsyncSession, project_id: int, is_expanded: bool) -> ProjectDB:
    """Persist whether the project is expanded in the tree view."""
    project = await _get_project_or_raise(db, project_id)
    project.is_expanded = is_expanded
    await db.commit()
    await db.refresh(project)
    return project


async def archive_project(
    db: AsyncSession, project_id: int, cascade: bool = False, cascade_tasks: bool = False
) -> tuple[int, ProjectDB]:
    """
    Set a project (and with cascade, all of its descendants) to archived in one batched update.

    cascade_tasks also archives the tasks of every archived project.
    Returns the number of archived projects and the refreshed project.
    """
    project = await _get_project_or_raise(db, project_id)

    project_ids = [project.id]
    if cascade:
        project_ids += [descendant.id for descendant in await _find_descendants_by_path(db, project.path)]

    async with atomic(db):
        await db.execute(update(ProjectDB).where(ProjectDB.id.in_(project_ids)).values(status=ProjectStatus.ARCHIVED))
        if cascade_tasks:
            await db.execute(
                update(TaskDB).where(TaskDB.project_id.in_(project_ids)).values(status=TaskStatus.ARCHIVED)
            )

    await db.refresh(project)
    logger.info(f"Archived {len(project_ids)} project(s) from id={project_id}, cascade={cascade}")
    return len(project_ids), project


async def reactivate_project(db: AsyncSession, project_id: int) -> ProjectDB:
    """Set an archived project back to active. Subprojects are left as they are."""
    project = await _get_project_or_raise(db, project_id)
    if project.status != ProjectStatus.ARCHIVED:
        raise ConflictError("Only archived projects can be reactivated")

    project.status = ProjectStatus.ACTIVE
    await db.commit()
    await db.refresh(project)
    logger.info(f"Project reactivated: id={project_id}")
    return project


async def count_projects_by_status(db: AsyncSession) -> dict[ProjectStatus, int]:
    stmt = select(ProjectDB.status, func.count(ProjectDB.id)).group_by(ProjectDB.status)
    result = await db.execute(stmt)
    counts = {status: 0 for status in ProjectStatus}
    for status, count in result.all():
        counts[ProjectStatus(status)] = count
    return counts


def build_project_tree(visible: list[VisibleProject]) -> ProjectTree:
    """
    Single pass tree construction. Input must be ordered by (depth, name) so that parents come first.
    A node whose parent is not in the input (e.g. not visible to the user) becomes a root.
    """
    flat_map: dict[int, ProjectTreeNode] = {}
    roots: list[ProjectTreeNode] = []

    for entry in visible:
        node = ProjectTreeNode(project=entry.project, permission=entry.permission)
        flat_map[entry.project.id] = node

        parent_node = flat_map.get(entry.project.parent_id) if entry.project.parent_id is not None else None
        if parent_node is None:
            roots.append(node)
        else:
            parent_node.children.append(node)

    for node in flat_map.values():
        node.children.sort(key=lambda child: child.project.name)
    roots.sort(key=lambda root: (root.project.depth, root.project.name))

    max_depth = max((node.project.depth for node in flat_map.values()), default=0)
    return ProjectTree(roots=roots, flat_map=flat_map, max_depth=max_depth)


async def get_project_tree(
    db: AsyncSession,
    identity: Identity | None,
    include_stats: bool = False,
    active_only: bool = False,
    use_legacy_access: bool = True,
) -> ProjectTree:
    """
    The project tree as seen by identity.

    With include_stats every node carries its direct stats and the stats summed over its (visible) subtree.
    active_only leaves out archived and inactive projects.
    """
    visible = await find_visible_projects(db, identity=identity, use_legacy_access=use_legacy_access)
    if active_only:
        visible = [
            entry
            for entry in visible
            if entry.project.is_active and entry.project.status != ProjectStatus.ARCHIVED
        ]

    tree = build_project_tree(visible)

    if include_stats and tree.flat_map:
        direct = await get_direct_stats(db, list(tree.flat_map))
        children_by_id = {
            node_id: [child.project.id for child in node.children] for node_id, node in tree.flat_map.items()
        }
        totals = aggregate_tree_stats(children_by_id, direct)
        for node_id, node in tree.flat_map.items():
            node.direct_stats = direct[node_id]
            node.subtree_stats = totals[node_id]

    return tree
