"""
Unit tests for the project hierarchy in crud/projects.py:
materialized path/depth upkeep, cycle prevention, archive/delete semantics and the tree view.
"""

import pytest
from sqlalchemy import select

from taskhub_api.crud.permissions import get_user_permission, grant_permission
from taskhub_api.crud.projects import (
    ProjectFilters,
    archive_project,
    count_projects_by_status,
    create_project,
    delete_project,
    find_ancestors,
    find_children,
    find_descendants,
    find_roots,
    get_breadcrumb,
    get_project_tree,
    list_projects,
    move_project,
    reactivate_project,
    set_expanded,
    update_project,
)
from taskhub_api.exceptions import ConflictError, ProjectNotFoundError, ValidationError
from taskhub_api.models.projects import PermissionLevel, ProjectDB, ProjectStatus
from taskhub_api.models.tasks import TaskDB, TaskStatus
from taskhub_api.models.users import UserRole
from taskhub_api.schemas.projects import ProjectUpdate
from tests.helpers.api_setup import make_identity, make_project, make_task, project_create

pytestmark = pytest.mark.anyio


@pytest.fixture
async def abc(db):
    """A chain of projects A -> B -> C created through create_project."""
    admin = await make_identity(db, "boss", role=UserRole.ADMIN)
    a = await create_project(db, project_create("A"), creator=admin)
    b = await create_project(db, project_create("B", parent_id=a.id), creator=admin)
    c = await create_project(db, project_create("C", parent_id=b.id), creator=admin)
    return a, b, c


async def test_create_sets_path_and_depth(abc):
    a, b, c = abc
    assert (a.path, a.depth) == ("A", 0)
    assert (b.path, b.depth) == ("A/B", 1)
    assert (c.path, c.depth) == ("A/B/C", 2)


async def test_ancestors_and_descendants(db, abc):
    a, b, c = abc

    assert [p.name for p in await find_ancestors(db, c.id)] == ["A", "B"]
    assert await find_ancestors(db, a.id) == []
    assert [p.name for p in await find_descendants(db, a.id)] == ["B", "C"]
    assert [p.name for p in await find_descendants(db, a.id, max_depth=1)] == ["B"]
    assert [p.name for p in await get_breadcrumb(db, c.id)] == ["A", "B", "C"]
    assert [p.name for p in await find_children(db, a.id)] == ["B"]
    assert [p.name for p in await find_roots(db)] == ["A"]


async def test_descendants_are_matched_on_whole_path_segments(db):
    """A project named 'AB' is not a descendant of 'A' even though its path starts with 'A'."""
    a = await make_project(db, "A")
    await make_project(db, "AB")
    child = await make_project(db, "x_y", parent_id=a.id)
    await make_project(db, "A_", parent_id=None)

    assert [p.id for p in await find_descendants(db, a.id)] == [child.id]


async def test_creator_gets_project_admin_grant(db):
    member = await make_identity(db, "member")
    project = await create_project(db, project_create("Mine"), creator=member)

    assert project.created_by == member.user_id
    assert await get_user_permission(db, member.user_id, project.id) == PermissionLevel.PROJECT_ADMIN


async def test_admin_creator_gets_no_grant_row(db):
    admin = await make_identity(db, "boss", role=UserRole.ADMIN)
    project = await create_project(db, project_create("Theirs"), creator=admin)
    assert await get_user_permission(db, admin.user_id, project.id) is None


async def test_create_under_missing_parent(db):
    admin = await make_identity(db, "boss", role=UserRole.ADMIN)
    with pytest.raises(ProjectNotFoundError):
        await create_project(db, project_create("Orphan", parent_id=9999), creator=admin)


async def test_duplicate_sibling_names_are_rejected(db, abc):
    a, b, _ = abc
    admin = await make_identity(db, "other-admin", role=UserRole.ADMIN)

    with pytest.raises(ConflictError):
        await create_project(db, project_create("B", parent_id=a.id), creator=admin)
    with pytest.raises(ConflictError):
        await create_project(db, project_create("A"), creator=admin)

    # Same name under a different parent is fine.
    same_name = await create_project(db, project_create("B", parent_id=b.id), creator=admin)
    assert same_name.path == "A/B/B"


async def test_max_depth_on_create(db):
    admin = await make_identity(db, "boss", role=UserRole.ADMIN)
    root = await create_project(db, project_create("root"), creator=admin, max_depth=1)
    child = await create_project(db, project_create("child", parent_id=root.id), creator=admin, max_depth=1)

    with pytest.raises(ValidationError):
        await create_project(db, project_create("grandchild", parent_id=child.id), creator=admin, max_depth=1)


async def test_move_into_itself_or_descendant_is_rejected(db, abc):
    a_id, b_id, c_id = (project.id for project in abc)

    with pytest.raises(ValidationError):
        await move_project(db, a_id, new_parent_id=a_id)
    with pytest.raises(ValidationError):
        await move_project(db, a_id, new_parent_id=c_id)
    with pytest.raises(ValidationError):
        await move_project(db, a_id, new_parent_id=b_id)

    a = await db.get(ProjectDB, a_id)
    await db.refresh(a)
    assert (a.parent_id, a.path, a.depth) == (None, "A", 0)


async def test_rejected_move_leaves_loaded_projects_usable(db, abc):
    """Moves are validated before the transaction opens, so nothing is rolled back and expired."""
    a, b, c = abc

    with pytest.raises(ValidationError):
        await move_project(db, a.id, new_parent_id=c.id)
    with pytest.raises(ValidationError):
        await update_project(db, b.id, ProjectUpdate(parent_id=c.id))

    assert (a.path, b.path, c.path) == ("A", "A/B", "A/B/C")


async def test_update_with_rename_and_move_checks_new_name_at_destination(db, abc):
    _, b, _ = abc
    x = await make_project(db, "X")
    await make_project(db, "Taken", parent_id=x.id)
    await make_project(db, "B", parent_id=x.id)

    with pytest.raises(ConflictError):
        await update_project(db, b.id, ProjectUpdate(name="Taken", parent_id=x.id))

    updated = await update_project(db, b.id, ProjectUpdate(name="Fresh", parent_id=x.id))
    assert (updated.path, updated.depth) == ("X/Fresh", 1)


async def test_move_rewrites_subtree_paths(db, abc):
    a, b, c = abc
    x = await make_project(db, "X")

    moved = await move_project(db, b.id, new_parent_id=x.id)
    await db.refresh(c)

    assert (moved.parent_id, moved.path, moved.depth) == (x.id, "X/B", 1)
    assert (c.path, c.depth) == ("X/B/C", 2)
    assert await find_descendants(db, a.id) == []


async def test_move_to_root_level(db, abc):
    _, b, c = abc

    moved = await move_project(db, b.id, new_parent_id=None)
    await db.refresh(c)

    assert (moved.parent_id, moved.path, moved.depth) == (None, "B", 0)
    assert (c.path, c.depth) == ("B/C", 1)


async def test_move_respects_max_depth_of_whole_subtree(db, abc):
    _, b, _ = abc
    x = await make_project(db, "X")
    y = await make_project(db, "Y", parent_id=x.id)

    # B would land at depth 2 and C at depth 3.
    with pytest.raises(ValidationError):
        await move_project(db, b.id, new_parent_id=y.id, max_depth=2)


async def test_move_to_parent_with_sibling_of_same_name(db, abc):
    _, b, _ = abc
    x = await make_project(db, "X")
    await make_project(db, "B", parent_id=x.id)

    with pytest.raises(ConflictError):
        await move_project(db, b.id, new_parent_id=x.id)


async def test_move_to_missing_parent(db, abc):
    _, b, _ = abc
    with pytest.raises(ProjectNotFoundError):
        await move_project(db, b.id, new_parent_id=9999)


async def test_rename_rewrites_subtree_paths(db, abc):
    a, b, c = abc

    renamed = await update_project(db, a.id, ProjectUpdate(name="Alpha"))
    await db.refresh(b)
    await db.refresh(c)

    assert renamed.path == "Alpha"
    assert b.path == "Alpha/B"
    assert c.path == "Alpha/B/C"
    assert (b.depth, c.depth) == (1, 2)


async def test_rename_to_sibling_name_conflicts(db, abc):
    a, _, _ = abc
    sibling = await make_project(db, "Other")

    with pytest.raises(ConflictError):
        await update_project(db, sibling.id, ProjectUpdate(name="A"))


async def test_update_with_parent_id_moves(db, abc):
    a, b, c = abc
    x = await make_project(db, "X")

    updated = await update_project(db, c.id, ProjectUpdate(parent_id=x.id, description="moved"))
    assert (updated.path, updated.depth, updated.description) == ("X/C", 1, "moved")

    with pytest.raises(ValidationError):
        await update_project(db, a.id, ProjectUpdate(parent_id=b.id))


async def test_delete_with_tasks_needs_force(db, abc):
    a, b, c = abc
    await make_task(db, a.id)

    with pytest.raises(ConflictError):
        await delete_project(db, a.id)

    await delete_project(db, a.id, force=True)

    remaining = (await db.execute(select(ProjectDB.id))).scalars().all()
    assert remaining == []
    assert (await db.execute(select(TaskDB.id))).scalars().all() == []


async def test_delete_counts_tasks_of_subprojects(db, abc):
    _, b, c = abc
    await make_task(db, c.id)

    with pytest.raises(ConflictError):
        await delete_project(db, b.id)


async def test_delete_empty_subtree_without_force(db, abc):
    a, _, _ = abc
    deleted = await delete_project(db, a.id)

    assert deleted.path == "A"
    assert (await db.execute(select(ProjectDB.id))).scalars().all() == []


async def test_delete_missing_project(db):
    with pytest.raises(ProjectNotFoundError):
        await delete_project(db, 9999)


async def test_archive_without_cascade_only_archives_the_project(db, abc):
    a, b, _ = abc

    count, project = await archive_project(db, a.id)
    await db.refresh(b)

    assert count == 1
    assert project.status == ProjectStatus.ARCHIVED
    assert b.status == ProjectStatus.ACTIVE


async def test_archive_cascade_leaves_tasks_alone_by_default(db, abc):
    a, b, c = abc
    task = await make_task(db, c.id, status=TaskStatus.IN_PROGRESS)

    count, _ = await archive_project(db, a.id, cascade=True)
    await db.refresh(b)
    await db.refresh(c)
    await db.refresh(task)

    assert count == 3
    assert {b.status, c.status} == {ProjectStatus.ARCHIVED}
    assert task.status == TaskStatus.IN_PROGRESS


async def test_archive_cascade_tasks(db, abc):
    a, _, c = abc
    task = await make_task(db, c.id)

    await archive_project(db, a.id, cascade=True, cascade_tasks=True)
    await db.refresh(task)

    assert task.status == TaskStatus.ARCHIVED


async def test_reactivate_only_archived_projects(db, abc):
    a, b, _ = abc

    with pytest.raises(ConflictError):
        await reactivate_project(db, a.id)

    await archive_project(db, a.id, cascade=True)
    reactivated = await reactivate_project(db, a.id)
    await db.refresh(b)

    assert reactivated.status == ProjectStatus.ACTIVE
    assert b.status == ProjectStatus.ARCHIVED


async def test_count_projects_by_status(db, abc):
    a, _, _ = abc
    await archive_project(db, a.id)

    counts = await count_projects_by_status(db)
    assert counts == {ProjectStatus.ACTIVE: 2, ProjectStatus.DONE: 0, ProjectStatus.ARCHIVED: 1}


async def test_set_expanded(db, abc):
    a, _, _ = abc
    project = await set_expanded(db, a.id, is_expanded=False)
    assert project.is_expanded is False


async def test_list_projects_filters(db, abc):
    a, b, _ = abc
    admin = await make_identity(db, "other-admin", role=UserRole.ADMIN)
    await archive_project(db, b.id)

    roots = await list_projects(db, admin, ProjectFilters(roots_only=True))
    assert [entry.project.name for entry in roots] == ["A"]

    children = await list_projects(db, admin, ProjectFilters(parent_id=a.id))
    assert [entry.project.name for entry in children] == ["B"]

    archived = await list_projects(db, admin, ProjectFilters(status=ProjectStatus.ARCHIVED))
    assert [entry.project.name for entry in archived] == ["B"]

    searched = await list_projects(db, admin, ProjectFilters(search="c"))
    assert [entry.project.name for entry in searched] == ["C"]


def test_project_filters_reject_parent_and_roots_only():
    with pytest.raises(ValidationError):
        ProjectFilters(parent_id=1, roots_only=True)


async def test_tree_structure_and_stats(db, abc):
    a, b, c = abc
    admin = await make_identity(db, "other-admin", role=UserRole.ADMIN)
    await make_task(db, a.id, status=TaskStatus.DONE, actual_minutes=30)
    await make_task(db, a.id)
    await make_task(db, c.id, status=TaskStatus.IN_PROGRESS)

    tree = await get_project_tree(db, admin, include_stats=True)

    assert [root.project.id for root in tree.roots] == [a.id]
    assert tree.max_depth == 2
    assert set(tree.flat_map) == {a.id, b.id, c.id}

    root = tree.roots[0]
    assert root.has_children
    assert [child.project.id for child in root.children] == [b.id]
    assert root.direct_stats.total_tasks == 2
    assert root.direct_stats.completed_tasks == 1
    assert root.direct_stats.total_minutes == 30
    assert root.subtree_stats.total_tasks == 3
    assert root.subtree_stats.in_progress_tasks == 1

    b_node = tree.flat_map[b.id]
    assert b_node.direct_stats.total_tasks == 0
    assert b_node.subtree_stats.total_tasks == 1
    assert not tree.flat_map[c.id].has_children


async def test_tree_promotes_nodes_with_invisible_parent_to_roots(db):
    member = await make_identity(db, "member")
    hidden = await make_project(db, "hidden", is_public=False)
    visible_child = await make_project(db, "child", parent_id=hidden.id, is_public=True)
    granted = await make_project(db, "granted", is_public=False)
    await grant_permission(db, member.user_id, granted.id, PermissionLevel.VIEW_ONLY, granted_by=None)

    tree = await get_project_tree(db, member)

    assert hidden.id not in tree.flat_map
    assert {root.project.id for root in tree.roots} == {visible_child.id, granted.id}
    assert tree.flat_map[granted.id].permission == PermissionLevel.VIEW_ONLY


async def test_tree_active_only_drops_archived_and_inactive(db, abc):
    a, b, c = abc
    admin = await make_identity(db, "other-admin", role=UserRole.ADMIN)
    await archive_project(db, b.id)
    inactive = await make_project(db, "Inactive", is_active=False)

    tree = await get_project_tree(db, admin, active_only=True)

    assert b.id not in tree.flat_map
    assert inactive.id not in tree.flat_map
    # C lost its parent in the view, so it is shown as a root.
    assert {root.project.id for root in tree.roots} == {a.id, c.id}


async def test_empty_tree(db):
    tree = await get_project_tree(db, None, include_stats=True)
    assert tree.roots == []
    assert tree.flat_map == {}
    assert tree.max_depth == 0
