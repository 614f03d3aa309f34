"""
Unit tests for per project task stats and their aggregation over subtrees.
"""

from decimal import Decimal

import pytest

from taskhub_api.crud.project_stats import (
    ProjectDirectStats,
    aggregate_tree_stats,
    get_direct_stats,
    get_subtree_stats,
    normalize_numeric,
    stats_from_tasks,
    sum_stats,
)
from taskhub_api.exceptions import ProjectNotFoundError
from taskhub_api.models.tasks import TaskStatus
from tests.helpers.api_setup import make_project, make_task

pytestmark = pytest.mark.anyio


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, 0),
        (7, 7),
        (Decimal("12"), 12),
        (Decimal("NaN"), 0),
        ("42", 42),
        (" 3 ", 3),
        ("not a number", 0),
        (float("nan"), 0),
        (float("inf"), 0),
        (2.9, 2),
        (True, 0),
        (object(), 0),
    ],
)
def test_normalize_numeric(value, expected):
    assert normalize_numeric(value) == expected


def test_direct_stats_add():
    total = ProjectDirectStats(1, 2, 3, 4) + ProjectDirectStats(10, 20, 30, 40)
    assert total == ProjectDirectStats(11, 22, 33, 44)
    assert sum_stats([]) == ProjectDirectStats()


async def test_get_direct_stats_on_empty_input_returns_empty_dict(db):
    assert await get_direct_stats(db, []) == {}


async def test_get_direct_stats_keys_equal_input_ids(db):
    busy = await make_project(db, "busy")
    idle = await make_project(db, "idle")
    await make_task(db, busy.id, status=TaskStatus.DONE, actual_minutes=25)
    await make_task(db, busy.id, status=TaskStatus.DONE, actual_minutes=5)
    await make_task(db, busy.id, status=TaskStatus.IN_PROGRESS)
    await make_task(db, busy.id)

    stats = await get_direct_stats(db, [busy.id, idle.id, busy.id, 9999])

    assert list(stats) == [busy.id, idle.id, 9999]
    assert stats[busy.id] == ProjectDirectStats(
        total_tasks=4, completed_tasks=2, in_progress_tasks=1, total_minutes=30
    )
    assert stats[idle.id] == ProjectDirectStats()
    assert stats[9999] == ProjectDirectStats()


async def test_get_direct_stats_ignores_non_int_ids(db):
    project = await make_project(db, "p")
    stats = await get_direct_stats(db, [project.id, "1", None, True])
    assert list(stats) == [project.id]


async def test_stats_from_tasks_matches_the_grouped_query(db):
    project = await make_project(db, "p")
    tasks = [
        await make_task(db, project.id, status=TaskStatus.DONE, actual_minutes=10),
        await make_task(db, project.id, status=TaskStatus.IN_PROGRESS),
        await make_task(db, project.id, status=TaskStatus.ARCHIVED, actual_minutes=3),
    ]

    from_db = await get_direct_stats(db, [project.id])
    assert stats_from_tasks(tasks) == from_db[project.id]


async def test_get_subtree_stats(db):
    root = await make_project(db, "root")
    child = await make_project(db, "child", parent_id=root.id)
    grandchild = await make_project(db, "grandchild", parent_id=child.id)
    lookalike = await make_project(db, "root2")
    await make_task(db, root.id)
    await make_task(db, grandchild.id, status=TaskStatus.DONE, actual_minutes=45)
    await make_task(db, lookalike.id)

    stats = await get_subtree_stats(db, root.id)

    assert stats.subproject_count == 2
    assert stats.direct == ProjectDirectStats(total_tasks=1)
    assert stats.total == ProjectDirectStats(total_tasks=2, completed_tasks=1, total_minutes=45)


async def test_get_subtree_stats_leaves_out_hidden_branches(db):
    """A descendant outside visible_ids is skipped with everything below it, even visible grandchildren."""
    root = await make_project(db, "root")
    shown = await make_project(db, "shown", parent_id=root.id)
    hidden = await make_project(db, "hidden", parent_id=root.id, is_public=False)
    below_hidden = await make_project(db, "below", parent_id=hidden.id)
    for project in (root, shown, hidden, below_hidden):
        await make_task(db, project.id)

    stats = await get_subtree_stats(db, root.id, visible_ids={root.id, shown.id, below_hidden.id})

    assert stats.subproject_count == 1
    assert stats.total == ProjectDirectStats(total_tasks=2)

    everything = await get_subtree_stats(db, root.id)
    assert everything.subproject_count == 3
    assert everything.total.total_tasks == 4


async def test_get_subtree_stats_of_missing_project(db):
    with pytest.raises(ProjectNotFoundError):
        await get_subtree_stats(db, 9999)


def test_aggregate_tree_stats_sums_bottom_up():
    #    1
    #   / \
    #  2   3
    #  |
    #  4
    children_by_id = {1: [2, 3], 2: [4], 3: [], 4: []}
    direct = {
        1: ProjectDirectStats(total_tasks=1),
        2: ProjectDirectStats(total_tasks=2, total_minutes=10),
        4: ProjectDirectStats(total_tasks=4, completed_tasks=4),
    }

    totals = aggregate_tree_stats(children_by_id, direct)

    assert totals[4] == ProjectDirectStats(total_tasks=4, completed_tasks=4)
    assert totals[3] == ProjectDirectStats()
    assert totals[2] == ProjectDirectStats(total_tasks=6, completed_tasks=4, total_minutes=10)
    assert totals[1] == ProjectDirectStats(total_tasks=7, completed_tasks=4, total_minutes=10)


def test_aggregate_tree_stats_handles_deep_chains():
    depth = 5000
    children_by_id = {node_id: [node_id + 1] for node_id in range(depth)}
    children_by_id[depth] = []
    direct = {node_id: ProjectDirectStats(total_tasks=1) for node_id in range(depth + 1)}

    totals = aggregate_tree_stats(children_by_id, direct)

    assert totals[0].total_tasks == depth + 1
    assert totals[depth].total_tasks == 1
