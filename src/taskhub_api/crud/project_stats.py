"""
Task statistics per project, and their aggregation over project subtrees.

get_direct_stats is the building block: one grouped query over the tasks table
for any number of projects. Subtree stats reuse it on the descendant closure.
"""

import math
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.exceptions import ProjectNotFoundError
from taskhub_api.models.projects import ProjectDB
from taskhub_api.models.tasks import TaskDB, TaskStatus


@dataclass
class ProjectDirectStats:
    """Stats over the tasks that belong to a single project, subprojects not included."""

    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    total_minutes: int = 0

    def __add__(self, other: "ProjectDirectStats") -> "ProjectDirectStats":
        return ProjectDirectStats(
            total_tasks=self.total_tasks + other.total_tasks,
            completed_tasks=self.completed_tasks + other.completed_tasks,
            in_progress_tasks=self.in_progress_tasks + other.in_progress_tasks,
            total_minutes=self.total_minutes + other.total_minutes,
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ProjectSubtreeStats:
    project_id: int
    direct: ProjectDirectStats
    total: ProjectDirectStats
    subproject_count: int


def normalize_numeric(value: Any) -> int:
    """
    Coerce whatever the driver hands back for an aggregate into an int.

    Postgres returns SUM() as Decimal, some drivers return numeric strings,
    and a SUM over no rows is NULL. NaN, None and anything unparseable become 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return 0 if math.isnan(value) or math.isinf(value) else int(value)
    if isinstance(value, Decimal):
        return 0 if not value.is_finite() else int(value)
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            return 0
        return int(parsed) if parsed.is_finite() else 0
    return 0


def _clean_project_ids(project_ids: Iterable[Any]) -> list[int]:
    """Deduplicate, keeping the first-seen order, and drop anything that is not an int id."""
    seen: dict[int, None] = {}
    for project_id in project_ids:
        if isinstance(project_id, int) and not isinstance(project_id, bool):
            seen.setdefault(project_id, None)
    return list(seen)


async def get_direct_stats(db: AsyncSession, project_ids: Iterable[Any]) -> dict[int, ProjectDirectStats]:
    """
    Direct stats for many projects in a single grouped query.

    The keys of the returned dict are exactly the (deduplicated) input ids,
    projects without tasks get zero-filled stats. Empty input does not touch the db.
    """
    ids = _clean_project_ids(project_ids)
    if not ids:
        return {}

    stmt = (
        select(
            TaskDB.project_id,
            func.count(TaskDB.id),
            func.sum(case((TaskDB.status == TaskStatus.DONE, 1), else_=0)),
            func.sum(case((TaskDB.status == TaskStatus.IN_PROGRESS, 1), else_=0)),
            func.coalesce(func.sum(TaskDB.actual_minutes), 0),
        )
        .where(TaskDB.project_id.in_(ids))
        .group_by(TaskDB.project_id)
    )
    result = await db.execute(stmt)

    stats = {project_id: ProjectDirectStats() for project_id in ids}
    for project_id, total, completed, in_progress, minutes in result.all():
        stats[project_id] = ProjectDirectStats(
            total_tasks=normalize_numeric(total),
            completed_tasks=normalize_numeric(completed),
            in_progress_tasks=normalize_numeric(in_progress),
            total_minutes=normalize_numeric(minutes),
        )
    return stats


def sum_stats(stats: Iterable[ProjectDirectStats]) -> ProjectDirectStats:
    total = ProjectDirectStats()
    for entry in stats:
        total = total + entry
    return total


def stats_from_tasks(tasks: Iterable[TaskDB]) -> ProjectDirectStats:
    """Same numbers as get_direct_stats, computed from task rows already in memory."""
    stats = ProjectDirectStats()
    for task in tasks:
        stats.total_tasks += 1
        if task.status == TaskStatus.DONE:
            stats.completed_tasks += 1
        elif task.status == TaskStatus.IN_PROGRESS:
            stats.in_progress_tasks += 1
        stats.total_minutes += normalize_numeric(task.actual_minutes)
    return stats


async def get_subtree_stats(
    db: AsyncSession, project_id: int, visible_ids: set[int] | None = None
) -> ProjectSubtreeStats:
    """
    Stats of a project plus all of its descendants.

    With visible_ids, a descendant outside the set is left out together with everything below it,
    matching how the tree view nests the projects a user can see.
    """
    project = await db.get(ProjectDB, project_id)
    if project is None:
        raise ProjectNotFoundError()

    stmt = (
        select(ProjectDB.id, ProjectDB.parent_id)
        .where(ProjectDB.path.startswith(project.path + "/", autoescape=True))
        .order_by(ProjectDB.depth)
    )
    result = await db.execute(stmt)

    included = {project_id}
    descendant_ids = []
    for descendant_id, parent_id in result.all():
        if parent_id not in included:
            continue
        if visible_ids is not None and descendant_id not in visible_ids:
            continue
        included.add(descendant_id)
        descendant_ids.append(descendant_id)

    direct = await get_direct_stats(db, [project_id, *descendant_ids])
    return ProjectSubtreeStats(
        project_id=project_id,
        direct=direct[project_id],
        total=sum_stats(direct.values()),
        subproject_count=len(descendant_ids),
    )


def aggregate_tree_stats(
    children_by_id: dict[int, list[int]], direct: dict[int, ProjectDirectStats]
) -> dict[int, ProjectDirectStats]:
    """
    Bottom-up sum of direct stats over an in-memory tree.

    children_by_id maps every node id to its child ids. Nodes missing from direct count as zero.
    Iterative post-order, so deep trees do not hit the recursion limit.
    """
    totals: dict[int, ProjectDirectStats] = {}
    for start_id in children_by_id:
        if start_id in totals:
            continue
        stack: list[tuple[int, bool]] = [(start_id, False)]
        while stack:
            node_id, children_done = stack.pop()
            if node_id in totals:
                continue
            child_ids = children_by_id.get(node_id, [])
            if children_done:
                own = direct.get(node_id, ProjectDirectStats())
                totals[node_id] = own + sum_stats(totals[child_id] for child_id in child_ids)
            else:
                stack.append((node_id, True))
                stack.extend((child_id, False) for child_id in child_ids if child_id not in totals)
    return totals
