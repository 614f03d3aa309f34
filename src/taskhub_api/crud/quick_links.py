"""
CRUD operations for project quick links (bookmarks).
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.projects import get_project_by_id
from taskhub_api.db import atomic
from taskhub_api.exceptions import ProjectNotFoundError, QuickLinkNotFoundError, ValidationError
from taskhub_api.models.quick_links import LinkCategory, QuickLinkDB
from taskhub_api.schemas.quick_links import QuickLinkCreate, QuickLinkUpdate

logger = logging.getLogger(__name__)


@dataclass
class QuickLinkFilters:
    project_id: int | None = None
    project_ids: list[int] | None = None
    category: LinkCategory | None = None


async def get_quick_link_by_id(db: AsyncSession, id: int) -> QuickLinkDB | None:
    """Get quick link by ID."""
    return await db.get(entity=QuickLinkDB, ident=id)


async def get_quick_link_by_id_or_raise(db: AsyncSession, id: int) -> QuickLinkDB:
    link = await get_quick_link_by_id(db=db, id=id)
    if link is None:
        raise QuickLinkNotFoundError()
    return link


async def list_quick_links(db: AsyncSession, filters: QuickLinkFilters) -> list[QuickLinkDB]:
    """Links ordered by (position, title)."""
    stmt = select(QuickLinkDB)
    if filters.project_id is not None:
        stmt = stmt.where(QuickLinkDB.project_id == filters.project_id)
    if filters.project_ids is not None:
        stmt = stmt.where(QuickLinkDB.project_id.in_(filters.project_ids))
    if filters.category is not None:
        stmt = stmt.where(QuickLinkDB.category == filters.category)
    result = await db.execute(stmt.order_by(QuickLinkDB.position, QuickLinkDB.title, QuickLinkDB.id))
    return list(result.scalars().all())


def group_by_category(links: list[QuickLinkDB]) -> dict[LinkCategory, list[QuickLinkDB]]:
    """Every category is present in the result, in declaration order, even if it has no links."""
    grouped: dict[LinkCategory, list[QuickLinkDB]] = {category: [] for category in LinkCategory}
    for link in links:
        grouped[LinkCategory(link.category)].append(link)
    return grouped


async def create_quick_link(db: AsyncSession, link_data: QuickLinkCreate) -> QuickLinkDB:
    """Create a link, appended to the end of its category unless a position is given."""
    if await get_project_by_id(db=db, id=link_data.project_id) is None:
        raise ProjectNotFoundError()

    link = QuickLinkDB(**link_data.model_dump())
    if link.position is None:
        stmt = select(func.max(QuickLinkDB.position)).where(
            QuickLinkDB.project_id == link_data.project_id, QuickLinkDB.category == link_data.category
        )
        current_max = (await db.execute(stmt)).scalar_one_or_none()
        link.position = 0 if current_max is None else current_max + 1

    db.add(link)
    await db.commit()
    await db.refresh(link)
    return link


async def update_quick_link(db: AsyncSession, link_id: int, link_data: QuickLinkUpdate) -> QuickLinkDB:
    link = await get_quick_link_by_id_or_raise(db=db, id=link_id)
    for field, value in link_data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(link, field, value)
    await db.commit()
    await db.refresh(link)
    return link


async def delete_quick_link(db: AsyncSession, link_id: int) -> QuickLinkDB:
    link = await get_quick_link_by_id_or_raise(db=db, id=link_id)
    await db.delete(link)
    await db.commit()
    return link


async def get_quick_links_by_ids(db: AsyncSession, link_ids: list[int]) -> list[QuickLinkDB]:
    """Links in the same order as link_ids. Raises if any id does not exist."""
    result = await db.execute(select(QuickLinkDB).where(QuickLinkDB.id.in_(link_ids)))
    links_by_id = {link.id: link for link in result.scalars().all()}
    missing = [link_id for link_id in link_ids if link_id not in links_by_id]
    if missing:
        raise QuickLinkNotFoundError(f"Quick link(s) not found: {missing}")
    return [links_by_id[link_id] for link_id in link_ids]


async def reorder_quick_links(db: AsyncSession, link_ids: list[int], category: LinkCategory) -> list[QuickLinkDB]:
    """Positions 0..n-1 in the order of link_ids. All links must exist and belong to category."""
    if len(set(link_ids)) != len(link_ids):
        raise ValidationError("Quick link ids must be unique")

    links = await get_quick_links_by_ids(db, link_ids)
    if any(link.category != category for link in links):
        raise ValidationError(f"All quick links must be in the '{category.value}' category")

    async with atomic(db):
        for position, link in enumerate(links):
            link.position = position

    for link in links:
        await db.refresh(link)
    return links
