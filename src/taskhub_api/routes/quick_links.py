"""
Routes for project quick links.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.api_config import Settings
from taskhub_api.crud.quick_links import (
    QuickLinkFilters,
    create_quick_link,
    delete_quick_link,
    get_quick_link_by_id_or_raise,
    get_quick_links_by_ids,
    group_by_category,
    list_quick_links,
    reorder_quick_links,
    update_quick_link,
)
from taskhub_api.db import get_db
from taskhub_api.deps import authorize_project, get_current_identity, get_identity, get_settings
from taskhub_api.models.projects import PermissionLevel
from taskhub_api.models.quick_links import LinkCategory
from taskhub_api.routes.tasks import visible_project_ids
from taskhub_api.schemas.quick_links import QuickLinkCreate, QuickLinkReorder, QuickLinkResponse, QuickLinkUpdate
from taskhub_api.security import Identity

quick_links_router = APIRouter()


@quick_links_router.get("", status_code=status.HTTP_200_OK)
async def list_quick_links_endpoint(
    project_id: int | None = None,
    category: LinkCategory | None = None,
    grouped: bool = False,
    db: AsyncSession = Depends(get_db),
    identity: Identity | None = Depends(get_identity),
    settings: Settings = Depends(get_settings),
) -> list[QuickLinkResponse] | dict[LinkCategory, list[QuickLinkResponse]]:
    """List links ordered by position. With grouped=true the links are returned per category."""
    filters = QuickLinkFilters(project_id=project_id, category=category)
    if project_id is not None:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.VIEW_ONLY)
    else:
        filters.project_ids = await visible_project_ids(db, identity, settings)

    links = await list_quick_links(db, filters)
    if grouped:
        return {
            category: [QuickLinkResponse.model_validate(link) for link in category_links]
            for category, category_links in group_by_category(links).items()
        }
    return [QuickLinkResponse.model_validate(link) for link in links]


@quick_links_router.post("", response_model=QuickLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_quick_link_endpoint(
    link_data: QuickLinkCreate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    await authorize_project(db, identity, settings, link_data.project_id, PermissionLevel.EDITOR)
    link = await create_quick_link(db, link_data=link_data)
    return QuickLinkResponse.model_validate(link)


@quick_links_router.post("/reorder", response_model=list[QuickLinkResponse], status_code=status.HTTP_200_OK)
async def reorder_quick_links_endpoint(
    reorder_data: QuickLinkReorder,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    links = await get_quick_links_by_ids(db, reorder_data.link_ids)
    for project_id in {link.project_id for link in links}:
        await authorize_project(db, identity, settings, project_id, PermissionLevel.EDITOR)

    links = await reorder_quick_links(db, link_ids=reorder_data.link_ids, category=reorder_data.category)
    return [QuickLinkResponse.model_validate(link) for link in links]


@quick_links_router.put("/{link_id}", response_model=QuickLinkResponse, status_code=status.HTTP_200_OK)
async def update_quick_link_endpoint(
    link_id: int,
    link_data: QuickLinkUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    link = await get_quick_link_by_id_or_raise(db=db, id=link_id)
    await authorize_project(db, identity, settings, link.project_id, PermissionLevel.EDITOR)
    link = await update_quick_link(db, link_id=link_id, link_data=link_data)
    return QuickLinkResponse.model_validate(link)


@quick_links_router.delete("/{link_id}", status_code=status.HTTP_200_OK)
async def delete_quick_link_endpoint(
    link_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
    settings: Settings = Depends(get_settings),
):
    link = await get_quick_link_by_id_or_raise(db=db, id=link_id)
    await authorize_project(db, identity, settings, link.project_id, PermissionLevel.EDITOR)
    await delete_quick_link(db, link_id=link_id)
    return {"message": "Quick link deleted successfully", "id": link_id}
