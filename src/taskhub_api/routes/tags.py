"""
Routes for tags. Tags are global, any logged in user can create them.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub_api.crud.tasks import create_tag, list_tags
from taskhub_api.db import get_db
from taskhub_api.deps import get_current_identity
from taskhub_api.schemas.tasks import TagCreate, TagResponse
from taskhub_api.security import Identity

tags_router = APIRouter()


@tags_router.get("", response_model=list[TagResponse], status_code=status.HTTP_200_OK)
async def list_tags_endpoint(db: AsyncSession = Depends(get_db)):
    return [TagResponse.model_validate(tag) for tag in await list_tags(db)]


@tags_router.post("", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag_endpoint(
    tag_data: TagCreate, db: AsyncSession = Depends(get_db), identity: Identity = Depends(get_current_identity)
):
    tag = await create_tag(db, tag_data=tag_data)
    return TagResponse.model_validate(tag)
