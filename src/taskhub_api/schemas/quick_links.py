"""
Pydantic schemas for project quick links.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskhub_api.models.quick_links import LinkCategory


def _validate_url(v: str | None) -> str | None:
    if v is not None and not v.lower().startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return v


class QuickLinkCreate(BaseModel):
    project_id: int
    title: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1, max_length=2000)
    category: LinkCategory = LinkCategory.OTHER
    position: int | None = Field(None, ge=0)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("url")
    @classmethod
    def url_is_http(cls, v):
        return _validate_url(v)


class QuickLinkUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    url: str | None = Field(None, min_length=1, max_length=2000)
    category: LinkCategory | None = None
    position: int | None = Field(None, ge=0)

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("url")
    @classmethod
    def url_is_http(cls, v):
        return _validate_url(v)


class QuickLinkReorder(BaseModel):
    link_ids: list[int] = Field(..., min_length=1)
    category: LinkCategory


class QuickLinkResponse(BaseModel):
    """Response schema, aka returned by API endpoints."""

    id: int
    project_id: int
    title: str
    url: str
    category: LinkCategory
    position: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
