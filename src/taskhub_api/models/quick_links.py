"""
Quick link DB Model.
"""

from enum import StrEnum

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from taskhub_api.models.base import BaseDBModel, str_enum


class LinkCategory(StrEnum):
    DOCS = "docs"
    TOOLS = "tools"
    RESOURCES = "resources"
    OTHER = "other"


class QuickLinkDB(BaseDBModel):
    """
    DB Model for a bookmark attached to a project.

    id, created_at and updated_at are inherited from BaseDBModel.
    """

    __tablename__ = "quick_links"

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(Text)
    category: Mapped[LinkCategory] = mapped_column(str_enum(LinkCategory, "link_category"), default=LinkCategory.OTHER)
    position: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<QuickLinkDB id={self.id}, project_id={self.project_id}, title={self.title}>"
