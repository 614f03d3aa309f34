"""
Project DB Model and the project permission grant table.
"""

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub_api.models.base import BaseDBModel, str_enum

if TYPE_CHECKING:
    from taskhub_api.models.users import UserDB


class ProjectStatus(StrEnum):
    ACTIVE = "active"
    DONE = "done"
    ARCHIVED = "archived"


class ProjectDB(BaseDBModel):
    """
    DB Model for a project. Projects form a tree through parent_id.

    id, created_at and updated_at are inherited from BaseDBModel.

    path and depth are denormalized from the parent chain:
    - root: depth == 0 and path == name
    - child: depth == parent.depth + 1 and path == parent.path + "/" + name
    They are kept in sync for the whole subtree by crud.projects on every rename and move.
    """

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(255), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(50), default="--nord8", nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[ProjectStatus] = mapped_column(
        str_enum(ProjectStatus, "project_status"), default=ProjectStatus.ACTIVE, index=True
    )
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # ondelete=cascade: deleting a project deletes its whole subtree.
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True
    )
    path: Mapped[str] = mapped_column(String(1000), index=True)
    depth: Mapped[int] = mapped_column(Integer, default=0)
    is_expanded: Mapped[bool] = mapped_column(Boolean, default=True)

    user_grants: Mapped[list["ProjectUserDB"]] = relationship(
        "ProjectUserDB", back_populates="project", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<ProjectDB id={self.id}, path={self.path}, depth={self.depth}, is_public={self.is_public}>"


class PermissionLevel(StrEnum):
    """
    Levels grantable to a user in a project, in strictly increasing order of privilege.

    - VIEW_ONLY: Can view the project, its tasks, links and time sessions.
    - EDITOR: Can VIEW_ONLY + create/edit/complete tasks, links and time sessions.
    - PROJECT_ADMIN: Can EDITOR + edit the project itself and grant/revoke access.

    Note: Global admin users need no grant, they have access to all projects.
    """

    VIEW_ONLY = "view_only"
    EDITOR = "editor"
    PROJECT_ADMIN = "project_admin"


class ProjectUserDB(BaseDBModel):
    """
    DB Model for the many-to-many permission grants between users and projects.

    id, created_at and updated_at are inherited from BaseDBModel.
    The unique constraint on (user_id, project_id) is what grant upserts conflict on.
    """

    __tablename__ = "project_users"

    # ondelete=cascade ensures if user or project is deleted, their grants are also deleted.
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), index=True)

    permission_level: Mapped[PermissionLevel] = mapped_column(
        str_enum(PermissionLevel, "permission_level"), default=PermissionLevel.VIEW_ONLY, index=True
    )
    granted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped["UserDB"] = relationship("UserDB", back_populates="project_grants", foreign_keys=[user_id])
    project: Mapped["ProjectDB"] = relationship("ProjectDB", back_populates="user_grants")

    __table_args__ = (UniqueConstraint("user_id", "project_id", name="unique_user_project"),)

    def __repr__(self) -> str:
        return (
            f"<ProjectUserDB id={self.id}, user_id={self.user_id}, project_id={self.project_id}, "
            f"permission_level={self.permission_level}>"
        )
