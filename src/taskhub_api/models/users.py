"""
User DB Model.
"""

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub_api.models.base import BaseDBModel, str_enum

if TYPE_CHECKING:
    from taskhub_api.models.projects import ProjectUserDB


class UserRole(StrEnum):
    """
    Global role of a user.

    - ADMIN: Full access to every project, no grants needed, can manage users.
    - MEMBER: Access decided per project (public flag + grants).
    """

    ADMIN = "admin"
    MEMBER = "member"


class UserStatus(StrEnum):
    """New signups are PENDING until an admin approves them."""

    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class UserDB(BaseDBModel):
    """
    DB Model for a user.

    id, created_at and updated_at are inherited from BaseDBModel.

    project_access is the legacy JSON list of project ids from before the project_users table.
    It is only read through crud.permissions.legacy_project_access.
    """

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(100), index=True, unique=True)
    password_hash: Mapped[str] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(String(255), index=True, unique=True, nullable=True)

    role: Mapped[UserRole] = mapped_column(str_enum(UserRole, "user_role"), default=UserRole.MEMBER)
    status: Mapped[UserStatus] = mapped_column(str_enum(UserStatus, "user_status"), default=UserStatus.PENDING)
    project_access: Mapped[str] = mapped_column(Text, default="[]", server_default="[]")
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    project_grants: Mapped[list["ProjectUserDB"]] = relationship(
        "ProjectUserDB", back_populates="user", foreign_keys="ProjectUserDB.user_id"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<UserDB id={self.id}, username={self.username}, role={self.role}, status={self.status}>"
