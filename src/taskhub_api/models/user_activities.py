"""
User activity DB Model, an append only audit log of logins and mutations.
"""

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from taskhub_api.models.base import BaseDBModel


class UserActivityDB(BaseDBModel):
    """
    DB model for one logged user action.

    details holds a JSON encoded dict with extra context (e.g. changed fields).
    """

    __tablename__ = "user_activities"

    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(100))
    resource_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<UserActivityDB id={self.id}, user_id={self.user_id}, action={self.action}>"
