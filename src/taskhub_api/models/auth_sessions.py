"""
Auth session DB Model.

Sessions are opaque random tokens stored server side and handed to the browser in a cookie.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from taskhub_api.models.base import Base


class AuthSessionDB(Base):
    """
    DB model for a login (or anonymous browsing) session.

    Does not inherit from BaseDBModel as the primary key is the session token itself.
    user_id is NULL for anonymous sessions.
    """

    __tablename__ = "auth_sessions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<AuthSessionDB user_id={self.user_id}, expires_at={self.expires_at}>"
