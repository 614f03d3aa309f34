"""
Base DB Model inherited by all other models.
"""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Enum, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class BaseDBModel(Base):
    """Base model with common fields. Inherited by all other models."""

    __abstract__ = True
    # Fetch server generated timestamps straight after INSERT/UPDATE, so no lazy load is needed later on.
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


def str_enum(enum_cls: type[StrEnum], name: str) -> Enum:
    """
    Column type for a StrEnum that is persisted by its value ("view_only") rather than
    by its member name ("VIEW_ONLY"), which is SQLAlchemy's default.
    """
    return Enum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])
