"""Base model class for SQLAlchemy ORM."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models.

    Datetimes are stored naive and calendar-local; bonus periods are defined
    in the business's wall-clock time.
    """

    type_annotation_map = {
        UUID: Uuid(as_uuid=True),
        datetime: DateTime(timezone=False),
    }

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class TimestampMixin:
    """Mixin for models with created_at timestamp."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=datetime.now,
        nullable=False,
    )


class UpdatedAtMixin(TimestampMixin):
    """Mixin for models tracking both creation and last update."""

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=datetime.now,
        onupdate=datetime.now,
        nullable=False,
    )
