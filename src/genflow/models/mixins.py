"""
Mixins for SQLAlchemy models.
Provides reusable column sets for timestamps.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    """
    Adds creation/update timestamps to any model.

    Provides:
    - created_at: UTC timestamp when the row is created
    - updated_at: UTC timestamp when the row was last modified

    Both are set on the Python side so that SQLite (tests) and PostgreSQL
    produce identical values, and so guarded bulk UPDATEs can set
    ``updated_at`` explicitly.

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            id = uuid_pk()
    """

    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="UTC timestamp when record was created",
    )

    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="UTC timestamp when record was last updated",
    )
