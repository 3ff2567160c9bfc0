"""
Base mixins for database models.

Provides common functionality:
- TimestampMixin: created_at, updated_at timestamps
- generate_uuid: UUID generation for primary keys
"""

import uuid

from sqlalchemy import Column, DateTime, func

from fieldops.db_base import Base


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )


__all__ = ["Base", "TimestampMixin", "generate_uuid"]
