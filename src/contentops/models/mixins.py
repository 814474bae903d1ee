"""
Mixins for SQLAlchemy models.
"""
from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


class TimestampMixin:
    """
    Adds created/updated timestamps to any model.

    Provides:
    - created_at: set by the database when the row is inserted
    - updated_at: refreshed on every ORM-level update

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            id = bigint_pk()
    """

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="UTC timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        onupdate=func.now(),
        comment="UTC timestamp when record was last updated"
    )
