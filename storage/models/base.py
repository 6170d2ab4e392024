"""
Base ORM Model and Mixins.

============================================================
PURPOSE
============================================================
Provides the declarative base and common mixins used by all
ORM models of the exposure compliance engine.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- TimestampMixin: created_at / updated_at columns
- AuditUserMixin: created_by / updated_by user columns
- utc_now: naive UTC clock used for every stored timestamp

============================================================
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.
    
    Timestamps are stored naive-UTC so that SQLite and PostgreSQL
    compare them the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.
    
    Every table owned or read by the engine inherits from this
    base so a single metadata object can create the schema.
    """
    
    type_annotation_map = {
        datetime: DateTime(timezone=False),
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.
    
    Values are set application-side because atomic upserts
    (INSERT ... ON CONFLICT) bypass ORM onupdate hooks; repositories
    stamp updated_at explicitly on the conflict branch.
    
    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """
    
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=utc_now,
        comment="Record creation timestamp (UTC)"
    )
    
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
        comment="Last update timestamp (UTC)"
    )


class AuditUserMixin:
    """Mixin recording which user created and last touched a row."""
    
    created_by_user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="User that created the row"
    )
    
    updated_by_user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="User that last updated the row"
    )
