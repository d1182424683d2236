"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, mixins for UUID keys,
timestamps and lifecycle activity tracking, and the append-only guard used by
every embedded audit trail column.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import JSON, DateTime, Uuid, func
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from agrimarket.core.logging import get_logger

logger = get_logger(__name__)

# JSON on every backend, JSONB on PostgreSQL.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def enum_type(enum_cls: Type[enum.Enum], name: str) -> SQLEnum:
    """
    Column type for a string enum stored by value.

    Values are stored as VARCHAR with a CHECK constraint so the same schema
    works on PostgreSQL and SQLite and partial index predicates can compare
    against the lowercase values.
    """
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base for every table; ``AsyncAttrs`` allows awaiting lazy attributes."""

    __abstract__ = True

    def __repr__(self) -> str:
        label = getattr(self, "id", None)
        return f"<{self.__class__.__name__} id={label}>"


class UUIDMixin:
    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        # Native UUID on PostgreSQL, CHAR(32) on SQLite
        return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    """
    Creation and modification times.

    Values are produced in Python so a freshly flushed row exposes them
    without a refresh; the server defaults only matter for rows written
    outside the ORM.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
            server_default=func.now(),
        )


class LifecycleMixin:
    """
    Columns shared by entities with a status lifecycle.

    ``last_activity_at`` follows the newest audit trail entry. Subclasses
    declare their own integer ``version`` column and register it as the
    mapper's ``version_id_col`` for optimistic locking.
    """

    @declared_attr
    def last_activity_at(cls) -> Mapped[datetime]:
        return mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class BaseModel(Base, UUIDMixin, TimestampMixin):
    __abstract__ = True


class LifecycleModel(BaseModel, LifecycleMixin):
    """Base for orders, service bookings and tickets."""

    __abstract__ = True


class AppendOnlyViolation(ValueError):
    """Raised when an audit trail assignment would rewrite history."""


def ensure_append_only(
    instance: Any, key: str, value: Optional[List[Dict[str, Any]]]
) -> List[Dict[str, Any]]:
    """
    Validate that a new trail value only extends the current one.

    Intended for use inside ``@validates`` hooks on embedded trail columns.

    Args:
        instance: Model instance owning the trail
        key: Attribute name of the trail column
        value: Proposed new trail

    Returns:
        The proposed trail when it keeps every existing entry in place

    Raises:
        AppendOnlyViolation: If an existing entry is dropped or modified
    """
    if value is None:
        value = []
    if not isinstance(value, list):
        raise AppendOnlyViolation(f"{key} must be a list of entries")

    current = instance.__dict__.get(key) or []
    if len(value) < len(current) or value[: len(current)] != current:
        logger.error(
            "Rejected audit trail rewrite",
            model=instance.__class__.__name__,
            field=key,
            current_length=len(current),
            proposed_length=len(value),
        )
        raise AppendOnlyViolation(f"{key} is append-only")

    return value
