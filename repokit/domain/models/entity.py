"""Entity root and capability markers.

Every managed record is a SQLAlchemy declarative class that lists Entity
(and any capability mixins) before the project's declarative Base:

    class Widget(Entity, HasCreatedDate, HasUpdatedDate, HasSoftDelete, Base):
        __tablename__ = "widgets"
        id: Mapped[int] = mapped_column(primary_key=True)
        name: Mapped[str]

Capability markers contribute their mapped columns and are resolved once,
when the class is defined, into an immutable Capabilities struct stored on
the class.  The lifecycle pipeline reads the flags instead of inspecting
entity types on every call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Protocol

from sqlalchemy import Boolean, DateTime, false
from sqlalchemy.orm import Mapped, mapped_column, validates
from sqlalchemy.sql import ColumnElement

from .enums import EntityOperation


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class HasCreatedDate:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class HasUpdatedDate:
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class HasSoftDelete:
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )


class HasDeletedDate:
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ExistingRecords(Protocol):
    """Read-only view of stored records handed to validation hooks."""

    async def any(
        self, predicate: ColumnElement[bool] | None = None, include_deleted: bool = False
    ) -> bool: ...

    async def count(
        self, predicate: ColumnElement[bool] | None = None, include_deleted: bool = False
    ) -> int: ...

    async def first(
        self, predicate: ColumnElement[bool] | None = None, include_deleted: bool = False
    ) -> Any | None: ...


class HasValidation:
    """Marker for entities that tweak and validate their data before a mutation.

    check_data_for may be a plain method or a coroutine.  Raise
    EntityValidationError (or ValueError) to reject the operation.  Entity
    subclasses must override it; defining one that does not raises TypeError.
    """

    def check_data_for(
        self,
        operation: EntityOperation,
        also_validate: bool,
        existing: ExistingRecords,
    ) -> Awaitable[None] | None:
        raise NotImplementedError


@dataclass(frozen=True)
class Capabilities:
    created_date: bool = False
    updated_date: bool = False
    soft_delete: bool = False
    deleted_date: bool = False
    validation: bool = False

    @classmethod
    def of(cls, entity_cls: type) -> Capabilities:
        return cls(
            created_date=issubclass(entity_cls, HasCreatedDate),
            updated_date=issubclass(entity_cls, HasUpdatedDate),
            soft_delete=issubclass(entity_cls, HasSoftDelete),
            deleted_date=issubclass(entity_cls, HasDeletedDate),
            validation=issubclass(entity_cls, HasValidation),
        )


class Entity:
    """Root of every managed record: identity plus optional capabilities.

    Concrete classes declare their own ``id`` primary-key column.  Once an
    entity holds an id, assigning a different one raises ValueError.
    """

    capabilities = Capabilities()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        cls.capabilities = Capabilities.of(cls)
        if cls.capabilities.validation and cls.check_data_for is HasValidation.check_data_for:
            raise TypeError(f"{cls.__name__} has HasValidation but does not override check_data_for")
        super().__init_subclass__(**kwargs)

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        caps = type(self).capabilities
        if caps.created_date and getattr(self, "created_at", None) is None:
            self.created_at = utcnow()
        if caps.soft_delete and getattr(self, "is_deleted", None) is None:
            self.is_deleted = False

    @validates("id")
    def _validate_id(self, key: str, value: Any) -> Any:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError(f"{type(self).__name__}.id is immutable once assigned")
        return value
