"""Generic repository base interface.

Repository[EntityT, IdT] is the root abstraction for all data-access
interfaces.  Entity-specific interfaces subclass it (adding their own query
methods); concrete implementations live in repokit/infrastructure/persistence/
and are bound to interfaces at startup by the repository registry.

Design notes:
  - All methods are async; suspension points are exactly the persistence calls.
  - Predicates are SQLAlchemy boolean column expressions (Widget.name == "x");
    include takes loader options (selectinload(Widget.parts)); order_by takes
    column expressions.
  - Soft-deleted records are invisible to get/list/any unless the caller
    passes include_deleted=True.
  - Cancellation is asyncio task cancellation.  A cancelled mutation is rolled
    back before commit; once commit has been issued it completes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.sql import ColumnElement
from sqlalchemy.sql.base import ExecutableOption

from repokit.domain.models.entity import Entity
from repokit.domain.models.enums import EntityOperation
from repokit.domain.models.pagination import PageResult

EntityT = TypeVar("EntityT", bound=Entity)
IdT = TypeVar("IdT")

Predicate = ColumnElement[bool]
Include = Iterable[ExecutableOption]
OrderBy = Iterable[Any]


class Repository(ABC, Generic[EntityT, IdT]):
    """Abstract CRUD, soft-delete and pagination interface for one entity type."""

    @abstractmethod
    def get_queryable(self) -> Select[Any]:
        """Return the unfiltered base statement for the entity's table."""

    @abstractmethod
    async def get(
        self,
        predicate: Predicate,
        include: Include | None = None,
        tracked: bool = True,
        include_deleted: bool = False,
    ) -> EntityT | None:
        """Return the first entity matching predicate, or None if there is none."""

    @abstractmethod
    async def get_by_id(
        self,
        id: IdT,
        include: Include | None = None,
        tracked: bool = True,
        include_deleted: bool = False,
    ) -> EntityT | None:
        """Return the entity with the given primary key, or None."""

    @abstractmethod
    async def list(
        self,
        predicate: Predicate | None = None,
        order_by: OrderBy | None = None,
        include: Include | None = None,
        page_index: int = 0,
        page_size: int = 0,
        tracked: bool = True,
        include_deleted: bool = False,
    ) -> PageResult[EntityT]:
        """Return one page of matching entities.

        page_size == 0 means no pagination: every match in a single page.
        Negative page_index or page_size raises ValueError.
        """

    @abstractmethod
    async def list_from(
        self,
        query: Select[Any],
        order_by: OrderBy | None = None,
        include: Include | None = None,
        page_index: int = 0,
        page_size: int = 0,
        tracked: bool = True,
        include_deleted: bool = False,
    ) -> PageResult[EntityT]:
        """Like list(), but starting from a caller-built statement."""

    @abstractmethod
    async def any(
        self, predicate: Predicate | None = None, include_deleted: bool = False
    ) -> bool:
        """Return whether any entity matches, without loading rows."""

    @abstractmethod
    async def apply_operation(
        self,
        operation: EntityOperation,
        entity: EntityT,
        also_validate: bool,
        permanent_delete: bool = False,
    ) -> EntityT:
        """Run the lifecycle pipeline, persist, and commit one entity."""

    @abstractmethod
    async def apply_operation_range(
        self,
        operation: EntityOperation,
        entities: Sequence[EntityT],
        also_validate: bool,
        permanent_delete: bool = False,
    ) -> list[EntityT]:
        """Validate every entity, then persist and commit the batch at once.

        If any entity fails validation, nothing in the batch is persisted.
        """

    async def create(self, entity: EntityT, also_validate: bool = True) -> EntityT:
        return await self.apply_operation(EntityOperation.CREATE, entity, also_validate)

    async def update(self, entity: EntityT, also_validate: bool = True) -> EntityT:
        return await self.apply_operation(EntityOperation.UPDATE, entity, also_validate)

    async def delete(
        self, entity: EntityT, also_validate: bool = True, permanent: bool = False
    ) -> EntityT:
        """Soft-delete the entity, or physically remove it when permanent=True."""
        return await self.apply_operation(
            EntityOperation.DELETE, entity, also_validate, permanent_delete=permanent
        )
