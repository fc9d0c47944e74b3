"""SQLAlchemy implementation of the generic Repository contract.

Subclass once per entity, naming the mapped class:

    class SqlWidgetRepository(SqlRepository[Widget, int], WidgetRepository):
        model = Widget

A repository wraps one AsyncSession.  Every apply_operation /
apply_operation_range call is one unit of work: lifecycle pipeline first,
then exactly one persistence action, then one commit.  Reads never commit.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any, ClassVar

from sqlalchemy import Select, false, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from repokit.domain.exceptions import EntityValidationError, StorageError
from repokit.domain.models.enums import EntityOperation
from repokit.domain.models.pagination import PageRequest, PageResult
from repokit.domain.repositories.base import (
    EntityT,
    IdT,
    Include,
    OrderBy,
    Predicate,
    Repository,
)
from repokit.domain.services.lifecycle import LifecyclePipeline
from repokit.infrastructure.persistence.pagination import count_rows, paginate

logger = logging.getLogger(__name__)


class SqlRecordsView:
    """Read-only view of a repository's table, handed to validation hooks.

    Queries run with autoflush disabled so that pending changes on the
    session are not written out by validation.
    """

    def __init__(self, repository: SqlRepository[Any, Any]) -> None:
        self._repository = repository
        self._session = repository.session

    async def any(self, predicate: Predicate | None = None, include_deleted: bool = False) -> bool:
        with self._session.sync_session.no_autoflush:
            return await self._repository.any(predicate, include_deleted=include_deleted)

    async def count(self, predicate: Predicate | None = None, include_deleted: bool = False) -> int:
        stmt = self._repository._prepare(
            self._repository.get_queryable(), predicate, include_deleted
        )
        with self._session.sync_session.no_autoflush:
            return await count_rows(self._session, stmt)

    async def first(self, predicate: Predicate | None = None, include_deleted: bool = False) -> Any | None:
        stmt = self._repository._prepare(
            self._repository.get_queryable(), predicate, include_deleted
        )
        with self._session.sync_session.no_autoflush:
            result = await self._session.scalars(stmt.limit(1))
            return result.first()


class SqlRepository(Repository[EntityT, IdT]):
    model: ClassVar[type[Any]]

    def __init__(self, session: AsyncSession, pipeline: LifecyclePipeline | None = None) -> None:
        self.session = session
        self._pipeline = pipeline or LifecyclePipeline()
        self._background: set[asyncio.Future[Any]] = set()

    # --- query construction ---

    def get_queryable(self) -> Select[Any]:
        return select(self.model)

    def _prepare(
        self,
        query: Select[Any],
        predicate: Predicate | None,
        include_deleted: bool,
    ) -> Select[Any]:
        if not include_deleted and self.model.capabilities.soft_delete:
            query = query.where(self.model.is_deleted == false())
        if predicate is not None:
            query = query.where(predicate)
        return query

    def _known_identities(self) -> set[Any]:
        return set(self.session.sync_session.identity_map.keys())

    def _detach_new(self, entities: Iterable[Any], known: set[Any]) -> None:
        # Instances the session was already tracking before the read stay tracked.
        for entity in entities:
            if inspect(entity).key not in known:
                self.session.expunge(entity)

    # --- reads ---

    async def get(
        self,
        predicate: Predicate,
        include: Include | None = None,
        tracked: bool = True,
        include_deleted: bool = False,
    ) -> EntityT | None:
        stmt = self._prepare(self.get_queryable(), predicate, include_deleted).limit(1)
        if include is not None:
            stmt = stmt.options(*include)
        known = set() if tracked else self._known_identities()
        result = await self.session.scalars(stmt)
        entity = result.unique().first()
        if entity is not None and not tracked:
            self._detach_new([entity], known)
        return entity

    async def get_by_id(
        self,
        id: IdT,
        include: Include | None = None,
        tracked: bool = True,
        include_deleted: bool = False,
    ) -> EntityT | None:
        return await self.get(
            self.model.id == id,
            include=include,
            tracked=tracked,
            include_deleted=include_deleted,
        )

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
        return await self._page(
            self.get_queryable(), predicate, order_by, include,
            page_index, page_size, tracked, include_deleted,
        )

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
        return await self._page(
            query, None, order_by, include,
            page_index, page_size, tracked, include_deleted,
        )

    async def _page(
        self,
        query: Select[Any],
        predicate: Predicate | None,
        order_by: OrderBy | None,
        include: Include | None,
        page_index: int,
        page_size: int,
        tracked: bool,
        include_deleted: bool,
    ) -> PageResult[EntityT]:
        page = PageRequest.of(page_index, page_size)
        stmt = self._prepare(query, predicate, include_deleted)
        if order_by is not None:
            stmt = stmt.order_by(*order_by)
        known = set() if tracked else self._known_identities()
        result = await paginate(self.session, stmt, page, include or ())
        if not tracked:
            self._detach_new(result.items, known)
        return result

    async def any(self, predicate: Predicate | None = None, include_deleted: bool = False) -> bool:
        stmt = self._prepare(self.get_queryable(), predicate, include_deleted)
        return bool(await self.session.scalar(select(stmt.exists())))

    # --- mutations ---

    def records_view(self) -> SqlRecordsView:
        return SqlRecordsView(self)

    async def apply_operation(
        self,
        operation: EntityOperation,
        entity: EntityT,
        also_validate: bool,
        permanent_delete: bool = False,
    ) -> EntityT:
        try:
            await self._pipeline.apply(
                operation, entity, also_validate, permanent_delete, self.records_view
            )
        except EntityValidationError:
            await self._discard_changes([entity])
            raise
        async with self._unit_of_work(operation):
            entity = await self._persist(operation, entity, permanent_delete)
        return entity

    async def apply_operation_range(
        self,
        operation: EntityOperation,
        entities: Sequence[EntityT],
        also_validate: bool,
        permanent_delete: bool = False,
    ) -> list[EntityT]:
        entities = list(entities)
        try:
            batch = await self._pipeline.apply_all(
                operation, entities, also_validate, permanent_delete, self.records_view
            )
        except EntityValidationError:
            await self._discard_changes(entities)
            raise
        async with self._unit_of_work(operation):
            if operation is EntityOperation.CREATE:
                self.session.add_all(batch)
            else:
                batch = [await self._persist(operation, entity, permanent_delete) for entity in batch]
        return batch

    async def _discard_changes(self, entities: Iterable[Any]) -> None:
        # Rejected entities get their stored values back so no later commit writes them.
        tracked = [entity for entity in entities if inspect(entity).persistent]
        if not tracked:
            return
        with self.session.sync_session.no_autoflush:
            for entity in tracked:
                await self.session.refresh(entity)
        logger.debug("Reverted %d rejected %s instance(s)", len(tracked), self.model.__name__)

    async def _persist(
        self, operation: EntityOperation, entity: EntityT, permanent_delete: bool
    ) -> EntityT:
        if operation is EntityOperation.CREATE:
            self.session.add(entity)
            return entity
        entity = await self._attach(operation, entity)
        if operation is EntityOperation.DELETE and permanent_delete:
            await self.session.delete(entity)
        return entity

    async def _attach(self, operation: EntityOperation, entity: EntityT) -> EntityT:
        state = inspect(entity)
        if state.persistent or state.pending:
            return entity
        # Updates and deletes never insert: the row must already be stored.
        id = getattr(entity, "id", None)
        if id is None or not await self.any(self.model.id == id, include_deleted=True):
            raise StorageError(
                self._describe(operation), f"no stored {self.model.__name__} with id {id!r}"
            )
        if state.transient:
            return await self.session.merge(entity)
        self.session.add(entity)
        return entity

    def _describe(self, operation: EntityOperation) -> str:
        return f"{operation.value} {self.model.__name__}"

    @asynccontextmanager
    async def _unit_of_work(self, operation: EntityOperation) -> AsyncIterator[None]:
        name = self._describe(operation)
        try:
            yield
            await self.session.flush()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.warning("Rolled back %s: %s", name, exc)
            raise StorageError(name, str(exc)) from exc
        except (StorageError, asyncio.CancelledError):
            await self.session.rollback()
            raise

        # Once issued, the commit runs to completion even if the caller is cancelled.
        commit = asyncio.ensure_future(self.session.commit())
        try:
            await asyncio.shield(commit)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.warning("Commit failed for %s: %s", name, exc)
            raise StorageError(name, str(exc)) from exc
        except asyncio.CancelledError:
            commit.add_done_callback(functools.partial(self._settle_orphaned_commit, name))
            raise
        logger.debug("Committed %s", name)

    def _settle_orphaned_commit(self, name: str, commit: asyncio.Future[None]) -> None:
        """Done-callback for a commit whose caller was cancelled while it ran."""
        if commit.cancelled():
            return
        exc = commit.exception()
        if exc is None:
            logger.debug("Committed %s after caller was cancelled", name)
            return
        logger.error("Commit failed for %s after caller was cancelled: %s", name, exc)
        rollback = asyncio.ensure_future(self.session.rollback())
        self._background.add(rollback)
        rollback.add_done_callback(self._background.discard)
