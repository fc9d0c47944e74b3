"""Entity lifecycle pipeline.

Runs before every mutating repository operation, in fixed order:

  1. the entity's validation hook, if it has one (also for permanent deletes,
     since referential checks must happen before physical removal)
  2. nothing more for a permanent delete: the record is removed, not marked
  3. metadata stamping by operation:
       CREATE → created_at
       UPDATE → updated_at (never earlier than created_at)
       DELETE → is_deleted = True, deleted_at

A capability the entity does not have is a silent no-op for its step.
No persistence happens here; the repository does that afterwards.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TypeVar

from repokit.domain.exceptions import EntityValidationError
from repokit.domain.models.entity import Entity, ExistingRecords, as_utc, utcnow
from repokit.domain.models.enums import EntityOperation

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=Entity)

ExistingRecordsProvider = Callable[[], ExistingRecords]


class LifecyclePipeline:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    async def apply(
        self,
        operation: EntityOperation,
        entity: EntityT,
        also_validate: bool,
        permanent_delete: bool,
        existing_records: ExistingRecordsProvider,
    ) -> EntityT:
        """Validate then stamp a single entity.  Returns the same instance."""
        await self.validate(operation, entity, also_validate, existing_records)
        self.stamp(operation, entity, permanent_delete)
        return entity

    async def apply_all(
        self,
        operation: EntityOperation,
        entities: Iterable[EntityT],
        also_validate: bool,
        permanent_delete: bool,
        existing_records: ExistingRecordsProvider,
    ) -> list[EntityT]:
        """Validate every entity in caller order, then stamp them all.

        A hook failure part-way through leaves no entity of the batch stamped.
        """
        batch = list(entities)
        for entity in batch:
            await self.validate(operation, entity, also_validate, existing_records)
        for entity in batch:
            self.stamp(operation, entity, permanent_delete)
        return batch

    async def validate(
        self,
        operation: EntityOperation,
        entity: Entity,
        also_validate: bool,
        existing_records: ExistingRecordsProvider,
    ) -> None:
        if not type(entity).capabilities.validation:
            return
        try:
            outcome = entity.check_data_for(  # type: ignore[attr-defined]
                operation, also_validate, existing_records()
            )
            if inspect.isawaitable(outcome):
                await outcome
        except EntityValidationError:
            raise
        except ValueError as exc:
            raise EntityValidationError(entity, str(exc)) from exc

    def stamp(
        self, operation: EntityOperation, entity: Entity, permanent_delete: bool
    ) -> None:
        if permanent_delete and operation is EntityOperation.DELETE:
            logger.debug("Permanent delete of %s: metadata left untouched", type(entity).__name__)
            return

        caps = type(entity).capabilities
        now = as_utc(self._clock())

        if operation is EntityOperation.CREATE:
            if caps.created_date:
                entity.created_at = now  # type: ignore[attr-defined]
        elif operation is EntityOperation.UPDATE:
            if caps.updated_date:
                created = getattr(entity, "created_at", None) if caps.created_date else None
                if created is not None and as_utc(created) > now:
                    now = as_utc(created)
                entity.updated_at = now  # type: ignore[attr-defined]
        elif operation is EntityOperation.DELETE:
            if caps.soft_delete:
                entity.is_deleted = True  # type: ignore[attr-defined]
            if caps.deleted_date:
                entity.deleted_at = now  # type: ignore[attr-defined]

        logger.debug("Applied %s lifecycle to %s", operation.value, type(entity).__name__)
