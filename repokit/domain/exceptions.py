"""Error taxonomy for the repository layer.

RepositoryError       : common base; catch this to handle any failure raised here
EntityValidationError : an entity's validation hook rejected the operation
StorageError          : the persistence layer failed (constraint, connectivity, timeout)

Not-found is never an exception: single-entity reads return None.
Cancellation is asyncio.CancelledError and is propagated unchanged.
"""

from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base class for every error raised by the repository layer."""


class EntityValidationError(RepositoryError, ValueError):
    """Raised when an entity's validation hook rejects a mutation.

    Caller-fixable.  Carries the entity type, its id (None for entities not
    yet assigned one) and a human-readable reason.
    """

    def __init__(self, entity: Any, reason: str) -> None:
        self.entity_type = type(entity).__name__
        self.entity_id = getattr(entity, "id", None)
        self.reason = reason
        super().__init__(f"{self.entity_type}(id={self.entity_id!r}): {reason}")


class StorageError(RepositoryError):
    """Raised when flushing or committing to the store fails.

    The original SQLAlchemy exception is available as __cause__.
    """

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")
