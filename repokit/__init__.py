"""Generic async repository layer over SQLAlchemy.

Lifecycle stamping, soft delete, validation hooks and pagination for any
entity type.
"""

from repokit.domain.exceptions import EntityValidationError, RepositoryError, StorageError
from repokit.domain.models import (
    Entity,
    EntityOperation,
    HasCreatedDate,
    HasDeletedDate,
    HasSoftDelete,
    HasUpdatedDate,
    HasValidation,
    PageRequest,
    PageResult,
)
from repokit.domain.repositories import Repository

__all__ = [
    "Entity",
    "EntityOperation",
    "EntityValidationError",
    "HasCreatedDate",
    "HasDeletedDate",
    "HasSoftDelete",
    "HasUpdatedDate",
    "HasValidation",
    "PageRequest",
    "PageResult",
    "Repository",
    "RepositoryError",
    "StorageError",
]
