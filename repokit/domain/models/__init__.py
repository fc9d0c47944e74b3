"""Domain model package.

Entity roots, capability markers, the operation enum and the pagination
value objects.  Import from this package to avoid coupling application code
to individual module paths.
"""

from .entity import (
    Capabilities,
    Entity,
    ExistingRecords,
    HasCreatedDate,
    HasDeletedDate,
    HasSoftDelete,
    HasUpdatedDate,
    HasValidation,
)
from .enums import EntityOperation
from .pagination import PageRequest, PageResult, total_pages

__all__ = [
    # entity
    "Capabilities",
    "Entity",
    "ExistingRecords",
    "HasCreatedDate",
    "HasDeletedDate",
    "HasSoftDelete",
    "HasUpdatedDate",
    "HasValidation",
    # enums
    "EntityOperation",
    # pagination
    "PageRequest",
    "PageResult",
    "total_pages",
]
