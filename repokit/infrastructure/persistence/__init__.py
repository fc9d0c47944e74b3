"""Persistence package.

Exports the SQLAlchemy repository base, the pagination engine and the
repository registry used for wiring at the application boundary.
"""

from repokit.infrastructure.persistence.pagination import count_rows, paginate
from repokit.infrastructure.persistence.registry import (
    RepositoryRegistry,
    register_repositories,
)
from repokit.infrastructure.persistence.repositories import (
    SqlRecordsView,
    SqlRepository,
)

__all__ = [
    "RepositoryRegistry",
    "SqlRecordsView",
    "SqlRepository",
    "count_rows",
    "paginate",
    "register_repositories",
]
