"""Concrete SQLAlchemy repository implementations.

Entity-specific repositories subclass SqlRepository and name their model.
"""

from .base import SqlRecordsView, SqlRepository

__all__ = [
    "SqlRecordsView",
    "SqlRepository",
]
