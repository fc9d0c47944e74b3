"""Domain repository interfaces.

Repository is the generic abstraction; entity-specific interfaces subclass
it.  Concrete implementations live in repokit/infrastructure/persistence/
and are bound at the application boundary by the repository registry.
"""

from .base import Repository

__all__ = ["Repository"]
