"""Repository registry: binds repository interfaces to implementations.

Two ways in:

    registry = RepositoryRegistry().register(WidgetRepository, SqlWidgetRepository)

or discovery over modules (packages are walked recursively):

    registry = register_repositories(RepositoryRegistry(), myapp.persistence)

Called with no modules, discovery considers every Repository subclass that
has already been imported.

An *interface* is an abstract Repository subclass; an *implementation* is a
concrete subclass with a ``model``.  Each implementation is also recorded
under its model, so callers can ask for "the repository of Widget" without
naming an interface.

Known limitation: when several implementations satisfy one interface, the
first one discovered is bound.  Discovery order follows class definition
order, which depends on module import order.  Ambiguity is logged as a
warning; an interface with no implementation is skipped, not raised.
"""

from __future__ import annotations

import importlib
import inspect
import logging
import pkgutil
from collections.abc import Iterator
from types import ModuleType
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from repokit.domain.repositories.base import Repository
from repokit.domain.services.lifecycle import LifecyclePipeline

logger = logging.getLogger(__name__)


def _iter_subclasses(cls: type) -> Iterator[type]:
    seen: set[type] = set()
    stack = list(reversed(cls.__subclasses__()))
    while stack:
        sub = stack.pop()
        if sub in seen:
            continue
        seen.add(sub)
        yield sub
        stack.extend(reversed(sub.__subclasses__()))


def _module_names(modules: tuple[ModuleType, ...]) -> set[str]:
    names: set[str] = set()
    for module in modules:
        names.add(module.__name__)
        if hasattr(module, "__path__"):
            for info in pkgutil.walk_packages(module.__path__, module.__name__ + "."):
                importlib.import_module(info.name)
                names.add(info.name)
    return names


def is_implementation(cls: type) -> bool:
    return not inspect.isabstract(cls) and getattr(cls, "model", None) is not None


def is_interface(cls: type) -> bool:
    return inspect.isabstract(cls) and cls is not Repository


class RepositoryRegistry:
    """Maps repository interfaces and entity models to implementation classes.

    Implementations are instantiated per resolve() call, bound to the
    session the caller passes in (one session per unit of work).
    """

    def __init__(self) -> None:
        self._bindings: dict[type, type] = {}
        self._by_model: dict[type, list[type]] = {}

    def register(self, interface: type, implementation: type) -> RepositoryRegistry:
        if not issubclass(implementation, interface):
            raise TypeError(f"{implementation.__name__} does not implement {interface.__name__}")
        if not is_implementation(implementation):
            raise TypeError(f"{implementation.__name__} is not a concrete repository with a model")
        self._bindings[interface] = implementation
        self.add_implementation(implementation)
        return self

    def add_implementation(self, implementation: type) -> RepositoryRegistry:
        found = self._by_model.setdefault(implementation.model, [])
        if implementation not in found:
            found.append(implementation)
        return self

    def __contains__(self, interface: object) -> bool:
        return interface in self._bindings

    @property
    def bindings(self) -> dict[type, type]:
        return dict(self._bindings)

    def implementations_for(self, model: type) -> list[type]:
        return list(self._by_model.get(model, []))

    def resolve(
        self,
        interface: type,
        session: AsyncSession,
        pipeline: LifecyclePipeline | None = None,
    ) -> Any:
        try:
            implementation = self._bindings[interface]
        except KeyError:
            raise LookupError(f"No repository bound to {interface.__name__}") from None
        return implementation(session, pipeline)

    def resolve_for(
        self,
        model: type,
        session: AsyncSession,
        pipeline: LifecyclePipeline | None = None,
    ) -> Any:
        found = self._by_model.get(model)
        if not found:
            raise LookupError(f"No repository implementation for {model.__name__}")
        return found[0](session, pipeline)


def register_repositories(
    registry: RepositoryRegistry, *modules: ModuleType
) -> RepositoryRegistry:
    """Discover repository interfaces and implementations and bind them.

    Interfaces already bound (for example through register()) keep their
    binding.
    """
    names = _module_names(modules) if modules else None
    candidates = list(_iter_subclasses(Repository))
    if names is not None:
        candidates = [cls for cls in candidates if cls.__module__ in names]

    implementations = [cls for cls in candidates if is_implementation(cls)]
    interfaces = [cls for cls in candidates if is_interface(cls)]

    for implementation in implementations:
        registry.add_implementation(implementation)

    for interface in interfaces:
        if interface in registry:
            continue
        matches = [impl for impl in implementations if issubclass(impl, interface)]
        if not matches:
            logger.debug("No implementation found for %s; skipped", interface.__name__)
            continue
        if len(matches) > 1:
            logger.warning(
                "%d implementations of %s found; binding the first (%s)",
                len(matches),
                interface.__name__,
                matches[0].__name__,
            )
        registry.register(interface, matches[0])

    return registry
