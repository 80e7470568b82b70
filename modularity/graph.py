"""
Modularity - Dependency Graph

Turns root identities into a DependencyGraph: every module reachable through
declared dependencies, each described exactly once, in discovery order.

The builder only reads declarations. It never instantiates a module and never
runs a hook, so a failed build leaves no side effects behind. Cycles are not
reported here (the traversal skips visited identities and terminates); the
resolver reports them with the full chain.
"""

from __future__ import annotations

import importlib
import inspect
import pkgutil
from types import ModuleType
from typing import (
    Dict,
    Hashable,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from modularity.declarations import get_declaration, is_module_class
from modularity.descriptor import ModuleCatalog, ModuleDescriptor, TypeModuleCatalog
from modularity.errors import ModuleError, MissingModuleDependencyError, identity_name
from observability.logging import get_logger

logger = get_logger("modularity.graph")

_EXHAUSTED = object()


class DependencyGraph:
    """
    Identity → descriptor mapping plus the roots it was built from.

    Iteration order is discovery order, which the resolver uses to break ties
    between modules of equal priority.
    """

    __slots__ = ("_descriptors", "_roots", "_index")

    def __init__(
        self,
        descriptors: Mapping[Hashable, ModuleDescriptor],
        roots: Sequence[Hashable] = (),
    ):
        self._descriptors: Dict[Hashable, ModuleDescriptor] = dict(descriptors)
        self._roots: Tuple[Hashable, ...] = tuple(roots)
        self._index: Dict[Hashable, int] = {
            identity: position for position, identity in enumerate(self._descriptors)
        }

    @classmethod
    def from_descriptors(
        cls,
        descriptors: Iterable[ModuleDescriptor],
        roots: Optional[Sequence[Hashable]] = None,
    ) -> "DependencyGraph":
        """Build a graph directly from descriptors (roots default to all)."""
        table: Dict[Hashable, ModuleDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.identity in table:
                raise ModuleError(
                    f"Module '{identity_name(descriptor.identity)}' is described twice.",
                    module=descriptor.identity,
                )
            table[descriptor.identity] = descriptor
        return cls(table, list(table) if roots is None else roots)

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    @property
    def roots(self) -> Tuple[Hashable, ...]:
        return self._roots

    @property
    def descriptors(self) -> Tuple[ModuleDescriptor, ...]:
        return tuple(self._descriptors.values())

    def identities(self) -> List[Hashable]:
        return list(self._descriptors)

    def get(self, identity: Hashable) -> Optional[ModuleDescriptor]:
        return self._descriptors.get(identity)

    def __getitem__(self, identity: Hashable) -> ModuleDescriptor:
        return self._descriptors[identity]

    def __contains__(self, identity: object) -> bool:
        return identity in self._descriptors

    def __iter__(self) -> Iterator[ModuleDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def discovery_index(self, identity: Hashable) -> int:
        return self._index[identity]

    def dependencies_of(self, identity: Hashable) -> Tuple[Hashable, ...]:
        return self._descriptors[identity].dependencies

    def dependents_of(self, identity: Hashable) -> List[Hashable]:
        """Identities that declare a direct dependency on ``identity``."""
        return [
            descriptor.identity
            for descriptor in self._descriptors.values()
            if identity in descriptor.dependencies
        ]

    def validate(self) -> None:
        """Raise MissingModuleDependencyError on the first dangling edge."""
        for descriptor in self._descriptors.values():
            for dependency in descriptor.dependencies:
                if dependency not in self._descriptors:
                    raise MissingModuleDependencyError(descriptor.identity, dependency)

    def __repr__(self) -> str:
        names = ", ".join(d.name for d in self._descriptors.values())
        return f"DependencyGraph([{names}])"


class DependencyGraphBuilder:
    """
    Depth-first discovery of every module reachable from the roots.

    Usage:
        graph = DependencyGraphBuilder().build([AppModule])
        graph = DependencyGraphBuilder(registry).build(["api"])
    """

    def __init__(self, catalog: Optional[ModuleCatalog] = None):
        self._catalog: ModuleCatalog = catalog or TypeModuleCatalog()

    @property
    def catalog(self) -> ModuleCatalog:
        return self._catalog

    def build(self, roots: Iterable[Hashable]) -> DependencyGraph:
        """
        Describe the roots and everything they transitively depend on.

        Raises:
            ModuleError: No roots, or a root the catalog cannot describe.
            MissingModuleDependencyError: A declared dependency the catalog
                cannot describe. No partial graph is returned.
        """
        root_identities = tuple(dict.fromkeys(roots))
        if not root_identities:
            raise ModuleError("At least one root module is required.")

        descriptors: Dict[Hashable, ModuleDescriptor] = {}
        for root in root_identities:
            if root in descriptors:
                continue
            descriptor = self._catalog.describe(root)
            if descriptor is None:
                raise ModuleError(
                    f"Root module '{identity_name(root)}' is not registered.",
                    module=root,
                )
            self._explore(descriptor, descriptors)

        logger.debug(
            "dependency_graph_built",
            roots=[identity_name(r) for r in root_identities],
            modules=len(descriptors),
        )
        return DependencyGraph(descriptors, root_identities)

    def _explore(
        self,
        start: ModuleDescriptor,
        descriptors: Dict[Hashable, ModuleDescriptor],
    ) -> None:
        descriptors[start.identity] = start
        stack: List[Tuple[ModuleDescriptor, Iterator[Hashable]]] = [
            (start, iter(start.dependencies))
        ]

        while stack:
            owner, pending = stack[-1]
            dependency = next(pending, _EXHAUSTED)
            if dependency is _EXHAUSTED:
                stack.pop()
                continue
            if dependency in descriptors:
                continue

            descriptor = self._catalog.describe(dependency)
            if descriptor is None:
                raise MissingModuleDependencyError(owner.identity, dependency)

            descriptors[dependency] = descriptor
            stack.append((descriptor, iter(descriptor.dependencies)))


def discover_modules(package: Union[str, ModuleType]) -> List[type]:
    """
    Find the module classes defined in a package (or a single Python module).

    Sub-modules are visited in name order and classes in definition order.
    Classes declared with ``load_on_demand=True`` are skipped. Import errors
    propagate.
    """
    root = importlib.import_module(package) if isinstance(package, str) else package

    python_modules: List[ModuleType] = [root]
    search_path = getattr(root, "__path__", None)
    if search_path is not None:
        names = sorted(
            info.name
            for info in pkgutil.walk_packages(search_path, prefix=f"{root.__name__}.")
        )
        python_modules.extend(importlib.import_module(name) for name in names)

    discovered: List[type] = []
    seen: set = set()
    for python_module in python_modules:
        # vars() keeps definition order, unlike inspect.getmembers.
        for candidate in list(vars(python_module).values()):
            if not inspect.isclass(candidate) or candidate in seen:
                continue
            if candidate.__module__ != python_module.__name__:
                continue
            if not is_module_class(candidate):
                continue
            if get_declaration(candidate).load_on_demand:
                continue
            seen.add(candidate)
            discovered.append(candidate)

    logger.debug(
        "modules_discovered",
        package=root.__name__,
        modules=[cls.__name__ for cls in discovered],
    )
    return discovered


__all__ = [
    "DependencyGraph",
    "DependencyGraphBuilder",
    "discover_modules",
]
