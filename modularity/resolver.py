"""
Modularity - Dependency Resolver

Linearizes a DependencyGraph into the order modules are configured and
initialized in (and, reversed, shut down in).

Algorithm: three-color depth-first search with post-order emission.

- Start nodes are taken in (descending priority, discovery index) order and
  each node's dependencies are visited in that same order, so identical input
  always produces the identical order.
- A dependency is emitted before anything that depends on it. Priority only
  decides between modules that have no dependency path between them.
- Re-entering a node that is still on the DFS path is a cycle; the reported
  chain starts and ends at the re-entered node.

Runs in O(V + E) visits (plus the per-node sort of its dependency list).
"""

from __future__ import annotations

from enum import Enum
from typing import (
    Callable,
    Dict,
    Hashable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    overload,
)

from modularity.descriptor import ModuleDescriptor
from modularity.errors import CircularDependencyError, identity_name
from modularity.graph import DependencyGraph
from observability.logging import get_logger

logger = get_logger("modularity.resolver")

_EXHAUSTED = object()


class _Color(Enum):
    WHITE = 0  # not visited
    GRAY = 1   # on the current DFS path
    BLACK = 2  # emitted


class ResolvedOrder(Sequence[ModuleDescriptor]):
    """Immutable, dependency-respecting sequence of descriptors."""

    __slots__ = ("_descriptors", "_positions")

    def __init__(self, descriptors: Sequence[ModuleDescriptor]):
        self._descriptors: Tuple[ModuleDescriptor, ...] = tuple(descriptors)
        self._positions: Dict[Hashable, int] = {
            descriptor.identity: position
            for position, descriptor in enumerate(self._descriptors)
        }

    @overload
    def __getitem__(self, index: int) -> ModuleDescriptor: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[ModuleDescriptor, ...]: ...

    def __getitem__(self, index):
        return self._descriptors[index]

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ModuleDescriptor]:
        return iter(self._descriptors)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, ModuleDescriptor):
            return item.identity in self._positions
        return item in self._positions

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResolvedOrder):
            return self.identities() == other.identities()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self.identities()))

    def identities(self) -> List[Hashable]:
        return [descriptor.identity for descriptor in self._descriptors]

    def names(self) -> List[str]:
        return [descriptor.name for descriptor in self._descriptors]

    def position_of(self, identity: Hashable) -> int:
        return self._positions[identity]

    def reversed(self) -> Tuple[ModuleDescriptor, ...]:
        return tuple(reversed(self._descriptors))

    def __repr__(self) -> str:
        return f"ResolvedOrder([{', '.join(self.names())}])"


class ModuleDependencyResolver:
    """
    Resolves a DependencyGraph into a ResolvedOrder.

    Usage:
        graph = DependencyGraphBuilder().build([AppModule])
        order = ModuleDependencyResolver(graph).resolve()
        for descriptor in order:
            ...
    """

    def __init__(self, graph: DependencyGraph):
        self._graph = graph

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    def _sort_key(self) -> Callable[[Hashable], Tuple[int, int]]:
        graph = self._graph
        return lambda identity: (-graph[identity].priority, graph.discovery_index(identity))

    def resolve(self) -> ResolvedOrder:
        """
        Compute the startup order.

        Raises:
            MissingModuleDependencyError: A descriptor references an identity
                that is not in the graph.
            CircularDependencyError: The declarations contain a cycle.
        """
        graph = self._graph
        graph.validate()

        key = self._sort_key()
        color: Dict[Hashable, _Color] = {identity: _Color.WHITE for identity in graph.identities()}
        order: List[ModuleDescriptor] = []

        for start in sorted(graph.identities(), key=key):
            if color[start] is not _Color.WHITE:
                continue

            color[start] = _Color.GRAY
            path: List[Hashable] = [start]
            stack: List[Iterator[Hashable]] = [
                iter(sorted(graph.dependencies_of(start), key=key))
            ]

            while stack:
                dependency = next(stack[-1], _EXHAUSTED)

                if dependency is _EXHAUSTED:
                    stack.pop()
                    finished = path.pop()
                    color[finished] = _Color.BLACK
                    order.append(graph[finished])
                    continue

                state = color[dependency]
                if state is _Color.BLACK:
                    continue
                if state is _Color.GRAY:
                    chain = path[path.index(dependency):] + [dependency]
                    logger.error(
                        "circular_dependency_detected",
                        chain=[identity_name(identity) for identity in chain],
                    )
                    raise CircularDependencyError(chain)

                color[dependency] = _Color.GRAY
                path.append(dependency)
                stack.append(iter(sorted(graph.dependencies_of(dependency), key=key)))

        resolved = ResolvedOrder(order)
        logger.debug("dependency_order_resolved", order=resolved.names())
        return resolved

    def get_all_dependencies(self, identity: Hashable) -> Set[Hashable]:
        """Every identity ``identity`` transitively depends on."""
        return get_all_dependencies(self._graph, identity)


def get_all_dependencies(graph: DependencyGraph, identity: Hashable) -> Set[Hashable]:
    """
    Transitive dependency set of ``identity`` (excluding itself unless it sits
    on a cycle). Identities missing from the graph are included but not
    expanded.
    """
    found: Set[Hashable] = set()
    pending: List[Hashable] = list(graph.dependencies_of(identity))
    while pending:
        current = pending.pop()
        if current in found:
            continue
        found.add(current)
        descriptor: Optional[ModuleDescriptor] = graph.get(current)
        if descriptor is not None:
            pending.extend(descriptor.dependencies)
    return found


__all__ = [
    "ResolvedOrder",
    "ModuleDependencyResolver",
    "get_all_dependencies",
]
