"""
Modularity - Module Descriptors and Catalogs

A descriptor is the immutable record of everything the resolver and the
lifecycle driver need to know about one module: who it is, what it depends
on, how to build it. Catalogs turn identities into descriptors.

Two catalogs ship with the package:

- TypeModuleCatalog: identities are module classes, metadata comes from the
  ``@depends_on`` declaration.
- ModuleRegistry: an explicit table keyed by any hashable identity (usually a
  string), for modules assembled at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Hashable,
    Iterable,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from modularity.declarations import get_declaration, is_module_class
from modularity.errors import ModuleError, identity_name


# =============================================================================
# MODULE STATE
# =============================================================================


class ModuleState(Enum):
    """
    Lifecycle state of a loaded module.

    REGISTERED → CONFIGURING_SERVICES → SERVICES_CONFIGURED → INITIALIZING
    → INITIALIZED → SHUTTING_DOWN → SHUT_DOWN

    FAILED is terminal and reachable from every in-progress state.
    """
    REGISTERED = "registered"
    CONFIGURING_SERVICES = "configuring_services"
    SERVICES_CONFIGURED = "services_configured"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    SHUTTING_DOWN = "shutting_down"
    SHUT_DOWN = "shut_down"
    FAILED = "failed"

    def can_transition_to(self, target: "ModuleState") -> bool:
        return target in _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    @property
    def is_in_progress(self) -> bool:
        return self in _IN_PROGRESS


_IN_PROGRESS: FrozenSet[ModuleState] = frozenset(
    {
        ModuleState.CONFIGURING_SERVICES,
        ModuleState.INITIALIZING,
        ModuleState.SHUTTING_DOWN,
    }
)

_TRANSITIONS: Dict[ModuleState, FrozenSet[ModuleState]] = {
    ModuleState.REGISTERED: frozenset({ModuleState.CONFIGURING_SERVICES}),
    ModuleState.CONFIGURING_SERVICES: frozenset(
        {ModuleState.SERVICES_CONFIGURED, ModuleState.FAILED}
    ),
    ModuleState.SERVICES_CONFIGURED: frozenset({ModuleState.INITIALIZING}),
    ModuleState.INITIALIZING: frozenset({ModuleState.INITIALIZED, ModuleState.FAILED}),
    ModuleState.INITIALIZED: frozenset({ModuleState.SHUTTING_DOWN}),
    ModuleState.SHUTTING_DOWN: frozenset({ModuleState.SHUT_DOWN, ModuleState.FAILED}),
    ModuleState.SHUT_DOWN: frozenset(),
    ModuleState.FAILED: frozenset(),
}


def ensure_transition(identity: Hashable, current: ModuleState, target: ModuleState) -> None:
    """Raise ModuleError unless ``current -> target`` is a legal transition."""
    if not current.can_transition_to(target):
        raise ModuleError(
            f"Illegal state transition for module '{identity_name(identity)}': "
            f"{current.value} -> {target.value}",
            module=identity,
        )


# =============================================================================
# DESCRIPTOR
# =============================================================================


@dataclass(frozen=True)
class ModuleDescriptor:
    """Immutable metadata for one module identity."""

    identity: Hashable
    factory: Callable[[], Any]
    dependencies: Tuple[Hashable, ...] = ()
    priority: int = 0
    name: str = ""
    description: Optional[str] = None
    load_on_demand: bool = False

    def __post_init__(self) -> None:
        # Dependencies keep declaration order, first occurrence wins.
        object.__setattr__(self, "dependencies", tuple(dict.fromkeys(self.dependencies)))
        if not self.name:
            object.__setattr__(self, "name", identity_name(self.identity))

    def create_instance(self) -> Any:
        return self.factory()

    @classmethod
    def from_type(cls, module_type: type) -> "ModuleDescriptor":
        """Build a descriptor from a class and its ``@depends_on`` declaration."""
        declaration = get_declaration(module_type)
        return cls(
            identity=module_type,
            factory=module_type,
            dependencies=declaration.dependencies,
            priority=declaration.priority,
            name=declaration.name or module_type.__name__,
            description=declaration.description,
            load_on_demand=declaration.load_on_demand,
        )


@dataclass(frozen=True)
class ModuleInfo:
    """Point-in-time view of a loaded module, as reported by the host."""

    identity: Hashable
    name: str
    priority: int
    state: ModuleState
    dependencies: Tuple[Hashable, ...] = ()
    description: Optional[str] = None
    instance: Any = field(default=None, compare=False, repr=False)
    loaded_at: Optional[datetime] = None
    initialized_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_failed(self) -> bool:
        return self.state is ModuleState.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "state": self.state.value,
            "dependencies": [identity_name(d) for d in self.dependencies],
            "description": self.description,
            "loaded_at": self.loaded_at.isoformat() if self.loaded_at else None,
            "initialized_at": self.initialized_at.isoformat() if self.initialized_at else None,
            "error": self.error,
        }


# =============================================================================
# CATALOGS
# =============================================================================


@runtime_checkable
class ModuleCatalog(Protocol):
    """Looks up the descriptor for an identity, or None when unknown."""

    def describe(self, identity: Hashable) -> Optional[ModuleDescriptor]:
        ...


class TypeModuleCatalog:
    """Describes module classes from their ``@depends_on`` declarations."""

    def __init__(self) -> None:
        self._cache: Dict[type, ModuleDescriptor] = {}

    def describe(self, identity: Hashable) -> Optional[ModuleDescriptor]:
        if not is_module_class(identity):
            return None
        descriptor = self._cache.get(identity)  # type: ignore[arg-type]
        if descriptor is None:
            descriptor = ModuleDescriptor.from_type(identity)  # type: ignore[arg-type]
            self._cache[identity] = descriptor  # type: ignore[index]
        return descriptor


class ModuleRegistry:
    """
    Explicit module registration table.

    Usage:
        registry = ModuleRegistry()
        registry.register("storage", StorageModule)
        registry.register("api", lambda: ApiModule(port=8080), dependencies=["storage"])
        registry.register_module(AuditModule)
    """

    def __init__(self) -> None:
        self._descriptors: Dict[Hashable, ModuleDescriptor] = {}

    def register(
        self,
        identity: Hashable,
        factory: Callable[[], Any],
        dependencies: Iterable[Hashable] = (),
        priority: int = 0,
        name: Optional[str] = None,
        description: Optional[str] = None,
        load_on_demand: bool = False,
    ) -> "ModuleRegistry":
        """Register a module under ``identity``. Each identity registers once."""
        if identity in self._descriptors:
            raise ModuleError(
                f"Module '{identity_name(identity)}' is already registered.",
                module=identity,
            )
        if not callable(factory):
            raise ModuleError(
                f"Factory for module '{identity_name(identity)}' is not callable.",
                module=identity,
            )
        self._descriptors[identity] = ModuleDescriptor(
            identity=identity,
            factory=factory,
            dependencies=tuple(dependencies),
            priority=priority,
            name=name or identity_name(identity),
            description=description,
            load_on_demand=load_on_demand,
        )
        return self

    def register_module(self, module_type: type) -> "ModuleRegistry":
        """Register a module class, reading its ``@depends_on`` declaration."""
        if not is_module_class(module_type):
            raise ModuleError(
                f"'{identity_name(module_type)}' does not implement the module hooks.",
                module=module_type,
            )
        descriptor = ModuleDescriptor.from_type(module_type)
        return self.register(
            module_type,
            descriptor.factory,
            dependencies=descriptor.dependencies,
            priority=descriptor.priority,
            name=descriptor.name,
            description=descriptor.description,
            load_on_demand=descriptor.load_on_demand,
        )

    def describe(self, identity: Hashable) -> Optional[ModuleDescriptor]:
        return self._descriptors.get(identity)

    def identities(self) -> List[Hashable]:
        return list(self._descriptors)

    def __contains__(self, identity: object) -> bool:
        return identity in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)


__all__ = [
    "ModuleState",
    "ensure_transition",
    "ModuleDescriptor",
    "ModuleInfo",
    "ModuleCatalog",
    "TypeModuleCatalog",
    "ModuleRegistry",
]
