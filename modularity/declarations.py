"""
Modularity - Module Declarations

How a module says what it needs. Declarations are explicit: a class is
decorated with ``depends_on`` and the graph builder reads that annotation.
Nothing is inferred from imports or constructor signatures.

Usage:
    from modularity import ModuleBase, depends_on

    @depends_on(DatabaseModule, CacheModule, priority=10)
    class OrdersModule(ModuleBase):
        def configure_services(self, context):
            context.services.add_singleton(OrderRepository)

        async def initialize(self, context):
            repo = context.get_required_service(OrderRepository)
            await repo.warm_up()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Hashable,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:
    from modularity.context import ModuleContext

TModule = TypeVar("TModule", bound=type)

_DECLARATION_ATTR = "__module_declaration__"
_MODULE_SUFFIX = "Module"


@dataclass(frozen=True)
class ModuleDeclaration:
    """Dependencies and metadata attached to a module class."""

    dependencies: Tuple[Hashable, ...] = ()
    name: Optional[str] = None
    description: Optional[str] = None
    priority: int = 0
    load_on_demand: bool = False


DEFAULT_DECLARATION = ModuleDeclaration()


def depends_on(
    *dependencies: Hashable,
    name: Optional[str] = None,
    description: Optional[str] = None,
    priority: int = 0,
    load_on_demand: bool = False,
) -> Callable[[TModule], TModule]:
    """
    Declare the modules a module class depends on.

    Args:
        *dependencies: Identities of required modules, in declaration order.
            Duplicates are dropped, keeping the first occurrence.
        name: Display name (defaults to the class name).
        description: Free-form description shown by the inspection CLI.
        priority: Ordering hint between otherwise unrelated modules. Higher
            runs earlier; it never overrides a dependency.
        load_on_demand: Exclude the class from package discovery. It is still
            loaded when another module depends on it.

    The declaration is bound to the decorated class only. Subclasses must
    declare their own dependencies.
    """

    def decorator(cls: TModule) -> TModule:
        if not isinstance(cls, type):
            raise TypeError(f"@depends_on can only decorate classes, got {cls!r}")
        setattr(
            cls,
            _DECLARATION_ATTR,
            ModuleDeclaration(
                dependencies=tuple(dict.fromkeys(dependencies)),
                name=name,
                description=description,
                priority=priority,
                load_on_demand=load_on_demand,
            ),
        )
        return cls

    return decorator


def get_declaration(cls: type) -> ModuleDeclaration:
    """Return the declaration attached to ``cls`` (not its bases)."""
    declaration = vars(cls).get(_DECLARATION_ATTR)
    if isinstance(declaration, ModuleDeclaration):
        return declaration
    return DEFAULT_DECLARATION


HookResult = Union[None, Awaitable[None]]


@runtime_checkable
class IModule(Protocol):
    """
    Protocol for modules - independently authored units of an application.

    Each hook receives the shared ModuleContext and may be a plain function or
    a coroutine function. Hooks run one module at a time, in dependency order
    for configure/initialize and in reverse for shutdown.
    """

    def configure_services(self, context: "ModuleContext") -> HookResult:
        """Register services and bind configuration."""
        ...

    def initialize(self, context: "ModuleContext") -> HookResult:
        """Start using services once the provider is built."""
        ...

    def shutdown(self, context: "ModuleContext") -> HookResult:
        """Release resources acquired during initialize."""
        ...


class ModuleBase:
    """Base class for modules with no-op hooks."""

    @property
    def name(self) -> str:
        return get_declaration(type(self)).name or type(self).__name__

    def configure_services(self, context: "ModuleContext") -> None:
        """Override to register services."""
        pass

    async def initialize(self, context: "ModuleContext") -> None:
        """Override to add initialization logic."""
        pass

    async def shutdown(self, context: "ModuleContext") -> None:
        """Override to add shutdown logic."""
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


def is_module_class(candidate: Any) -> bool:
    """A concrete class exposing all three lifecycle hooks."""
    if not isinstance(candidate, type):
        return False
    if getattr(candidate, "__abstractmethods__", None):
        return False
    if getattr(candidate, "_is_protocol", False):
        return False
    return all(
        callable(getattr(candidate, hook, None))
        for hook in ("configure_services", "initialize", "shutdown")
    )


def module_section_name(module: Any) -> str:
    """
    Configuration key for a module.

    ``OrdersModule`` (class, instance or name) becomes ``Orders``.
    """
    if isinstance(module, str):
        name = module
    elif isinstance(module, type):
        name = module.__name__
    else:
        name = type(module).__name__
    if name.endswith(_MODULE_SUFFIX) and len(name) > len(_MODULE_SUFFIX):
        name = name[: -len(_MODULE_SUFFIX)]
    return name


__all__ = [
    "ModuleDeclaration",
    "DEFAULT_DECLARATION",
    "depends_on",
    "get_declaration",
    "IModule",
    "ModuleBase",
    "is_module_class",
    "module_section_name",
]
