"""
Modularity - Service Registry

Provides the two views of the shared service registry that modules use:

- ServiceCollection: the mutable registration list handed to modules during
  the configure phase.
- ServiceProvider: the resolved, read-only view built from the collection
  once every module has been configured.

Features:
- Singleton, Scoped, and Transient lifetimes
- Constructor injection from ``__init__`` type hints
- Factory functions (optionally receiving the provider)
- Async resolution and disposal
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Hashable,
    Iterator,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
    get_type_hints,
)

T = TypeVar("T")


def service_name(service_type: Hashable) -> str:
    if isinstance(service_type, type):
        return service_type.__name__
    return str(service_type)


class ServiceNotRegisteredError(KeyError):
    """Raised when a required service has no registration."""

    def __init__(self, service_type: Hashable):
        super().__init__(service_type)
        self.service_type = service_type

    def __str__(self) -> str:
        return f"Service '{service_name(self.service_type)}' is not registered"


class ServiceResolutionError(RuntimeError):
    """Raised when a registered service cannot be constructed."""


class ServiceCollectionReadOnlyError(RuntimeError):
    """Raised when registering services after the provider was built."""


class ServiceDisposalError(RuntimeError):
    """Raised after disposal when one or more instances failed to dispose."""

    def __init__(self, failures: List[Tuple[Any, BaseException]]):
        self.failures = list(failures)
        names = ", ".join(type(instance).__name__ for instance, _ in self.failures)
        super().__init__(f"{len(self.failures)} service(s) failed to dispose: {names}")


class ServiceLifetime(Enum):
    """Service lifetime options."""

    SINGLETON = "singleton"  # One instance for the provider
    SCOPED = "scoped"        # One instance per scope
    TRANSIENT = "transient"  # New instance every time


@dataclass
class ServiceDescriptor:
    """Describes how a service should be created and managed."""

    service_type: Hashable
    implementation_type: Optional[type] = None
    factory: Optional[Callable[..., Any]] = None
    instance: Any = None
    lifetime: ServiceLifetime = ServiceLifetime.SINGLETON
    async_factory: Optional[Callable[..., Any]] = None

    def __post_init__(self) -> None:
        if (
            self.implementation_type is None
            and self.factory is None
            and self.async_factory is None
            and self.instance is None
        ):
            if not isinstance(self.service_type, type):
                raise ValueError(
                    f"Service '{service_name(self.service_type)}' needs an "
                    "implementation, factory or instance"
                )
            self.implementation_type = self.service_type


class ServiceCollection:
    """
    Mutable list of service registrations.

    Usage:
        services = ServiceCollection()
        services.add_singleton(DatabaseClient)
        services.add_transient(RequestHandler)
        services.add_factory(Settings, lambda: load_settings())

        provider = services.build_service_provider()
    """

    def __init__(self) -> None:
        self._descriptors: Dict[Hashable, ServiceDescriptor] = {}
        self._read_only = False

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def add(self, descriptor: ServiceDescriptor) -> "ServiceCollection":
        """Add a descriptor, replacing any previous one for the same service."""
        self._ensure_writable()
        self._descriptors[descriptor.service_type] = descriptor
        return self

    def add_singleton(
        self,
        service_type: Hashable,
        implementation_type: Optional[type] = None,
    ) -> "ServiceCollection":
        """Register a singleton service."""
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                implementation_type=implementation_type,
                lifetime=ServiceLifetime.SINGLETON,
            )
        )

    def add_scoped(
        self,
        service_type: Hashable,
        implementation_type: Optional[type] = None,
    ) -> "ServiceCollection":
        """Register a scoped service."""
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                implementation_type=implementation_type,
                lifetime=ServiceLifetime.SCOPED,
            )
        )

    def add_transient(
        self,
        service_type: Hashable,
        implementation_type: Optional[type] = None,
    ) -> "ServiceCollection":
        """Register a transient service."""
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                implementation_type=implementation_type,
                lifetime=ServiceLifetime.TRANSIENT,
            )
        )

    def add_instance(self, service_type: Hashable, instance: Any) -> "ServiceCollection":
        """Register an existing instance as singleton."""
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                instance=instance,
                lifetime=ServiceLifetime.SINGLETON,
            )
        )

    def add_factory(
        self,
        service_type: Hashable,
        factory: Callable[..., Any],
        lifetime: ServiceLifetime = ServiceLifetime.SINGLETON,
    ) -> "ServiceCollection":
        """
        Register a factory function for creating instances.

        The factory is called with no arguments, or with the provider when it
        declares a parameter.
        """
        is_async = asyncio.iscoroutinefunction(factory)
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                factory=factory if not is_async else None,
                async_factory=factory if is_async else None,
                lifetime=lifetime,
            )
        )

    def try_add(
        self,
        service_type: Hashable,
        implementation_type: Optional[type] = None,
        lifetime: ServiceLifetime = ServiceLifetime.SCOPED,
    ) -> "ServiceCollection":
        """Register a service only if it hasn't been registered yet."""
        if service_type in self._descriptors:
            return self
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                implementation_type=implementation_type,
                lifetime=lifetime,
            )
        )

    def replace(
        self,
        service_type: Hashable,
        implementation_type: Optional[type] = None,
        lifetime: ServiceLifetime = ServiceLifetime.SCOPED,
    ) -> "ServiceCollection":
        """Replace an existing registration (or add it when missing)."""
        self._ensure_writable()
        self._descriptors.pop(service_type, None)
        return self.add(
            ServiceDescriptor(
                service_type=service_type,
                implementation_type=implementation_type,
                lifetime=lifetime,
            )
        )

    def add_with_interfaces(
        self,
        implementation_type: type,
        lifetime: ServiceLifetime = ServiceLifetime.SINGLETON,
    ) -> "ServiceCollection":
        """
        Register an implementation and forward each of its base classes to it.

        Resolving any base class returns the instance registered for the
        implementation, so a singleton is shared across all of them.
        """
        self.add(
            ServiceDescriptor(
                service_type=implementation_type,
                implementation_type=implementation_type,
                lifetime=lifetime,
            )
        )
        for base in implementation_type.__mro__[1:]:
            if base is object:
                continue
            self.add(
                ServiceDescriptor(
                    service_type=base,
                    factory=lambda provider, impl=implementation_type: provider.resolve(impl),
                    lifetime=ServiceLifetime.TRANSIENT,
                )
            )
        return self

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def contains(self, service_type: Hashable) -> bool:
        return service_type in self._descriptors

    def __contains__(self, service_type: object) -> bool:
        return service_type in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(list(self._descriptors.values()))

    def get_descriptor(self, service_type: Hashable) -> Optional[ServiceDescriptor]:
        return self._descriptors.get(service_type)

    @property
    def is_read_only(self) -> bool:
        return self._read_only

    def make_read_only(self) -> None:
        """Reject any further registration."""
        self._read_only = True

    def _ensure_writable(self) -> None:
        if self._read_only:
            raise ServiceCollectionReadOnlyError(
                "Services can only be registered during the configure phase"
            )

    def build_service_provider(self) -> "ServiceProvider":
        """Snapshot the registrations into a resolvable provider."""
        return ServiceProvider(dict(self._descriptors))


class Scope:
    """
    Scope for scoped services.

    Usage:
        with provider.create_scope() as scope:
            service = scope.resolve(MyService)
    """

    def __init__(self, provider: "ServiceProvider"):
        self._provider = provider
        self._instances: Dict[Hashable, Any] = {}
        self._lock = threading.RLock()

    def resolve(self, service_type: Hashable) -> Any:
        """Resolve a service within this scope."""
        descriptor = self._provider._get_descriptor(service_type)

        if descriptor.lifetime == ServiceLifetime.SCOPED:
            with self._lock:
                if service_type not in self._instances:
                    self._instances[service_type] = self._provider._create_instance(
                        descriptor, self
                    )
                return self._instances[service_type]

        return self._provider.resolve(service_type, self)

    async def resolve_async(self, service_type: Hashable) -> Any:
        """Resolve a service asynchronously."""
        descriptor = self._provider._get_descriptor(service_type)

        if descriptor.lifetime == ServiceLifetime.SCOPED:
            if service_type not in self._instances:
                self._instances[service_type] = await self._provider._create_instance_async(
                    descriptor, self
                )
            return self._instances[service_type]

        return await self._provider.resolve_async(service_type, self)

    def get_service(self, service_type: Hashable) -> Any:
        if not self._provider.is_registered(service_type):
            return None
        return self.resolve(service_type)

    def dispose(self) -> None:
        """Dispose all scoped instances."""
        instances = list(self._instances.values())
        self._instances.clear()
        _dispose_all(instances)

    async def dispose_async(self) -> None:
        """Dispose all scoped instances asynchronously."""
        instances = list(self._instances.values())
        self._instances.clear()
        await _dispose_all_async(instances)


class ServiceProvider:
    """
    Read-only service resolver built from a ServiceCollection.

    Usage:
        provider = services.build_service_provider()
        db = provider.get_required_service(DatabaseClient)
        cache = provider.get_service(Cache)  # None when not registered
    """

    def __init__(self, descriptors: Dict[Hashable, ServiceDescriptor]) -> None:
        self._descriptors = descriptors
        self._singletons: Dict[Hashable, Any] = {}
        self._lock = threading.RLock()
        self._initializing: set = set()

        for service_type, descriptor in descriptors.items():
            if descriptor.instance is not None:
                self._singletons[service_type] = descriptor.instance

    def _get_descriptor(self, service_type: Hashable) -> ServiceDescriptor:
        """Get service descriptor or raise error."""
        if service_type not in self._descriptors:
            raise ServiceNotRegisteredError(service_type)
        return self._descriptors[service_type]

    def _get_dependencies(self, impl_type: type) -> Dict[str, Any]:
        """Get constructor dependencies from type hints."""
        if impl_type.__init__ is object.__init__:
            return {}

        try:
            hints = get_type_hints(impl_type.__init__)
        except (NameError, TypeError):
            hints = {}

        hints.pop("return", None)

        return hints

    def _call_factory(self, factory: Callable[..., Any]) -> Any:
        try:
            parameters = inspect.signature(factory).parameters
        except (TypeError, ValueError):
            parameters = {}
        if parameters:
            return factory(self)
        return factory()

    def _create_instance(
        self,
        descriptor: ServiceDescriptor,
        scope: Optional[Scope] = None,
    ) -> Any:
        """Create a service instance synchronously."""
        if descriptor.instance is not None:
            return descriptor.instance

        if descriptor.factory is not None:
            return self._call_factory(descriptor.factory)

        if descriptor.async_factory is not None:
            raise ServiceResolutionError(
                f"Service '{service_name(descriptor.service_type)}' has an async "
                "factory; use resolve_async"
            )

        impl_type = descriptor.implementation_type
        if impl_type is None:
            raise ServiceResolutionError(
                f"No implementation for {service_name(descriptor.service_type)}"
            )

        deps = self._get_dependencies(impl_type)
        resolved_deps = {}

        for param_name, param_type in deps.items():
            if param_type in self._descriptors:
                resolved_deps[param_name] = self.resolve(param_type, scope)

        return impl_type(**resolved_deps)

    async def _create_instance_async(
        self,
        descriptor: ServiceDescriptor,
        scope: Optional[Scope] = None,
    ) -> Any:
        """Create a service instance asynchronously."""
        if descriptor.instance is not None:
            return descriptor.instance

        if descriptor.async_factory is not None:
            parameters = inspect.signature(descriptor.async_factory).parameters
            if parameters:
                return await descriptor.async_factory(self)
            return await descriptor.async_factory()

        if descriptor.factory is not None:
            return self._call_factory(descriptor.factory)

        impl_type = descriptor.implementation_type
        if impl_type is None:
            raise ServiceResolutionError(
                f"No implementation for {service_name(descriptor.service_type)}"
            )

        deps = self._get_dependencies(impl_type)
        resolved_deps = {}

        for param_name, param_type in deps.items():
            if param_type in self._descriptors:
                resolved_deps[param_name] = await self.resolve_async(param_type, scope)

        return impl_type(**resolved_deps)

    def resolve(self, service_type: Hashable, scope: Optional[Scope] = None) -> Any:
        """Resolve a service instance."""
        descriptor = self._get_descriptor(service_type)

        if descriptor.lifetime == ServiceLifetime.SINGLETON:
            with self._lock:
                if service_type not in self._singletons:
                    if service_type in self._initializing:
                        raise ServiceResolutionError(
                            f"Circular dependency detected for {service_name(service_type)}"
                        )
                    self._initializing.add(service_type)
                    try:
                        self._singletons[service_type] = self._create_instance(
                            descriptor, scope
                        )
                    finally:
                        self._initializing.discard(service_type)
                return self._singletons[service_type]

        elif descriptor.lifetime == ServiceLifetime.SCOPED:
            if scope is None:
                raise ServiceResolutionError(
                    f"Scoped service '{service_name(service_type)}' requires a scope"
                )
            return scope.resolve(service_type)

        else:  # TRANSIENT
            return self._create_instance(descriptor, scope)

    async def resolve_async(
        self,
        service_type: Hashable,
        scope: Optional[Scope] = None,
    ) -> Any:
        """Resolve a service instance asynchronously."""
        descriptor = self._get_descriptor(service_type)

        if descriptor.lifetime == ServiceLifetime.SINGLETON:
            if service_type in self._singletons:
                return self._singletons[service_type]
            if service_type in self._initializing:
                raise ServiceResolutionError(
                    f"Circular dependency detected for {service_name(service_type)}"
                )
            self._initializing.add(service_type)
            try:
                instance = await self._create_instance_async(descriptor, scope)
            finally:
                self._initializing.discard(service_type)
            return self._singletons.setdefault(service_type, instance)

        elif descriptor.lifetime == ServiceLifetime.SCOPED:
            if scope is None:
                raise ServiceResolutionError(
                    f"Scoped service '{service_name(service_type)}' requires a scope"
                )
            return await scope.resolve_async(service_type)

        else:  # TRANSIENT
            return await self._create_instance_async(descriptor, scope)

    def get_service(self, service_type: Hashable) -> Any:
        """Resolve a service, returning None if it is not registered."""
        if service_type not in self._descriptors:
            return None
        return self.resolve(service_type)

    def get_required_service(self, service_type: Hashable) -> Any:
        """Resolve a service, raising ServiceNotRegisteredError if missing."""
        return self.resolve(service_type)

    def is_registered(self, service_type: Hashable) -> bool:
        """Check if a service is registered."""
        return service_type in self._descriptors

    @property
    def registered_services(self) -> List[Hashable]:
        return list(self._descriptors)

    @contextmanager
    def create_scope(self) -> Iterator[Scope]:
        """Create a new scope for scoped services."""
        scope = Scope(self)
        try:
            yield scope
        finally:
            scope.dispose()

    @asynccontextmanager
    async def create_scope_async(self) -> AsyncIterator[Scope]:
        """Create a new scope for scoped services asynchronously."""
        scope = Scope(self)
        try:
            yield scope
        finally:
            await scope.dispose_async()

    def dispose(self) -> None:
        """
        Dispose all singleton instances created by this provider.

        Every owned instance is disposed even when an earlier one fails.

        Raises:
            ServiceDisposalError: One or more instances failed to dispose.
        """
        owned = self._owned_singletons()
        self._singletons.clear()
        _dispose_all(owned)

    async def dispose_async(self) -> None:
        """Dispose all singleton instances created by this provider (see dispose)."""
        owned = self._owned_singletons()
        self._singletons.clear()
        await _dispose_all_async(owned)

    def _owned_singletons(self) -> List[Any]:
        # Instances registered from outside belong to the caller.
        external = {
            id(d.instance) for d in self._descriptors.values() if d.instance is not None
        }
        owned: List[Any] = []
        seen: set = set()
        for instance in self._singletons.values():
            if id(instance) in external or id(instance) in seen:
                continue
            seen.add(id(instance))
            owned.append(instance)
        return owned


def _dispose_all(instances: List[Any]) -> None:
    failures: List[Tuple[Any, BaseException]] = []
    for instance in instances:
        try:
            _dispose_instance(instance)
        except Exception as e:
            failures.append((instance, e))
    if failures:
        raise ServiceDisposalError(failures)


async def _dispose_all_async(instances: List[Any]) -> None:
    failures: List[Tuple[Any, BaseException]] = []
    for instance in instances:
        try:
            await _dispose_instance_async(instance)
        except Exception as e:
            failures.append((instance, e))
    if failures:
        raise ServiceDisposalError(failures)


def _dispose_instance(instance: Any) -> None:
    if hasattr(instance, "dispose"):
        instance.dispose()
    elif hasattr(instance, "close") and not asyncio.iscoroutinefunction(instance.close):
        instance.close()


async def _dispose_instance_async(instance: Any) -> None:
    if hasattr(instance, "dispose_async"):
        await instance.dispose_async()
    elif hasattr(instance, "close"):
        if asyncio.iscoroutinefunction(instance.close):
            await instance.close()
        else:
            instance.close()
    elif hasattr(instance, "dispose"):
        instance.dispose()
