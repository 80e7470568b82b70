"""
Modularity - Dependency Injection

The service registry modules write into while their ``configure_services``
hooks run, and the read-only provider built from it once every module has
configured.

Two views of the same registrations:
- ``ServiceCollection``: mutable while configuring, frozen before the build
- ``ServiceProvider``: resolves singletons, scoped and transient services

Usage:
    from di import ServiceCollection, ServiceLifetime

    services = ServiceCollection()
    services.add_singleton(IOrderRepository, SqlOrderRepository)
    services.add_scoped(OrderService)

    provider = services.build_service_provider()
    with provider.create_scope() as scope:
        orders = scope.resolve(OrderService)
"""

from di.container import (
    # Lifetime management
    ServiceLifetime,
    ServiceDescriptor,

    # Registration and resolution
    ServiceCollection,
    ServiceProvider,
    Scope,

    # Errors
    ServiceNotRegisteredError,
    ServiceResolutionError,
    ServiceCollectionReadOnlyError,
    ServiceDisposalError,

    # Utilities
    service_name,
)

__all__ = [
    # Lifetime management
    "ServiceLifetime",      # Singleton, Scoped, Transient
    "ServiceDescriptor",    # Service registration metadata

    # Registration and resolution
    "ServiceCollection",    # Mutable registry, written during configure
    "ServiceProvider",      # Read-only resolver, built once
    "Scope",                # Scoped service resolution

    # Errors
    "ServiceNotRegisteredError",
    "ServiceResolutionError",
    "ServiceCollectionReadOnlyError",
    "ServiceDisposalError",

    # Utilities
    "service_name",
]
