"""
Modularity - Module Context

The single object every lifecycle hook receives. One context exists per
host; the lifecycle driver passes the same instance to every hook in every
phase.

What is available depends on the phase:

    configure_services  services (writable), configuration, properties, modules
    initialize          + service_provider (services are read-only from here)
    shutdown            same as initialize
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from di.container import ServiceCollection, ServiceProvider
from modularity.configuration import Configuration, ConfigurationSection
from modularity.declarations import module_section_name
from modularity.descriptor import ModuleInfo
from modularity.errors import ModuleError

DEFAULT_ENVIRONMENT = "Production"
MODULES_SECTION = "Modules"


class ModuleContext:
    """
    Services, configuration and shared state exposed to modules.

    Usage (inside a module):
        def configure_services(self, context):
            options = context.get_module_configuration(self).bind(OrdersOptions)
            context.services.add_instance(OrdersOptions, options)

        async def initialize(self, context):
            repo = context.get_required_service(OrderRepository)
            context.properties["orders.ready"] = True
    """

    __slots__ = (
        "_services",
        "_configuration",
        "_environment_name",
        "_service_provider",
        "_properties",
        "_modules_view",
        "_cancellation_token",
    )

    def __init__(
        self,
        services: Optional[ServiceCollection] = None,
        configuration: Optional[Configuration] = None,
        environment_name: str = DEFAULT_ENVIRONMENT,
        cancellation_token: Optional[asyncio.Event] = None,
    ):
        self._services = services if services is not None else ServiceCollection()
        self._configuration = configuration if configuration is not None else Configuration()
        self._environment_name = environment_name or DEFAULT_ENVIRONMENT
        self._service_provider: Optional[ServiceProvider] = None
        self._properties: Dict[str, Any] = {}
        self._modules_view: Callable[[], Tuple[ModuleInfo, ...]] = tuple
        self._cancellation_token = (
            cancellation_token if cancellation_token is not None else asyncio.Event()
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def services(self) -> ServiceCollection:
        """Service registrations (read-only once the provider is built)."""
        return self._services

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    @property
    def environment_name(self) -> str:
        return self._environment_name

    @property
    def service_provider(self) -> ServiceProvider:
        """The resolved provider; raises ModuleError during the configure phase."""
        if self._service_provider is None:
            raise ModuleError(
                "The service provider is not available until every module has "
                "configured its services."
            )
        return self._service_provider

    @property
    def has_service_provider(self) -> bool:
        return self._service_provider is not None

    @property
    def properties(self) -> Dict[str, Any]:
        """Free-form data shared between modules."""
        return self._properties

    @property
    def modules(self) -> Tuple[ModuleInfo, ...]:
        """Snapshots of every loaded module, in resolved order."""
        return self._modules_view()

    @property
    def cancellation_token(self) -> asyncio.Event:
        return self._cancellation_token

    # -------------------------------------------------------------------------
    # Driver hooks
    # -------------------------------------------------------------------------

    def attach_service_provider(self, provider: ServiceProvider) -> None:
        if self._service_provider is not None:
            raise ModuleError("A service provider is already attached to this context.")
        self._service_provider = provider

    def attach_modules_view(self, view: Callable[[], Tuple[ModuleInfo, ...]]) -> None:
        self._modules_view = view

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    def get_service(self, service_type: Hashable) -> Any:
        """The service, or None when unregistered or before the provider exists."""
        if self._service_provider is None:
            return None
        return self._service_provider.get_service(service_type)

    def get_required_service(self, service_type: Hashable) -> Any:
        return self.service_provider.get_required_service(service_type)

    # -------------------------------------------------------------------------
    # Modules
    # -------------------------------------------------------------------------

    def get_module(self, identity: Hashable) -> Optional[ModuleInfo]:
        for info in self.modules:
            if info.identity == identity:
                return info
        return None

    def is_module_loaded(self, identity: Hashable) -> bool:
        return self.get_module(identity) is not None

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_module_configuration(self, module: Any) -> ConfigurationSection:
        """
        ``Modules:<Name>`` section for a module class, instance or name.

        A trailing ``Module`` is dropped from class names, so ``OrdersModule``
        reads ``Modules:Orders``.
        """
        return self._configuration.get_section(
            f"{MODULES_SECTION}:{module_section_name(module)}"
        )

    # -------------------------------------------------------------------------
    # Environment
    # -------------------------------------------------------------------------

    def is_environment(self, name: str) -> bool:
        return self._environment_name.casefold() == name.casefold()

    @property
    def is_development(self) -> bool:
        return self.is_environment("Development")

    @property
    def is_staging(self) -> bool:
        return self.is_environment("Staging")

    @property
    def is_production(self) -> bool:
        return self.is_environment("Production")

    def __repr__(self) -> str:
        return (
            f"ModuleContext(environment={self._environment_name!r}, "
            f"modules={len(self.modules)}, "
            f"provider={'built' if self._service_provider else 'pending'})"
        )


__all__ = ["ModuleContext", "DEFAULT_ENVIRONMENT", "MODULES_SECTION"]
