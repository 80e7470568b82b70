"""
Modularity - Application Bootstrap

Fluent entry point that turns a root module into a running ApplicationHost.

Architecture:
    ApplicationBuilder → DependencyGraphBuilder → ModuleDependencyResolver
        → ModuleLifecycleManager → ApplicationHost

Resolution (graph building and ordering) is side-effect free: missing and
circular dependencies are reported before any module is instantiated and
before any hook runs.

Usage:
    from modularity import ApplicationBuilder, bootstrap

    # Fluent builder pattern
    host = await (
        ApplicationBuilder.create()
        .with_environment("Development")
        .with_configuration({"Modules": {"Orders": {"Port": 8080}}})
        .use_root_module(AppModule)
        .build()
    )

    # Or simple context manager
    async with bootstrap(AppModule) as host:
        await host.get_required_service(OrderService).process()
"""
from __future__ import annotations

import asyncio
import inspect
import signal
import sys
from contextlib import asynccontextmanager
from types import ModuleType
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Hashable,
    List,
    Mapping,
    Optional,
    Union,
)

from di.container import ServiceCollection
from modularity.configuration import Configuration, ConfigurationBuilder
from modularity.context import DEFAULT_ENVIRONMENT, ModuleContext
from modularity.descriptor import ModuleCatalog
from modularity.errors import ModuleError, identity_name
from modularity.graph import DependencyGraph, DependencyGraphBuilder, discover_modules
from modularity.host import ApplicationHost, dispose_provider
from modularity.lifecycle import FailurePolicy, ModuleLifecycleManager
from modularity.resolver import ModuleDependencyResolver, ResolvedOrder
from modularity.settings import HostSettings
from observability.logging import get_logger

logger = get_logger("modularity.bootstrap")

ServiceConfigurator = Callable[..., None]
ConfigurationInput = Union[Configuration, ConfigurationBuilder, Mapping[str, Any]]


def _positional_arity(fn: Callable[..., Any]) -> int:
    return len(
        [
            p for p in inspect.signature(fn).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
    )


# =============================================================================
# APPLICATION BUILDER
# =============================================================================


class ApplicationBuilder:
    """
    Fluent builder for a modular application.

    The builder collects roots, configuration and policies; nothing is
    resolved or instantiated until ``resolve()`` or ``build()`` is called.

        host = await (
            ApplicationBuilder.create()
            .with_environment("Production")
            .with_failure_policy(FailurePolicy.CONTINUE)
            .use_root_module(AppModule)
            .configure_services(lambda services: services.add_singleton(Clock))
            .build()
        )
    """

    def __init__(self) -> None:
        self._environment = DEFAULT_ENVIRONMENT
        self._configuration = Configuration()
        self._failure_policy = FailurePolicy.FAIL_FAST
        self._hook_timeout: Optional[float] = None
        self._catalog: Optional[ModuleCatalog] = None
        self._root: Optional[Hashable] = None
        self._modules: List[Hashable] = []
        self._service_configurators: List[ServiceConfigurator] = []
        self._services = ServiceCollection()
        self._built = False

    @classmethod
    def create(cls) -> "ApplicationBuilder":
        """Create a builder with empty configuration and default policies."""
        return cls()

    @classmethod
    def from_settings(cls, settings: Optional[HostSettings] = None) -> "ApplicationBuilder":
        """
        Create a builder from HostSettings (environment variables by default).

        Configuration is layered as: optional JSON file, then environment
        variables starting with the configured prefix.
        """
        settings = settings or HostSettings.from_environment()
        settings.validate()

        configuration = ConfigurationBuilder()
        if settings.config_file is not None:
            configuration.add_json_file(settings.config_file)
        configuration.add_environment_variables(prefix=settings.config_prefix)

        builder = (
            cls()
            .with_environment(settings.environment)
            .with_failure_policy(settings.failure_policy)
            .with_configuration(configuration)
        )
        if settings.hook_timeout is not None:
            builder.with_hook_timeout(settings.hook_timeout)
        return builder

    # -------------------------------------------------------------------------
    # Environment and configuration
    # -------------------------------------------------------------------------

    @property
    def services(self) -> ServiceCollection:
        return self._services

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    @property
    def environment_name(self) -> str:
        return self._environment

    def with_environment(self, environment: str) -> "ApplicationBuilder":
        """Set the environment name (Development, Staging, Production...)."""
        if not environment or not environment.strip():
            raise ModuleError("Environment name must not be blank.")
        self._environment = environment
        return self

    def with_configuration(self, configuration: ConfigurationInput) -> "ApplicationBuilder":
        """Use a Configuration, build a ConfigurationBuilder, or wrap a mapping."""
        if isinstance(configuration, Configuration):
            self._configuration = configuration
        elif isinstance(configuration, ConfigurationBuilder):
            self._configuration = configuration.build()
        else:
            self._configuration = Configuration(configuration)
        return self

    def with_failure_policy(self, policy: Union[FailurePolicy, str]) -> "ApplicationBuilder":
        self._failure_policy = FailurePolicy.parse(policy)
        return self

    def with_hook_timeout(self, seconds: Optional[float]) -> "ApplicationBuilder":
        """Fail any async hook that runs longer than ``seconds`` (None disables)."""
        if seconds is not None and seconds <= 0:
            raise ModuleError("Hook timeout must be positive.")
        self._hook_timeout = seconds
        return self

    def with_catalog(self, catalog: ModuleCatalog) -> "ApplicationBuilder":
        """Describe modules with ``catalog`` instead of class declarations."""
        self._catalog = catalog
        return self

    # -------------------------------------------------------------------------
    # Modules
    # -------------------------------------------------------------------------

    def use_root_module(self, identity: Hashable) -> "ApplicationBuilder":
        """Set the root module. Its dependencies are loaded transitively."""
        if self._root is not None:
            raise ModuleError(
                "Root module has already been set. Only one root module is allowed.",
                module=identity,
            )
        self._root = identity
        return self

    def add_modules(self, *identities: Hashable) -> "ApplicationBuilder":
        """Add extra roots (with their dependencies)."""
        self._modules.extend(identities)
        return self

    def add_modules_from_package(self, package: Union[str, ModuleType]) -> "ApplicationBuilder":
        """Add every module class defined in ``package`` (see discover_modules)."""
        return self.add_modules(*discover_modules(package))

    @property
    def roots(self) -> List[Hashable]:
        roots: List[Hashable] = [self._root] if self._root is not None else []
        roots.extend(self._modules)
        return list(dict.fromkeys(roots))

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    def configure_services(self, configurator: ServiceConfigurator) -> "ApplicationBuilder":
        """
        Register application-level services.

        ``configurator`` is called as ``fn(services)`` or
        ``fn(services, configuration)`` during build(), before any module's
        configure hook.
        """
        if _positional_arity(configurator) not in (1, 2):
            raise ModuleError(
                "configure_services expects fn(services) or fn(services, configuration)."
            )
        self._service_configurators.append(configurator)
        return self

    def _apply_service_configurators(self) -> None:
        for configurator in self._service_configurators:
            if _positional_arity(configurator) == 2:
                configurator(self._services, self._configuration)
            else:
                configurator(self._services)

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build_graph(self) -> DependencyGraph:
        if not self.roots:
            raise ModuleError("No root module configured; call use_root_module() first.")
        return DependencyGraphBuilder(self._catalog).build(self.roots)

    def resolve(self) -> ResolvedOrder:
        """
        Resolve the startup order without instantiating anything.

        Raises:
            MissingModuleDependencyError: A dependency is not registered.
            CircularDependencyError: The dependencies form a cycle.
        """
        return ModuleDependencyResolver(self.build_graph()).resolve()

    async def build(self) -> ApplicationHost:
        """
        Resolve, load, configure and initialize every module.

        Returns:
            The started ApplicationHost.

        Raises:
            MissingModuleDependencyError, CircularDependencyError: Before any
                module is instantiated.
            ModuleInitializationError: A module failed to load, or failed a
                hook under the fail-fast policy. Modules that had already
                initialized are shut down, in reverse order, before it is raised.
        """
        if self._built:
            raise ModuleError("The application has already been built.")
        self._built = True

        order = self.resolve()
        logger.info(
            "application_building",
            environment=self._environment,
            order=order.names(),
            failure_policy=self._failure_policy.value,
        )

        self._apply_service_configurators()
        context = ModuleContext(
            services=self._services,
            configuration=self._configuration,
            environment_name=self._environment,
        )
        manager = ModuleLifecycleManager(
            order,
            context,
            failure_policy=self._failure_policy,
            hook_timeout=self._hook_timeout,
        )
        try:
            await manager.start()
        except Exception as e:
            logger.error(
                "application_build_failed",
                error=str(e),
                module_states=[
                    f"{identity_name(i)}={s.value}" for i, s in manager.module_states().items()
                ],
            )
            await self._abort(manager)
            raise

        host = ApplicationHost(manager)
        if host.is_degraded:
            logger.warning(
                "application_degraded",
                failed=[f.name for f in host.failures],
                skipped=[identity_name(i) for i in host.skipped_modules],
            )
        return host

    @staticmethod
    async def _abort(manager: ModuleLifecycleManager) -> None:
        # Undo a failed start: shut down what initialized, release services.
        await manager.shutdown()
        if manager.context.has_service_provider:
            await dispose_provider(manager.context.service_provider)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


@asynccontextmanager
async def bootstrap(
    root_module: Optional[Hashable] = None,
    *,
    builder: Optional[ApplicationBuilder] = None,
    environment: Optional[str] = None,
    configuration: Optional[ConfigurationInput] = None,
    failure_policy: Optional[Union[FailurePolicy, str]] = None,
    hook_timeout: Optional[float] = None,
    setup_signals: bool = True,
) -> AsyncIterator[ApplicationHost]:
    """
    Build the application, yield the host, and always shut it down.

    Usage:
        async with bootstrap(AppModule, environment="Development") as host:
            await host.run()

    Args:
        root_module: Root module identity (optional when ``builder`` has one)
        builder: Pre-configured builder to start from
        environment: Environment name override
        configuration: Configuration override
        failure_policy: Failure policy override
        hook_timeout: Per-hook timeout override
        setup_signals: Route SIGINT/SIGTERM to host.request_shutdown()

    Yields:
        Started ApplicationHost
    """
    builder = builder or ApplicationBuilder.create()
    if root_module is not None:
        builder.use_root_module(root_module)
    if environment is not None:
        builder.with_environment(environment)
    if configuration is not None:
        builder.with_configuration(configuration)
    if failure_policy is not None:
        builder.with_failure_policy(failure_policy)
    if hook_timeout is not None:
        builder.with_hook_timeout(hook_timeout)

    host = await builder.build()

    # Set up signal handlers for graceful shutdown
    installed: List[signal.Signals] = []
    if setup_signals and sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, host.request_shutdown)
            installed.append(sig)

    try:
        yield host
    finally:
        await host.shutdown()
        if installed:
            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)


async def run_application(
    root_module: Hashable,
    main: Callable[[ApplicationHost], Awaitable[Any]],
    **options: Any,
) -> Any:
    """
    Run ``main`` against a started host, then shut the host down.

    Usage:
        async def main(host: ApplicationHost):
            await host.get_required_service(Worker).run()

        asyncio.run(run_application(AppModule, main))
    """
    async with bootstrap(root_module, **options) as host:
        return await main(host)


__all__ = [
    "ApplicationBuilder",
    "bootstrap",
    "run_application",
]
