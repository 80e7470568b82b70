"""
Modularity - Module Dependency Resolution and Lifecycle

Applications are composed of modules. Each module declares the modules it
depends on; the framework discovers the full graph from a root module,
orders it so dependencies always come first, and drives every module
through configure, initialize and (in reverse) shutdown.

Provides:
- Declarations (``depends_on``, ``ModuleBase``, ``ModuleRegistry``)
- Graph discovery and dependency resolution
- The lifecycle driver with fail-fast or continue-on-failure policies
- Module context, hierarchical configuration and typed module options
- The application host, builder and ``bootstrap()`` entry point

Usage:
    from modularity import ModuleBase, depends_on, bootstrap

    class DatabaseModule(ModuleBase):
        def configure_services(self, context):
            context.services.add_singleton(Database)

    @depends_on(DatabaseModule, priority=10)
    class OrdersModule(ModuleBase):
        async def initialize(self, context):
            await context.get_required_service(Database).connect()

    async with bootstrap(OrdersModule, environment="Development") as host:
        await host.wait_for_shutdown()
"""

from modularity.errors import (
    ModularityError,
    ConfigurationError,
    ModuleError,
    MissingModuleDependencyError,
    CircularDependencyError,
    ModuleInitializationError,
    ModuleShutdownError,
    ErrorContext,
    ErrorSeverity,
)
from modularity.declarations import (
    IModule,
    ModuleBase,
    ModuleDeclaration,
    depends_on,
    get_declaration,
    is_module_class,
)
from modularity.descriptor import (
    ModuleCatalog,
    ModuleDescriptor,
    ModuleInfo,
    ModuleRegistry,
    ModuleState,
    TypeModuleCatalog,
)
from modularity.graph import (
    DependencyGraph,
    DependencyGraphBuilder,
    discover_modules,
)
from modularity.resolver import (
    ModuleDependencyResolver,
    ResolvedOrder,
    get_all_dependencies,
)
from modularity.configuration import (
    Configuration,
    ConfigurationBuilder,
    ConfigurationSection,
)
from modularity.context import ModuleContext
from modularity.lifecycle import (
    FailurePolicy,
    LifecycleEvent,
    LifecyclePhase,
    ModuleFailure,
    ModuleLifecycleManager,
)
from modularity.host import ApplicationHost
from modularity.options import (
    ModuleOptionsBase,
    bind_module_options,
    configure_module_options,
)
from modularity.settings import HostSettings
from modularity.bootstrap import (
    ApplicationBuilder,
    bootstrap,
    run_application,
)

__all__ = [
    # Errors
    "ModularityError",
    "ConfigurationError",
    "ModuleError",
    "MissingModuleDependencyError",
    "CircularDependencyError",
    "ModuleInitializationError",
    "ModuleShutdownError",
    "ErrorContext",
    "ErrorSeverity",
    # Declarations
    "IModule",
    "ModuleBase",
    "ModuleDeclaration",
    "depends_on",
    "get_declaration",
    "is_module_class",
    # Descriptors and catalogs
    "ModuleCatalog",
    "ModuleDescriptor",
    "ModuleInfo",
    "ModuleRegistry",
    "ModuleState",
    "TypeModuleCatalog",
    # Graph and resolution
    "DependencyGraph",
    "DependencyGraphBuilder",
    "discover_modules",
    "ModuleDependencyResolver",
    "ResolvedOrder",
    "get_all_dependencies",
    # Configuration
    "Configuration",
    "ConfigurationBuilder",
    "ConfigurationSection",
    "ModuleOptionsBase",
    "bind_module_options",
    "configure_module_options",
    "HostSettings",
    # Lifecycle
    "ModuleContext",
    "FailurePolicy",
    "LifecycleEvent",
    "LifecyclePhase",
    "ModuleFailure",
    "ModuleLifecycleManager",
    # Hosting
    "ApplicationHost",
    "ApplicationBuilder",
    "bootstrap",
    "run_application",
]

__version__ = "0.1.0"
