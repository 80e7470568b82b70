"""
Tests for modularity/bootstrap.py - ApplicationBuilder, bootstrap() and run_application().
"""
import asyncio

import pytest

from modularity.bootstrap import ApplicationBuilder, bootstrap, run_application
from modularity.declarations import ModuleBase, depends_on
from modularity.configuration import Configuration, ConfigurationBuilder
from modularity.descriptor import ModuleRegistry, ModuleState
from modularity.errors import (
    CircularDependencyError,
    MissingModuleDependencyError,
    ModuleError,
    ModuleInitializationError,
)
from modularity.lifecycle import FailurePolicy
from modularity.settings import HostSettings
from tests.fixtures.broken import (
    CycleAModule,
    FailingModule,
    HealthyModule,
    MissingDependencyModule,
)
from tests.fixtures.sample_app.api import ApiModule, ApiServer, AppModule
from tests.fixtures.sample_app.storage import KeyValueStore, StorageModule
from tests.helpers import build_registry, hooks_called


class Clock:
    pass


class Journal:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class JournalModule(ModuleBase):
    def __init__(self, opened):
        self.opened = opened

    def configure_services(self, context):
        context.services.add_singleton(Journal)

    async def initialize(self, context):
        self.opened.append(context.get_required_service(Journal))


def _core_module(package):
    class CoreModule(ModuleBase):
        pass

    CoreModule.__module__ = package
    return CoreModule


BillingCore = _core_module("billing.core")
ShippingCore = _core_module("shipping.core")


@depends_on(BillingCore, ShippingCore, name="ShopApp")
class ShopAppModule(ModuleBase):
    def configure_services(self, context):
        raise RuntimeError("catalog unavailable")


# =============================================================================
# Builder configuration
# =============================================================================


class TestApplicationBuilderConfiguration:
    """Tests for the fluent setters."""

    def test_defaults(self):
        builder = ApplicationBuilder.create()

        assert builder.environment_name == "Production"
        assert builder.roots == []
        assert isinstance(builder.configuration, Configuration)

    def test_root_module_can_only_be_set_once(self):
        builder = ApplicationBuilder.create().use_root_module(AppModule)

        with pytest.raises(ModuleError, match="Only one root module"):
            builder.use_root_module(StorageModule)

    def test_roots_combine_root_and_extra_modules(self):
        builder = (
            ApplicationBuilder.create()
            .use_root_module(AppModule)
            .add_modules(StorageModule, AppModule, HealthyModule)
        )

        assert builder.roots == [AppModule, StorageModule, HealthyModule]

    def test_add_modules_from_package(self):
        builder = ApplicationBuilder.create().add_modules_from_package("tests.fixtures.sample_app")

        assert builder.roots == [ApiModule, AppModule, StorageModule]

    @pytest.mark.parametrize("environment", ["", "   "])
    def test_blank_environment_rejected(self, environment):
        with pytest.raises(ModuleError, match="must not be blank"):
            ApplicationBuilder.create().with_environment(environment)

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_non_positive_timeout_rejected(self, timeout):
        with pytest.raises(ModuleError, match="must be positive"):
            ApplicationBuilder.create().with_hook_timeout(timeout)

    def test_configuration_inputs(self):
        builder = ApplicationBuilder.create()

        builder.with_configuration({"Modules:Orders:Port": 1})
        assert builder.configuration.get("modules:orders:port") == 1

        builder.with_configuration(ConfigurationBuilder().add_mapping({"A": {"B": 2}}))
        assert builder.configuration.get("A:B") == 2

        configuration = Configuration({"C": 3})
        assert builder.with_configuration(configuration).configuration is configuration

    def test_configure_services_rejects_wrong_arity(self):
        with pytest.raises(ModuleError, match="fn\\(services\\)"):
            ApplicationBuilder.create().configure_services(lambda: None)

        with pytest.raises(ModuleError):
            ApplicationBuilder.create().configure_services(lambda a, b, c: None)


# =============================================================================
# Resolution
# =============================================================================


class TestResolve:
    """Tests for side-effect-free resolution."""

    def test_resolve_without_roots(self):
        with pytest.raises(ModuleError, match="No root module"):
            ApplicationBuilder.create().resolve()

    def test_resolve_sample_application(self):
        order = ApplicationBuilder.create().use_root_module(AppModule).resolve()

        assert order.names() == ["StorageModule", "ApiModule", "AuditModule", "SampleApp"]

    def test_resolve_never_instantiates_modules(self):
        created = []
        registry = ModuleRegistry()
        registry.register("a", lambda: created.append("a"))
        registry.register("b", lambda: created.append("b"), dependencies=["a"])

        order = ApplicationBuilder.create().with_catalog(registry).use_root_module("b").resolve()

        assert order.identities() == ["a", "b"]
        assert created == []

    @pytest.mark.asyncio
    async def test_cycle_fails_before_any_hook(self, calls):
        registry = build_registry({"A": ["B"], "B": ["A"], "C": []}, calls)
        builder = ApplicationBuilder.create().with_catalog(registry).add_modules("C", "A")

        with pytest.raises(CircularDependencyError):
            await builder.build()

        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_dependency_fails_before_any_hook(self, calls):
        registry = build_registry({"A": ["X"], "B": []}, calls)
        builder = ApplicationBuilder.create().with_catalog(registry).add_modules("B", "A")

        with pytest.raises(MissingModuleDependencyError) as exc_info:
            await builder.build()

        assert exc_info.value.module == "A"
        assert exc_info.value.dependency == "X"
        assert calls == []

    def test_class_based_cycle_and_missing_dependency(self):
        with pytest.raises(CircularDependencyError):
            ApplicationBuilder.create().use_root_module(CycleAModule).resolve()

        with pytest.raises(MissingModuleDependencyError):
            ApplicationBuilder.create().use_root_module(MissingDependencyModule).resolve()


# =============================================================================
# Build
# =============================================================================


class TestBuild:
    """Tests for ApplicationBuilder.build()."""

    @pytest.mark.asyncio
    async def test_build_sample_application(self):
        host = await (
            ApplicationBuilder.create()
            .with_environment("Development")
            .with_configuration({"Modules": {"Storage": {"MaxItems": 5}}})
            .use_root_module(AppModule)
            .build()
        )

        store = host.get_required_service(KeyValueStore)
        api = host.get_required_service(ApiServer)
        assert store.items == {"boot": "Development"}
        assert store.options.max_items == 5
        assert api.running
        assert api.store is store
        assert host.context.properties["audit.modules"] == [
            "StorageModule", "ApiModule", "AuditModule", "SampleApp",
        ]

        await host.shutdown()

        assert store.closed
        assert not api.running
        assert host.context.properties["storage.stopped"]

    @pytest.mark.asyncio
    async def test_build_only_once(self, calls):
        registry = build_registry({"A": []}, calls)
        builder = ApplicationBuilder.create().with_catalog(registry).use_root_module("A")
        await builder.build()

        with pytest.raises(ModuleError, match="already been built"):
            await builder.build()

    @pytest.mark.asyncio
    async def test_service_configurators_run_before_module_hooks(self, calls):
        registry = build_registry({"A": []}, calls)
        seen = []

        def configure(services, configuration):
            seen.append((len(calls), configuration.get("Clock:Zone")))
            services.add_singleton(Clock)

        host = await (
            ApplicationBuilder.create()
            .with_configuration({"Clock": {"Zone": "UTC"}})
            .with_catalog(registry)
            .use_root_module("A")
            .configure_services(configure)
            .build()
        )

        assert seen == [(0, "UTC")]
        assert isinstance(host.get_required_service(Clock), Clock)

    @pytest.mark.asyncio
    async def test_fail_fast_error_carries_states(self):
        builder = ApplicationBuilder.create().use_root_module(FailingModule)

        with pytest.raises(ModuleInitializationError) as exc_info:
            await builder.build()

        assert exc_info.value.module_states == {
            HealthyModule: ModuleState.INITIALIZED,
            FailingModule: ModuleState.FAILED,
        }

    @pytest.mark.asyncio
    async def test_fail_fast_states_keep_modules_that_share_a_name(self):
        builder = ApplicationBuilder.create().use_root_module(ShopAppModule)

        with pytest.raises(ModuleInitializationError) as exc_info:
            await builder.build()

        assert exc_info.value.module_states == {
            BillingCore: ModuleState.SERVICES_CONFIGURED,
            ShippingCore: ModuleState.SERVICES_CONFIGURED,
            ShopAppModule: ModuleState.FAILED,
        }
        reported = exc_info.value.to_dict()["module_states"]
        assert sorted(entry["module"] for entry in reported) == ["CoreModule", "CoreModule", "ShopApp"]

    @pytest.mark.asyncio
    async def test_fail_fast_shuts_down_initialized_modules(self, calls):
        registry = build_registry(
            {"A": [], "B": ["A"], "C": ["B"]}, calls, fail={"C": ["initialize"]}
        )
        opened = []
        registry.register("journal", lambda: JournalModule(opened), priority=10)
        builder = (
            ApplicationBuilder.create()
            .with_catalog(registry)
            .use_root_module("C")
            .add_modules("journal")
        )

        with pytest.raises(ModuleInitializationError) as exc_info:
            await builder.build()

        assert exc_info.value.module_states == {
            "journal": ModuleState.INITIALIZED,
            "A": ModuleState.INITIALIZED,
            "B": ModuleState.INITIALIZED,
            "C": ModuleState.FAILED,
        }
        assert hooks_called(calls, "shutdown") == ["B", "A"]
        assert len(opened) == 1
        assert opened[0].closed

    @pytest.mark.asyncio
    async def test_continue_policy_returns_degraded_host(self):
        host = await (
            ApplicationBuilder.create()
            .with_failure_policy("continue")
            .use_root_module(FailingModule)
            .build()
        )

        assert host.is_degraded
        assert host.get_module_state(HealthyModule) is ModuleState.INITIALIZED
        assert host.get_module_state(FailingModule) is ModuleState.FAILED
        await host.shutdown()

    @pytest.mark.asyncio
    async def test_hook_timeout_is_applied(self, calls):
        from tests.helpers import RecordingModule

        registry = ModuleRegistry().register("slow", lambda: RecordingModule("slow", calls, delay=1.0))
        builder = (
            ApplicationBuilder.create()
            .with_catalog(registry)
            .use_root_module("slow")
            .with_hook_timeout(0.05)
        )

        with pytest.raises(ModuleInitializationError):
            await builder.build()


class TestFromSettings:
    """Tests for ApplicationBuilder.from_settings()."""

    def test_settings_are_applied(self, tmp_config_file, monkeypatch):
        monkeypatch.setenv("SAMPLE_MODULES__ORDERS__HOST", "db.internal")
        settings = HostSettings(
            environment="Staging",
            failure_policy=FailurePolicy.CONTINUE,
            hook_timeout=2.5,
            config_prefix="SAMPLE_",
            config_file=tmp_config_file,
            log_level="INFO",
        )

        builder = ApplicationBuilder.from_settings(settings)

        assert builder.environment_name == "Staging"
        assert builder.configuration.get("Modules:Orders:Port") == 9090
        assert builder.configuration.get("Modules:Orders:Host") == "db.internal"
        assert builder.configuration.get("FeatureFlags:NewCheckout") is True

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError, match="must be positive"):
            ApplicationBuilder.from_settings(HostSettings(hook_timeout=-1))


# =============================================================================
# bootstrap() and run_application()
# =============================================================================


class TestBootstrap:
    """Tests for the bootstrap context manager."""

    @pytest.mark.asyncio
    async def test_always_shuts_down(self, calls):
        registry = build_registry({"A": [], "B": ["A"]}, calls)
        builder = ApplicationBuilder.create().with_catalog(registry).add_modules("B")

        with pytest.raises(KeyError):
            async with bootstrap(builder=builder, setup_signals=False) as host:
                assert host.is_running
                raise KeyError("boom")

        assert hooks_called(calls, "shutdown") == ["B", "A"]

    @pytest.mark.asyncio
    async def test_overrides(self):
        async with bootstrap(
            AppModule,
            environment="Development",
            configuration={"Modules": {"Storage": {"Path": "/data"}}},
            failure_policy=FailurePolicy.CONTINUE,
            hook_timeout=5.0,
            setup_signals=False,
        ) as host:
            assert host.environment_name == "Development"
            assert host.get_required_service(KeyValueStore).options.path == "/data"

    @pytest.mark.asyncio
    async def test_signal_handlers_request_shutdown(self):
        import os
        import signal
        import sys

        if sys.platform == "win32":
            pytest.skip("signal handlers are not supported on Windows event loops")

        async with bootstrap(HealthyModule) as host:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(host.wait_for_shutdown(), timeout=5.0)
            assert host.shutdown_requested

    @pytest.mark.asyncio
    async def test_run_application_returns_main_result(self):
        async def main(host):
            return host.get_required_service(KeyValueStore).items["boot"]

        result = await run_application(AppModule, main, environment="Staging", setup_signals=False)

        assert result == "Staging"
