"""
Tests for modularity/declarations.py and modularity/descriptor.py.

Covers:
- depends_on metadata and inheritance rules
- Module class detection
- Descriptor construction and the state transition table
- ModuleRegistry registration rules
"""
import pytest

from modularity.declarations import (
    DEFAULT_DECLARATION,
    IModule,
    ModuleBase,
    depends_on,
    get_declaration,
    is_module_class,
    module_section_name,
)
from modularity.descriptor import (
    ModuleDescriptor,
    ModuleRegistry,
    ModuleState,
    TypeModuleCatalog,
    ensure_transition,
)
from modularity.errors import ModuleError


class DatabaseModule(ModuleBase):
    pass


class CacheModule(ModuleBase):
    pass


@depends_on(DatabaseModule, CacheModule, DatabaseModule, priority=10, description="Orders")
class OrdersModule(ModuleBase):
    pass


class DerivedOrdersModule(OrdersModule):
    pass


class PlainHooks:
    def configure_services(self, context):
        pass

    def initialize(self, context):
        pass

    def shutdown(self, context):
        pass


# =============================================================================
# depends_on
# =============================================================================


class TestDependsOn:
    """Tests for the depends_on decorator."""

    def test_records_dependencies_in_order_without_duplicates(self):
        declaration = get_declaration(OrdersModule)

        assert declaration.dependencies == (DatabaseModule, CacheModule)
        assert declaration.priority == 10
        assert declaration.description == "Orders"

    def test_undecorated_class_has_default_declaration(self):
        assert get_declaration(DatabaseModule) is DEFAULT_DECLARATION

    def test_declaration_is_not_inherited(self):
        assert get_declaration(DerivedOrdersModule).dependencies == ()

    def test_rejects_non_class(self):
        with pytest.raises(TypeError):
            depends_on(DatabaseModule)(lambda: None)

    def test_custom_name_is_used_by_module_base(self):
        @depends_on(name="Billing")
        class BillingModule(ModuleBase):
            pass

        assert BillingModule().name == "Billing"
        assert DatabaseModule().name == "DatabaseModule"


# =============================================================================
# Module detection
# =============================================================================


class TestModuleDetection:
    """Tests for is_module_class and the IModule protocol."""

    def test_module_base_subclass_is_module(self):
        assert is_module_class(DatabaseModule)

    def test_duck_typed_class_is_module(self):
        assert is_module_class(PlainHooks)
        assert isinstance(PlainHooks(), IModule)

    def test_instances_and_plain_classes_are_not_modules(self):
        assert not is_module_class(DatabaseModule())
        assert not is_module_class(dict)
        assert not is_module_class("DatabaseModule")

    def test_protocol_is_not_a_module(self):
        assert not is_module_class(IModule)

    @pytest.mark.parametrize(
        "module, expected",
        [
            (OrdersModule, "Orders"),
            (OrdersModule(), "Orders"),
            ("PaymentsModule", "Payments"),
            ("Module", "Module"),
            (PlainHooks, "PlainHooks"),
        ],
    )
    def test_section_name_drops_module_suffix(self, module, expected):
        assert module_section_name(module) == expected


# =============================================================================
# Descriptors
# =============================================================================


class TestModuleDescriptor:
    """Tests for ModuleDescriptor."""

    def test_from_type_reads_declaration(self):
        descriptor = ModuleDescriptor.from_type(OrdersModule)

        assert descriptor.identity is OrdersModule
        assert descriptor.name == "OrdersModule"
        assert descriptor.dependencies == (DatabaseModule, CacheModule)
        assert descriptor.priority == 10
        assert isinstance(descriptor.create_instance(), OrdersModule)

    def test_name_defaults_to_identity(self):
        descriptor = ModuleDescriptor(identity="storage", factory=object)
        assert descriptor.name == "storage"

    def test_dependencies_are_deduplicated(self):
        descriptor = ModuleDescriptor(identity="api", factory=object, dependencies=("a", "b", "a"))
        assert descriptor.dependencies == ("a", "b")

    def test_descriptor_is_immutable(self):
        descriptor = ModuleDescriptor(identity="api", factory=object)
        with pytest.raises(AttributeError):
            descriptor.priority = 3

    def test_type_catalog_caches_and_rejects_non_modules(self):
        catalog = TypeModuleCatalog()

        assert catalog.describe(OrdersModule) is catalog.describe(OrdersModule)
        assert catalog.describe("OrdersModule") is None
        assert catalog.describe(dict) is None


class TestModuleState:
    """Tests for the module state machine."""

    def test_happy_path_transitions(self):
        path = [
            ModuleState.REGISTERED,
            ModuleState.CONFIGURING_SERVICES,
            ModuleState.SERVICES_CONFIGURED,
            ModuleState.INITIALIZING,
            ModuleState.INITIALIZED,
            ModuleState.SHUTTING_DOWN,
            ModuleState.SHUT_DOWN,
        ]
        for current, target in zip(path, path[1:]):
            assert current.can_transition_to(target)

    @pytest.mark.parametrize(
        "state",
        [ModuleState.CONFIGURING_SERVICES, ModuleState.INITIALIZING, ModuleState.SHUTTING_DOWN],
    )
    def test_failed_reachable_from_in_progress_states(self, state):
        assert state.is_in_progress
        assert state.can_transition_to(ModuleState.FAILED)

    def test_terminal_states(self):
        assert ModuleState.SHUT_DOWN.is_terminal
        assert ModuleState.FAILED.is_terminal
        assert not ModuleState.REGISTERED.is_terminal

    def test_illegal_transition_raises(self):
        with pytest.raises(ModuleError, match="registered -> initialized"):
            ensure_transition("api", ModuleState.REGISTERED, ModuleState.INITIALIZED)

    def test_failed_is_not_reachable_from_registered(self):
        assert not ModuleState.REGISTERED.can_transition_to(ModuleState.FAILED)


# =============================================================================
# Registry
# =============================================================================


class TestModuleRegistry:
    """Tests for ModuleRegistry."""

    def test_register_and_describe(self):
        registry = ModuleRegistry()
        registry.register("storage", DatabaseModule, priority=2, description="db")
        registry.register("api", CacheModule, dependencies=["storage"])

        assert registry.identities() == ["storage", "api"]
        assert "storage" in registry
        assert len(registry) == 2
        assert registry.describe("api").dependencies == ("storage",)
        assert registry.describe("missing") is None

    def test_duplicate_registration_raises(self):
        registry = ModuleRegistry().register("storage", DatabaseModule)

        with pytest.raises(ModuleError, match="already registered"):
            registry.register("storage", CacheModule)

    def test_factory_must_be_callable(self):
        with pytest.raises(ModuleError, match="not callable"):
            ModuleRegistry().register("storage", "not-a-factory")

    def test_register_module_reads_declaration(self):
        registry = ModuleRegistry().register_module(OrdersModule)
        descriptor = registry.describe(OrdersModule)

        assert descriptor.dependencies == (DatabaseModule, CacheModule)
        assert descriptor.priority == 10

    def test_register_module_rejects_non_modules(self):
        with pytest.raises(ModuleError, match="does not implement"):
            ModuleRegistry().register_module(dict)
