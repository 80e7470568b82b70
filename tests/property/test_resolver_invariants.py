"""
Property-Based Tests for Dependency Resolution and Lifecycle Ordering

Tests ordering, determinism and failure invariants over generated module graphs.
"""
import asyncio

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from modularity.context import ModuleContext
from modularity.errors import CircularDependencyError, MissingModuleDependencyError
from modularity.graph import DependencyGraphBuilder
from modularity.lifecycle import FailurePolicy, ModuleLifecycleManager
from modularity.resolver import ModuleDependencyResolver, get_all_dependencies
from tests.helpers import build_registry, hooks_called
from tests.property.strategies import (
    cyclic_graph_strategy,
    dag_strategy,
    dag_with_roots_strategy,
    graph_with_missing_dependency_strategy,
    priorities_strategy,
)

pytestmark = pytest.mark.property

PROPERTY_SETTINGS = settings(
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)


def resolve(graph, roots, calls=None, priorities=None):
    registry = build_registry(graph, calls if calls is not None else [], priorities=priorities)
    module_graph = DependencyGraphBuilder(registry).build(roots)
    return module_graph, ModuleDependencyResolver(module_graph).resolve()


class TestResolvedOrderInvariants:
    """Properties of the resolved order for acyclic graphs."""

    @given(dag_with_roots_strategy())
    @PROPERTY_SETTINGS
    def test_dependencies_precede_dependents(self, graph_and_roots):
        graph, roots = graph_and_roots

        module_graph, order = resolve(graph, roots)
        positions = {identity: index for index, identity in enumerate(order.identities())}

        for descriptor in order:
            for dependency in descriptor.dependencies:
                assert positions[dependency] < positions[descriptor.identity]

    @given(dag_with_roots_strategy())
    @PROPERTY_SETTINGS
    def test_order_contains_exactly_the_reachable_modules(self, graph_and_roots):
        graph, roots = graph_and_roots

        module_graph, order = resolve(graph, roots)

        reachable = set(roots)
        for root in roots:
            reachable |= get_all_dependencies(module_graph, root)
        assert sorted(order.identities()) == sorted(reachable)
        assert len(order) == len(set(order.identities()))

    @given(st.data())
    @PROPERTY_SETTINGS
    def test_resolution_is_deterministic(self, data):
        graph, roots = data.draw(dag_with_roots_strategy())
        priorities = data.draw(priorities_strategy(graph))

        _, first = resolve(graph, roots, priorities=priorities)
        _, second = resolve(graph, roots, priorities=priorities)

        assert first.identities() == second.identities()

    @given(st.data())
    @PROPERTY_SETTINGS
    def test_independent_modules_follow_priority_then_discovery(self, data):
        count = data.draw(st.integers(min_value=1, max_value=8))
        graph = {f"M{index}": [] for index in range(count)}
        roots = data.draw(st.permutations(list(graph)))
        priorities = data.draw(priorities_strategy(graph))

        _, order = resolve(graph, roots, priorities=priorities)

        expected = sorted(roots, key=lambda name: (-priorities[name], roots.index(name)))
        assert order.identities() == expected


class TestResolutionFailures:
    """Invalid graphs fail before any module is created."""

    @given(cyclic_graph_strategy())
    @PROPERTY_SETTINGS
    def test_cycles_are_reported_with_a_closed_chain(self, graph):
        calls = []

        with pytest.raises(CircularDependencyError) as exc_info:
            resolve(graph, list(graph), calls=calls)

        chain = exc_info.value.chain
        assert len(chain) >= 3
        assert chain[0] == chain[-1]
        for dependent, dependency in zip(chain, chain[1:]):
            assert dependency in graph[dependent]
        assert calls == []

    @given(graph_with_missing_dependency_strategy())
    @PROPERTY_SETTINGS
    def test_missing_dependencies_are_reported(self, graph_and_owner):
        graph, owner = graph_and_owner

        with pytest.raises(MissingModuleDependencyError) as exc_info:
            resolve(graph, list(graph))

        assert exc_info.value.module == owner
        assert exc_info.value.dependency == "Ghost"


class TestLifecycleOrderingInvariants:
    """Hook ordering over generated graphs."""

    @given(dag_strategy())
    @PROPERTY_SETTINGS
    def test_shutdown_reverses_startup(self, graph):
        calls = []
        _, order = resolve(graph, list(graph), calls=calls)
        manager = ModuleLifecycleManager(order, ModuleContext())

        async def run():
            await manager.start()
            return await manager.shutdown()

        assert asyncio.run(run()) == []

        configured = hooks_called(calls, "configure_services")
        initialized = hooks_called(calls, "initialize")
        assert configured == order.identities()
        assert initialized == order.identities()
        assert hooks_called(calls, "shutdown") == list(reversed(initialized))

    @given(st.data())
    @PROPERTY_SETTINGS
    def test_failed_module_blocks_its_dependents(self, data):
        graph = data.draw(dag_strategy())
        failing = data.draw(st.sampled_from(list(graph)))
        calls = []
        registry = build_registry(graph, calls, fail={failing: ["initialize"]})
        module_graph = DependencyGraphBuilder(registry).build(list(graph))
        order = ModuleDependencyResolver(module_graph).resolve()
        manager = ModuleLifecycleManager(
            order, ModuleContext(), failure_policy=FailurePolicy.CONTINUE
        )

        asyncio.run(manager.start())

        initialized = set(hooks_called(calls, "initialize")) - {failing}
        for name in initialized:
            assert failing not in get_all_dependencies(module_graph, name)
        expected_skipped = {
            name for name in graph if failing in get_all_dependencies(module_graph, name)
        }
        assert set(manager.skipped) == expected_skipped
