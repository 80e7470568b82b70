"""
Modularity - Test Configuration

Pytest fixtures and configuration for all tests.
"""
from pathlib import Path
from typing import Any, Dict, List, Tuple
import json

import pytest

from di.container import ServiceCollection
from modularity.configuration import Configuration
from modularity.context import ModuleContext
from modularity.descriptor import ModuleRegistry
from modularity.graph import DependencyGraphBuilder
from modularity.resolver import ModuleDependencyResolver, ResolvedOrder
from tests.helpers import build_registry


@pytest.fixture
def calls() -> List[Tuple[str, str]]:
    """Shared (hook, module) call log written by RecordingModule."""
    return []


@pytest.fixture
def sample_configuration() -> Configuration:
    """Configuration with a section per sample module."""
    return Configuration(
        {
            "Modules": {
                "Orders": {"Port": 8080, "ConnectionString": "sqlite://", "Enabled": True},
                "Storage": {"Path": "/var/lib/orders"},
            },
            "Logging": {"Level": "DEBUG"},
        }
    )


@pytest.fixture
def module_context(sample_configuration) -> ModuleContext:
    """Fresh context with empty services and the sample configuration."""
    return ModuleContext(
        services=ServiceCollection(),
        configuration=sample_configuration,
        environment_name="Development",
    )


@pytest.fixture
def chain_registry(calls) -> ModuleRegistry:
    """A <- B <- C (C depends on B, B depends on A)."""
    return build_registry({"A": [], "B": ["A"], "C": ["B"]}, calls)


@pytest.fixture
def chain_order(chain_registry) -> ResolvedOrder:
    graph = DependencyGraphBuilder(chain_registry).build(chain_registry.identities())
    return ModuleDependencyResolver(graph).resolve()


@pytest.fixture
def tmp_config_file(tmp_path) -> Path:
    """JSON configuration file on disk."""
    data: Dict[str, Any] = {
        "Modules": {"Orders": {"Port": 9090}},
        "FeatureFlags": {"NewCheckout": True},
    }
    path = tmp_path / "appsettings.json"
    with open(path, "w") as f:
        json.dump(data, f)
    return path


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: tests that drive a full application build")
    config.addinivalue_line("markers", "property: marks property-based tests using Hypothesis")
    config.addinivalue_line("markers", "cli: tests for the inspection CLI")
