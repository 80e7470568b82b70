"""
Shared test doubles: modules that record every hook call.
"""
import asyncio
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from modularity.declarations import ModuleBase
from modularity.descriptor import ModuleRegistry


class RecordingModule(ModuleBase):
    """Appends ``(hook, label)`` to ``calls`` and fails on request."""

    def __init__(
        self,
        label: str,
        calls: List[Tuple[str, str]],
        fail_in: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.label = label
        self.calls = calls
        self.fail_in = set(fail_in)
        self.delay = delay

    def _record(self, hook: str) -> None:
        self.calls.append((hook, self.label))
        if hook in self.fail_in:
            raise RuntimeError(f"{self.label} failed in {hook}")

    def configure_services(self, context) -> None:
        self._record("configure_services")

    async def initialize(self, context) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self._record("initialize")

    async def shutdown(self, context) -> None:
        self._record("shutdown")


def build_registry(
    graph: Mapping[str, Sequence[str]],
    calls: List[Tuple[str, str]],
    fail: Optional[Mapping[str, Iterable[str]]] = None,
    priorities: Optional[Dict[str, int]] = None,
    delays: Optional[Dict[str, float]] = None,
) -> ModuleRegistry:
    """Registry of RecordingModules keyed by name, in mapping order."""
    fail = fail or {}
    priorities = priorities or {}
    delays = delays or {}
    registry = ModuleRegistry()
    for name, dependencies in graph.items():
        registry.register(
            name,
            lambda name=name: RecordingModule(
                name, calls, fail_in=fail.get(name, ()), delay=delays.get(name, 0.0)
            ),
            dependencies=dependencies,
            priority=priorities.get(name, 0),
        )
    return registry


def hooks_called(calls: List[Tuple[str, str]], hook: str) -> List[str]:
    """Labels of the modules whose ``hook`` ran, in call order."""
    return [label for called, label in calls if called == hook]
