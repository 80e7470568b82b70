"""
Modularity - Lifecycle Driver

Drives every module of a ResolvedOrder through its lifecycle:

    load → configure_services → build provider → initialize → ... → shutdown

Phases are strictly sequential. Within a phase, hooks run one module at a
time in resolved order (reverse order for shutdown) and an awaitable hook is
awaited before the next one starts. No module enters phase N+1 before every
module has finished phase N.

Failure handling is explicit:

- FailurePolicy.FAIL_FAST (default): the first configure/initialize failure
  moves that module to FAILED and raises ModuleInitializationError. Modules
  after it have no hook invoked; modules before it keep their state.
- FailurePolicy.CONTINUE: the failing module moves to FAILED, every module
  depending on it (directly or not) is skipped and keeps its state, and
  independent modules carry on.

Shutdown is best effort: every failure is logged and collected, and the
remaining modules are still shut down.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional, Set, Tuple, Union
from uuid import UUID, uuid4

from opentelemetry.trace import Status, StatusCode

from modularity.context import ModuleContext
from modularity.descriptor import (
    ModuleDescriptor,
    ModuleInfo,
    ModuleState,
    ensure_transition,
)
from modularity.errors import (
    ErrorContext,
    ModuleError,
    ModuleInitializationError,
    identity_name,
)
from modularity.resolver import ResolvedOrder
from observability.logging import LogContext, get_logger
from observability.tracing import create_span, get_tracer

logger = get_logger("modularity.lifecycle")
tracer = get_tracer("modularity.lifecycle")


# =============================================================================
# PHASES, POLICIES AND EVENTS
# =============================================================================


class LifecyclePhase(Enum):
    """
    Phase of the lifecycle driver.

    CREATED → LOADING → CONFIGURING → BUILDING → INITIALIZING → RUNNING
    → SHUTTING_DOWN → TERMINATED, or FAILED when startup is aborted.
    """
    CREATED = "created"
    LOADING = "loading"
    CONFIGURING = "configuring"
    BUILDING = "building"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"
    FAILED = "failed"


class FailurePolicy(Enum):
    """What the driver does when a configure or initialize hook fails."""
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"

    @classmethod
    def parse(cls, value: Union[str, "FailurePolicy"]) -> "FailurePolicy":
        """Accept enum members, values and names (``fail-fast``, ``CONTINUE``...)."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        for policy in cls:
            if normalized in (policy.value, policy.name.lower()):
                return policy
        raise ValueError(
            f"Unknown failure policy {value!r}; expected one of "
            f"{', '.join(p.value for p in cls)}"
        )


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """Immutable record of one hook invocation."""
    event_id: UUID
    timestamp: float
    phase: LifecyclePhase
    component: str
    success: bool
    duration_ms: float
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success_event(
        cls,
        phase: LifecyclePhase,
        component: str,
        duration_ms: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "LifecycleEvent":
        """Factory for successful lifecycle events."""
        return cls(
            event_id=uuid4(),
            timestamp=time.time(),
            phase=phase,
            component=component,
            success=True,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure_event(
        cls,
        phase: LifecyclePhase,
        component: str,
        error: BaseException,
        duration_ms: float = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "LifecycleEvent":
        """Factory for failed lifecycle events."""
        return cls(
            event_id=uuid4(),
            timestamp=time.time(),
            phase=phase,
            component=component,
            success=False,
            duration_ms=duration_ms,
            error=str(error),
            error_type=type(error).__name__,
            metadata=metadata or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp,
            "phase": self.phase.value,
            "component": self.component,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class ModuleFailure:
    """A hook failure attributed to one module."""
    identity: Hashable
    name: str
    phase: LifecyclePhase
    error: BaseException

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module": self.name,
            "phase": self.phase.value,
            "error": self.message,
            "error_type": self.error_type,
        }


class _ModuleRecord:
    """Mutable per-module bookkeeping owned by the driver."""

    __slots__ = ("descriptor", "instance", "state", "loaded_at", "initialized_at", "error")

    def __init__(self, descriptor: ModuleDescriptor, instance: Any):
        self.descriptor = descriptor
        self.instance = instance
        self.state = ModuleState.REGISTERED
        self.loaded_at = datetime.now(timezone.utc)
        self.initialized_at: Optional[datetime] = None
        self.error: Optional[str] = None

    @property
    def identity(self) -> Hashable:
        return self.descriptor.identity

    @property
    def name(self) -> str:
        return self.descriptor.name

    def transition(self, target: ModuleState) -> None:
        ensure_transition(self.identity, self.state, target)
        self.state = target

    def snapshot(self) -> ModuleInfo:
        return ModuleInfo(
            identity=self.descriptor.identity,
            name=self.descriptor.name,
            priority=self.descriptor.priority,
            state=self.state,
            dependencies=self.descriptor.dependencies,
            description=self.descriptor.description,
            instance=self.instance,
            loaded_at=self.loaded_at,
            initialized_at=self.initialized_at,
            error=self.error,
        )


# =============================================================================
# LIFECYCLE DRIVER
# =============================================================================


_HOOKS: Dict[LifecyclePhase, Tuple[str, ModuleState, ModuleState, str]] = {
    # phase: (hook name, in-progress state, done state, log event)
    LifecyclePhase.CONFIGURING: (
        "configure_services",
        ModuleState.CONFIGURING_SERVICES,
        ModuleState.SERVICES_CONFIGURED,
        "module_configured",
    ),
    LifecyclePhase.INITIALIZING: (
        "initialize",
        ModuleState.INITIALIZING,
        ModuleState.INITIALIZED,
        "module_initialized",
    ),
    LifecyclePhase.SHUTTING_DOWN: (
        "shutdown",
        ModuleState.SHUTTING_DOWN,
        ModuleState.SHUT_DOWN,
        "module_shutdown",
    ),
}

_PHASE_VERBS: Dict[LifecyclePhase, str] = {
    LifecyclePhase.LOADING: "load",
    LifecyclePhase.CONFIGURING: "configure services for",
    LifecyclePhase.INITIALIZING: "initialize",
    LifecyclePhase.SHUTTING_DOWN: "shut down",
}


class ModuleLifecycleManager:
    """
    Owns the state of every loaded module and runs their hooks.

    Usage:
        manager = ModuleLifecycleManager(order, context)
        await manager.start()        # load, configure, build, initialize
        ...
        failures = await manager.shutdown()
    """

    def __init__(
        self,
        order: ResolvedOrder,
        context: ModuleContext,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        hook_timeout: Optional[float] = None,
    ):
        if hook_timeout is not None and hook_timeout <= 0:
            raise ValueError("hook_timeout must be positive")
        self._order = order
        self._context = context
        self._failure_policy = FailurePolicy.parse(failure_policy)
        self._hook_timeout = hook_timeout
        self._phase = LifecyclePhase.CREATED
        self._records: Dict[Hashable, _ModuleRecord] = {}
        self._events: List[LifecycleEvent] = []
        self._failures: List[ModuleFailure] = []
        self._shutdown_failures: List[ModuleFailure] = []
        self._skipped: Set[Hashable] = set()
        self._started = False
        self._shutdown_done = False

        self._context.attach_modules_view(lambda: self.modules)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def order(self) -> ResolvedOrder:
        return self._order

    @property
    def context(self) -> ModuleContext:
        return self._context

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    @property
    def hook_timeout(self) -> Optional[float]:
        return self._hook_timeout

    @property
    def modules(self) -> Tuple[ModuleInfo, ...]:
        """Snapshots of loaded modules, in resolved order."""
        return tuple(record.snapshot() for record in self._records.values())

    @property
    def events(self) -> Tuple[LifecycleEvent, ...]:
        return tuple(self._events)

    @property
    def failures(self) -> Tuple[ModuleFailure, ...]:
        """Configure/initialize failures, in the order they happened."""
        return tuple(self._failures)

    @property
    def shutdown_failures(self) -> Tuple[ModuleFailure, ...]:
        return tuple(self._shutdown_failures)

    @property
    def skipped(self) -> Tuple[Hashable, ...]:
        """Identities skipped because a dependency failed."""
        return tuple(i for i in self._records if i in self._skipped)

    def state_of(self, identity: Hashable) -> Optional[ModuleState]:
        record = self._records.get(identity)
        return record.state if record else None

    def instance_of(self, identity: Hashable) -> Any:
        record = self._records.get(identity)
        return record.instance if record else None

    def module_states(self) -> Dict[Hashable, ModuleState]:
        """Identity → state for every loaded module, in resolved order."""
        return {identity: record.state for identity, record in self._records.items()}

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Run load, configure, build and initialize."""
        if self._started:
            raise ModuleError("The module lifecycle has already been started.")
        self._started = True

        total_start = time.perf_counter()
        self.load()
        await self.configure_services()
        self.build_service_provider()
        await self.initialize()
        self._phase = LifecyclePhase.RUNNING

        logger.info(
            "modules_started",
            modules=len(self._records),
            failed=len(self._failures),
            skipped=len(self._skipped),
            duration_ms=round((time.perf_counter() - total_start) * 1000, 2),
        )

    def load(self) -> None:
        """Instantiate every module in resolved order."""
        self._enter_phase(LifecyclePhase.LOADING, LifecyclePhase.CREATED)

        with create_span(
            "modularity.load",
            attributes={"module.count": len(self._order)},
            tracer_name="modularity.lifecycle",
        ):
            for descriptor in self._order:
                start = time.perf_counter()
                try:
                    instance = descriptor.create_instance()
                except Exception as e:
                    self._record_event(
                        LifecycleEvent.failure_event(
                            phase=LifecyclePhase.LOADING,
                            component=f"module:{descriptor.name}",
                            error=e,
                            duration_ms=_elapsed_ms(start),
                        )
                    )
                    self._phase = LifecyclePhase.FAILED
                    raise ModuleInitializationError(
                        f"Failed to load module '{descriptor.name}'.",
                        module=descriptor.identity,
                        phase=LifecyclePhase.LOADING.value,
                        cause=e,
                        module_states=self.module_states(),
                        context=self._error_context(LifecyclePhase.LOADING, descriptor.name, e),
                    ) from e

                self._records[descriptor.identity] = _ModuleRecord(descriptor, instance)
                logger.debug("module_loaded", module=descriptor.name)

    async def configure_services(self) -> None:
        """Run every module's ``configure_services`` hook."""
        self._enter_phase(LifecyclePhase.CONFIGURING, LifecyclePhase.LOADING)
        await self._run_startup_phase(LifecyclePhase.CONFIGURING, ModuleState.REGISTERED)

    def build_service_provider(self) -> None:
        """Freeze the service collection and attach the provider to the context."""
        self._enter_phase(LifecyclePhase.BUILDING, LifecyclePhase.CONFIGURING)

        with create_span("modularity.build", tracer_name="modularity.lifecycle") as span:
            services = self._context.services
            services.make_read_only()
            provider = services.build_service_provider()
            self._context.attach_service_provider(provider)
            span.set_attribute("service.count", len(services))

        logger.debug("service_provider_built", services=len(services))

    async def initialize(self) -> None:
        """Run every module's ``initialize`` hook."""
        self._enter_phase(LifecyclePhase.INITIALIZING, LifecyclePhase.BUILDING)
        await self._run_startup_phase(
            LifecyclePhase.INITIALIZING, ModuleState.SERVICES_CONFIGURED
        )

    async def _run_startup_phase(self, phase: LifecyclePhase, ready: ModuleState) -> None:
        with tracer.start_as_current_span(f"modularity.{phase.value}") as span:
            span.set_attribute("module.count", len(self._records))

            for record in list(self._records.values()):
                if record.state is not ready:
                    continue
                if self._blocked_by_failure(record):
                    self._skip(record, phase)
                    continue

                error = await self._run_hook(record, phase)
                if error is None:
                    if phase is LifecyclePhase.INITIALIZING:
                        record.initialized_at = datetime.now(timezone.utc)
                    continue

                failure = ModuleFailure(record.identity, record.name, phase, error)
                self._failures.append(failure)

                if self._failure_policy is FailurePolicy.FAIL_FAST:
                    self._phase = LifecyclePhase.FAILED
                    span.set_status(Status(StatusCode.ERROR, str(error)))
                    raise ModuleInitializationError(
                        f"Failed to {_PHASE_VERBS[phase]} module '{record.name}'.",
                        module=record.identity,
                        phase=phase.value,
                        cause=error,
                        module_states=self.module_states(),
                        context=self._error_context(phase, record.name, error),
                    ) from error

    def _blocked_by_failure(self, record: _ModuleRecord) -> bool:
        # Resolved order puts dependencies first, so direct checks cover the
        # transitive case: a blocked dependency is itself in _skipped.
        for dependency in record.descriptor.dependencies:
            if dependency in self._skipped:
                return True
            dependency_record = self._records.get(dependency)
            if dependency_record is not None and dependency_record.state is ModuleState.FAILED:
                return True
        return False

    def _skip(self, record: _ModuleRecord, phase: LifecyclePhase) -> None:
        self._skipped.add(record.identity)
        logger.warning(
            "module_skipped",
            module=record.name,
            phase=phase.value,
            state=record.state.value,
            reason="dependency_failed",
        )

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def shutdown(self) -> List[ModuleFailure]:
        """
        Shut down initialized modules in reverse resolved order.

        Returns the shutdown failures. A second call does nothing and returns
        the failures collected by the first.
        """
        if self._shutdown_done:
            return list(self._shutdown_failures)
        self._shutdown_done = True

        previous_phase = self._phase
        self._phase = LifecyclePhase.SHUTTING_DOWN
        self._context.cancellation_token.set()
        start = time.perf_counter()

        with tracer.start_as_current_span("modularity.shutting_down") as span:
            span.set_attribute("module.count", len(self._records))
            for record in reversed(list(self._records.values())):
                if record.state is not ModuleState.INITIALIZED:
                    continue
                error = await self._run_hook(record, LifecyclePhase.SHUTTING_DOWN)
                if error is not None:
                    self._shutdown_failures.append(
                        ModuleFailure(
                            record.identity, record.name, LifecyclePhase.SHUTTING_DOWN, error
                        )
                    )

        self._phase = (
            LifecyclePhase.FAILED
            if previous_phase is LifecyclePhase.FAILED
            else LifecyclePhase.TERMINATED
        )
        logger.info(
            "modules_shutdown_complete",
            failures=len(self._shutdown_failures),
            duration_ms=_elapsed_ms(start),
        )
        return list(self._shutdown_failures)

    # -------------------------------------------------------------------------
    # Hook execution
    # -------------------------------------------------------------------------

    async def _run_hook(
        self,
        record: _ModuleRecord,
        phase: LifecyclePhase,
    ) -> Optional[Exception]:
        """Run one hook with state transitions; returns the failure, if any."""
        hook_name, in_progress, done, log_event = _HOOKS[phase]
        component = f"module:{record.name}"

        record.transition(in_progress)
        start = time.perf_counter()

        with tracer.start_as_current_span(f"modularity.{phase.value}") as span:
            span.set_attribute("module.name", record.name)
            span.set_attribute("module.hook", hook_name)
            try:
                with LogContext(module=record.name, phase=phase.value):
                    await self._invoke(record, hook_name)
            except Exception as error:
                span.record_exception(error)
                span.set_status(Status(StatusCode.ERROR, str(error)))

                record.transition(ModuleState.FAILED)
                record.error = str(error)
                self._record_event(
                    LifecycleEvent.failure_event(
                        phase=phase,
                        component=component,
                        error=error,
                        duration_ms=_elapsed_ms(start),
                    )
                )
                log = logger.warning if phase is LifecyclePhase.SHUTTING_DOWN else logger.error
                log(
                    f"{log_event}_failed",
                    module=record.name,
                    phase=phase.value,
                    error=str(error),
                    error_type=type(error).__name__,
                )
                return error

        record.transition(done)
        duration_ms = _elapsed_ms(start)
        self._record_event(
            LifecycleEvent.success_event(
                phase=phase,
                component=component,
                duration_ms=duration_ms,
            )
        )
        logger.info(log_event, module=record.name, duration_ms=duration_ms)
        return None

    async def _invoke(self, record: _ModuleRecord, hook_name: str) -> None:
        hook: Optional[Callable[[ModuleContext], Any]] = getattr(record.instance, hook_name, None)
        if hook is None:
            return
        result = hook(self._context)
        if not inspect.isawaitable(result):
            return
        if self._hook_timeout is None:
            await result
            return

        # Only the driver deadline counts as a hook timeout.
        task = asyncio.ensure_future(result)
        try:
            done, _ = await asyncio.wait({task}, timeout=self._hook_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise ModuleError(
                f"Hook '{hook_name}' of module '{record.name}' timed out "
                f"after {self._hook_timeout}s",
                module=record.identity,
            )
        task.result()

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def _enter_phase(self, phase: LifecyclePhase, expected: LifecyclePhase) -> None:
        if self._phase is not expected:
            raise ModuleError(
                f"Cannot enter phase '{phase.value}' from '{self._phase.value}'."
            )
        self._phase = phase
        logger.debug("lifecycle_phase_entered", phase=phase.value)

    def _error_context(
        self, phase: LifecyclePhase, module_name: str, error: BaseException
    ) -> ErrorContext:
        return ErrorContext.from_current_span(
            operation=f"modularity.{phase.value}",
            component=f"module:{module_name}",
            error=error,
            phase_name=phase.value,
            metadata={"failure_policy": self._failure_policy.value},
        )

    def _record_event(self, event: LifecycleEvent) -> None:
        """Record a lifecycle event."""
        self._events.append(event)

    def get_lifecycle_report(self) -> Dict[str, Any]:
        return {
            "phase": self._phase.value,
            "failure_policy": self._failure_policy.value,
            "modules": [record.snapshot().to_dict() for record in self._records.values()],
            "events": [event.to_dict() for event in self._events],
            "total_events": len(self._events),
            "failed_events": sum(1 for e in self._events if not e.success),
            "failures": [f.to_dict() for f in self._failures],
            "skipped": [identity_name(i) for i in self.skipped],
            "shutdown_failures": [f.to_dict() for f in self._shutdown_failures],
        }


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


__all__ = [
    "LifecyclePhase",
    "FailurePolicy",
    "LifecycleEvent",
    "ModuleFailure",
    "ModuleLifecycleManager",
]
