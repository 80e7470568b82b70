"""
Modularity - Application Host

The running application: the outcome of a successful (or, under the
continue-on-failure policy, partially successful) lifecycle run.

A host is created once by ApplicationBuilder.build(). It reads module state
from the lifecycle driver and never changes it, except by shutting down.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from typing import Any, Dict, Hashable, Iterator, List, Optional, Tuple, TypeVar

from di.container import Scope, ServiceDisposalError, ServiceProvider, service_name
from modularity.context import ModuleContext
from modularity.descriptor import ModuleInfo, ModuleState
from modularity.errors import ModuleShutdownError
from modularity.lifecycle import LifecyclePhase, ModuleFailure, ModuleLifecycleManager
from modularity.resolver import ResolvedOrder
from observability.logging import get_logger

logger = get_logger("modularity.host")

T = TypeVar("T")


async def dispose_provider(provider: ServiceProvider) -> None:
    """Dispose every owned singleton, logging each one that fails."""
    try:
        await provider.dispose_async()
    except ServiceDisposalError as e:
        for instance, error in e.failures:
            logger.error(
                "service_dispose_failed",
                service=service_name(type(instance)),
                error=str(error),
                error_type=type(error).__name__,
            )


class ApplicationHost:
    """
    Access point to modules and services of a started application.

    Usage:
        host = await ApplicationBuilder.create().use_root_module(AppModule).build()
        async with host:
            orders = host.get_required_service(OrderService)
            await host.run()  # until request_shutdown() or a signal
    """

    __slots__ = ("_manager", "_shutdown_requested", "_started_at", "_disposed")

    def __init__(self, manager: ModuleLifecycleManager):
        self._manager = manager
        self._shutdown_requested = asyncio.Event()
        self._started_at = time.time()
        self._disposed = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def modules(self) -> Tuple[ModuleInfo, ...]:
        """Loaded modules in resolved order."""
        return self._manager.modules

    @property
    def resolved_order(self) -> ResolvedOrder:
        return self._manager.order

    @property
    def context(self) -> ModuleContext:
        return self._manager.context

    @property
    def service_provider(self) -> ServiceProvider:
        return self._manager.context.service_provider

    @property
    def environment_name(self) -> str:
        return self._manager.context.environment_name

    @property
    def phase(self) -> LifecyclePhase:
        return self._manager.phase

    @property
    def failures(self) -> Tuple[ModuleFailure, ...]:
        """Startup failures tolerated by the continue-on-failure policy."""
        return self._manager.failures

    @property
    def skipped_modules(self) -> Tuple[Hashable, ...]:
        return self._manager.skipped

    @property
    def is_degraded(self) -> bool:
        return bool(self._manager.failures or self._manager.skipped)

    @property
    def is_running(self) -> bool:
        return self._manager.phase is LifecyclePhase.RUNNING

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._started_at

    # -------------------------------------------------------------------------
    # Modules and services
    # -------------------------------------------------------------------------

    def get_module(self, identity: Hashable) -> Optional[ModuleInfo]:
        for info in self._manager.modules:
            if info.identity == identity:
                return info
        return None

    def get_module_instance(self, identity: Hashable) -> Any:
        return self._manager.instance_of(identity)

    def get_module_state(self, identity: Hashable) -> Optional[ModuleState]:
        return self._manager.state_of(identity)

    def get_service(self, service_type: Hashable) -> Any:
        return self.service_provider.get_service(service_type)

    def get_required_service(self, service_type: Hashable) -> Any:
        return self.service_provider.get_required_service(service_type)

    @contextmanager
    def create_scope(self) -> Iterator[Scope]:
        """Scope for scoped services, disposed on exit."""
        with self.service_provider.create_scope() as scope:
            yield scope

    # -------------------------------------------------------------------------
    # Running and shutdown
    # -------------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Request graceful shutdown (called by signal handlers)."""
        self._shutdown_requested.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    async def wait_for_shutdown(self, cancellation_token: Optional[asyncio.Event] = None) -> None:
        """Wait until shutdown is requested or ``cancellation_token`` is set."""
        waiters = [asyncio.ensure_future(self._shutdown_requested.wait())]
        if cancellation_token is not None:
            waiters.append(asyncio.ensure_future(cancellation_token.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def run(self, cancellation_token: Optional[asyncio.Event] = None) -> List[ModuleFailure]:
        """Block until shutdown is requested, then shut every module down."""
        logger.info(
            "host_running",
            environment=self.environment_name,
            modules=len(self._manager.modules),
            degraded=self.is_degraded,
        )
        await self.wait_for_shutdown(cancellation_token)
        return await self.shutdown()

    async def shutdown(self, raise_on_failure: bool = False) -> List[ModuleFailure]:
        """
        Shut modules down in reverse startup order and dispose the provider.

        Every initialized module gets its shutdown hook even when an earlier one
        fails. Disposal is best effort too: a service that fails to dispose is
        logged and the rest are still disposed. Calling this twice is harmless.

        Raises:
            ModuleShutdownError: ``raise_on_failure`` is set and at least one
                module failed to shut down.
        """
        failures = await self._manager.shutdown()

        if not self._disposed:
            self._disposed = True
            await dispose_provider(self.service_provider)

        if raise_on_failure and failures:
            raise ModuleShutdownError(failures)
        return failures

    async def __aenter__(self) -> "ApplicationHost":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_lifecycle_report(self) -> Dict[str, Any]:
        """Phase, module states and every recorded hook event."""
        report = self._manager.get_lifecycle_report()
        report.update(
            {
                "environment": self.environment_name,
                "uptime_seconds": self.uptime_seconds,
                "is_degraded": self.is_degraded,
                "order": self.resolved_order.names(),
            }
        )
        return report

    def __repr__(self) -> str:
        return (
            f"ApplicationHost(environment={self.environment_name!r}, "
            f"phase={self.phase.value}, modules={len(self.modules)})"
        )


__all__ = ["ApplicationHost", "ModuleInfo", "dispose_provider"]
