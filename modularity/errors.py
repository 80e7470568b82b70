"""
Modularity - Error Taxonomy

Every failure the module system can report, from declaration problems found
while resolving the dependency graph to hook failures raised while driving
modules through their lifecycle.

Hierarchy:
    ModularityError
    ├── ConfigurationError
    └── ModuleError
        ├── MissingModuleDependencyError
        ├── CircularDependencyError
        ├── ModuleInitializationError
        └── ModuleShutdownError

Resolution errors (missing and circular dependencies) are raised before any
module is instantiated or any hook runs. Lifecycle errors carry enough state for
the embedding process to tell which modules reached which state.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Hashable, List, Mapping, Optional, Sequence

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from modularity.descriptor import ModuleState
    from modularity.lifecycle import ModuleFailure


class ErrorSeverity(Enum):
    """Error severity levels for prioritized handling."""

    WARNING = "warning"    # Degraded operation, the host keeps running
    ERROR = "error"        # The requested operation failed
    CRITICAL = "critical"  # The host cannot be started


@dataclass
class ErrorContext:
    """Structured context for error debugging and tracing."""

    operation: str
    component: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    phase_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for serialization."""
        return {
            "operation": self.operation,
            "component": self.component,
            "timestamp": self.timestamp.isoformat(),
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "phase_name": self.phase_name,
            "metadata": self.metadata,
            "stack_trace": self.stack_trace,
        }

    @classmethod
    def from_current_span(
        cls,
        operation: str,
        component: str,
        error: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> "ErrorContext":
        """
        Create context from the current OpenTelemetry span.

        The stack trace is taken from ``error`` when given, otherwise from the
        exception being handled.
        """
        span = trace.get_current_span()
        trace_id = None
        span_id = None

        if span and span.is_recording():
            ctx = span.get_span_context()
            if ctx.is_valid:
                trace_id = format(ctx.trace_id, "032x")
                span_id = format(ctx.span_id, "016x")

        return cls(
            operation=operation,
            component=component,
            trace_id=trace_id,
            span_id=span_id,
            stack_trace=(
                "".join(traceback.format_exception(type(error), error, error.__traceback__))
                if error is not None
                else traceback.format_exc()
            ),
            **kwargs,
        )


def identity_name(identity: Any) -> str:
    """Human readable name of a module identity (class name or ``str``)."""
    if isinstance(identity, type):
        return identity.__name__
    return str(identity)


class ModularityError(Exception):
    """
    Base exception for all module-system errors.

    Provides:
    - Structured error context
    - Severity level and a stable error code
    - Chained cause
    - OpenTelemetry span recording
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "MODULARITY_ERROR"

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.severity = severity or self.default_severity
        self.cause = cause
        self.suggestions = suggestions or []
        self.timestamp = datetime.now(timezone.utc)

        self._record_to_span()

    def _record_to_span(self) -> None:
        """Record exception to the current OpenTelemetry span."""
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_status(Status(StatusCode.ERROR, self.message))
            span.record_exception(self)
            span.set_attribute("error.code", self.error_code)
            span.set_attribute("error.severity", self.severity.value)
            if self.context:
                span.set_attribute("error.component", self.context.component)
                span.set_attribute("error.operation", self.context.operation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reports."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "suggestions": self.suggestions,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.cause:
            parts.append(f" [caused by: {type(self.cause).__name__}: {self.cause}]")
        return "".join(parts)


class ConfigurationError(ModularityError):
    """A required configuration value is missing or malformed."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.config_key = config_key


class ModuleError(ModularityError):
    """Base class for errors attributable to a module or its declaration."""

    error_code = "MODULE_ERROR"

    def __init__(
        self,
        message: str,
        module: Optional[Hashable] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.module = module

    @property
    def module_name(self) -> Optional[str]:
        return identity_name(self.module) if self.module is not None else None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["module"] = self.module_name
        return data


class MissingModuleDependencyError(ModuleError):
    """A declared dependency has no registered module."""

    error_code = "MISSING_DEPENDENCY"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, module: Hashable, dependency: Hashable, **kwargs: Any):
        super().__init__(
            f"Module '{identity_name(module)}' depends on "
            f"'{identity_name(dependency)}' which is not registered.",
            module=module,
            suggestions=[
                f"Register '{identity_name(dependency)}' or remove it from the "
                f"dependencies of '{identity_name(module)}'."
            ],
            **kwargs,
        )
        self.dependency = dependency

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["dependency"] = identity_name(self.dependency)
        return data


class CircularDependencyError(ModuleError):
    """The declared dependencies contain a cycle."""

    error_code = "CIRCULAR_DEPENDENCY"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(self, chain: Sequence[Hashable], **kwargs: Any):
        self.chain = list(chain)
        path = " -> ".join(identity_name(identity) for identity in self.chain)
        super().__init__(
            f"Circular dependency detected: {path}",
            module=self.chain[0] if self.chain else None,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["chain"] = [identity_name(identity) for identity in self.chain]
        return data


class ModuleInitializationError(ModuleError):
    """A module failed while being constructed, configured or initialized."""

    error_code = "MODULE_INITIALIZATION_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        module: Optional[Hashable] = None,
        phase: Optional[str] = None,
        module_states: Optional[Mapping[Hashable, "ModuleState"]] = None,
        **kwargs: Any,
    ):
        super().__init__(message, module=module, **kwargs)
        self.phase = phase
        # Keyed by identity: distinct modules may share a display name.
        self.module_states: Dict[Hashable, "ModuleState"] = dict(module_states or {})

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["phase"] = self.phase
        data["module_states"] = [
            {"module": identity_name(identity), "state": state.value}
            for identity, state in self.module_states.items()
        ]
        return data


class ModuleShutdownError(ModuleError):
    """One or more modules failed to shut down cleanly."""

    error_code = "MODULE_SHUTDOWN_ERROR"
    default_severity = ErrorSeverity.WARNING

    def __init__(self, failures: Sequence["ModuleFailure"], **kwargs: Any):
        self.failures = list(failures)
        names = ", ".join(failure.name for failure in self.failures)
        super().__init__(
            f"{len(self.failures)} module(s) failed to shut down: {names}",
            **kwargs,
        )


__all__ = [
    "ErrorSeverity",
    "ErrorContext",
    "ModularityError",
    "ConfigurationError",
    "ModuleError",
    "MissingModuleDependencyError",
    "CircularDependencyError",
    "ModuleInitializationError",
    "ModuleShutdownError",
    "identity_name",
]
