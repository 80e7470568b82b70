"""
Modularity - Observability Package

Structured logging and distributed tracing for modular applications.

Components:
- tracing: OpenTelemetry tracing with OTLP or console export
- logging: Structlog integration with trace context propagation

Usage:
    from observability import setup_observability, get_logger, get_tracer

    # Initialize at application startup
    setup_observability(service_name="orders-host", exporter="console")

    logger = get_logger(__name__)
    tracer = get_tracer(__name__)
"""
from .logging import (
    LogContext,
    LoggingConfig,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .tracing import (
    TracingConfig,
    create_span,
    get_tracer,
    setup_tracing,
    shutdown_tracing,
)

__all__ = [
    # Tracing
    "setup_tracing",
    "get_tracer",
    "create_span",
    "TracingConfig",
    "shutdown_tracing",
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingConfig",
    "LogContext",
    "shutdown_logging",
    # Combined setup
    "setup_observability",
    "shutdown_observability",
]

__version__ = "0.1.0"


def setup_observability(
    service_name: str = "modularity",
    exporter: str = "otlp",
    otlp_endpoint: str = "http://localhost:4317",
    enabled: bool = True,
    sample_rate: float = 1.0,
    log_level: str = "INFO",
    json_logs: bool = True,
    environment: str = "Production",
) -> None:
    """
    Initialize tracing and logging for a modular application.

    This sets up:
    - OpenTelemetry tracing with OTLP or console export
    - Structlog with trace context integration

    Args:
        service_name: Name of the service for telemetry
        exporter: Span exporter ("otlp", "console" or "none")
        otlp_endpoint: OTLP collector endpoint (gRPC)
        enabled: Enable/disable tracing
        sample_rate: Trace sampling rate (0.0-1.0)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Render logs as JSON instead of console lines
        environment: Deployment environment name

    Example:
        >>> from observability import setup_observability
        >>> setup_observability(
        ...     service_name="orders-host",
        ...     otlp_endpoint="http://localhost:4317",
        ...     sample_rate=0.1  # 10% sampling in production
        ... )
    """
    setup_logging(
        LoggingConfig(
            service_name=service_name,
            level=log_level,
            enable_trace_context=True,
            json_format=json_logs,
            environment=environment,
        )
    )

    if not enabled:
        return

    setup_tracing(
        TracingConfig(
            service_name=service_name,
            exporter=exporter,
            otlp_endpoint=otlp_endpoint,
            enabled=enabled,
            sample_rate=sample_rate,
            environment=environment,
        )
    )


def shutdown_observability() -> None:
    """
    Gracefully shutdown all observability components.

    Call this during application shutdown to ensure all telemetry
    data is flushed to the collector.
    """
    shutdown_tracing()
    shutdown_logging()
