"""
Modularity - Tracing with OpenTelemetry

The lifecycle driver only talks to the OpenTelemetry API: every phase and
every hook runs inside a ``modularity.<phase>`` span. Without an SDK provider
these spans are no-ops. Applications that want them exported call
``setup_tracing()`` once at startup.

Features:
- OTLP export to Jaeger, Tempo, or any OTLP-compatible backend
- Console export for local debugging
- Configurable sampling
- Resource attributes for service identification

Usage:
    from observability.tracing import setup_tracing, TracingConfig, create_span

    # Setup at startup
    setup_tracing(TracingConfig(service_name="orders-host", exporter="console"))

    with create_span("orders.import", attributes={"batch.size": 100}) as span:
        ...
"""
from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from opentelemetry import trace
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
    SpanProcessor,
)
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    ParentBased,
    Sampler,
    TraceIdRatioBased,
)
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from observability.logging import get_logger

logger = get_logger("observability.tracing")

EXPORTERS = ("otlp", "console", "none")

# Global state
_tracer_provider: Optional[TracerProvider] = None


@dataclass
class TracingConfig:
    """Configuration for OpenTelemetry tracing."""

    service_name: str = field(
        default_factory=lambda: os.getenv("OTEL_SERVICE_NAME", "modularity")
    )
    service_version: str = "0.1.0"
    exporter: str = field(
        default_factory=lambda: os.getenv("OTEL_TRACES_EXPORTER", "otlp").lower()
    )
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_TRACING_ENABLED", "true").lower() == "true"
    )
    sample_rate: float = field(
        default_factory=lambda: float(os.getenv("OTEL_SAMPLE_RATE", "1.0"))
    )
    environment: str = field(
        default_factory=lambda: os.getenv("MODULARITY_ENVIRONMENT", "Production")
    )
    batch_export: bool = True
    max_queue_size: int = 2048
    schedule_delay_millis: int = 5000
    max_export_batch_size: int = 512
    export_timeout_millis: int = 30000

    # Additional resource attributes
    extra_attributes: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.exporter not in EXPORTERS:
            raise ValueError(
                f"Unknown trace exporter {self.exporter!r}; expected one of {', '.join(EXPORTERS)}"
            )


def _build_sampler(sample_rate: float) -> Sampler:
    if sample_rate <= 0.0:
        return ALWAYS_OFF
    if sample_rate >= 1.0:
        return ALWAYS_ON
    return ParentBased(root=TraceIdRatioBased(sample_rate))


def _build_exporter(config: TracingConfig) -> Optional[SpanExporter]:
    if config.exporter == "console":
        return ConsoleSpanExporter()
    if config.exporter == "otlp":
        # Imported here: the gRPC exporter is heavy and only needed for OTLP.
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    return None


def setup_tracing(
    config: Optional[TracingConfig] = None,
    set_global: bool = True,
    extra_processors: Optional[List[SpanProcessor]] = None,
) -> TracerProvider:
    """
    Configure an SDK TracerProvider.

    Args:
        config: Tracing configuration. Uses defaults if not provided.
        set_global: Install the provider as the global OpenTelemetry provider
            (only once per process; later calls return the installed one).
        extra_processors: Additional span processors (e.g. in-memory export).

    Returns:
        Configured TracerProvider

    Example:
        >>> provider = setup_tracing(TracingConfig(
        ...     otlp_endpoint="http://jaeger:4317",
        ...     sample_rate=0.1,  # 10% sampling in production
        ... ))
    """
    global _tracer_provider

    if set_global and _tracer_provider is not None:
        return _tracer_provider

    config = config or TracingConfig()

    resource = Resource.create(
        {
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.service_version,
            "deployment.environment": config.environment,
            **config.extra_attributes,
        }
    )
    sampler = _build_sampler(config.sample_rate) if config.enabled else ALWAYS_OFF
    provider = TracerProvider(resource=resource, sampler=sampler)

    exporter = _build_exporter(config) if config.enabled else None
    if exporter is not None:
        if config.batch_export and config.exporter == "otlp":
            processor: SpanProcessor = BatchSpanProcessor(
                exporter,
                max_queue_size=config.max_queue_size,
                schedule_delay_millis=config.schedule_delay_millis,
                max_export_batch_size=config.max_export_batch_size,
                export_timeout_millis=config.export_timeout_millis,
            )
        else:
            processor = SimpleSpanProcessor(exporter)
        provider.add_span_processor(processor)

    for extra in extra_processors or []:
        provider.add_span_processor(extra)

    if set_global:
        trace.set_tracer_provider(provider)
        set_global_textmap(TraceContextTextMapPropagator())
        _tracer_provider = provider

    logger.debug(
        "tracing_configured",
        service=config.service_name,
        exporter=config.exporter if config.enabled else "disabled",
        sample_rate=config.sample_rate,
    )
    return provider


def get_tracer(name: str, version: str = "0.1.0") -> trace.Tracer:
    """
    Tracer from the global provider (a no-op until setup_tracing() runs).

    Example:
        >>> tracer = get_tracer("modularity.lifecycle")
        >>> with tracer.start_as_current_span("modularity.initializing") as span:
        ...     span.set_attribute("module.name", "OrdersModule")
    """
    return trace.get_tracer(name, version)


def shutdown_tracing() -> None:
    """
    Flush pending spans and shut the configured provider down.

    Call this during application shutdown.
    """
    global _tracer_provider
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer_provider = None


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Optional[Dict[str, Any]] = None,
    tracer_name: str = "modularity",
) -> Iterator[Span]:
    """
    Context manager for creating spans with automatic error recording.

    Example:
        >>> with create_span("modularity.load", attributes={"module.count": 3}) as span:
        ...     load_modules()
    """
    tracer = get_tracer(tracer_name)
    with tracer.start_as_current_span(name, kind=kind) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
