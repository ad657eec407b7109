"""OpenTelemetry tracing for the processor pipeline.

Provides distributed tracing with support for stdout, OTLP, and noop exporters.
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import NoOpTracer, Span, Tracer

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class TelemetryConfig:
    """Configuration for the agent-memory tracing subsystem."""

    service_name: str = "agent-memory"
    enabled: bool = True
    exporter: str = "none"  # "stdout" | "otlp" | "none"
    otlp_endpoint: str = "http://localhost:4317"


# ---------------------------------------------------------------------------
# MemoryTracer
# ---------------------------------------------------------------------------


class MemoryTracer:
    """Central tracer for pipeline runs.

    Wraps OpenTelemetry ``TracerProvider`` setup and provides helpers for
    creating spans and recording events.
    """

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    # -- lifecycle -----------------------------------------------------------

    def init(self) -> None:
        """Set up the OTel TracerProvider based on config."""
        cfg = self._config

        if not cfg.enabled or cfg.exporter == "none":
            return

        resource = Resource.create({"service.name": cfg.service_name})
        provider = TracerProvider(resource=resource)

        if cfg.exporter == "stdout":
            from opentelemetry.sdk.trace.export import (
                ConsoleSpanExporter,
                SimpleSpanProcessor,
            )

            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        elif cfg.exporter == "otlp":
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
            from opentelemetry.sdk.trace.export import BatchSpanProcessor

            exporter = OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
            provider.add_span_processor(BatchSpanProcessor(exporter))
        else:
            msg = f"Unknown trace exporter '{cfg.exporter}' (expected stdout | otlp | none)"
            raise ValueError(msg)

        self._provider = provider
        self._tracer = provider.get_tracer(cfg.service_name)

    # -- span helpers --------------------------------------------------------

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, str | int] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a span as a context manager.

        Usage::

            with tracer.span("pipeline/request", {"session.id": sid}) as s:
                ...
        """
        with self._tracer.start_as_current_span(name) as s:
            if attributes:
                for k, v in attributes.items():
                    s.set_attribute(k, v)
            yield s

    def record_event(
        self,
        name: str,
        attributes: dict[str, str | int] | None = None,
    ) -> None:
        """Record a named event on the current active span (if any)."""
        current_span = trace.get_current_span()
        if current_span.is_recording():
            otel_attrs: dict[str, Any] = dict(attributes) if attributes else {}
            current_span.add_event(name, otel_attrs)

    def shutdown(self) -> None:
        """Flush pending spans and shut down the provider.

        Safe to call multiple times.
        """
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None
            self._tracer = NoOpTracer()


# ---------------------------------------------------------------------------
# Module-level tracer (lazily initialised)
# ---------------------------------------------------------------------------

_DEFAULT_TRACER: MemoryTracer | None = None


def _get_default_tracer() -> MemoryTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = MemoryTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> MemoryTracer:
    """Replace the module tracer with one built from *config*."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    tracer = MemoryTracer(config)
    tracer.init()
    _DEFAULT_TRACER = tracer
    return tracer


# ---------------------------------------------------------------------------
# Convenience context managers
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_request_pipeline(session_id: str) -> Generator[Span, None, None]:
    """Trace one session -> working context compilation."""
    with _get_default_tracer().span("pipeline/request", {"session.id": session_id}) as s:
        yield s


@contextlib.contextmanager
def trace_response_pipeline(session_id: str) -> Generator[Span, None, None]:
    """Trace one response -> session fold."""
    with _get_default_tracer().span("pipeline/response", {"session.id": session_id}) as s:
        yield s


@contextlib.contextmanager
def trace_processor(stage: str, name: str) -> Generator[Span, None, None]:
    """Trace a single processor invocation."""
    attrs = {"processor.stage": stage, "processor.name": name}
    with _get_default_tracer().span(f"processor/{name}", attrs) as s:
        yield s
