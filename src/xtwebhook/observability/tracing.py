"""OpenTelemetry tracing configuration for xtwebhook.

Tracing is off unless XTW_OTEL_ENABLED=1. When enabled, the FastAPI apps and
outbound httpx calls are instrumented and every webhook delivery attempt
runs in a "webhook.delivery" span.

Environment Variables:
    XTW_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    XTW_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    XTW_OTEL_SERVICE_NAME: Service name for spans (default: "xtwebhook")
    XTW_OTEL_EXPORTER: "otlp" or "console" (default: "otlp")
    XTW_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    XTW_OTEL_RESOURCE_ATTRS: Comma-separated k=v pairs for resource attributes
    XTW_OTEL_TEST_CAPTURE: Set to "1" to use the in-memory exporter (tests)

Span attributes never carry webhook secrets, signature headers, API keys,
bot tokens or request bodies.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and XTW_REQUIRE_OTEL=1."""


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def _get_env_str(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _parse_resource_attrs(attrs_str: str) -> dict[str, str]:
    """Parse comma-separated k=v resource attributes."""
    result: dict[str, str] = {}
    for pair in attrs_str.split(","):
        if "=" in pair:
            k, v = pair.split("=", 1)
            result[k.strip()] = v.strip()
    return result


def is_tracing_enabled() -> bool:
    return _get_env_bool("XTW_OTEL_ENABLED", False)


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If XTW_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    if not is_tracing_enabled():
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (XTW_OTEL_ENABLED not set)")
        return False

    require_otel = _get_env_bool("XTW_REQUIRE_OTEL", False)
    test_capture = _get_env_bool("XTW_OTEL_TEST_CAPTURE", False)

    # The global TracerProvider can only be set once per process
    if _test_exporter is not None and test_capture:
        return True
    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )

        service_name = _get_env_str("XTW_OTEL_SERVICE_NAME", "xtwebhook")
        exporter_type = _get_env_str("XTW_OTEL_EXPORTER", "otlp")

        resource_attrs = {"service.name": service_name}
        resource_attrs.update(_parse_resource_attrs(_get_env_str("XTW_OTEL_RESOURCE_ATTRS")))
        provider = TracerProvider(resource=Resource.create(resource_attrs))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "console":
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        else:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

            endpoint = _get_env_str("XTW_OTEL_EXPORTER_OTLP_ENDPOINT")
            exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            "in-memory" if test_capture else exporter_type,
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application (no-op unless tracing is enabled)."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def instrument_httpx() -> None:
    """Instrument httpx clients used for deliveries and notifications."""
    if not is_tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

        HTTPXClientInstrumentor().instrument()
        logger.debug("httpx instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument httpx: %s", e)


def get_current_trace_id() -> str | None:
    """Hex trace id of the active span, or None."""
    from opentelemetry import trace

    ctx = trace.get_current_span().get_span_context()
    if not ctx.is_valid:
        return None
    return format(ctx.trace_id, "032x")


def set_span_attributes(attributes: dict[str, Any]) -> None:
    """Set non-None attributes on the current span."""
    from opentelemetry import trace

    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, list | tuple):
            span.set_attribute(key, ",".join(str(v) for v in value))
        else:
            span.set_attribute(key, value if isinstance(value, bool | int | float) else str(value))


def get_test_spans() -> list[ReadableSpan]:
    """Captured spans when XTW_OTEL_TEST_CAPTURE=1, else empty."""
    if _test_exporter is not None:
        return list(_test_exporter.get_finished_spans())
    return []


def clear_test_spans() -> None:
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Reset configuration state (for testing).

    The in-memory exporter survives because the global TracerProvider
    cannot be replaced once set.
    """
    global _is_configured

    clear_test_spans()
    _is_configured = False
