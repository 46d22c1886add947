"""OpenTelemetry export for the blog API, plus the structlog processors that feed it.

Export is opt-in: nothing is installed unless ``OTEL_EXPORTER_OTLP_ENDPOINT``
is set. The OTLP exporters read the endpoint and headers from the standard
``OTEL_*`` variables themselves.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

_SERVICE_NAME = "blog-api"

# Exporter loggers that report every failed push; only errors reach the console.
EXPORTER_LOGGERS = (
    "opentelemetry.exporter.otlp.proto.grpc",
    "opentelemetry.sdk.trace.export",
    "opentelemetry.sdk.metrics.export",
    "opentelemetry.sdk._logs.export",
)

# structlog keys plus every LogRecord attribute; logging refuses these in ``extra``.
_RESERVED_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "event",
    "level",
    "timestamp",
    "message",
    "asctime",
}

_log = structlog.get_logger()


# SDK providers installed by init_telemetry, shut down in reverse order
_active: list[TracerProvider | MeterProvider | LoggerProvider] = []
_export_logs = False


def configure_stdlib_logging(level: str = "info") -> None:
    """Render stdlib records (uvicorn, redis, the OTel SDK) with structlog's console renderer."""
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))
    for name in EXPORTER_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def _build_resource() -> Resource:
    return Resource.create(
        {
            "service.name": _SERVICE_NAME,
            "service.version": os.environ.get("SERVICE_VERSION", "0.1.0"),
            "deployment.environment": os.environ.get("DEPLOYMENT_ENV", ""),
        }
    )


def _install_tracing(resource: Resource) -> TracerProvider:
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(provider)
    return provider


def _install_metrics(resource: Resource) -> MeterProvider:
    reader = PeriodicExportingMetricReader(OTLPMetricExporter())
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(provider)
    return provider


def _install_log_export(resource: Resource) -> LoggerProvider:
    provider = LoggerProvider(resource=resource)
    provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter()))
    set_logger_provider(provider)

    export_logger = logging.getLogger(_SERVICE_NAME)
    export_logger.addHandler(LoggingHandler(logger_provider=provider))
    export_logger.setLevel(logging.DEBUG)
    export_logger.propagate = False  # structlog already printed it
    return provider


def init_telemetry() -> None:
    """Install OTLP trace, metric and log export; idempotent, no-op without an endpoint."""
    global _export_logs  # noqa: PLW0603
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint or _active:
        return

    resource = _build_resource()
    _active.append(_install_tracing(resource))
    _active.append(_install_metrics(resource))
    _active.append(_install_log_export(resource))
    _export_logs = True
    _log.info("otel_configured", endpoint=endpoint)


def shutdown_telemetry() -> None:
    """Flush pending telemetry and release the providers init_telemetry installed."""
    global _export_logs  # noqa: PLW0603
    _export_logs = False
    while _active:
        _active.pop().shutdown()


def add_trace_context(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag the event with the ids of the span it was logged under."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict


def emit_to_otel_logs(logger: Any, method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Copy the event onto the export logger while OTLP log export is installed."""
    if _export_logs:
        level = logging.getLevelNamesMapping().get(
            str(event_dict.get("level", method)).upper(), logging.INFO
        )
        extra = {k: v for k, v in event_dict.items() if k not in _RESERVED_RECORD_KEYS}
        logging.getLogger(_SERVICE_NAME).log(level, event_dict.get("event", ""), extra=extra)
    return event_dict
