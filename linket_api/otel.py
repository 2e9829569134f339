"""OpenTelemetry setup (traces, metrics, log correlation).

Only imported when telemetry is enabled; the ``otel`` extra provides the
packages.
"""

import logging
from typing import Optional

from opentelemetry import metrics, trace
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter

logger = logging.getLogger(__name__)

HTTP_DURATION_METRIC = "http.server.request.duration"


def init_otel(
    service_name: str,
    span_exporter: Optional[SpanExporter] = None,
    metric_reader: Optional[MetricReader] = None,
    log_correlation: bool = True,
) -> None:
    """Install global tracer and meter providers.

    Args:
        service_name: ``service.name`` resource attribute
        span_exporter: Where finished spans go (none: spans are not exported)
        metric_reader: Reader collecting metrics (none: metrics are not read)
        log_correlation: Inject trace/span ids into log records
    """
    resource = Resource.create({"service.name": service_name})

    tracer_provider = TracerProvider(resource=resource)
    if span_exporter is not None:
        tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    readers = [metric_reader] if metric_reader is not None else []
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=readers))

    if log_correlation:
        # Adds otelTraceID/otelSpanID to every LogRecord; JSONFormatter renders them
        LoggingInstrumentor().instrument(set_logging_format=False)

    logger.info(
        "OpenTelemetry enabled",
        extra={"event": "otel.enabled", "service_name": service_name},
    )


def record_request_duration(duration_seconds: float, method: str, status_code: int, scheme: str) -> None:
    """Record one inbound request on the ``http.server.request.duration`` histogram."""
    # Looked up per call so a replaced meter provider is honoured
    histogram = metrics.get_meter(__name__).create_histogram(
        name=HTTP_DURATION_METRIC,
        unit="s",
        description="Measures the duration of inbound HTTP requests",
    )
    histogram.record(
        duration_seconds,
        attributes={
            "http.request.method": method,
            "http.response.status_code": status_code,
            "url.scheme": scheme,
        },
    )
