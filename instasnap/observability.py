"""
Logging and telemetry setup for the InstaSnap client.

Outbound API calls are traced with OpenTelemetry and counted per endpoint.
Tracing and metrics are no-ops until setup_observability() has been called.
"""

import asyncio
import logging
import sys
from typing import Optional, Callable
from functools import wraps

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

logger = structlog.get_logger()

# Global tracer and meter
tracer: Optional[trace.Tracer] = None
meter: Optional[metrics.Meter] = None

# Metrics instruments
api_request_counter: Optional[metrics.Counter] = None
api_request_duration: Optional[metrics.Histogram] = None
api_error_counter: Optional[metrics.Counter] = None


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of the standard logging module.

    Args:
        log_level: Root log level name
        json_logs: Render JSON lines when True, coloured console output otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_observability(
    service_name: str = "instasnap-client",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics for outbound API calls.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer, meter
    global api_request_counter, api_request_duration, api_error_counter

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    # Set up tracing
    trace_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        otlp_span_exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
        trace_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))

    if enable_console_export:
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    # Set up metrics
    metric_readers = []

    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000
            )
        )

    if enable_console_export:
        from opentelemetry.sdk.metrics.export import ConsoleMetricExporter
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000
            )
        )

    metrics.set_meter_provider(
        MeterProvider(resource=resource, metric_readers=metric_readers)
    )
    meter = metrics.get_meter(__name__)

    api_request_counter = meter.create_counter(
        name="instasnap_api_requests_total",
        description="Total number of InstaSnap API requests",
        unit="1"
    )

    api_request_duration = meter.create_histogram(
        name="instasnap_api_request_duration_seconds",
        description="InstaSnap API request duration in seconds",
        unit="s"
    )

    api_error_counter = meter.create_counter(
        name="instasnap_api_errors_total",
        description="Total number of failed InstaSnap API requests",
        unit="1"
    )

    # Outbound HTTP spans and trace ids in log records
    HTTPXClientInstrumentor().instrument()
    LoggingInstrumentor().instrument(set_logging_format=False)

    logger.info("Observability setup completed")


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace coroutine or plain function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        def _record_failure(span, e: Exception) -> None:
            span.record_exception(e)
            span.set_attribute("success", False)
            span.set_attribute("error.type", type(e).__name__)
            span.set_attribute("error.message", str(e))

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)

            with tracer.start_as_current_span(span_name) as span:
                span.set_attribute("function.name", func.__name__)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_failure(span, e)
                    raise
                span.set_attribute("success", True)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_api_metrics(
    method: str,
    endpoint: str,
    status_code: Optional[int],
    processing_time: float
) -> None:
    """
    Record metrics for one outbound API request.

    Args:
        method: HTTP method
        endpoint: API path (without query string)
        status_code: HTTP status code, None when the transport failed
        processing_time: Request duration in seconds
    """
    if api_request_counter is None or api_request_duration is None or api_error_counter is None:
        return

    attributes = {
        "method": method,
        "endpoint": endpoint,
        "status_code": str(status_code) if status_code is not None else "none"
    }

    api_request_counter.add(1, attributes)
    api_request_duration.record(processing_time, attributes)

    if status_code is None or status_code >= 400:
        if status_code is None:
            error_type = "transport_error"
        elif status_code < 500:
            error_type = "client_error"
        else:
            error_type = "server_error"
        api_error_counter.add(1, {**attributes, "error_type": error_type})
