"""Telemetry setup for OpenTelemetry traces and metrics.

When OTLP export is not enabled, in-process SDK providers are installed so
spans and instruments work without exporting anywhere.
"""

import logging

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider

from ralph_loop.config import RuntimeSettings

# Suppress gRPC warnings when collector is unavailable
logging.getLogger("opentelemetry.exporter.otlp.proto.grpc").setLevel(logging.ERROR)

# Module-level metric instruments (set by create_metrics)
iterations_counter: metrics.Counter
retries_counter: metrics.Counter
commits_counter: metrics.Counter
iteration_duration: metrics.Histogram


def setup_telemetry(settings: RuntimeSettings) -> tuple[trace.Tracer, metrics.Meter]:
    """Initialize OpenTelemetry, exporting over OTLP when enabled.

    Args:
        settings: Runtime settings with OTLP endpoint, flag and service name

    Returns:
        Tuple of (tracer, meter)
    """
    if settings.otlp_enabled and settings.otlp_endpoint:
        # Import OTLP exporters only when needed
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
            OTLPMetricExporter,
        )
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        trace_provider = TracerProvider()
        trace_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
        )
        trace.set_tracer_provider(trace_provider)

        metric_reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        )
        metrics.set_meter_provider(MeterProvider(metric_readers=[metric_reader]))
    else:
        trace.set_tracer_provider(TracerProvider())
        metrics.set_meter_provider(MeterProvider())

    tracer = trace.get_tracer(settings.service_name)
    meter = metrics.get_meter(settings.service_name)

    return tracer, meter


def create_metrics(meter: metrics.Meter) -> None:
    """Create the loop's metric instruments.

    Counters track iterations (by outcome), retries (by failure kind) and
    commit-boundary results (by status); a histogram tracks iteration
    duration.
    """
    global iterations_counter, retries_counter, commits_counter, iteration_duration

    iterations_counter = meter.create_counter(
        "ralph_iterations_total",
        description="Total agent iterations",
    )

    retries_counter = meter.create_counter(
        "ralph_retries_total",
        description="Total retried iterations",
    )

    commits_counter = meter.create_counter(
        "ralph_commits_total",
        description="Commit-boundary results",
    )

    iteration_duration = meter.create_histogram(
        "ralph_iteration_duration_seconds",
        description="Agent iteration duration",
        unit="s",
    )
