"""OpenTelemetry wiring for the launcher.

Spans and metrics stay inside the process unless OTLP_ENABLED=true, in
which case they are shipped to the configured OTLP gRPC collector.
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from launcher.config import LauncherConfig

# Collector connection errors are noisy when no collector runs locally
logging.getLogger("opentelemetry.exporter.otlp.proto.grpc").setLevel(logging.ERROR)

# Set by create_metrics(); record_* helpers are no-ops until then
cycles_counter: metrics.Counter | None = None
steps_counter: metrics.Counter | None = None
cycle_duration: metrics.Histogram | None = None


def otlp_enabled() -> bool:
    return os.getenv("OTLP_ENABLED", "false").lower() == "true"


def _otlp_providers(
    endpoint: str, resource: Resource
) -> tuple[TracerProvider, MeterProvider]:
    # Exporters pull in grpc; import them only when exporting
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
        OTLPMetricExporter,
    )
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
    )
    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=endpoint))
    return tracer_provider, MeterProvider(resource=resource, metric_readers=[reader])


def setup_telemetry(config: LauncherConfig) -> tuple[trace.Tracer, metrics.Meter]:
    """Install global tracer and meter providers.

    Args:
        config: Launcher configuration (service name, OTLP endpoint)

    Returns:
        Tuple of (tracer, meter) named after the service
    """
    resource = Resource.create({"service.name": config.service_name})

    if otlp_enabled() and config.otlp_endpoint:
        tracer_provider, meter_provider = _otlp_providers(config.otlp_endpoint, resource)
    else:
        tracer_provider = TracerProvider(resource=resource)
        meter_provider = MeterProvider(resource=resource)

    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(meter_provider)
    return trace.get_tracer(config.service_name), metrics.get_meter(config.service_name)


def create_metrics(meter: metrics.Meter) -> None:
    """Create the launcher's instruments on ``meter``.

    - launcher_cycles_total{outcome}: finished orchestration cycles
    - launcher_steps_total{status}: steps appended to the step log
    - launcher_cycle_duration_seconds{outcome}: wall time of each cycle
    """
    global cycles_counter, steps_counter, cycle_duration

    cycles_counter = meter.create_counter(
        "launcher_cycles_total",
        description="Orchestration cycles by final state",
    )
    steps_counter = meter.create_counter(
        "launcher_steps_total",
        description="Steps recorded by status",
    )
    cycle_duration = meter.create_histogram(
        "launcher_cycle_duration_seconds",
        description="Wall time of one orchestration cycle",
        unit="s",
    )


def record_cycle(outcome: str, duration_seconds: float) -> None:
    if cycles_counter is not None:
        cycles_counter.add(1, {"outcome": outcome})
    if cycle_duration is not None:
        cycle_duration.record(duration_seconds, {"outcome": outcome})


def record_step(status: str) -> None:
    if steps_counter is not None:
        steps_counter.add(1, {"status": status})
