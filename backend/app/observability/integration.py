"""
OpenTelemetry Integration for the AdCraft backend
Configures traces, metrics and library instrumentation at startup.
"""

import logging
import time
from typing import Dict, Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)


class ObservabilityIntegration:
    """
    Manages OpenTelemetry setup for the AdCraft backend.

    Exporters are only attached when an OTLP endpoint is configured;
    without one the SDK providers still run so spans and instruments
    stay usable in development and tests.
    """

    def __init__(
        self,
        service_name: str = "adcraft-backend",
        service_version: str = "1.0.0",
        environment: str = "development",
        otlp_endpoint: Optional[str] = None,
    ):
        self.service_name = service_name
        self.service_version = service_version
        self.environment = environment
        self.otlp_endpoint = otlp_endpoint
        self.is_initialized = False
        self._tracer_provider: Optional[TracerProvider] = None
        self._meter_provider: Optional[MeterProvider] = None

    def initialize(self, instrument_libraries: bool = True) -> None:
        """
        Initialize OpenTelemetry providers.
        Must be called during application startup.
        """
        if self.is_initialized:
            logger.warning("ObservabilityIntegration already initialized")
            return

        try:
            resource = Resource.create({
                "service.name": self.service_name,
                "service.version": self.service_version,
                "service.namespace": "adcraft",
                "deployment.environment": self.environment,
            })

            self._setup_tracing(resource)
            self._setup_metrics(resource)

            if instrument_libraries:
                self._setup_instrumentation()

            self.is_initialized = True
            logger.info(f"OpenTelemetry initialized for {self.service_name} ({self.environment})")

        except Exception as e:
            logger.error(f"Failed to initialize OpenTelemetry: {e}", exc_info=True)
            raise

    def _setup_tracing(self, resource: Resource) -> None:
        """Setup distributed tracing."""
        tracer_provider = TracerProvider(resource=resource)

        if self.otlp_endpoint:
            span_exporter = OTLPSpanExporter(
                endpoint=self.otlp_endpoint,
                insecure=not self.otlp_endpoint.startswith("https://"),
            )
            tracer_provider.add_span_processor(BatchSpanProcessor(
                span_exporter=span_exporter,
                max_queue_size=512,
                max_export_batch_size=64,
                export_timeout_millis=5000,
            ))
        else:
            logger.warning("No OTLP endpoint configured, spans will not be exported")

        trace.set_tracer_provider(tracer_provider)
        self._tracer_provider = tracer_provider

    def _setup_metrics(self, resource: Resource) -> None:
        """Setup metrics collection."""
        metric_readers = []
        if self.otlp_endpoint:
            metric_exporter = OTLPMetricExporter(
                endpoint=self.otlp_endpoint,
                insecure=not self.otlp_endpoint.startswith("https://"),
            )
            metric_readers.append(PeriodicExportingMetricReader(
                exporter=metric_exporter,
                export_interval_millis=30000,
                export_timeout_millis=5000,
            ))

        meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
        metrics.set_meter_provider(meter_provider)
        self._meter_provider = meter_provider

    def _setup_instrumentation(self) -> None:
        """Setup automatic instrumentation for httpx, redis and sqlalchemy."""
        try:
            HTTPXClientInstrumentor().instrument(
                tracer_provider=trace.get_tracer_provider(),
                meter_provider=metrics.get_meter_provider(),
            )
            RedisInstrumentor().instrument(
                tracer_provider=trace.get_tracer_provider(),
            )
            SQLAlchemyInstrumentor().instrument(
                tracer_provider=trace.get_tracer_provider(),
                enable_commenter=True,
            )
            logger.info("Auto-instrumentation enabled for httpx, redis, sqlalchemy")

        except Exception as e:
            logger.error(f"Failed to setup auto-instrumentation: {e}")

    def create_meter(self, name: str) -> metrics.Meter:
        """Create a meter for a component, e.g. "adcraft.jobs"."""
        return metrics.get_meter(name, self.service_version)

    def shutdown(self) -> None:
        """
        Shutdown OpenTelemetry providers.
        Should be called during application shutdown.
        """
        try:
            if self._tracer_provider is not None:
                self._tracer_provider.shutdown()
            if self._meter_provider is not None:
                self._meter_provider.shutdown()
            self.is_initialized = False
            logger.info("OpenTelemetry shutdown completed")

        except Exception as e:
            logger.error(f"Error during OpenTelemetry shutdown: {e}")


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given component name."""
    return trace.get_tracer(name)


class TrackedOperation:
    """
    Wraps a block in a span. duration_ms is frozen when the block exits
    so callers can feed it to metric collectors afterwards.
    """

    def __init__(
        self,
        operation_name: str,
        tracer: Optional[trace.Tracer] = None,
        attributes: Optional[Dict[str, str]] = None,
    ):
        self.operation_name = operation_name
        self.tracer = tracer or get_tracer("adcraft.operations")
        self.attributes = attributes or {}
        self.span = None
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.span = self.tracer.start_span(
            self.operation_name,
            attributes=self.attributes,
        )
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.monotonic()
        if self.span:
            self.span.set_attribute("operation.duration_ms", self.duration_ms)

            if exc_type is not None:
                self.span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc_val)))
                self.span.record_exception(exc_val)

            self.span.end()
        return False

    @property
    def duration_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        end_time = self.end_time if self.end_time is not None else time.monotonic()
        return (end_time - self.start_time) * 1000

    def add_attribute(self, key: str, value) -> None:
        """Add attribute to the current span."""
        if self.span:
            self.span.set_attribute(key, value)

