"""
Observability for the AdCraft backend: OpenTelemetry setup and
validated metric recording.
"""

from .contracts import Metric, MetricType, Success, Failure, Result
from .core import create_metric, validate_metric_name
from .integration import ObservabilityIntegration, TrackedOperation, get_tracer
from .shell import MetricRecorder, record_metric

__all__ = [
    "Metric",
    "MetricType",
    "Success",
    "Failure",
    "Result",
    "create_metric",
    "validate_metric_name",
    "ObservabilityIntegration",
    "TrackedOperation",
    "get_tracer",
    "MetricRecorder",
    "record_metric",
]
