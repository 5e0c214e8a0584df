"""
Observability Shell - I/O Operations Only
Pushes validated metrics into OpenTelemetry instruments.
"""

import logging
from typing import Dict, Optional

from opentelemetry import metrics

from .contracts import (
    Failure,
    Metric,
    MetricType,
    Result,
    Success,
)
from .core import create_metric

logger = logging.getLogger(__name__)


class MetricRecorder:
    """
    Records metrics through an OpenTelemetry meter.
    Instruments are created lazily, one per metric name.
    """

    def __init__(self, meter: Optional[metrics.Meter] = None):
        self.meter = meter or metrics.get_meter("adcraft.metrics")
        self._counters: Dict[str, metrics.Counter] = {}
        self._histograms: Dict[str, metrics.Histogram] = {}
        self._gauges: Dict[str, object] = {}

    def record(self, metric: Metric) -> Result[None, str]:
        """
        Record a validated metric.

        Returns:
            Result indicating success or failure
        """
        try:
            if metric.metric_type == MetricType.COUNTER:
                counter = self._counters.get(metric.name)
                if counter is None:
                    counter = self.meter.create_counter(metric.name, unit=metric.unit or "")
                    self._counters[metric.name] = counter
                counter.add(metric.value, metric.labels)
            elif metric.metric_type == MetricType.HISTOGRAM:
                histogram = self._histograms.get(metric.name)
                if histogram is None:
                    histogram = self.meter.create_histogram(metric.name, unit=metric.unit or "")
                    self._histograms[metric.name] = histogram
                histogram.record(metric.value, metric.labels)
            else:
                gauge = self._gauges.get(metric.name)
                if gauge is None:
                    gauge = self.meter.create_gauge(metric.name, unit=metric.unit or "")
                    self._gauges[metric.name] = gauge
                gauge.set(metric.value, metric.labels)

            return Success(None)

        except Exception as e:
            logger.error(f"Failed to record metric {metric.name}: {e}", exc_info=True)
            return Failure(f"Failed to record metric: {e}")


def record_metric(
    name: str,
    value: float,
    labels: Optional[Dict[str, str]] = None,
    metric_type: MetricType = MetricType.GAUGE,
    recorder: Optional[MetricRecorder] = None,
    unit: Optional[str] = None,
) -> Result[None, str]:
    """
    Convenience function to validate and record a metric.

    Without a recorder the metric is only logged at debug level.
    """
    metric_result = create_metric(
        name=name,
        value=value,
        labels=labels or {},
        metric_type=metric_type,
        unit=unit,
    )

    if isinstance(metric_result, Failure):
        logger.warning(f"Invalid metric {name}: {metric_result.error.message}")
        return Failure(f"Invalid metric: {metric_result.error}")

    if recorder is None:
        logger.debug(f"Metric: {name}={value} {metric_type.value} {labels or {}}")
        return Success(None)

    return recorder.record(metric_result.value)
