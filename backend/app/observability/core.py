"""
Observability Core - Pure Functions Only
NEVER include I/O operations in this module.

Metric validation for the cost and job modules. Shell code records
only metrics produced by create_metric.
"""

import math
import re
from datetime import datetime, timezone
from typing import Dict, Optional

from .contracts import (
    Failure,
    Metric,
    MetricType,
    MetricValidationError,
    Result,
    Success,
)


# Standard metric naming conventions
METRIC_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")
RESERVED_LABEL_NAMES = {"__name__", "__value__", "__timestamp__"}
RESERVED_NAME_PREFIXES = (
    "system.",
    "process.",
    "http.server.",
    "http.client.",
    "db.",
)


def create_metric(
    name: str,
    value: float,
    labels: Optional[Dict[str, str]] = None,
    metric_type: MetricType = MetricType.GAUGE,
    timestamp: Optional[datetime] = None,
    unit: Optional[str] = None,
) -> Result[Metric, MetricValidationError]:
    """
    Create a standardized metric with validation.
    MUST be deterministic - same inputs produce same outputs.

    Args:
        name: Dotted lowercase metric name
        value: Numeric value (must be finite)
        labels: Optional key-value labels
        metric_type: Type of metric (counter, gauge, histogram)
        timestamp: Optional timestamp, defaults to now
        unit: Optional unit description

    Returns:
        Result containing validated Metric or validation error
    """
    if not validate_metric_name(name):
        return Failure(
            MetricValidationError(
                "name",
                "Metric name must follow pattern: lowercase, underscores, dots for namespaces",
                name if isinstance(name, str) else None
            )
        )

    if is_metric_name_reserved(name):
        return Failure(MetricValidationError("name", "Metric name uses a reserved prefix", name))

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return Failure(MetricValidationError("value", "Metric value must be numeric"))

    if not math.isfinite(value):
        return Failure(MetricValidationError("value", "Metric value must be finite"))

    if metric_type == MetricType.COUNTER and value < 0:
        return Failure(MetricValidationError("value", "Counter increments must be non-negative"))

    clean_labels = labels or {}
    if not isinstance(clean_labels, dict):
        return Failure(MetricValidationError("labels", "Labels must be a dictionary"))

    for label_name in clean_labels:
        if label_name in RESERVED_LABEL_NAMES:
            return Failure(
                MetricValidationError(
                    "labels",
                    f"Label name '{label_name}' is reserved",
                    label_name
                )
            )

    return Success(
        Metric(
            name=name,
            value=float(value),
            labels={k: str(v) for k, v in clean_labels.items()},
            metric_type=metric_type,
            timestamp=timestamp or datetime.now(timezone.utc),
            unit=unit,
        )
    )


def validate_metric_name(name: str) -> bool:
    """
    Validate metric name follows naming conventions.
    MUST be deterministic.
    """
    if not name or not isinstance(name, str):
        return False

    return bool(METRIC_NAME_PATTERN.match(name))


def is_metric_name_reserved(name: str) -> bool:
    """Check if metric name conflicts with instrumentation-owned names."""
    return name.startswith(RESERVED_NAME_PREFIXES)
