"""
Observability integration for Jobs module.
Collects metrics for reconciliation, provider failures, migrations and job counts.
"""

import logging
from typing import Dict, Optional

from ..observability.contracts import MetricType
from ..observability.shell import MetricRecorder, record_metric
from ..storage.contracts import MigrationResult
from .contracts import JobMetrics

logger = logging.getLogger(__name__)


class JobsObservabilityCollector:
    """
    Collects observability metrics for video jobs.
    Failures are logged and never reach the caller.
    """

    def __init__(self, recorder: Optional[MetricRecorder] = None):
        self.recorder = recorder

    def track_reconcile(self, duration_ms: float, outcome: str) -> None:
        """
        Track one reconciliation pass.

        Args:
            duration_ms: Time spent, including the provider poll and migration
            outcome: terminal, unchanged, updated, conflict, provider_error
                or migration_in_progress
        """
        try:
            labels = {"outcome": outcome}

            self._record_metric(
                name="jobs.reconcile.duration_ms",
                value=float(duration_ms),
                metric_type=MetricType.HISTOGRAM,
                labels=labels,
                unit="ms",
            )

            self._record_metric(
                name="jobs.reconcile.total",
                value=1.0,
                metric_type=MetricType.COUNTER,
                labels=labels,
            )

        except Exception as e:
            logger.error(f"Failed to track reconcile metrics: {e}")

    def track_provider_failure(self, operation: str, error: Exception) -> None:
        try:
            self._record_metric(
                name="jobs.provider.failures.total",
                value=1.0,
                metric_type=MetricType.COUNTER,
                labels={"operation": operation, "error_type": type(error).__name__},
            )
        except Exception as e:
            logger.error(f"Failed to track provider failure metrics: {e}")

    def track_migration(self, duration_ms: float, result: MigrationResult) -> None:
        try:
            labels = {"success": str(result.success).lower()}

            self._record_metric(
                name="jobs.migration.duration_ms",
                value=float(duration_ms),
                metric_type=MetricType.HISTOGRAM,
                labels=labels,
                unit="ms",
            )

            self._record_metric(
                name="jobs.migration.total",
                value=1.0,
                metric_type=MetricType.COUNTER,
                labels=labels,
            )

            if result.success:
                self._record_metric(
                    name="jobs.migration.bytes",
                    value=float(result.bytes_copied),
                    metric_type=MetricType.COUNTER,
                    unit="By",
                )

        except Exception as e:
            logger.error(f"Failed to track migration metrics: {e}")

    def track_job_counts(self, metrics: JobMetrics) -> None:
        """Track job counts by status as gauges."""
        try:
            counts = {
                "pending": metrics.pending_jobs,
                "processing": metrics.processing_jobs,
                "completed": metrics.completed_jobs,
                "failed": metrics.failed_jobs,
            }
            for status, count in counts.items():
                self._record_metric(
                    name="jobs.count",
                    value=float(count),
                    labels={"status": status},
                )

            self._record_metric(
                name="jobs.success.ratio",
                value=float(metrics.success_rate),
            )

        except Exception as e:
            logger.error(f"Failed to track job count metrics: {e}")

    def _record_metric(
        self,
        name: str,
        value: float,
        metric_type: MetricType = MetricType.GAUGE,
        labels: Optional[Dict[str, str]] = None,
        unit: Optional[str] = None,
    ) -> None:
        record_metric(
            name=name,
            value=value,
            labels=labels,
            metric_type=metric_type,
            recorder=self.recorder,
            unit=unit,
        )
