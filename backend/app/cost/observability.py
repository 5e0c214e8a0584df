"""
Observability integration for Cost module.
Collects metrics for budget utilization, admission checks and ledger writes.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from ..observability.contracts import MetricType
from ..observability.shell import MetricRecorder, record_metric
from .contracts import AdmissionDecision, BudgetStatus, CostService

logger = logging.getLogger(__name__)


class CostObservabilityCollector:
    """
    Collects observability metrics for the cost tracking module.
    Failures are logged and never reach the caller.
    """

    def __init__(self, recorder: Optional[MetricRecorder] = None):
        self.recorder = recorder

    def track_admission(self, duration_ms: float, decision: AdmissionDecision) -> None:
        """
        Track admission check metrics.

        Args:
            duration_ms: Time taken for the check, including ledger reads
            decision: The admission decision returned to the caller
        """
        try:
            labels = {
                "allowed": str(decision.allowed).lower(),
                "rejection": decision.rejection.value if decision.rejection else "none",
            }

            self._record_metric(
                name="cost.admission.duration_ms",
                value=float(duration_ms),
                metric_type=MetricType.HISTOGRAM,
                labels=labels,
                unit="ms",
            )

            self._record_metric(
                name="cost.admission.checks.total",
                value=1.0,
                metric_type=MetricType.COUNTER,
                labels=labels,
            )

            if not decision.allowed:
                self._record_metric(
                    name="cost.admission.blocked.total",
                    value=1.0,
                    metric_type=MetricType.COUNTER,
                    labels=labels,
                )

        except Exception as e:
            logger.error(f"Failed to track admission metrics: {e}")

    def track_cost_recorded(self, duration_ms: float, service: CostService, amount: Decimal) -> None:
        """Track a ledger append."""
        try:
            labels = {"service": service.value}

            self._record_metric(
                name="cost.ledger.write.duration_ms",
                value=float(duration_ms),
                metric_type=MetricType.HISTOGRAM,
                labels=labels,
                unit="ms",
            )

            self._record_metric(
                name="cost.ledger.amount.usd",
                value=float(amount),
                metric_type=MetricType.COUNTER,
                labels=labels,
                unit="USD",
            )

        except Exception as e:
            logger.error(f"Failed to track cost recording metrics: {e}")

    def track_budget_status(self, status: BudgetStatus) -> None:
        """Track the most recent budget evaluation."""
        try:
            self._record_metric(
                name="budget.utilization.percent",
                value=float(status.utilization_percentage),
                labels={"alert_level": status.alert_level.value},
                unit="%",
            )

            self._record_metric(
                name="budget.spend.usd",
                value=float(status.total_spent),
                unit="USD",
            )

            self._record_metric(
                name="budget.remaining.usd",
                value=float(status.remaining_budget),
                unit="USD",
            )

        except Exception as e:
            logger.error(f"Failed to track budget status metrics: {e}")

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
