"""
Cost tracking contracts and type definitions.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any

from ..common.errors import PersistenceError  # noqa: F401  re-exported


class CostService(Enum):
    """Billable services that can appear in the ledger."""
    VIDEO_PROVIDER = "video_provider"
    CHAT_MODEL = "chat_model"
    STORAGE = "storage"
    OTHER = "other"


class AlertLevel(Enum):
    """Budget alert levels, ordered by severity."""
    NONE = "none"
    WARNING = "warning"      # 50%
    CRITICAL = "critical"    # 75%
    EMERGENCY = "emergency"  # 90%

    @property
    def severity(self) -> int:
        return _ALERT_SEVERITY[self]


_ALERT_SEVERITY = {
    AlertLevel.NONE: 0,
    AlertLevel.WARNING: 1,
    AlertLevel.CRITICAL: 2,
    AlertLevel.EMERGENCY: 3,
}


class RejectionKind(Enum):
    """Why the admission gate refused an operation."""
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    INSUFFICIENT_BUDGET = "INSUFFICIENT_BUDGET"


@dataclass(frozen=True)
class BudgetThresholds:
    """Utilization percentages at which the alert level steps up."""
    warning_percent: Decimal = Decimal("50")
    critical_percent: Decimal = Decimal("75")
    emergency_percent: Decimal = Decimal("90")


@dataclass(frozen=True)
class BudgetConfig:
    """Budget limit configuration."""
    budget_limit: Decimal = Decimal("300.00")
    thresholds: BudgetThresholds = field(default_factory=BudgetThresholds)
    currency: str = "USD"


@dataclass(frozen=True)
class CostEntry:
    """Immutable record of one billable operation."""
    id: str
    service: CostService
    amount: Decimal
    description: str
    timestamp: datetime
    session_id: Optional[str] = None
    job_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class BudgetStatus:
    """Budget state derived from the ledger at evaluation time."""
    total_spent: Decimal
    daily_spent: Decimal
    hourly_spent: Decimal
    budget_limit: Decimal
    remaining_budget: Decimal
    utilization_percentage: Decimal
    alert_level: AlertLevel
    can_proceed: bool
    service_breakdown: Dict[CostService, Decimal]
    evaluated_at: datetime


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of an admission check for an estimated cost."""
    allowed: bool
    estimated_cost: Decimal
    budget_status: BudgetStatus
    rejection: Optional[RejectionKind] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class CostProjection:
    """Spend projection extrapolated from the last 24 hours."""
    projected_daily_spend: Decimal
    projected_monthly_spend: Decimal
    hours_to_limit: Optional[Decimal]
    confidence: Decimal
    based_on_data_points: int


class AdmissionRejected(Exception):
    """Raised when an operation is refused by the admission gate."""

    rejection: RejectionKind = RejectionKind.BUDGET_EXCEEDED

    def __init__(self, message: str, decision: AdmissionDecision):
        super().__init__(message)
        self.decision = decision


class BudgetExceeded(AdmissionRejected):
    """Budget is at the emergency level; no new spend is admitted."""

    rejection = RejectionKind.BUDGET_EXCEEDED


class InsufficientBudget(AdmissionRejected):
    """Estimated cost is larger than the remaining budget."""

    rejection = RejectionKind.INSUFFICIENT_BUDGET
