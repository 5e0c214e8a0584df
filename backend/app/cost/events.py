"""
Cost tracking domain events.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .contracts import AlertLevel, CostService, RejectionKind


@dataclass(frozen=True)
class CostRecorded:
    """Emitted when a cost entry is appended to the ledger."""
    entry_id: str
    service: CostService
    amount: Decimal
    description: str
    timestamp: datetime
    session_id: Optional[str] = None
    job_id: Optional[str] = None


@dataclass(frozen=True)
class BudgetThresholdCrossed:
    """Emitted when a recorded cost moves the budget to a higher alert level."""
    previous_level: AlertLevel
    new_level: AlertLevel
    threshold_percent: Decimal
    total_spent: Decimal
    utilization_percentage: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class RapidSpendDetected:
    """Emitted when the hourly burn rate projects to a large daily spend."""
    level: AlertLevel
    hourly_spent: Decimal
    projected_daily_spend: Decimal
    budget_limit: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class CostAnomalyDetected:
    """Emitted when an entry is far above recent entries of its service."""
    entry_id: str
    service: CostService
    amount: Decimal
    recent_average: Decimal
    severity: str
    timestamp: datetime


@dataclass(frozen=True)
class AdmissionDenied:
    """Emitted when the admission gate refuses an operation."""
    rejection: RejectionKind
    estimated_cost: Decimal
    remaining_budget: Decimal
    alert_level: AlertLevel
    timestamp: datetime
