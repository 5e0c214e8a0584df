"""
Cost tracking module with budget evaluation and admission control.

This module provides:
- Append-only SQL cost ledger with exact sums (0.0001 USD units)
- Budget status derived on demand (50/75/90% alert levels)
- Admission gate that refuses new spend at the emergency level
- Threshold, burn-rate and anomaly events after each recorded cost
"""

from .core import (
    calculate_utilization,
    alert_level_for_spend,
    determine_alert_level,
    can_proceed_at,
    build_budget_status,
    evaluate_admission,
    project_spend,
)
from .contracts import (
    CostService,
    AlertLevel,
    RejectionKind,
    BudgetConfig,
    BudgetThresholds,
    CostEntry,
    BudgetStatus,
    AdmissionDecision,
    CostProjection,
    PersistenceError,
    AdmissionRejected,
    BudgetExceeded,
    InsufficientBudget,
)
from .events import (
    CostRecorded,
    BudgetThresholdCrossed,
    RapidSpendDetected,
    CostAnomalyDetected,
    AdmissionDenied,
)
from .shell import CostLedger, BudgetEvaluator, AdmissionGate
from .integration import admitted_operation, record_cost_safely

__all__ = [
    # Core functions
    "calculate_utilization",
    "alert_level_for_spend",
    "determine_alert_level",
    "can_proceed_at",
    "build_budget_status",
    "evaluate_admission",
    "project_spend",
    # Contracts
    "CostService",
    "AlertLevel",
    "RejectionKind",
    "BudgetConfig",
    "BudgetThresholds",
    "CostEntry",
    "BudgetStatus",
    "AdmissionDecision",
    "CostProjection",
    "PersistenceError",
    "AdmissionRejected",
    "BudgetExceeded",
    "InsufficientBudget",
    # Events
    "CostRecorded",
    "BudgetThresholdCrossed",
    "RapidSpendDetected",
    "CostAnomalyDetected",
    "AdmissionDenied",
    # Shell operations
    "CostLedger",
    "BudgetEvaluator",
    "AdmissionGate",
    "admitted_operation",
    "record_cost_safely",
]
