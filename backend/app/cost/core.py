"""
Cost tracking core logic - Pure functions only.
NEVER include I/O operations in this module.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from .contracts import (
    AdmissionDecision,
    AlertLevel,
    BudgetConfig,
    BudgetStatus,
    BudgetThresholds,
    CostProjection,
    CostService,
    RejectionKind,
)


# Ledger amounts are stored as integer units of 0.0001 USD so that
# SQL SUM() stays exact on every backend.
AMOUNT_SCALE = Decimal("0.0001")
PERCENT_SCALE = Decimal("0.001")
MONEY_SCALE = Decimal("0.01")

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

RAPID_INCREASE_WARNING_FRACTION = Decimal("0.10")
RAPID_INCREASE_CRITICAL_FRACTION = Decimal("0.20")
ANOMALY_MIN_SAMPLES = 3


def to_ledger_units(amount: Decimal) -> int:
    """
    Convert a USD amount to integer ledger units.

    Raises:
        ValueError: If the amount is negative or not finite
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if not amount.is_finite():
        raise ValueError(f"Cost amount must be finite, got {amount}")
    if amount < 0:
        raise ValueError(f"Cost amount must be non-negative, got {amount}")
    return int((amount / AMOUNT_SCALE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_ledger_units(units: Optional[int]) -> Decimal:
    if not units:
        return Decimal("0.0000")
    return (Decimal(int(units)) * AMOUNT_SCALE).quantize(AMOUNT_SCALE)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC timestamp; sorts lexicographically in SQL."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def calculate_utilization(total_spent: Decimal, budget_limit: Decimal) -> Decimal:
    """
    Calculate budget utilization as a percentage.

    Args:
        total_spent: All-time ledger spend in USD
        budget_limit: Configured budget limit in USD

    Returns:
        Utilization percentage quantized to 0.001 (may exceed 100)

    Raises:
        ValueError: If budget_limit is not positive
    """
    return _unrounded_utilization(total_spent, budget_limit).quantize(PERCENT_SCALE)


def _unrounded_utilization(total_spent: Decimal, budget_limit: Decimal) -> Decimal:
    if budget_limit <= 0:
        raise ValueError("Budget limit must be positive")
    return (total_spent / budget_limit) * Decimal("100")


def determine_alert_level(
    utilization: Decimal,
    thresholds: BudgetThresholds = BudgetThresholds()
) -> AlertLevel:
    """
    Map utilization onto an alert level.
    MUST be a non-decreasing step function of utilization.
    """
    if utilization >= thresholds.emergency_percent:
        return AlertLevel.EMERGENCY
    elif utilization >= thresholds.critical_percent:
        return AlertLevel.CRITICAL
    elif utilization >= thresholds.warning_percent:
        return AlertLevel.WARNING
    else:
        return AlertLevel.NONE


def alert_level_for_spend(
    total_spent: Decimal,
    budget_limit: Decimal,
    thresholds: BudgetThresholds = BudgetThresholds()
) -> AlertLevel:
    """Alert level from the exact spend ratio, not the rounded percentage."""
    return determine_alert_level(_unrounded_utilization(total_spent, budget_limit), thresholds)


def can_proceed_at(level: AlertLevel) -> bool:
    """New spend is admitted at every level except emergency."""
    return level != AlertLevel.EMERGENCY


def threshold_for_level(
    level: AlertLevel,
    thresholds: BudgetThresholds = BudgetThresholds()
) -> Decimal:
    """Get the utilization percentage at which a level starts."""
    mapping = {
        AlertLevel.WARNING: thresholds.warning_percent,
        AlertLevel.CRITICAL: thresholds.critical_percent,
        AlertLevel.EMERGENCY: thresholds.emergency_percent,
    }
    return mapping.get(level, Decimal("0"))


def build_budget_status(
    totals_by_service: Dict[CostService, Decimal],
    daily_spent: Decimal,
    hourly_spent: Decimal,
    config: BudgetConfig,
    evaluated_at: datetime
) -> BudgetStatus:
    """
    Derive the budget status from ledger aggregates.
    MUST be deterministic - same aggregates always give the same status.
    """
    breakdown = {service: Decimal("0.0000") for service in CostService}
    for service, amount in totals_by_service.items():
        breakdown[service] = breakdown[service] + amount

    total_spent = sum(breakdown.values(), Decimal("0.0000"))
    utilization = calculate_utilization(total_spent, config.budget_limit)
    level = alert_level_for_spend(total_spent, config.budget_limit, config.thresholds)

    return BudgetStatus(
        total_spent=total_spent,
        daily_spent=daily_spent,
        hourly_spent=hourly_spent,
        budget_limit=config.budget_limit,
        remaining_budget=config.budget_limit - total_spent,
        utilization_percentage=utilization,
        alert_level=level,
        can_proceed=can_proceed_at(level),
        service_breakdown=breakdown,
        evaluated_at=evaluated_at,
    )


def evaluate_admission(status: BudgetStatus, estimated_cost: Decimal) -> AdmissionDecision:
    """
    Decide whether an operation with the given estimated cost may start.

    Raises:
        ValueError: If estimated_cost is negative
    """
    if estimated_cost < 0:
        raise ValueError(f"Estimated cost must be non-negative, got {estimated_cost}")

    if not status.can_proceed:
        return AdmissionDecision(
            allowed=False,
            estimated_cost=estimated_cost,
            budget_status=status,
            rejection=RejectionKind.BUDGET_EXCEEDED,
            reason=(
                f"Budget at {status.alert_level.value} level "
                f"({status.utilization_percentage}% of ${status.budget_limit} used)"
            ),
        )

    if estimated_cost > status.remaining_budget:
        return AdmissionDecision(
            allowed=False,
            estimated_cost=estimated_cost,
            budget_status=status,
            rejection=RejectionKind.INSUFFICIENT_BUDGET,
            reason=(
                f"Estimated cost ${estimated_cost} exceeds remaining budget "
                f"${status.remaining_budget}"
            ),
        )

    return AdmissionDecision(
        allowed=True,
        estimated_cost=estimated_cost,
        budget_status=status,
    )


def project_spend(
    last_24h_spent: Decimal,
    data_points: int,
    remaining_budget: Decimal
) -> CostProjection:
    """
    Extrapolate spend from the last 24 hours.

    hours_to_limit is None when nothing was spent in the window.
    """
    projected_daily = last_24h_spent.quantize(MONEY_SCALE)
    hourly_rate = last_24h_spent / Decimal("24")

    if hourly_rate <= 0:
        hours_to_limit = None
    elif remaining_budget <= 0:
        hours_to_limit = Decimal("0.00")
    else:
        hours_to_limit = (remaining_budget / hourly_rate).quantize(MONEY_SCALE)

    confidence = min(Decimal("100"), Decimal(data_points) * Decimal("10"))

    return CostProjection(
        projected_daily_spend=projected_daily,
        projected_monthly_spend=(last_24h_spent * Decimal("30")).quantize(MONEY_SCALE),
        hours_to_limit=hours_to_limit,
        confidence=confidence,
        based_on_data_points=data_points,
    )


def detect_rapid_increase(hourly_spent: Decimal, budget_limit: Decimal) -> Optional[AlertLevel]:
    """
    Flag an hourly burn rate that would consume a large share of the
    budget within a day.

    Returns:
        CRITICAL above 20% of the budget per projected day, WARNING above
        10%, otherwise None
    """
    projected_daily = hourly_spent * Decimal("24")
    if projected_daily > budget_limit * RAPID_INCREASE_CRITICAL_FRACTION:
        return AlertLevel.CRITICAL
    if projected_daily > budget_limit * RAPID_INCREASE_WARNING_FRACTION:
        return AlertLevel.WARNING
    return None


def detect_cost_anomaly(amount: Decimal, recent_amounts: List[Decimal]) -> Optional[str]:
    """
    Compare an amount against recent entries of the same service.

    Returns:
        "high" or "medium" when the amount is above both the mean plus two
        standard deviations and twice the mean, otherwise None
    """
    if len(recent_amounts) < ANOMALY_MIN_SAMPLES:
        return None

    count = Decimal(len(recent_amounts))
    average = sum(recent_amounts, Decimal("0")) / count
    variance = sum(((a - average) ** 2 for a in recent_amounts), Decimal("0")) / count
    threshold = average + 2 * variance.sqrt()

    if amount > threshold and amount > average * 2:
        return "high" if amount > average * 3 else "medium"
    return None
