"""
Integration helpers for cost tracking around billable provider calls.
Provides a context manager that admits, then records exactly once.
"""
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, Optional

from .contracts import AdmissionDecision, CostService, PersistenceError
from .shell import AdmissionGate, CostLedger


logger = logging.getLogger(__name__)


async def record_cost_safely(
    ledger: CostLedger,
    service: CostService,
    amount: Decimal,
    description: str,
    session_id: Optional[str] = None,
    job_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Optional[str]:
    """
    Record a cost after the provider accepted the operation.

    The operation is already running, so a ledger failure is logged for
    manual reconciliation instead of failing the caller.

    Returns:
        The entry id, or None if the ledger write failed
    """
    try:
        return await ledger.record(
            service=service,
            amount=amount,
            description=description,
            session_id=session_id,
            job_id=job_id,
            metadata=metadata,
        )
    except PersistenceError as e:
        logger.error(
            f"Cost not recorded for started operation ({service.value} ${amount}): {e}",
            extra={"session_id": session_id, "job_id": job_id, "unrecorded_amount": str(amount)}
        )
        return None


class AdmittedOperation:
    """Handle yielded by admitted_operation."""

    def __init__(
        self,
        ledger: CostLedger,
        decision: AdmissionDecision,
        service: CostService,
        description: str
    ):
        self.ledger = ledger
        self.decision = decision
        self.service = service
        self.description = description
        self.started = False
        self.entry_id: Optional[str] = None

    @property
    def estimated_cost(self) -> Decimal:
        return self.decision.estimated_cost

    async def mark_started(
        self,
        session_id: Optional[str] = None,
        job_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Record the cost now that the provider confirmed the start.
        Repeated calls do not record again.
        """
        if self.started:
            return self.entry_id

        self.started = True
        self.entry_id = await record_cost_safely(
            self.ledger,
            self.service,
            self.decision.estimated_cost,
            self.description,
            session_id=session_id,
            job_id=job_id,
            metadata=metadata,
        )
        return self.entry_id


@asynccontextmanager
async def admitted_operation(
    gate: AdmissionGate,
    ledger: CostLedger,
    service: CostService,
    estimated_cost: Decimal,
    description: str
):
    """
    Context manager for budget-guarded provider calls.

    Usage:
        async with admitted_operation(gate, ledger, CostService.VIDEO_PROVIDER,
                                      cost, "Video generation") as op:
            result = await provider.submit(...)
            await op.mark_started(session_id=session.id)

    Raises:
        BudgetExceeded: Budget is at the emergency level
        InsufficientBudget: Estimated cost exceeds the remaining budget
    """
    decision = await gate.ensure_admitted(estimated_cost)
    operation = AdmittedOperation(ledger, decision, service, description)

    try:
        yield operation
    finally:
        if not operation.started:
            logger.info(f"Admitted {service.value} operation did not start; no cost recorded")
