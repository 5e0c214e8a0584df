"""
Cost tracking I/O operations - ledger storage, budget evaluation, admission.
All external interactions go here.
"""
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..common.events import EventPublisher, log_event_publisher, publish_safely
from .contracts import (
    AdmissionDecision,
    AlertLevel,
    BudgetConfig,
    BudgetExceeded,
    BudgetStatus,
    CostEntry,
    CostProjection,
    CostService,
    InsufficientBudget,
    PersistenceError,
    RejectionKind,
)
from .core import (
    alert_level_for_spend,
    build_budget_status,
    detect_cost_anomaly,
    detect_rapid_increase,
    evaluate_admission,
    format_timestamp,
    from_ledger_units,
    parse_timestamp,
    project_spend,
    threshold_for_level,
    to_ledger_units,
)
from .events import (
    AdmissionDenied,
    BudgetThresholdCrossed,
    CostAnomalyDetected,
    CostRecorded,
    RapidSpendDetected,
)


logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 1000
ANOMALY_WINDOW_ENTRIES = 10

CostListener = Callable[[CostEntry], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CostLedger:
    """
    Append-only cost ledger stored in SQL.
    Entries are never updated or deleted.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = utc_now,
        collector=None
    ):
        self.session_factory = session_factory
        self.event_publisher = event_publisher or log_event_publisher
        self.clock = clock
        self.collector = collector
        self._listeners: List[CostListener] = []

    def subscribe(self, listener: CostListener) -> None:
        """Register a coroutine called with every committed entry."""
        self._listeners.append(listener)

    async def ensure_schema(self) -> None:
        """Create the ledger table and timestamp index if missing."""
        statements = [
            text("""
                CREATE TABLE IF NOT EXISTS cost_entries (
                    id VARCHAR(36) PRIMARY KEY,
                    service VARCHAR(32) NOT NULL,
                    amount_units BIGINT NOT NULL,
                    description TEXT NOT NULL,
                    session_id VARCHAR(64),
                    job_id VARCHAR(64),
                    recorded_at VARCHAR(32) NOT NULL,
                    metadata_json TEXT
                )
            """),
            text("CREATE INDEX IF NOT EXISTS ix_cost_entries_recorded_at ON cost_entries (recorded_at)"),
            text("CREATE INDEX IF NOT EXISTS ix_cost_entries_service ON cost_entries (service, recorded_at)"),
        ]
        try:
            async with self.session_factory() as session:
                for statement in statements:
                    await session.execute(statement)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create cost ledger schema: {str(e)}", exc_info=True)
            raise PersistenceError(f"Failed to create cost ledger schema: {e}") from e

    async def record(
        self,
        service: CostService,
        amount: Decimal,
        description: str,
        session_id: Optional[str] = None,
        job_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Append one cost entry.

        Returns:
            The new entry id

        Raises:
            ValueError: If amount is negative or not finite
            PersistenceError: If the entry could not be stored
        """
        units = to_ledger_units(amount)
        started = time.monotonic()

        entry = CostEntry(
            id=str(uuid4()),
            service=CostService(service),
            amount=from_ledger_units(units),
            description=description,
            timestamp=self.clock(),
            session_id=session_id,
            job_id=job_id,
            metadata=metadata,
        )

        query = text("""
            INSERT INTO cost_entries
            (id, service, amount_units, description, session_id, job_id, recorded_at, metadata_json)
            VALUES
            (:id, :service, :amount_units, :description, :session_id, :job_id, :recorded_at, :metadata_json)
        """)

        try:
            async with self.session_factory() as session:
                await session.execute(query, {
                    "id": entry.id,
                    "service": entry.service.value,
                    "amount_units": units,
                    "description": entry.description,
                    "session_id": entry.session_id,
                    "job_id": entry.job_id,
                    "recorded_at": format_timestamp(entry.timestamp),
                    "metadata_json": json.dumps(entry.metadata, default=str) if entry.metadata else None,
                })
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                f"Failed to record cost {entry.service.value} ${entry.amount}: {str(e)}",
                exc_info=True
            )
            raise PersistenceError(f"Failed to record cost entry: {e}") from e

        logger.info(
            f"Recorded cost: {entry.service.value} ${entry.amount} - {entry.description}",
            extra={"cost_entry_id": entry.id, "job_id": job_id, "session_id": session_id}
        )

        if self.collector:
            self.collector.track_cost_recorded(
                duration_ms=(time.monotonic() - started) * 1000,
                service=entry.service,
                amount=entry.amount,
            )

        await publish_safely(self.event_publisher, CostRecorded(
            entry_id=entry.id,
            service=entry.service,
            amount=entry.amount,
            description=entry.description,
            timestamp=entry.timestamp,
            session_id=session_id,
            job_id=job_id,
        ))

        for listener in self._listeners:
            try:
                await listener(entry)
            except Exception as e:
                logger.warning(f"Cost listener failed for entry {entry.id}: {e}", exc_info=True)

        return entry.id

    async def query(
        self,
        window: timedelta,
        limit: int = DEFAULT_QUERY_LIMIT
    ) -> List[CostEntry]:
        """Entries recorded within the trailing window, newest first."""
        now = self.clock()
        query = text("""
            SELECT id, service, amount_units, description, session_id, job_id, recorded_at, metadata_json
            FROM cost_entries
            WHERE recorded_at >= :since AND recorded_at <= :until
            ORDER BY recorded_at DESC
            LIMIT :limit
        """)
        rows = await self._fetch(query, {
            "since": format_timestamp(now - window),
            "until": format_timestamp(now),
            "limit": limit,
        })
        return [self._row_to_entry(row) for row in rows]

    async def totals_by_service(self, since: Optional[datetime] = None) -> Dict[CostService, Decimal]:
        """Sum of amounts per service, optionally since a point in time."""
        if since is None:
            query = text("""
                SELECT service, SUM(amount_units) FROM cost_entries GROUP BY service
            """)
            params: Dict[str, Any] = {}
        else:
            query = text("""
                SELECT service, SUM(amount_units) FROM cost_entries
                WHERE recorded_at >= :since
                GROUP BY service
            """)
            params = {"since": format_timestamp(since)}

        rows = await self._fetch(query, params)
        return {CostService(row[0]): from_ledger_units(row[1]) for row in rows}

    async def total_since(self, since: datetime) -> Decimal:
        query = text("""
            SELECT COALESCE(SUM(amount_units), 0) FROM cost_entries WHERE recorded_at >= :since
        """)
        rows = await self._fetch(query, {"since": format_timestamp(since)})
        return from_ledger_units(rows[0][0] if rows else 0)

    async def count_since(self, since: datetime) -> int:
        query = text("SELECT COUNT(*) FROM cost_entries WHERE recorded_at >= :since")
        rows = await self._fetch(query, {"since": format_timestamp(since)})
        return int(rows[0][0]) if rows else 0

    async def recent_amounts(
        self,
        service: CostService,
        limit: int = ANOMALY_WINDOW_ENTRIES,
        exclude_entry_id: Optional[str] = None
    ) -> List[Decimal]:
        """Most recent amounts recorded for one service."""
        query = text("""
            SELECT amount_units FROM cost_entries
            WHERE service = :service AND id != :exclude
            ORDER BY recorded_at DESC
            LIMIT :limit
        """)
        rows = await self._fetch(query, {
            "service": CostService(service).value,
            "exclude": exclude_entry_id or "",
            "limit": limit,
        })
        return [from_ledger_units(row[0]) for row in rows]

    async def _fetch(self, query, params: Dict[str, Any]) -> List[Any]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(query, params)
                return list(result.fetchall())
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Cost ledger query failed: {str(e)}", exc_info=True)
            raise PersistenceError(f"Cost ledger query failed: {e}") from e

    def _row_to_entry(self, row) -> CostEntry:
        return CostEntry(
            id=row[0],
            service=CostService(row[1]),
            amount=from_ledger_units(row[2]),
            description=row[3],
            session_id=row[4],
            job_id=row[5],
            timestamp=parse_timestamp(row[6]),
            metadata=json.loads(row[7]) if row[7] else None,
        )


class BudgetEvaluator:
    """Derives budget status and alerts from the ledger."""

    def __init__(
        self,
        ledger: CostLedger,
        config: BudgetConfig,
        event_publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = utc_now,
        collector=None
    ):
        self.ledger = ledger
        self.config = config
        self.event_publisher = event_publisher or log_event_publisher
        self.clock = clock
        self.collector = collector

    async def status(self) -> BudgetStatus:
        """Recompute the budget status from ledger aggregates."""
        now = self.clock()
        totals = await self.ledger.totals_by_service()
        daily = await self.ledger.total_since(now - timedelta(hours=24))
        hourly = await self.ledger.total_since(now - timedelta(hours=1))

        status = build_budget_status(totals, daily, hourly, self.config, now)

        if self.collector:
            self.collector.track_budget_status(status)

        return status

    async def projection(self) -> CostProjection:
        """Project spend from the last 24 hours of entries."""
        now = self.clock()
        since = now - timedelta(hours=24)
        status = await self.status()
        data_points = await self.ledger.count_since(since)
        return project_spend(status.daily_spent, data_points, status.remaining_budget)

    async def check_alerts(self, entry: CostEntry) -> None:
        """
        Inspect the budget after an entry was committed and publish
        threshold, burn-rate and anomaly events.
        """
        status = await self.status()

        previous_total = status.total_spent - entry.amount
        previous_level = alert_level_for_spend(previous_total, self.config.budget_limit, self.config.thresholds)

        if status.alert_level.severity > previous_level.severity:
            await publish_safely(self.event_publisher, BudgetThresholdCrossed(
                previous_level=previous_level,
                new_level=status.alert_level,
                threshold_percent=threshold_for_level(status.alert_level, self.config.thresholds),
                total_spent=status.total_spent,
                utilization_percentage=status.utilization_percentage,
                timestamp=status.evaluated_at,
            ))

            if status.alert_level == AlertLevel.EMERGENCY:
                logger.critical(
                    f"BUDGET EMERGENCY: ${status.total_spent} of ${status.budget_limit} spent "
                    f"({status.utilization_percentage}%), new generations are blocked"
                )
            else:
                logger.warning(
                    f"Budget alert level {previous_level.value} -> {status.alert_level.value}: "
                    f"${status.total_spent} of ${status.budget_limit} spent"
                )

        rapid_level = detect_rapid_increase(status.hourly_spent, status.budget_limit)
        if rapid_level is not None:
            logger.warning(
                f"Rapid cost increase: ${status.hourly_spent} in the last hour "
                f"(projected ${status.hourly_spent * 24}/day)"
            )
            await publish_safely(self.event_publisher, RapidSpendDetected(
                level=rapid_level,
                hourly_spent=status.hourly_spent,
                projected_daily_spend=status.hourly_spent * 24,
                budget_limit=status.budget_limit,
                timestamp=status.evaluated_at,
            ))

        recent = await self.ledger.recent_amounts(entry.service, exclude_entry_id=entry.id)
        severity = detect_cost_anomaly(entry.amount, recent)
        if severity is not None:
            average = sum(recent, Decimal("0")) / len(recent)
            logger.warning(
                f"Cost anomaly detected for {entry.service.value}: ${entry.amount} "
                f"(avg: ${average.quantize(Decimal('0.01'))})"
            )
            await publish_safely(self.event_publisher, CostAnomalyDetected(
                entry_id=entry.id,
                service=entry.service,
                amount=entry.amount,
                recent_average=average,
                severity=severity,
                timestamp=status.evaluated_at,
            ))


class AdmissionGate:
    """Decides whether a new billable operation may start. Never writes."""

    def __init__(
        self,
        evaluator: BudgetEvaluator,
        event_publisher: Optional[EventPublisher] = None,
        collector=None
    ):
        self.evaluator = evaluator
        self.event_publisher = event_publisher or log_event_publisher
        self.collector = collector

    async def check_admission(self, estimated_cost: Decimal) -> AdmissionDecision:
        """
        Pre-flight budget check.

        Raises:
            ValueError: If estimated_cost is negative
            PersistenceError: If the ledger cannot be read
        """
        started = time.monotonic()
        status = await self.evaluator.status()
        decision = evaluate_admission(status, estimated_cost)

        if self.collector:
            self.collector.track_admission(
                duration_ms=(time.monotonic() - started) * 1000,
                decision=decision,
            )

        if not decision.allowed:
            logger.warning(
                f"Admission denied ({decision.rejection.value}): {decision.reason}",
                extra={"estimated_cost": str(estimated_cost)}
            )
            await publish_safely(self.event_publisher, AdmissionDenied(
                rejection=decision.rejection,
                estimated_cost=estimated_cost,
                remaining_budget=status.remaining_budget,
                alert_level=status.alert_level,
                timestamp=status.evaluated_at,
            ))

        return decision

    async def ensure_admitted(self, estimated_cost: Decimal) -> AdmissionDecision:
        """
        Like check_admission but raises on rejection.

        Raises:
            BudgetExceeded: Budget is at the emergency level
            InsufficientBudget: Estimated cost exceeds the remaining budget
        """
        decision = await self.check_admission(estimated_cost)
        if decision.allowed:
            return decision
        if decision.rejection == RejectionKind.BUDGET_EXCEEDED:
            raise BudgetExceeded(decision.reason, decision)
        raise InsufficientBudget(decision.reason, decision)
