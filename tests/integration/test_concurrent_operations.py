"""
Concurrency Tests for Budget Admission and Status Reconciliation

This module runs operations concurrently to ensure:
1. The ledger total always equals the sum of recorded generations
2. Admission stops new spend once the emergency level is reached
3. Concurrent polls of a completing job migrate its video once
4. A cancel racing a completion never leaves a half-written record
"""

import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from backend.app.cost.contracts import AdmissionRejected, BudgetConfig, BudgetExceeded
from backend.app.cost.shell import AdmissionGate, BudgetEvaluator, CostLedger
from backend.app.jobs.contracts import JobStatus
from backend.app.jobs.core import build_new_job
from backend.app.jobs.integration import VideoGenerationService
from backend.app.jobs.shell import StatusReconciler, utc_now
from backend.app.storage.contracts import MigrationResult
from backend.app.video.contracts import ProviderJobState, ProviderStatus, SubmissionResult
from backend.app.video.shell import DemoVideoProvider

from .test_end_to_end_flow import FakeTime, InMemoryJobStore, InMemorySessionStore


@pytest.fixture
async def ledger(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'costs.db'}")
    ledger = CostLedger(async_sessionmaker(engine, expire_on_commit=False), event_publisher=AsyncMock())
    await ledger.ensure_schema()
    yield ledger
    await engine.dispose()


def generation_service(ledger, budget_limit: Decimal):
    evaluator = BudgetEvaluator(ledger, BudgetConfig(budget_limit=budget_limit), event_publisher=AsyncMock())
    gate = AdmissionGate(evaluator, event_publisher=AsyncMock())
    provider = DemoVideoProvider(clock=FakeTime())
    service = VideoGenerationService(gate, ledger, InMemorySessionStore(), InMemoryJobStore(), provider)
    return service, evaluator


class TestConcurrentAdmission:
    """Test ledger consistency under concurrent generation requests."""

    async def test_ledger_total_matches_admitted_generations(self, ledger):
        service, evaluator = generation_service(ledger, Decimal("300.00"))

        results = await asyncio.gather(
            *(service.start_generation(f"Ad variant {i}") for i in range(20)),
            return_exceptions=True
        )

        tickets = [r for r in results if not isinstance(r, Exception)]
        assert len(tickets) == 20

        status = await evaluator.status()
        assert status.total_spent == Decimal("1.5000") * 20
        assert await ledger.count_since(utc_now() - timedelta(hours=1)) == 20

    async def test_emergency_level_stops_new_spend(self, ledger):
        # 9 generations reach 90% of 15.00
        service, evaluator = generation_service(ledger, Decimal("15.00"))

        for i in range(9):
            await service.start_generation(f"Ad variant {i}")

        status = await evaluator.status()
        assert status.can_proceed is False

        results = await asyncio.gather(
            *(service.start_generation(f"Late variant {i}") for i in range(5)),
            return_exceptions=True
        )

        assert all(isinstance(r, BudgetExceeded) for r in results)
        assert (await evaluator.status()).total_spent == Decimal("13.5000")

    async def test_concurrent_requests_near_limit(self, ledger):
        """Admission is a soft check: racing requests may overshoot, the ledger stays exact."""
        service, evaluator = generation_service(ledger, Decimal("6.00"))

        results = await asyncio.gather(
            *(service.start_generation(f"Ad variant {i}") for i in range(8)),
            return_exceptions=True
        )

        admitted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, AdmissionRejected)]
        assert len(admitted) + len(rejected) == 8
        assert len(admitted) >= 4

        status = await evaluator.status()
        assert status.total_spent == Decimal("1.5000") * len(admitted)
        assert status.can_proceed is False


class TestConcurrentReconciliation:
    """Test at-most-once migration and cancel/complete races."""

    async def _processing_job(self, store, sessions):
        session = await sessions.create("prompt")
        job = build_new_job(
            "job-race",
            session.id,
            "prompt",
            SubmissionResult("operations/race", ProviderJobState.PROCESSING, 180),
            Decimal("1.5000"),
            utc_now() - timedelta(seconds=1),
        )
        return await store.create(job)

    async def test_concurrent_polls_migrate_once(self):
        store, sessions = InMemoryJobStore(), InMemorySessionStore()
        job = await self._processing_job(store, sessions)

        provider = AsyncMock()
        provider.poll_status.return_value = ProviderStatus(
            status=ProviderJobState.COMPLETED, progress=100, video_url="https://provider/ephemeral/x.mp4"
        )
        migrator = AsyncMock()

        async def slow_migrate(source_url, job_id, metadata=None):
            await asyncio.sleep(0.01)
            return MigrationResult(True, source_url, "https://blob/videos/job-race.mp4", "https://blob/videos/job-race.mp4")

        migrator.migrate.side_effect = slow_migrate
        reconciler = StatusReconciler(store, sessions, provider, migrator, event_publisher=AsyncMock())

        results = await asyncio.gather(*(reconciler.reconcile(job.id) for _ in range(5)))

        migrator.migrate.assert_awaited_once()
        final = await store.get(job.id)
        assert final.status == JobStatus.COMPLETED
        assert final.video_url == "https://blob/videos/job-race.mp4"
        assert any(r.status == JobStatus.COMPLETED for r in results)
        assert all(r.status in (JobStatus.PROCESSING, JobStatus.COMPLETED) for r in results)

    async def test_cancel_racing_completion(self):
        store, sessions = InMemoryJobStore(), InMemorySessionStore()
        job = await self._processing_job(store, sessions)

        provider = AsyncMock()
        provider.poll_status.return_value = ProviderStatus(
            status=ProviderJobState.COMPLETED, progress=100, video_url="https://provider/ephemeral/x.mp4"
        )
        provider.cancel.return_value = True
        migrator = AsyncMock()

        async def slow_migrate(source_url, job_id, metadata=None):
            await asyncio.sleep(0.01)
            return MigrationResult(True, source_url, "https://blob/videos/job-race.mp4")

        migrator.migrate.side_effect = slow_migrate
        reconciler = StatusReconciler(store, sessions, provider, migrator, event_publisher=AsyncMock())

        reconciled, cancelled = await asyncio.gather(
            reconciler.reconcile(job.id),
            reconciler.cancel(job.id),
        )

        final = await store.get(job.id)
        assert final.status == JobStatus.FAILED
        assert final.error == "cancelled by user"
        assert final.video_url is None
        assert reconciled == final
        assert cancelled == final
