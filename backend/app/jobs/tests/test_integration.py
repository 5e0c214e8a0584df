"""
Test generation and status services with mocked collaborators.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from ...common.errors import PersistenceError
from ...cost.contracts import AdmissionDecision, BudgetExceeded, CostService
from ...cost.shell import AdmissionGate, CostLedger
from ...storage.contracts import SigningError
from ...video.contracts import (
    GenerationParams,
    InvalidGenerationRequest,
    ProviderJobState,
    ProviderRequestError,
    SubmissionResult,
)
from ..contracts import (
    JobExpired,
    JobNotFound,
    JobStatus,
    Session,
    SessionStatus,
    VideoJob,
)
from ..integration import JobStatusService, VideoGenerationService
from ..shell import JobRecordStore, SessionStore, StatusReconciler


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
DURABLE_URL = "https://adcraft.blob.core.windows.net/adcraft-videos/videos/job-1.mp4"


def make_job(**overrides) -> VideoJob:
    fields = dict(
        id="job-1",
        session_id="session-1",
        prompt="A sneaker ad on a rooftop",
        status=JobStatus.PROCESSING,
        progress=50,
        estimated_cost=Decimal("1.5000"),
        provider_operation_id="operations/abc",
        created_at=NOW - timedelta(minutes=1),
        updated_at=NOW - timedelta(minutes=1),
    )
    fields.update(overrides)
    return VideoJob(**fields)


@pytest.fixture
def gate():
    gate = AsyncMock(spec=AdmissionGate)
    gate.ensure_admitted.side_effect = lambda cost: AdmissionDecision(
        allowed=True, estimated_cost=cost, budget_status=MagicMock()
    )
    return gate


@pytest.fixture
def ledger():
    ledger = AsyncMock(spec=CostLedger)
    ledger.record.return_value = "entry-1"
    return ledger


@pytest.fixture
def sessions():
    sessions = AsyncMock(spec=SessionStore)
    sessions.create.return_value = Session("session-1", "prompt", SessionStatus.DRAFT, NOW, NOW)
    return sessions


@pytest.fixture
def store():
    return AsyncMock(spec=JobRecordStore)


@pytest.fixture
def provider():
    provider = AsyncMock()
    provider.submit.return_value = SubmissionResult("operations/abc", ProviderJobState.PENDING, 180)
    return provider


@pytest.fixture
def service(gate, ledger, sessions, store, provider):
    return VideoGenerationService(gate, ledger, sessions, store, provider, clock=lambda: NOW)


class TestVideoGenerationService:
    """Test the admit, submit, record sequence."""

    async def test_start_generation(self, service, gate, ledger, sessions, store, provider):
        ticket = await service.start_generation("A sneaker ad", GenerationParams(duration_seconds=15))

        assert ticket.job_id.startswith("job-")
        assert ticket.session_id == "session-1"
        assert ticket.status == JobStatus.PENDING
        assert ticket.estimated_cost == Decimal("1.5000")
        assert ticket.provider_operation_id == "operations/abc"

        gate.ensure_admitted.assert_awaited_once_with(Decimal("1.5000"))
        ledger.record.assert_awaited_once()
        kwargs = ledger.record.call_args.kwargs
        assert kwargs["service"] == CostService.VIDEO_PROVIDER
        assert kwargs["amount"] == Decimal("1.5000")
        assert kwargs["job_id"] == ticket.job_id
        assert kwargs["metadata"]["operation_id"] == "operations/abc"

        [job] = store.create.call_args.args
        assert job.id == ticket.job_id
        assert job.created_at == NOW
        sessions.update_status.assert_awaited_once_with(
            "session-1", SessionStatus.GENERATING, video_job_id=ticket.job_id
        )

    async def test_invalid_request_not_admitted(self, service, gate):
        with pytest.raises(InvalidGenerationRequest):
            await service.start_generation("   ")
        gate.ensure_admitted.assert_not_called()

    async def test_budget_exceeded_blocks_provider(self, service, gate, provider, ledger):
        gate.ensure_admitted.side_effect = BudgetExceeded("Budget exceeded", MagicMock())

        with pytest.raises(BudgetExceeded):
            await service.start_generation("A sneaker ad")

        provider.submit.assert_not_called()
        ledger.record.assert_not_called()

    async def test_provider_rejection_records_nothing(self, service, provider, ledger, sessions, store):
        provider.submit.side_effect = ProviderRequestError("bad prompt", status_code=400)

        with pytest.raises(ProviderRequestError):
            await service.start_generation("A sneaker ad")

        ledger.record.assert_not_called()
        store.create.assert_not_called()
        sessions.update_status.assert_awaited_once_with("session-1", SessionStatus.FAILED, video_job_id=None)

    async def test_ledger_failure_is_not_fatal(self, service, ledger, store):
        ledger.record.side_effect = PersistenceError("database locked")

        ticket = await service.start_generation("A sneaker ad")

        assert ticket.status == JobStatus.PENDING
        store.create.assert_awaited_once()

    async def test_job_store_failure_propagates_after_recording(self, service, ledger, store):
        store.create.side_effect = PersistenceError("redis down")

        with pytest.raises(PersistenceError):
            await service.start_generation("A sneaker ad")

        ledger.record.assert_awaited_once()


@pytest.fixture
def reconciler():
    return AsyncMock(spec=StatusReconciler)


@pytest.fixture
def migrator():
    migrator = MagicMock()
    migrator.is_durable.side_effect = lambda url: url.startswith("https://adcraft.blob")
    migrator.sign_url.side_effect = lambda url, ttl: f"{url}?sig=abc"
    return migrator


class TestJobStatusService:
    """Test status polls, expiry and URL signing."""

    async def test_missing_job(self, store, reconciler):
        store.get.return_value = None
        service = JobStatusService(store, reconciler, clock=lambda: NOW)

        with pytest.raises(JobNotFound):
            await service.get_status("job-1")

    async def test_expired_job(self, store, reconciler):
        store.get.return_value = make_job(created_at=NOW - timedelta(hours=25))
        service = JobStatusService(store, reconciler, max_age=timedelta(hours=24), clock=lambda: NOW)

        with pytest.raises(JobExpired):
            await service.get_status("job-1")

        reconciler.reconcile.assert_not_called()

    async def test_processing_view(self, store, reconciler):
        job = make_job()
        store.get.return_value = job
        reconciler.reconcile.return_value = job
        service = JobStatusService(store, reconciler, clock=lambda: NOW)

        view = await service.get_status("job-1")

        assert view.job == job
        assert view.message == "Generating your video... 50% complete."
        assert view.estimated_time_remaining == 60
        assert view.video_url is None

    async def test_durable_urls_signed(self, store, reconciler, migrator):
        completed = make_job(status=JobStatus.COMPLETED, progress=100, video_url=DURABLE_URL, thumbnail_url=DURABLE_URL)
        store.get.return_value = make_job()
        reconciler.reconcile.return_value = completed
        service = JobStatusService(store, reconciler, migrator, clock=lambda: NOW, signed_url_ttl_seconds=600)

        view = await service.get_status("job-1")

        assert view.video_url == f"{DURABLE_URL}?sig=abc"
        assert view.thumbnail_url == f"{DURABLE_URL}?sig=abc"
        assert view.job.video_url == DURABLE_URL
        assert view.estimated_time_remaining is None
        migrator.sign_url.assert_called_with(DURABLE_URL, 600)

    async def test_fallback_urls_returned_as_stored(self, store, reconciler, migrator):
        ephemeral = "https://provider/ephemeral/x.mp4"
        store.get.return_value = make_job()
        reconciler.reconcile.return_value = make_job(status=JobStatus.COMPLETED, video_url=ephemeral)
        service = JobStatusService(store, reconciler, migrator, clock=lambda: NOW)

        view = await service.get_status("job-1")

        assert view.video_url == ephemeral
        migrator.sign_url.assert_not_called()

    async def test_signing_failure_returns_stored_url(self, store, reconciler, migrator):
        migrator.sign_url.side_effect = SigningError("no key")
        store.get.return_value = make_job()
        reconciler.reconcile.return_value = make_job(status=JobStatus.COMPLETED, video_url=DURABLE_URL)
        service = JobStatusService(store, reconciler, migrator, clock=lambda: NOW)

        view = await service.get_status("job-1")

        assert view.video_url == DURABLE_URL

    async def test_cancel_delegates(self, store, reconciler):
        reconciler.cancel.return_value = make_job(status=JobStatus.FAILED, error="cancelled by user")
        service = JobStatusService(store, reconciler)

        result = await service.cancel("job-1")

        assert result.status == JobStatus.FAILED
        reconciler.cancel.assert_awaited_once_with("job-1")

    async def test_metrics(self, store, reconciler):
        store.count_by_status.return_value = {JobStatus.COMPLETED: 3, JobStatus.FAILED: 1}
        collector = MagicMock()
        service = JobStatusService(store, reconciler, collector=collector)

        metrics = await service.metrics()

        assert metrics.total_jobs == 4
        assert metrics.success_rate == Decimal("0.7500")
        collector.track_job_counts.assert_called_once_with(metrics)
