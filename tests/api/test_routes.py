"""
Test HTTP routes, status codes and error envelopes with mocked services.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from backend.app.common.errors import PersistenceError
from backend.app.config.contracts import ProviderConfig, ProviderMode, Settings
from backend.app.cost.contracts import (
    AdmissionDecision,
    AlertLevel,
    BudgetConfig,
    BudgetExceeded,
    CostProjection,
    CostService,
    InsufficientBudget,
    RejectionKind,
)
from backend.app.cost.core import build_budget_status
from backend.app.cost.shell import BudgetEvaluator
from backend.app.jobs.contracts import (
    CancellationFailed,
    CannotCancel,
    GenerationTicket,
    JobExpired,
    JobMetrics,
    JobNotFound,
    JobStatus,
    JobStatusView,
    VideoJob,
)
from backend.app.jobs.integration import JobStatusService, VideoGenerationService
from backend.app.video.contracts import (
    AspectRatio,
    InvalidGenerationRequest,
    ProviderUnavailable,
)
from backend.main import create_app, parse_generation_request


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def budget_status(spent: str, limit: str = "300.00"):
    return build_budget_status(
        {CostService.VIDEO_PROVIDER: Decimal(spent)},
        Decimal(spent),
        Decimal("0"),
        BudgetConfig(budget_limit=Decimal(limit)),
        NOW,
    )


def make_job(**overrides) -> VideoJob:
    fields = dict(
        id="job-1",
        session_id="session-1",
        prompt="prompt",
        status=JobStatus.PROCESSING,
        progress=40,
        estimated_cost=Decimal("1.5000"),
        provider_operation_id="operations/abc",
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return VideoJob(**fields)


@pytest.fixture
def context():
    context = MagicMock()
    context.settings = Settings(
        environment="test",
        redis_url="redis://unused",
        database_url="sqlite+aiosqlite:///:memory:",
        provider=ProviderConfig(mode=ProviderMode.DEMO),
    )
    context.generation = AsyncMock(spec=VideoGenerationService)
    context.job_status = AsyncMock(spec=JobStatusService)
    context.evaluator = AsyncMock(spec=BudgetEvaluator)
    context.migrator = None
    context.close = AsyncMock()
    return context


@pytest.fixture
def client(context):
    async def factory():
        return context

    with TestClient(create_app(factory)) as client:
        yield client


class TestGenerateVideoRoute:
    """Test POST /api/generate-video."""

    def test_accepted(self, client, context):
        context.generation.start_generation.return_value = GenerationTicket(
            job_id="job-1",
            session_id="session-1",
            status=JobStatus.PENDING,
            estimated_cost=Decimal("1.5000"),
            estimated_completion_seconds=180,
            provider_operation_id="operations/abc",
        )

        response = client.post(
            "/api/generate-video",
            json={"prompt": "Sneaker ad", "duration_seconds": 10, "aspect_ratio": "9:16", "session_id": "s-9"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        assert body["data"]["job_id"] == "job-1"
        assert body["data"]["estimated_cost"] == 1.5

        prompt, params = context.generation.start_generation.call_args.args
        assert prompt == "Sneaker ad"
        assert params.duration_seconds == 10
        assert params.aspect_ratio == AspectRatio.PORTRAIT
        assert context.generation.start_generation.call_args.kwargs["session_id"] == "s-9"

    def test_budget_exceeded(self, client, context):
        status = budget_status("270.00")
        decision = AdmissionDecision(False, Decimal("1.5000"), status, RejectionKind.BUDGET_EXCEEDED, "at emergency")
        context.generation.start_generation.side_effect = BudgetExceeded("at emergency", decision)

        response = client.post("/api/generate-video", json={"prompt": "Sneaker ad"})

        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "BUDGET_EXCEEDED"
        assert error["details"]["remaining_budget"] == 30.0
        assert error["details"]["alert_level"] == "emergency"

    def test_insufficient_budget(self, client, context):
        status = budget_status("150.00")
        decision = AdmissionDecision(
            False, Decimal("200.00"), status, RejectionKind.INSUFFICIENT_BUDGET, "too expensive"
        )
        context.generation.start_generation.side_effect = InsufficientBudget("too expensive", decision)

        response = client.post("/api/generate-video", json={"prompt": "Sneaker ad"})

        assert response.status_code == 402
        assert response.json()["error"]["code"] == "INSUFFICIENT_BUDGET"
        assert response.json()["error"]["details"]["remaining_budget"] == 150.0

    def test_validation_error(self, client, context):
        context.generation.start_generation.side_effect = InvalidGenerationRequest(["Prompt is required"])

        response = client.post("/api/generate-video", json={"prompt": ""})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"] == ["Prompt is required"]

    def test_bad_field_types_rejected_before_service(self, client, context):
        response = client.post("/api/generate-video", json={"prompt": "x", "duration_seconds": "long"})

        assert response.status_code == 400
        context.generation.start_generation.assert_not_called()

    def test_provider_failure(self, client, context):
        context.generation.start_generation.side_effect = ProviderUnavailable("503")

        response = client.post("/api/generate-video", json={"prompt": "Sneaker ad"})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "VIDEO_PROVIDER_ERROR"

    def test_persistence_failure(self, client, context):
        context.generation.start_generation.side_effect = PersistenceError("database locked")

        response = client.post("/api/generate-video", json={"prompt": "Sneaker ad"})

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "PERSISTENCE_ERROR"


class TestStatusRoutes:
    """Test GET and DELETE /api/status/{job_id}."""

    def test_status(self, client, context):
        context.job_status.get_status.return_value = JobStatusView(
            job=make_job(),
            message="Generating your video... 40% complete.",
            estimated_time_remaining=90,
        )

        response = client.get("/api/status/job-1")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "processing"
        assert data["progress"] == 40
        assert data["estimated_time_remaining"] == 90
        assert data["completed_at"] is None

    def test_invalid_job_id(self, client, context):
        response = client.get("/api/status/bad%20id")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_JOB_ID"
        context.job_status.get_status.assert_not_called()

    @pytest.mark.parametrize("error,status_code,code", [
        (JobNotFound("job-1"), 404, "JOB_NOT_FOUND"),
        (JobExpired("job-1"), 410, "JOB_EXPIRED"),
    ])
    def test_status_errors(self, client, context, error, status_code, code):
        context.job_status.get_status.side_effect = error

        response = client.get("/api/status/job-1")

        assert response.status_code == status_code
        assert response.json()["error"]["code"] == code

    def test_cancel(self, client, context):
        context.job_status.cancel.return_value = make_job(status=JobStatus.FAILED, error="cancelled by user")

        response = client.delete("/api/status/job-1")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "failed"
        assert response.json()["data"]["message"] == "Job cancelled"

    @pytest.mark.parametrize("error,status_code,code", [
        (CannotCancel("job-1", JobStatus.COMPLETED), 409, "CANNOT_CANCEL"),
        (CancellationFailed("job-1"), 502, "CANCELLATION_FAILED"),
        (JobNotFound("job-1"), 404, "JOB_NOT_FOUND"),
        (ProviderUnavailable("timeout"), 502, "VIDEO_PROVIDER_ERROR"),
    ])
    def test_cancel_errors(self, client, context, error, status_code, code):
        context.job_status.cancel.side_effect = error

        response = client.delete("/api/status/job-1")

        assert response.status_code == status_code
        assert response.json()["error"]["code"] == code


class TestMonitoringRoutes:
    """Test budget monitoring and health."""

    def test_budget(self, client, context):
        context.evaluator.status.return_value = budget_status("150.00")
        context.evaluator.projection.return_value = CostProjection(
            projected_daily_spend=Decimal("150.00"),
            projected_monthly_spend=Decimal("4500.00"),
            hours_to_limit=None,
            confidence=Decimal("100"),
            based_on_data_points=100,
        )
        context.job_status.metrics.return_value = JobMetrics(4, 0, 1, 2, 1, Decimal("0.5000"))

        response = client.get("/api/monitoring/budget")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["budget"]["alert_level"] == AlertLevel.WARNING.value
        assert data["budget"]["remaining_budget"] == 150.0
        assert data["budget"]["service_breakdown"]["video_provider"] == 150.0
        assert data["budget"]["service_breakdown"]["storage"] == 0.0
        assert data["projection"]["projected_monthly_spend"] == 4500.0
        assert data["projection"]["hours_to_limit"] is None
        assert data["jobs"]["success_rate"] == 0.5

    def test_health_ok(self, client, context):
        context.evaluator.status.return_value = budget_status("10.00")

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["provider"]["mode"] == "demo"
        assert body["checks"]["storage"]["configured"] is False

    def test_health_at_emergency(self, client, context):
        context.evaluator.status.return_value = budget_status("280.00")

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_health_without_ledger(self, client, context):
        context.evaluator.status.side_effect = PersistenceError("database unavailable")

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["checks"]["budget"]["error"] == "ledger unavailable"


class TestParseGenerationRequest:
    """Test request body parsing."""

    def test_defaults(self):
        prompt, params, session_id = parse_generation_request({"prompt": "Sneaker ad"})
        assert prompt == "Sneaker ad"
        assert params.duration_seconds == 15
        assert params.aspect_ratio == AspectRatio.LANDSCAPE
        assert session_id is None

    def test_image(self):
        _, params, _ = parse_generation_request({
            "prompt": "x",
            "image": {"data": "aGVsbG8=", "mime_type": "image/png"},
        })
        assert params.image.mime_type == "image/png"

    def test_invalid_values(self):
        with pytest.raises(InvalidGenerationRequest) as exc_info:
            parse_generation_request({"prompt": 5, "aspect_ratio": "4:3", "duration_seconds": True})
        assert len(exc_info.value.errors) == 3
