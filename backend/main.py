"""
FastAPI backend for AdCraft video generation, job status and budget monitoring.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Body, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.common.errors import PersistenceError
from backend.app.config.shell import load_settings
from backend.app.context import AppContext
from backend.app.cost.contracts import AdmissionRejected, BudgetStatus, CostProjection
from backend.app.jobs.contracts import (
    CancellationFailed,
    CannotCancel,
    ConcurrentModificationError,
    GenerationTicket,
    JobExpired,
    JobMetrics,
    JobNotFound,
    JobStatusView,
)
from backend.app.jobs.core import is_valid_job_id
from backend.app.observability.integration import ObservabilityIntegration
from backend.app.video.contracts import (
    AspectRatio,
    GenerationParams,
    InvalidGenerationRequest,
    ProviderError,
    ReferenceImage,
)


logger = logging.getLogger(__name__)

ContextFactory = Callable[[], Awaitable[AppContext]]


async def build_default_context() -> AppContext:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    observability = ObservabilityIntegration(
        environment=settings.environment,
        otlp_endpoint=settings.otel_endpoint,
    )
    observability.initialize()
    return await AppContext.build(settings, observability=observability)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def success_response(data: Dict[str, Any], status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": data, "timestamp": _now_iso()},
    )


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "timestamp": _now_iso()},
    )


def budget_status_to_dict(budget: BudgetStatus) -> Dict[str, Any]:
    return {
        "total_spent": _money(budget.total_spent),
        "daily_spent": _money(budget.daily_spent),
        "hourly_spent": _money(budget.hourly_spent),
        "budget_limit": _money(budget.budget_limit),
        "remaining_budget": _money(budget.remaining_budget),
        "utilization_percentage": float(budget.utilization_percentage),
        "alert_level": budget.alert_level.value,
        "can_proceed": budget.can_proceed,
        "service_breakdown": {
            service.value: _money(amount) for service, amount in budget.service_breakdown.items()
        },
        "evaluated_at": _iso(budget.evaluated_at),
    }


def projection_to_dict(projection: CostProjection) -> Dict[str, Any]:
    return {
        "projected_daily_spend": _money(projection.projected_daily_spend),
        "projected_monthly_spend": _money(projection.projected_monthly_spend),
        "hours_to_limit": _money(projection.hours_to_limit),
        "confidence": float(projection.confidence),
        "based_on_data_points": projection.based_on_data_points,
    }


def job_metrics_to_dict(metrics: JobMetrics) -> Dict[str, Any]:
    return {
        "total_jobs": metrics.total_jobs,
        "pending_jobs": metrics.pending_jobs,
        "processing_jobs": metrics.processing_jobs,
        "completed_jobs": metrics.completed_jobs,
        "failed_jobs": metrics.failed_jobs,
        "success_rate": float(metrics.success_rate),
    }


def ticket_to_dict(ticket: GenerationTicket) -> Dict[str, Any]:
    return {
        "job_id": ticket.job_id,
        "session_id": ticket.session_id,
        "status": ticket.status.value,
        "estimated_cost": _money(ticket.estimated_cost),
        "estimated_completion_seconds": ticket.estimated_completion_seconds,
        "provider_operation_id": ticket.provider_operation_id,
    }


def status_view_to_dict(view: JobStatusView) -> Dict[str, Any]:
    job = view.job
    return {
        "job_id": job.id,
        "session_id": job.session_id,
        "status": job.status.value,
        "progress": job.progress,
        "message": view.message,
        "video_url": view.video_url,
        "thumbnail_url": view.thumbnail_url,
        "error": job.error,
        "estimated_time_remaining": view.estimated_time_remaining,
        "estimated_cost": _money(job.estimated_cost),
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
        "completed_at": _iso(job.completed_at),
    }


def parse_generation_request(payload: Dict[str, Any]):
    """
    Read prompt, parameters and optional session id from a request body.

    Raises:
        InvalidGenerationRequest: a field has the wrong type or value
    """
    errors = []

    prompt = payload.get("prompt")
    if prompt is not None and not isinstance(prompt, str):
        errors.append("Prompt must be a string")

    duration = payload.get("duration_seconds", 15)
    if isinstance(duration, bool) or not isinstance(duration, int):
        errors.append("Duration must be an integer number of seconds")
        duration = 15

    try:
        aspect_ratio = AspectRatio(payload.get("aspect_ratio", AspectRatio.LANDSCAPE.value))
    except ValueError:
        errors.append(f"Aspect ratio must be one of {', '.join(a.value for a in AspectRatio)}")
        aspect_ratio = AspectRatio.LANDSCAPE

    image = None
    raw_image = payload.get("image")
    if raw_image is not None:
        if not isinstance(raw_image, dict):
            errors.append("Image must be an object with data and mime_type")
        else:
            image = ReferenceImage(
                bytes_base64=str(raw_image.get("data") or ""),
                mime_type=str(raw_image.get("mime_type") or ""),
            )

    session_id = payload.get("session_id")
    if session_id is not None and not isinstance(session_id, str):
        errors.append("Session id must be a string")

    if errors:
        raise InvalidGenerationRequest(errors)

    params = GenerationParams(duration_seconds=duration, aspect_ratio=aspect_ratio, image=image)
    return prompt, params, session_id


async def handle_admission_rejected(request: Request, exc: AdmissionRejected) -> JSONResponse:
    decision = exc.decision
    return error_response(
        status.HTTP_402_PAYMENT_REQUIRED,
        exc.rejection.value,
        str(exc),
        {
            "estimated_cost": _money(decision.estimated_cost),
            "remaining_budget": _money(decision.budget_status.remaining_budget),
            "alert_level": decision.budget_status.alert_level.value,
        },
    )


async def handle_invalid_request(request: Request, exc: InvalidGenerationRequest) -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request data", {"errors": exc.errors}
    )


async def handle_job_not_found(request: Request, exc: JobNotFound) -> JSONResponse:
    return error_response(status.HTTP_404_NOT_FOUND, "JOB_NOT_FOUND", str(exc))


async def handle_job_expired(request: Request, exc: JobExpired) -> JSONResponse:
    return error_response(status.HTTP_410_GONE, "JOB_EXPIRED", str(exc))


async def handle_cannot_cancel(request: Request, exc: CannotCancel) -> JSONResponse:
    return error_response(
        status.HTTP_409_CONFLICT, "CANNOT_CANCEL", str(exc), {"current_status": exc.status.value}
    )


async def handle_cancellation_failed(request: Request, exc: CancellationFailed) -> JSONResponse:
    return error_response(status.HTTP_502_BAD_GATEWAY, "CANCELLATION_FAILED", str(exc))


async def handle_concurrent_modification(request: Request, exc: ConcurrentModificationError) -> JSONResponse:
    return error_response(status.HTTP_409_CONFLICT, "CONCURRENT_MODIFICATION", str(exc))


async def handle_provider_error(request: Request, exc: ProviderError) -> JSONResponse:
    logger.error(f"Video provider error on {request.url.path}: {exc}")
    return error_response(status.HTTP_502_BAD_GATEWAY, "VIDEO_PROVIDER_ERROR", "Video provider request failed")


async def handle_persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"Persistence failure on {request.url.path}: {exc}", exc_info=True)
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "PERSISTENCE_ERROR", "Storage is unavailable")


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def create_app(context_factory: Optional[ContextFactory] = None) -> FastAPI:
    factory = context_factory or build_default_context

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.context = await factory()
        yield
        await app.state.context.close()

    app = FastAPI(
        title="AdCraft Backend",
        description="Video generation with budget admission control and job status reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AdmissionRejected, handle_admission_rejected)
    app.add_exception_handler(InvalidGenerationRequest, handle_invalid_request)
    app.add_exception_handler(JobNotFound, handle_job_not_found)
    app.add_exception_handler(JobExpired, handle_job_expired)
    app.add_exception_handler(CannotCancel, handle_cannot_cancel)
    app.add_exception_handler(CancellationFailed, handle_cancellation_failed)
    app.add_exception_handler(ConcurrentModificationError, handle_concurrent_modification)
    app.add_exception_handler(ProviderError, handle_provider_error)
    app.add_exception_handler(PersistenceError, handle_persistence_error)

    @app.post("/api/generate-video")
    async def generate_video(
        payload: Dict[str, Any] = Body(...),
        context: AppContext = Depends(get_context)
    ):
        """Admit, submit and record a video generation."""
        prompt, params, session_id = parse_generation_request(payload)
        ticket = await context.generation.start_generation(prompt, params, session_id=session_id)
        return success_response(ticket_to_dict(ticket), status.HTTP_202_ACCEPTED)

    @app.get("/api/status/{job_id}")
    async def get_job_status(job_id: str, context: AppContext = Depends(get_context)):
        if not is_valid_job_id(job_id):
            return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_JOB_ID", "Invalid job ID format")
        view = await context.job_status.get_status(job_id)
        return success_response(status_view_to_dict(view))

    @app.delete("/api/status/{job_id}")
    async def cancel_job(job_id: str, context: AppContext = Depends(get_context)):
        if not is_valid_job_id(job_id):
            return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_JOB_ID", "Invalid job ID format")
        job = await context.job_status.cancel(job_id)
        return success_response({
            "job_id": job.id,
            "status": job.status.value,
            "error": job.error,
            "message": "Job cancelled" if job.error else f"Job already {job.status.value}",
        })

    @app.get("/api/monitoring/budget")
    async def budget_monitoring(context: AppContext = Depends(get_context)):
        budget = await context.evaluator.status()
        projection = await context.evaluator.projection()
        jobs = await context.job_status.metrics()
        return success_response({
            "budget": budget_status_to_dict(budget),
            "projection": projection_to_dict(projection),
            "jobs": job_metrics_to_dict(jobs),
        })

    @app.get("/health")
    async def health(context: AppContext = Depends(get_context)):
        """Report budget and dependency health."""
        checks: Dict[str, Any] = {
            "provider": {"mode": "demo" if context.settings.provider.is_demo else "veo"},
            "storage": {"configured": context.migrator is not None},
        }
        healthy = True
        try:
            budget = await context.evaluator.status()
            checks["budget"] = {
                "status": "healthy" if budget.can_proceed else "unhealthy",
                "alert_level": budget.alert_level.value,
                "remaining_budget": _money(budget.remaining_budget),
            }
            healthy = budget.can_proceed
        except PersistenceError as e:
            logger.error(f"Health check could not read the cost ledger: {e}")
            checks["budget"] = {"status": "unhealthy", "error": "ledger unavailable"}
            healthy = False

        return JSONResponse(
            status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "healthy" if healthy else "degraded",
                "environment": context.settings.environment,
                "checks": checks,
                "timestamp": _now_iso(),
            },
        )

    return app


app = create_app()
