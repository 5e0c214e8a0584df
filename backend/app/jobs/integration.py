"""
Caller-facing services for video generation and job status.
Wires admission, the cost ledger, the provider and the job stores together.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..common.errors import PersistenceError
from ..cost.contracts import CostService
from ..cost.integration import admitted_operation
from ..cost.shell import AdmissionGate, CostLedger
from ..storage.contracts import SigningError
from ..storage.shell import AssetMigrator
from ..video.contracts import (
    GenerationParams,
    InvalidGenerationRequest,
    ProviderError,
    VideoProvider,
)
from ..video.core import estimate_generation_cost, validate_generation_params
from .contracts import (
    GenerationTicket,
    JobExpired,
    JobMetrics,
    JobNotFound,
    JobStatusView,
    SessionStatus,
    VideoJob,
)
from .core import (
    build_new_job,
    estimate_time_remaining,
    is_job_expired,
    status_message,
    summarize_job_counts,
)
from .shell import JobRecordStore, SessionStore, StatusReconciler, new_job_id, utc_now


logger = logging.getLogger(__name__)

DEFAULT_JOB_MAX_AGE = timedelta(hours=24)


class VideoGenerationService:
    """Starts budget-guarded video generations."""

    def __init__(
        self,
        gate: AdmissionGate,
        ledger: CostLedger,
        sessions: SessionStore,
        store: JobRecordStore,
        provider: VideoProvider,
        clock: Callable[[], datetime] = utc_now
    ):
        self.gate = gate
        self.ledger = ledger
        self.sessions = sessions
        self.store = store
        self.provider = provider
        self.clock = clock

    async def start_generation(
        self,
        prompt: str,
        params: Optional[GenerationParams] = None,
        session_id: Optional[str] = None
    ) -> GenerationTicket:
        """
        Validate, admit, submit and record a video generation.

        The cost is recorded once, right after the provider accepts the
        request. A ledger failure at that point is logged and does not
        fail the request.

        Raises:
            InvalidGenerationRequest: Prompt or parameters are invalid
            BudgetExceeded: Budget is at the emergency level
            InsufficientBudget: Estimated cost exceeds the remaining budget
            ProviderError: The provider rejected or could not take the request
            PersistenceError: The job record could not be stored
        """
        params = params or GenerationParams()
        errors = validate_generation_params(prompt, params)
        if errors:
            raise InvalidGenerationRequest(errors)

        estimated_cost = estimate_generation_cost(params.duration_seconds)
        description = f"Video generation ({params.duration_seconds}s, {params.aspect_ratio.value})"

        async with admitted_operation(
            self.gate, self.ledger, CostService.VIDEO_PROVIDER, estimated_cost, description
        ) as operation:
            session = await self.sessions.create(prompt, session_id)

            try:
                submission = await self.provider.submit(prompt, params)
            except ProviderError as e:
                logger.error(f"Provider rejected generation for session {session.id}: {e}")
                await self._set_session_status(session.id, SessionStatus.FAILED)
                raise

            job_id = new_job_id()
            await operation.mark_started(
                session_id=session.id,
                job_id=job_id,
                metadata={
                    "operation_id": submission.operation_id,
                    "duration_seconds": params.duration_seconds,
                    "aspect_ratio": params.aspect_ratio.value,
                },
            )

            job = build_new_job(job_id, session.id, prompt, submission, estimated_cost, self.clock())
            try:
                await self.store.create(job)
            except PersistenceError:
                logger.error(
                    f"Job record not stored for started provider operation {submission.operation_id}",
                    extra={"job_id": job_id, "session_id": session.id},
                    exc_info=True
                )
                raise

            await self._set_session_status(session.id, SessionStatus.GENERATING, job_id)

        logger.info(
            f"Started video generation {job_id} (${estimated_cost})",
            extra={"job_id": job_id, "session_id": session.id, "operation_id": submission.operation_id}
        )

        return GenerationTicket(
            job_id=job.id,
            session_id=session.id,
            status=job.status,
            estimated_cost=estimated_cost,
            estimated_completion_seconds=submission.estimated_completion_seconds,
            provider_operation_id=submission.operation_id,
        )

    async def _set_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        video_job_id: Optional[str] = None
    ) -> None:
        try:
            await self.sessions.update_status(session_id, status, video_job_id=video_job_id)
        except PersistenceError as e:
            logger.warning(f"Failed to set session {session_id} to {status.value}: {e}")


class JobStatusService:
    """Status polls and cancellations for clients."""

    def __init__(
        self,
        store: JobRecordStore,
        reconciler: StatusReconciler,
        migrator: Optional[AssetMigrator] = None,
        max_age: timedelta = DEFAULT_JOB_MAX_AGE,
        clock: Callable[[], datetime] = utc_now,
        signed_url_ttl_seconds: Optional[int] = None,
        collector=None
    ):
        self.store = store
        self.reconciler = reconciler
        self.migrator = migrator
        self.max_age = max_age
        self.clock = clock
        self.signed_url_ttl_seconds = signed_url_ttl_seconds
        self.collector = collector

    async def get_status(self, job_id: str) -> JobStatusView:
        """
        Raises:
            JobNotFound: No such job
            JobExpired: The job is older than the retention window
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if is_job_expired(job, self.clock(), self.max_age):
            raise JobExpired(job_id)

        job = await self.reconciler.reconcile(job_id)

        return JobStatusView(
            job=job,
            message=status_message(job.status, job.progress, job.error),
            video_url=self._readable_url(job.video_url),
            thumbnail_url=self._readable_url(job.thumbnail_url),
            estimated_time_remaining=estimate_time_remaining(job, self.clock()),
        )

    async def cancel(self, job_id: str) -> VideoJob:
        return await self.reconciler.cancel(job_id)

    async def metrics(self) -> JobMetrics:
        metrics = summarize_job_counts(await self.store.count_by_status())
        if self.collector:
            self.collector.track_job_counts(metrics)
        return metrics

    def _readable_url(self, url: Optional[str]) -> Optional[str]:
        """Signed URL for durable assets; anything else is returned as stored."""
        if not url or self.migrator is None or not self.migrator.is_durable(url):
            return url
        try:
            return self.migrator.sign_url(url, self.signed_url_ttl_seconds)
        except SigningError as e:
            logger.warning(f"Could not sign {url}, returning stored URL: {e}")
            return url
