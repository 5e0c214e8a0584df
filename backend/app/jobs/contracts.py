"""
Video job and session contracts.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..common.errors import PersistenceError  # noqa: F401  re-exported


class JobStatus(Enum):
    """Local job lifecycle. Moves forward only."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionStatus(Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class VideoJob:
    """
    Local record of one provider generation.

    provider_operation_id is set at creation and never changes.
    source_video_url keeps the ephemeral provider URL once the job completes.
    """
    id: str
    session_id: str
    prompt: str
    status: JobStatus
    progress: int
    estimated_cost: Decimal
    provider_operation_id: str
    created_at: datetime
    updated_at: datetime
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    source_video_url: Optional[str] = None


@dataclass(frozen=True)
class Session:
    id: str
    prompt: str
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    video_job_id: Optional[str] = None


@dataclass(frozen=True)
class JobMetrics:
    """Job counts by status."""
    total_jobs: int
    pending_jobs: int
    processing_jobs: int
    completed_jobs: int
    failed_jobs: int
    success_rate: Decimal


@dataclass(frozen=True)
class JobStatusView:
    """What a status poll returns to the client."""
    job: VideoJob
    message: str
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    estimated_time_remaining: Optional[int] = None


@dataclass(frozen=True)
class GenerationTicket:
    """Returned when a generation has been admitted and submitted."""
    job_id: str
    session_id: str
    status: JobStatus
    estimated_cost: Decimal
    estimated_completion_seconds: int
    provider_operation_id: str


class JobError(Exception):
    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class JobNotFound(JobError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", job_id)


class JobExpired(JobError):
    """The job is older than the retention window for status polls."""

    def __init__(self, job_id: str):
        super().__init__(f"Job has expired: {job_id}", job_id)


class CannotCancel(JobError):
    """Only pending or processing jobs can be cancelled."""

    def __init__(self, job_id: str, status: JobStatus):
        super().__init__(f"Cannot cancel job {job_id} with status {status.value}", job_id)
        self.status = status


class CancellationFailed(JobError):
    """The provider did not confirm the cancellation; poll again."""

    def __init__(self, job_id: str):
        super().__init__(f"Provider did not confirm cancellation of job {job_id}", job_id)


class ConcurrentModificationError(JobError):
    """The job record changed between read and write."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} was modified concurrently", job_id)
