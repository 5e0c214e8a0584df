"""
Video job core logic - Pure functions only.
NEVER include I/O operations in this module.
"""
import json
import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from ..video.contracts import ProviderJobState, ProviderStatus, SubmissionResult
from .contracts import JobMetrics, JobStatus, Session, SessionStatus, VideoJob


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
CANCELLABLE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})

_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}

CANCELLED_ERROR = "cancelled by user"
MISSING_VIDEO_URL_ERROR = "provider reported completion without a video URL"
DEFAULT_TIME_REMAINING_SECONDS = 300
RATIO_SCALE = Decimal("0.0001")
JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
MIGRATION_CLAIMED = "claimed"


def is_valid_job_id(job_id: str) -> bool:
    return bool(job_id) and JOB_ID_PATTERN.match(job_id) is not None


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_cancel(status: JobStatus) -> bool:
    return status in CANCELLABLE_STATUSES


def to_job_status(state: ProviderJobState) -> JobStatus:
    return JobStatus(state.value)


def advance_status(current: JobStatus, reported: JobStatus) -> JobStatus:
    """
    Forward-only status transition.

    Terminal statuses never change; a report that would move the job
    backwards keeps the current status.
    """
    if is_terminal(current):
        return current
    if _STATUS_RANK[reported] < _STATUS_RANK[current]:
        return current
    return reported


def merge_provider_status(job: VideoJob, reported: ProviderStatus) -> Dict[str, Any]:
    """
    Compute the field changes a provider poll implies for a job.

    Returns only fields whose value differs from the stored job. URLs
    for completed jobs are left to the caller, which migrates them first.
    """
    reported_status = to_job_status(reported.status)
    error = reported.error

    # Completed jobs always carry a video URL; a URL-less completion is stored as failed.
    if reported_status == JobStatus.COMPLETED and not reported.video_url:
        reported_status = JobStatus.FAILED
        error = error or MISSING_VIDEO_URL_ERROR

    new_status = advance_status(job.status, reported_status)

    progress = reported.progress
    if new_status == JobStatus.COMPLETED and progress is None:
        progress = 100

    changes: Dict[str, Any] = {}
    if new_status != job.status:
        changes["status"] = new_status
    if progress is not None:
        progress = max(0, min(100, int(progress)))
        if progress != job.progress:
            changes["progress"] = progress
    if error != job.error:
        changes["error"] = error

    return changes


def build_new_job(
    job_id: str,
    session_id: str,
    prompt: str,
    submission: SubmissionResult,
    estimated_cost: Decimal,
    now: datetime
) -> VideoJob:
    status = advance_status(JobStatus.PENDING, to_job_status(submission.status))
    if is_terminal(status):
        status = JobStatus.PENDING
    return VideoJob(
        id=job_id,
        session_id=session_id,
        prompt=prompt,
        status=status,
        progress=0,
        estimated_cost=estimated_cost,
        provider_operation_id=submission.operation_id,
        created_at=now,
        updated_at=now,
    )


def apply_changes(job: VideoJob, changes: Mapping[str, Any], now: datetime) -> VideoJob:
    """Return a copy of the job with changes applied and updated_at set."""
    if changes.get("provider_operation_id", job.provider_operation_id) != job.provider_operation_id:
        raise ValueError("provider_operation_id cannot change")

    data = job_to_document(job)
    for key, value in changes.items():
        if key not in data:
            raise ValueError(f"Unknown job field: {key}")
        data[key] = _encode_value(value)
    data["updated_at"] = now.isoformat()
    return job_from_document(data)


def status_message(status: JobStatus, progress: int = 0, error: Optional[str] = None) -> str:
    if status == JobStatus.PENDING:
        return "Your video generation is queued and will begin shortly."
    if status == JobStatus.PROCESSING:
        return f"Generating your video... {progress}% complete."
    if status == JobStatus.COMPLETED:
        return "Your video is ready! Click to view and download."
    return error or "Video generation failed. Please try again."


def estimate_time_remaining(job: VideoJob, now: datetime) -> Optional[int]:
    """
    Seconds left for a processing job, extrapolated from progress so far.
    None for any other status.
    """
    if job.status != JobStatus.PROCESSING:
        return None
    if not job.progress:
        return DEFAULT_TIME_REMAINING_SECONDS

    elapsed = max(0.0, (now - job.created_at).total_seconds())
    total = elapsed / (job.progress / 100)
    return max(0, round(total - elapsed))


def is_job_expired(job: VideoJob, now: datetime, max_age: timedelta) -> bool:
    return now - job.created_at > max_age


def summarize_job_counts(counts: Mapping[JobStatus, int]) -> JobMetrics:
    """Build job metrics; success_rate is completed / total as a 0-1 ratio."""
    pending = counts.get(JobStatus.PENDING, 0)
    processing = counts.get(JobStatus.PROCESSING, 0)
    completed = counts.get(JobStatus.COMPLETED, 0)
    failed = counts.get(JobStatus.FAILED, 0)
    total = pending + processing + completed + failed

    success_rate = Decimal("0")
    if total > 0:
        success_rate = (Decimal(completed) / Decimal(total)).quantize(RATIO_SCALE)

    return JobMetrics(
        total_jobs=total,
        pending_jobs=pending,
        processing_jobs=processing,
        completed_jobs=completed,
        failed_jobs=failed,
        success_rate=success_rate,
    )


def _encode_value(value: Any) -> Any:
    if isinstance(value, (JobStatus, SessionStatus)):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _parse_optional_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def job_to_document(job: VideoJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "session_id": job.session_id,
        "prompt": job.prompt,
        "status": job.status.value,
        "progress": job.progress,
        "estimated_cost": str(job.estimated_cost),
        "provider_operation_id": job.provider_operation_id,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
        "video_url": job.video_url,
        "thumbnail_url": job.thumbnail_url,
        "error": job.error,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "source_video_url": job.source_video_url,
    }


def job_from_document(data: Mapping[str, Any]) -> VideoJob:
    return VideoJob(
        id=data["id"],
        session_id=data["session_id"],
        prompt=data["prompt"],
        status=JobStatus(data["status"]),
        progress=int(data.get("progress") or 0),
        estimated_cost=Decimal(data["estimated_cost"]),
        provider_operation_id=data["provider_operation_id"],
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
        video_url=data.get("video_url"),
        thumbnail_url=data.get("thumbnail_url"),
        error=data.get("error"),
        completed_at=_parse_optional_datetime(data.get("completed_at")),
        source_video_url=data.get("source_video_url"),
    )


def serialize_job(job: VideoJob) -> str:
    return json.dumps(job_to_document(job))


def deserialize_job(raw) -> VideoJob:
    return job_from_document(json.loads(raw))


def serialize_migration(asset_changes: Mapping[str, Any], migrated: bool) -> str:
    return json.dumps({"migrated": migrated, "changes": dict(asset_changes)})


def deserialize_migration(raw) -> Optional[Tuple[Dict[str, Any], bool]]:
    """Saved (asset changes, migrated) pair, or None while the marker only holds a claim."""
    if not raw or raw == MIGRATION_CLAIMED:
        return None
    document = json.loads(raw)
    return document["changes"], bool(document["migrated"])


def session_to_document(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "prompt": session.prompt,
        "status": session.status.value,
        "video_job_id": session.video_job_id,
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
    }


def session_from_document(data: Mapping[str, Any]) -> Session:
    return Session(
        id=data["id"],
        prompt=data["prompt"],
        status=SessionStatus(data["status"]),
        video_job_id=data.get("video_job_id"),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
    )


def session_status_for(job_status: JobStatus) -> Optional[SessionStatus]:
    """Session status mirroring a terminal job status."""
    if job_status == JobStatus.COMPLETED:
        return SessionStatus.COMPLETED
    if job_status == JobStatus.FAILED:
        return SessionStatus.FAILED
    return None
