"""
Video job tracking and status reconciliation.

This module provides:
- Redis job and session records with compare-and-set updates
- Pull-based reconciliation of local jobs against the video provider
- At-most-once migration of completed videos to durable storage
- Generation and status services used by the HTTP layer
"""

from .core import (
    is_terminal,
    advance_status,
    merge_provider_status,
    status_message,
    estimate_time_remaining,
    is_job_expired,
    summarize_job_counts,
)
from .contracts import (
    JobStatus,
    SessionStatus,
    VideoJob,
    Session,
    JobMetrics,
    JobStatusView,
    GenerationTicket,
    JobError,
    JobNotFound,
    JobExpired,
    CannotCancel,
    CancellationFailed,
    ConcurrentModificationError,
)
from .events import JobStatusChanged, JobCompleted, MigrationFellBack, JobCancelled
from .shell import JobRecordStore, SessionStore, StatusReconciler
from .integration import VideoGenerationService, JobStatusService

__all__ = [
    # Core functions
    "is_terminal",
    "advance_status",
    "merge_provider_status",
    "status_message",
    "estimate_time_remaining",
    "is_job_expired",
    "summarize_job_counts",
    # Contracts
    "JobStatus",
    "SessionStatus",
    "VideoJob",
    "Session",
    "JobMetrics",
    "JobStatusView",
    "GenerationTicket",
    "JobError",
    "JobNotFound",
    "JobExpired",
    "CannotCancel",
    "CancellationFailed",
    "ConcurrentModificationError",
    # Events
    "JobStatusChanged",
    "JobCompleted",
    "MigrationFellBack",
    "JobCancelled",
    # Shell operations
    "JobRecordStore",
    "SessionStore",
    "StatusReconciler",
    "VideoGenerationService",
    "JobStatusService",
]
