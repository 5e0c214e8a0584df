"""
Video job domain events.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .contracts import JobStatus


@dataclass(frozen=True)
class JobStatusChanged:
    job_id: str
    session_id: str
    previous_status: JobStatus
    new_status: JobStatus
    progress: int
    timestamp: datetime
    error: Optional[str] = None


@dataclass(frozen=True)
class JobCompleted:
    """Emitted once when a job reaches completed."""
    job_id: str
    session_id: str
    video_url: str
    migrated: bool
    timestamp: datetime


@dataclass(frozen=True)
class MigrationFellBack:
    """Emitted when a completed job keeps its ephemeral provider URL."""
    job_id: str
    source_url: str
    error: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class JobCancelled:
    job_id: str
    session_id: str
    timestamp: datetime
