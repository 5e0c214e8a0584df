"""
Asset storage contracts.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of copying a provider asset into durable storage."""
    success: bool
    original_url: str
    new_video_url: Optional[str] = None
    new_thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    bytes_copied: int = 0


class StorageError(Exception):
    pass


class MigrationFailed(StorageError):
    """Download or upload of a provider asset failed."""


class SigningError(StorageError):
    """A signed URL could not be produced for the given asset."""
