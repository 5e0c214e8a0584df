"""
Video provider contracts and type definitions.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol


class AspectRatio(Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    SQUARE = "1:1"


class ProviderJobState(Enum):
    """Job state as reported by the provider."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ReferenceImage:
    """Product image for image-to-video generation."""
    bytes_base64: str
    mime_type: str


@dataclass(frozen=True)
class GenerationParams:
    duration_seconds: int = 15
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    image: Optional[ReferenceImage] = None


@dataclass(frozen=True)
class SubmissionResult:
    """Provider acknowledgement of a started generation."""
    operation_id: str
    status: ProviderJobState
    estimated_completion_seconds: int


@dataclass(frozen=True)
class ProviderStatus:
    """One poll of a provider operation."""
    status: ProviderJobState
    progress: Optional[int] = None
    error: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None


class VideoProvider(Protocol):
    async def submit(self, prompt: str, params: GenerationParams) -> SubmissionResult: ...

    async def poll_status(self, operation_id: str) -> ProviderStatus: ...

    async def cancel(self, operation_id: str) -> bool: ...


class ProviderError(Exception):
    """Base class for provider failures."""


class ProviderUnavailable(ProviderError):
    """Transport failure, timeout, rate limit or provider 5xx."""


class ProviderRequestError(ProviderError):
    """The provider rejected the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidGenerationRequest(ValueError):
    """Generation parameters failed validation."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Validation failed: {', '.join(errors)}")
        self.errors = errors
