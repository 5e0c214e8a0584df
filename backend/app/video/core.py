"""
Video provider core logic - Pure functions only.
NEVER include I/O operations in this module.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .contracts import (
    GenerationParams,
    ProviderJobState,
    ProviderStatus,
)


# Veo pricing: $1.50 per 15 seconds of generated video
COST_PER_CLIP = Decimal("1.50")
MAX_DURATION_SECONDS = 15
MAX_PROMPT_LENGTH = 4000
DEFAULT_POLL_PROGRESS = 50
REAL_ESTIMATED_COMPLETION_SECONDS = 180

DEMO_PENDING_SECONDS = 3.0
DEMO_TOTAL_SECONDS = 15.0
DEMO_ESTIMATED_COMPLETION_SECONDS = 15
DEMO_VIDEO_URL = "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4"
DEMO_THUMBNAIL_URL = "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/images/BigBuckBunny.jpg"


def estimate_generation_cost(duration_seconds: int = MAX_DURATION_SECONDS) -> Decimal:
    """
    Estimate the provider cost of one generation.
    MUST be deterministic - same duration always gives the same cost.

    Durations above the provider maximum are billed as the maximum.
    """
    duration = min(max(int(duration_seconds), 0), MAX_DURATION_SECONDS)
    return (Decimal(duration) / Decimal(MAX_DURATION_SECONDS) * COST_PER_CLIP).quantize(Decimal("0.0001"))


def validate_generation_params(prompt: Optional[str], params: GenerationParams) -> List[str]:
    errors = []

    if not prompt or not prompt.strip():
        errors.append("Prompt is required")
    elif len(prompt) > MAX_PROMPT_LENGTH:
        errors.append(f"Prompt must be {MAX_PROMPT_LENGTH} characters or less")

    if params.duration_seconds < 1 or params.duration_seconds > MAX_DURATION_SECONDS:
        errors.append(f"Duration must be between 1 and {MAX_DURATION_SECONDS} seconds")

    if params.image is not None:
        if not params.image.bytes_base64:
            errors.append("Reference image data is required when an image is supplied")
        if not params.image.mime_type.startswith("image/"):
            errors.append("Reference image must have an image/* MIME type")

    return errors


def build_submit_payload(prompt: str, params: GenerationParams) -> Dict[str, Any]:
    instance: Dict[str, Any] = {"prompt": prompt}
    if params.image is not None:
        instance["image"] = {
            "bytesBase64Encoded": params.image.bytes_base64,
            "mimeType": params.image.mime_type,
        }
    return {
        "instances": [instance],
        "parameters": {"aspectRatio": params.aspect_ratio.value},
    }


def parse_operation_payload(payload: Dict[str, Any]) -> ProviderStatus:
    """
    Translate a long-running operation document into a ProviderStatus.

    Operations that finished without a video URI are reported as failed.
    """
    if not payload.get("done"):
        metadata = payload.get("metadata") or {}
        progress = metadata.get("progressPercent")
        if not isinstance(progress, (int, float)):
            progress = DEFAULT_POLL_PROGRESS
        return ProviderStatus(
            status=ProviderJobState.PROCESSING,
            progress=min(max(int(progress), 0), 99),
        )

    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return ProviderStatus(
            status=ProviderJobState.FAILED,
            error=message or "Video generation failed",
        )

    response = payload.get("response") or {}
    video_response = response.get("generateVideoResponse") or {}
    samples = video_response.get("generatedSamples") or []
    uri = None
    if samples:
        uri = ((samples[0] or {}).get("video") or {}).get("uri")

    if not uri:
        return ProviderStatus(
            status=ProviderJobState.FAILED,
            error="Video URL not found in response",
        )

    return ProviderStatus(
        status=ProviderJobState.COMPLETED,
        progress=100,
        video_url=uri,
    )


def demo_status(elapsed_seconds: float) -> ProviderStatus:
    """Simulated progression for the demo provider."""
    if elapsed_seconds < DEMO_PENDING_SECONDS:
        return ProviderStatus(status=ProviderJobState.PENDING, progress=0)

    if elapsed_seconds < DEMO_TOTAL_SECONDS:
        fraction = (elapsed_seconds - DEMO_PENDING_SECONDS) / (DEMO_TOTAL_SECONDS - DEMO_PENDING_SECONDS)
        return ProviderStatus(
            status=ProviderJobState.PROCESSING,
            progress=min(int(fraction * 100), 99),
        )

    return ProviderStatus(
        status=ProviderJobState.COMPLETED,
        progress=100,
        video_url=DEMO_VIDEO_URL,
        thumbnail_url=DEMO_THUMBNAIL_URL,
    )


def parse_demo_operation_id(operation_id: str) -> Optional[float]:
    """Extract the start time (epoch ms) from a demo operation id."""
    parts = operation_id.split("-")
    if len(parts) < 4 or parts[0] != "veo" or parts[1] != "demo":
        return None
    try:
        return float(parts[2])
    except ValueError:
        return None
