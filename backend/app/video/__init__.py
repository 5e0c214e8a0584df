"""
Generative video provider clients and pricing.
"""

from .contracts import (
    AspectRatio,
    GenerationParams,
    ReferenceImage,
    ProviderJobState,
    ProviderStatus,
    SubmissionResult,
    VideoProvider,
    ProviderError,
    ProviderUnavailable,
    ProviderRequestError,
    InvalidGenerationRequest,
)
from .core import estimate_generation_cost, validate_generation_params
from .shell import VeoVideoProvider, DemoVideoProvider

__all__ = [
    "AspectRatio",
    "GenerationParams",
    "ReferenceImage",
    "ProviderJobState",
    "ProviderStatus",
    "SubmissionResult",
    "VideoProvider",
    "ProviderError",
    "ProviderUnavailable",
    "ProviderRequestError",
    "InvalidGenerationRequest",
    "estimate_generation_cost",
    "validate_generation_params",
    "VeoVideoProvider",
    "DemoVideoProvider",
]
