"""
Environment-driven configuration for the AdCraft backend.
"""

from .contracts import (
    Settings,
    ProviderConfig,
    ProviderMode,
    StorageConfig,
    ConfigError,
    ConfigValidationError,
)
from .core import validate_settings
from .shell import load_settings

__all__ = [
    "Settings",
    "ProviderConfig",
    "ProviderMode",
    "StorageConfig",
    "ConfigError",
    "ConfigValidationError",
    "validate_settings",
    "load_settings",
]
