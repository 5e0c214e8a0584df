"""
Configuration core logic - Pure functions only.
NEVER read the environment in this module.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from .contracts import ConfigValidationError, ProviderMode, Settings


TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(key: str, raw: Optional[str], default: bool) -> bool:
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigValidationError(key, f"expected a boolean, got '{raw}'")


def parse_decimal(key: str, raw: Optional[str], default: Decimal) -> Decimal:
    if raw is None or raw.strip() == "":
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ConfigValidationError(key, f"expected a decimal number, got '{raw}'")
    if not value.is_finite():
        raise ConfigValidationError(key, "value must be finite")
    return value


def parse_int(key: str, raw: Optional[str], default: int) -> int:
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigValidationError(key, f"expected an integer, got '{raw}'")


def parse_float(key: str, raw: Optional[str], default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise ConfigValidationError(key, f"expected a number, got '{raw}'")


def resolve_provider_mode(
    raw_mode: Optional[str],
    api_key: Optional[str],
    is_production: bool
) -> ProviderMode:
    """
    Pick the provider mode.

    An explicit VIDEO_PROVIDER_MODE wins. Otherwise non-production
    environments without an API key run against the simulated provider.
    """
    if raw_mode:
        try:
            return ProviderMode(raw_mode.strip().lower())
        except ValueError:
            raise ConfigValidationError(
                "VIDEO_PROVIDER_MODE",
                f"must be one of {[m.value for m in ProviderMode]}"
            )
    if api_key or is_production:
        return ProviderMode.VEO
    return ProviderMode.DEMO


def validate_settings(settings: Settings) -> List[str]:
    errors = []

    if not settings.environment:
        errors.append("Environment name is required")

    if settings.budget.budget_limit <= 0:
        errors.append("Budget limit must be positive")

    thresholds = settings.budget.thresholds
    ordered = [
        thresholds.warning_percent,
        thresholds.critical_percent,
        thresholds.emergency_percent,
    ]
    if any(t <= 0 or t > 100 for t in ordered):
        errors.append("Budget thresholds must be between 0 and 100")
    elif ordered != sorted(ordered) or len(set(ordered)) != len(ordered):
        errors.append("Budget thresholds must be strictly increasing")

    if settings.job_max_age.total_seconds() <= 0:
        errors.append("Job max age must be positive")

    if not settings.redis_url:
        errors.append("Redis URL is required")

    if not settings.database_url:
        errors.append("Database URL is required")

    provider = settings.provider
    if provider.mode == ProviderMode.VEO and not provider.api_key:
        errors.append("GEMINI_API_KEY is required when the Veo provider is enabled")
    if not provider.base_url.startswith("https://") and settings.is_production:
        errors.append("Provider base URL must use HTTPS in production")
    if provider.timeout_seconds <= 0:
        errors.append("Provider timeout must be positive")

    if settings.is_production and provider.is_demo:
        errors.append("Demo provider must be disabled in production environment")

    storage = settings.storage
    if settings.is_production and not storage.is_configured:
        errors.append("Azure Blob Storage must be configured in production")
    if storage.signed_url_ttl_seconds <= 0:
        errors.append("Signed URL TTL must be positive")

    return errors


def create_production_defaults() -> Dict[str, Any]:
    return {
        "LOG_LEVEL": "INFO",
        "REDIS_URL": "redis://redis:6379/0",
        "DATABASE_URL": "",
    }


def create_development_defaults() -> Dict[str, Any]:
    return {
        "LOG_LEVEL": "DEBUG",
        "REDIS_URL": "redis://localhost:6379/0",
        "DATABASE_URL": "sqlite+aiosqlite:///./adcraft-costs.db",
    }
