import logging
import os
from datetime import timedelta
from typing import Mapping, Optional

from ..cost.contracts import BudgetConfig, BudgetThresholds
from .contracts import (
    ConfigValidationError, ProviderConfig, Settings, StorageConfig,
    DEFAULT_CONTAINER_NAME, DEFAULT_VEO_BASE_URL, DEFAULT_VEO_MODEL
)
from .core import (
    create_development_defaults, create_production_defaults, parse_decimal,
    parse_float, parse_int, resolve_provider_mode, validate_settings
)


logger = logging.getLogger(__name__)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Raises:
        ConfigValidationError: a variable cannot be parsed or the
            resulting settings are inconsistent
    """
    env = os.environ if environ is None else environ
    environment = env.get("ENVIRONMENT", "development")
    is_production = environment.lower() == "production"

    if is_production:
        defaults = create_production_defaults()
    else:
        defaults = create_development_defaults()

    default_budget = BudgetConfig()
    default_thresholds = default_budget.thresholds
    budget = BudgetConfig(
        budget_limit=parse_decimal(
            "BUDGET_LIMIT_USD", env.get("BUDGET_LIMIT_USD"), default_budget.budget_limit
        ),
        thresholds=BudgetThresholds(
            warning_percent=parse_decimal(
                "BUDGET_WARNING_PERCENT", env.get("BUDGET_WARNING_PERCENT"),
                default_thresholds.warning_percent
            ),
            critical_percent=parse_decimal(
                "BUDGET_CRITICAL_PERCENT", env.get("BUDGET_CRITICAL_PERCENT"),
                default_thresholds.critical_percent
            ),
            emergency_percent=parse_decimal(
                "BUDGET_EMERGENCY_PERCENT", env.get("BUDGET_EMERGENCY_PERCENT"),
                default_thresholds.emergency_percent
            ),
        ),
    )

    api_key = env.get("GEMINI_API_KEY") or None
    provider = ProviderConfig(
        api_key=api_key,
        base_url=env.get("VEO_API_BASE_URL", DEFAULT_VEO_BASE_URL).rstrip("/"),
        model=env.get("VEO_MODEL", DEFAULT_VEO_MODEL),
        timeout_seconds=parse_float(
            "PROVIDER_TIMEOUT_SECONDS", env.get("PROVIDER_TIMEOUT_SECONDS"), 30.0
        ),
        mode=resolve_provider_mode(env.get("VIDEO_PROVIDER_MODE"), api_key, is_production),
    )

    storage = StorageConfig(
        account_url=env.get("AZURE_STORAGE_ACCOUNT_URL") or None,
        account_key=env.get("AZURE_STORAGE_ACCOUNT_KEY") or None,
        connection_string=env.get("AZURE_STORAGE_CONNECTION_STRING") or None,
        container_name=env.get("VIDEO_CONTAINER_NAME", DEFAULT_CONTAINER_NAME),
        signed_url_ttl_seconds=parse_int(
            "SIGNED_URL_TTL_SECONDS", env.get("SIGNED_URL_TTL_SECONDS"), 3600
        ),
    )

    settings = Settings(
        environment=environment,
        redis_url=env.get("REDIS_URL", defaults["REDIS_URL"]),
        database_url=env.get("DATABASE_URL", defaults["DATABASE_URL"]),
        budget=budget,
        provider=provider,
        storage=storage,
        job_max_age=timedelta(
            hours=parse_float("JOB_MAX_AGE_HOURS", env.get("JOB_MAX_AGE_HOURS"), 24.0)
        ),
        otel_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        log_level=env.get("LOG_LEVEL", defaults["LOG_LEVEL"]),
    )

    errors = validate_settings(settings)
    if errors:
        logger.error(f"Environment configuration validation failed: {errors}")
        raise ConfigValidationError("settings", "; ".join(errors))

    logger.info(
        "Configuration loaded",
        extra={
            "environment": settings.environment,
            "provider_mode": settings.provider.mode.value,
            "budget_limit": str(settings.budget.budget_limit),
            "storage_configured": settings.storage.is_configured,
        }
    )
    return settings
