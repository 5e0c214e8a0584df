"""
Test configuration loading and validation.
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from ..contracts import ConfigValidationError, ProviderMode, Settings
from ..core import parse_bool, parse_decimal, resolve_provider_mode, validate_settings
from ..shell import load_settings
from ...cost.contracts import BudgetConfig, BudgetThresholds


class TestParsers:
    """Test primitive environment parsers."""

    def test_parse_decimal_default_when_missing(self):
        assert parse_decimal("X", None, Decimal("300.00")) == Decimal("300.00")
        assert parse_decimal("X", "  ", Decimal("1")) == Decimal("1")

    def test_parse_decimal_invalid(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_decimal("BUDGET_LIMIT_USD", "lots", Decimal("1"))
        assert exc_info.value.key == "BUDGET_LIMIT_USD"

    def test_parse_decimal_rejects_infinity(self):
        with pytest.raises(ConfigValidationError):
            parse_decimal("BUDGET_LIMIT_USD", "Infinity", Decimal("1"))

    def test_parse_bool(self):
        assert parse_bool("X", "yes", False) is True
        assert parse_bool("X", "0", True) is False
        assert parse_bool("X", None, True) is True
        with pytest.raises(ConfigValidationError):
            parse_bool("X", "maybe", False)


class TestProviderMode:
    """Test provider mode resolution."""

    def test_explicit_mode_wins(self):
        assert resolve_provider_mode("demo", "key", True) == ProviderMode.DEMO
        assert resolve_provider_mode("VEO", None, False) == ProviderMode.VEO

    def test_development_without_key_is_demo(self):
        assert resolve_provider_mode(None, None, False) == ProviderMode.DEMO

    def test_api_key_enables_veo(self):
        assert resolve_provider_mode(None, "secret", False) == ProviderMode.VEO

    def test_unknown_mode(self):
        with pytest.raises(ConfigValidationError):
            resolve_provider_mode("sora", None, False)


class TestValidateSettings:
    """Test settings validation rules."""

    def _settings(self, **overrides):
        values = dict(
            environment="development",
            redis_url="redis://localhost:6379/0",
            database_url="sqlite+aiosqlite:///:memory:",
        )
        values.update(overrides)
        return Settings(**values)

    def test_defaults_are_valid(self):
        assert validate_settings(self._settings()) == []

    def test_non_positive_budget(self):
        errors = validate_settings(self._settings(budget=BudgetConfig(budget_limit=Decimal("0"))))
        assert "Budget limit must be positive" in errors

    def test_thresholds_must_increase(self):
        budget = BudgetConfig(thresholds=BudgetThresholds(
            warning_percent=Decimal("80"),
            critical_percent=Decimal("75"),
            emergency_percent=Decimal("90"),
        ))
        errors = validate_settings(self._settings(budget=budget))
        assert "Budget thresholds must be strictly increasing" in errors

    def test_job_max_age_positive(self):
        errors = validate_settings(self._settings(job_max_age=timedelta(0)))
        assert "Job max age must be positive" in errors


class TestLoadSettings:
    """Test loading settings from an environment mapping."""

    def test_development_defaults(self):
        settings = load_settings({})

        assert settings.environment == "development"
        assert settings.budget.budget_limit == Decimal("300.00")
        assert settings.budget.thresholds.emergency_percent == Decimal("90")
        assert settings.provider.mode == ProviderMode.DEMO
        assert settings.job_max_age == timedelta(hours=24)
        assert settings.database_url.startswith("sqlite+aiosqlite")
        assert settings.storage.container_name == "adcraft-videos"

    def test_overrides(self):
        settings = load_settings({
            "BUDGET_LIMIT_USD": "500",
            "GEMINI_API_KEY": "key-123",
            "VEO_API_BASE_URL": "https://example.test/v1/",
            "JOB_MAX_AGE_HOURS": "12",
            "SIGNED_URL_TTL_SECONDS": "600",
        })

        assert settings.budget.budget_limit == Decimal("500")
        assert settings.provider.mode == ProviderMode.VEO
        assert settings.provider.api_key == "key-123"
        assert settings.provider.base_url == "https://example.test/v1"
        assert settings.job_max_age == timedelta(hours=12)
        assert settings.storage.signed_url_ttl_seconds == 600

    def test_production_requires_key_storage_and_database(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            load_settings({"ENVIRONMENT": "production"})

        message = str(exc_info.value)
        assert "GEMINI_API_KEY is required" in message
        assert "Azure Blob Storage must be configured" in message
        assert "Database URL is required" in message

    def test_invalid_number_reports_key(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            load_settings({"BUDGET_LIMIT_USD": "three hundred"})
        assert exc_info.value.key == "BUDGET_LIMIT_USD"
