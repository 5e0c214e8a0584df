from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional

from ..cost.contracts import BudgetConfig


DEFAULT_VEO_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_VEO_MODEL = "veo-3.0-generate-preview"
DEFAULT_CONTAINER_NAME = "adcraft-videos"


class ProviderMode(Enum):
    VEO = "veo"
    DEMO = "demo"


@dataclass(frozen=True)
class ProviderConfig:
    api_key: Optional[str] = None
    base_url: str = DEFAULT_VEO_BASE_URL
    model: str = DEFAULT_VEO_MODEL
    timeout_seconds: float = 30.0
    mode: ProviderMode = ProviderMode.DEMO

    @property
    def is_demo(self) -> bool:
        return self.mode == ProviderMode.DEMO


@dataclass(frozen=True)
class StorageConfig:
    account_url: Optional[str] = None
    account_key: Optional[str] = None
    connection_string: Optional[str] = None
    container_name: str = DEFAULT_CONTAINER_NAME
    signed_url_ttl_seconds: int = 3600

    @property
    def is_configured(self) -> bool:
        return bool(self.connection_string or self.account_url)


@dataclass(frozen=True)
class Settings:
    environment: str
    redis_url: str
    database_url: str
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    job_max_age: timedelta = timedelta(hours=24)
    otel_endpoint: Optional[str] = None
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in {"development", "dev", "local"}


class ConfigError(Exception):
    pass


class ConfigValidationError(ConfigError):
    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"Configuration validation error for '{key}': {message}")
