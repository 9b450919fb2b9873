"""Configuration management using Pydantic Settings.

All configuration values are loaded from environment variables (or a local
.env file). Every setting has a default so the library works out of the box;
thresholds that the resilience layer relies on are validated together.
"""

from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Values are read from the process environment or a .env file in the
    working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Settings
    APP_NAME: str = Field(default="browserguard", description="Application name")
    ENVIRONMENT: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/staging/production)",
    )
    DEBUG: bool | None = Field(default=None, validate_default=True, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Browser Launch Settings
    BROWSER_HEADLESS: bool = Field(default=True, description="Launch the browser headless")
    BROWSER_PATH_ENV_VAR: str = Field(
        default="BRAVE_PATH",
        description="Name of the environment variable holding an explicit browser executable path",
    )
    BROWSER_CDP_ENDPOINT: str | None = Field(
        default=None,
        description="Connect to an already running browser over CDP instead of launching one",
    )
    BROWSER_ARGS: list[str] = Field(
        default=[
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-blink-features=AutomationControlled",
        ],
        description="Extra command line switches passed to the browser",
    )
    DEBUG_PORT_START: int = Field(default=9222, description="First remote debugging port to try")
    DEBUG_PORT_SPAN: int = Field(default=100, ge=1, description="Number of ports scanned")
    LAUNCH_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0, description="Timeout per launch attempt")
    LAUNCH_ATTEMPTS: int = Field(default=2, ge=1, description="Launch attempts before giving up")
    LAUNCH_BACKOFF_SECONDS: float = Field(
        default=1.0, ge=0, description="Base of the exponential wait between launch attempts"
    )

    # Session Settings
    OPERATION_TIMEOUT_SECONDS: float = Field(
        default=90.0, gt=0, description="Default timeout for a single page operation"
    )
    NAVIGATION_TIMEOUT_MS: int = Field(default=60000, gt=0, description="Playwright goto timeout")
    LIVENESS_TIMEOUT_SECONDS: float = Field(
        default=5.0, gt=0, description="Timeout for the liveness probe after a failed operation"
    )
    BUSY_WAIT_SECONDS: float = Field(
        default=10.0, ge=0, description="How long a call waits for a busy session before failing"
    )
    SESSION_IDLE_TIMEOUT_SECONDS: float = Field(
        default=1800.0, gt=0, description="Idle time after which close_if_idle() tears the session down"
    )
    CLOSE_TIMEOUT_SECONDS: float = Field(
        default=10.0, gt=0, description="Timeout for each best-effort teardown step"
    )

    # Circuit Breaker Settings
    CIRCUIT_FAILURE_THRESHOLD: int = Field(
        default=3, ge=1, description="Consecutive counted failures that open a circuit"
    )
    CIRCUIT_COOLDOWN_SECONDS: float = Field(
        default=30.0, ge=0, description="Cooldown after the first trip"
    )
    CIRCUIT_MAX_COOLDOWN_SECONDS: float = Field(
        default=300.0, ge=0, description="Upper bound for the exponential cooldown"
    )

    # Workflow Settings
    LEDGER_CAPACITY: int = Field(default=100, ge=1, description="Operations kept in the ledger")

    # Content Settings
    CHARS_PER_TOKEN: float = Field(default=4.0, gt=0, description="Characters per estimated token")
    DEFAULT_TOKEN_BUDGET: int = Field(
        default=10_000, gt=0, description="Safe per-response token budget"
    )
    SUMMARY_TOKEN_BUDGET: int = Field(default=1_000, gt=0, description="Budget for summary mode")
    EMERGENCY_TOKEN_LIMIT: int = Field(
        default=50_000, gt=0, description="Hard ceiling; content above it is truncated"
    )
    MAX_CHUNKS: int = Field(default=200, ge=1, description="Maximum chunks a document may be split into")
    HEAVY_PAGE_BYTES: int = Field(
        default=1_000_000, gt=0, description="Serialized size above which sub-resources are blocked"
    )
    HEAVY_PAGE_NODES: int = Field(
        default=5_000, gt=0, description="DOM node count above which sub-resources are blocked"
    )
    BLOCKED_RESOURCE_TYPES: list[str] = Field(
        default=["image", "media", "font"],
        description="Playwright resource types aborted while capturing heavy pages",
    )

    # Selector Settings
    SELECTOR_MIN_CONFIDENCE: float = Field(
        default=0.3, ge=0, le=1, description="Lowest confidence a resolved selector may have"
    )
    SELECTOR_DESTRUCTIVE_MIN_CONFIDENCE: float = Field(
        default=0.5, ge=0, le=1, description="Lowest confidence accepted for click/type"
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def set_debug_from_environment(cls, v: bool | None, info: Any) -> bool:
        """Automatically enable debug mode in development environment."""
        if v is None and "ENVIRONMENT" in info.data:
            return bool(info.data["ENVIRONMENT"] == Environment.DEVELOPMENT)
        return bool(v) if v is not None else False

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Store log levels upper-cased."""
        return v.upper()

    @model_validator(mode="after")
    def check_token_limits(self) -> "Settings":
        """Budgets must be ordered summary <= default <= emergency."""
        if self.SUMMARY_TOKEN_BUDGET > self.DEFAULT_TOKEN_BUDGET:
            raise ValueError("SUMMARY_TOKEN_BUDGET must not exceed DEFAULT_TOKEN_BUDGET")
        if self.DEFAULT_TOKEN_BUDGET > self.EMERGENCY_TOKEN_LIMIT:
            raise ValueError("DEFAULT_TOKEN_BUDGET must not exceed EMERGENCY_TOKEN_LIMIT")
        if self.CIRCUIT_MAX_COOLDOWN_SECONDS < self.CIRCUIT_COOLDOWN_SECONDS:
            raise ValueError("CIRCUIT_MAX_COOLDOWN_SECONDS must be >= CIRCUIT_COOLDOWN_SECONDS")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == Environment.PRODUCTION

    @property
    def emergency_char_limit(self) -> int:
        """Character ceiling matching EMERGENCY_TOKEN_LIMIT."""
        return int(self.EMERGENCY_TOKEN_LIMIT * self.CHARS_PER_TOKEN)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    This function uses lru_cache to ensure we only create one Settings
    instance throughout the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
