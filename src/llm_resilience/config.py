"""
Configuration settings for the LLM resilience layer.

All settings are loaded from environment variables (prefix ``AGENT_``) with
sensible defaults. Use a .env file for local development.

The retry knobs also accept their ``LINK_ASSISTANT_AGENT_*`` names (which
win over ``AGENT_*``), and the delay bounds can be given in seconds as
``AGENT_MAX_RETRY_DELAY`` / ``AGENT_MIN_RETRY_INTERVAL``. An explicit
``*_MS`` value wins over its seconds form.

Settings are deliberately NOT cached: ``get_settings()`` re-reads the
environment on every call so that a changed retry budget takes effect on
the very next delay computation of a long-running process.
"""

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env(name: str) -> AliasChoices:
    return AliasChoices(f"LINK_ASSISTANT_AGENT_{name}", f"AGENT_{name}")


class RetrySettings(BaseSettings):
    """Retry/backoff settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # === Application ===
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # === Global Retry Budget ===
    RETRY_TIMEOUT: int = Field(
        default=604800, ge=0, validation_alias=_env("RETRY_TIMEOUT")
    )  # seconds (7 days)

    # === Delay Bounds ===
    MAX_RETRY_DELAY_MS: int = Field(
        default=1_200_000, ge=0, validation_alias=_env("MAX_RETRY_DELAY_MS")
    )  # 20 minutes
    MIN_RETRY_INTERVAL_MS: int = Field(
        default=30_000, ge=0, validation_alias=_env("MIN_RETRY_INTERVAL_MS")
    )
    MAX_BACKOFF_NO_HEADERS_MS: int = Field(default=30_000, ge=0)

    # Seconds forms, folded into the *_MS fields above
    MAX_RETRY_DELAY: int | None = Field(
        default=None, ge=0, validation_alias=_env("MAX_RETRY_DELAY")
    )
    MIN_RETRY_INTERVAL: int | None = Field(
        default=None, ge=0, validation_alias=_env("MIN_RETRY_INTERVAL")
    )

    # === Isolated Wait ===
    CANCEL_POLL_INTERVAL_MS: int = Field(default=10_000, gt=0)

    # === Fetch Wrapper ===
    FETCH_NETWORK_MAX_RETRIES: int = Field(default=3, ge=0)

    # === Monitoring ===
    PROMETHEUS_ENABLED: bool = True

    @model_validator(mode="after")
    def _apply_seconds_forms(self) -> "RetrySettings":
        explicit = self.model_fields_set
        if self.MAX_RETRY_DELAY is not None and "MAX_RETRY_DELAY_MS" not in explicit:
            self.MAX_RETRY_DELAY_MS = self.MAX_RETRY_DELAY * 1000
        if self.MIN_RETRY_INTERVAL is not None and "MIN_RETRY_INTERVAL_MS" not in explicit:
            self.MIN_RETRY_INTERVAL_MS = self.MIN_RETRY_INTERVAL * 1000
        return self

    @property
    def retry_timeout_ms(self) -> int:
        """Global retry budget in milliseconds."""
        return self.RETRY_TIMEOUT * 1000


def get_settings() -> RetrySettings:
    """Read settings from the environment (fresh instance on every call)."""
    return RetrySettings()
