"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from paysign.common.errors import MissingFieldError


class Settings(BaseSettings):
    """Gateway client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PAYSIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials
    merchant_id: str | None = Field(
        default=None,
        description="Merchant identifier sent in v-c-merchant-id",
    )
    api_key_id: str | None = Field(
        default=None,
        description="Identifier of the shared secret (signature keyid)",
    )
    shared_secret: str | None = Field(
        default=None,
        description="Base64-encoded shared secret used as the HMAC key",
    )

    # Gateway connection
    base_url: str = Field(
        default="https://apitest.example.com",
        description="Sandbox gateway base URL",
    )
    production_url: str = Field(
        default="https://api.example.com",
        description="Production gateway base URL",
    )
    sandbox: bool = Field(
        default=True,
        description="Use the sandbox base URL instead of production",
    )
    http_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds",
    )

    # Resilience
    circuit_failure_threshold: int = Field(
        default=5,
        description="Circuit breaker failures before opening",
    )
    circuit_recovery_timeout: float = Field(
        default=30.0,
        description="Seconds before circuit breaker half-open",
    )
    circuit_half_open_max_calls: int = Field(
        default=3,
        description="Successful calls to close half-open circuit",
    )
    retry_max_attempts: int = Field(
        default=3,
        description="Max attempts per request on retryable errors (1 disables retry)",
    )
    retry_base_delay: float = Field(
        default=0.5,
        description="Base delay for retry backoff",
    )
    retry_max_delay: float = Field(
        default=8.0,
        description="Max delay for retry backoff",
    )

    # Verification
    signature_max_skew_seconds: int = Field(
        default=300,
        description="Max age (seconds) of v-c-date accepted by the verifier",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines",
    )

    @property
    def effective_base_url(self) -> str:
        """Get the base URL for the configured environment."""
        url = self.base_url if self.sandbox else self.production_url
        return url.rstrip("/")

    def require_credentials(self) -> tuple[str, str, str]:
        """Return (merchant_id, api_key_id, shared_secret) or raise if any is unset."""
        for name in ("merchant_id", "api_key_id", "shared_secret"):
            if not getattr(self, name):
                raise MissingFieldError(name, f"Setting PAYSIGN_{name.upper()} is not configured")
        return self.merchant_id, self.api_key_id, self.shared_secret  # type: ignore[return-value]


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
