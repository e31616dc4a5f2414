"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
Routing data (vocabulary, weights, chains, catalog) lives in the routing
tables file; this module only points at it and carries the operational knobs.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cascade_router.model_router.types import BudgetState


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(default="INFO", description="Minimum log level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    # ------------------------------------------------------------------ #
    # LiteLLM transport
    # ------------------------------------------------------------------ #
    litellm_base_url: str | None = Field(
        default="http://localhost:4000",
        description="LiteLLM proxy base URL. Empty to call vendor APIs directly.",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for the LiteLLM proxy",
    )
    litellm_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-step provider timeout",
    )
    litellm_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for transient upstream failures within one step",
    )

    # ------------------------------------------------------------------ #
    # Circuit breaker
    # ------------------------------------------------------------------ #
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_failure_window_ms: int = Field(default=120_000, gt=0)
    circuit_recovery_timeout_ms: int = Field(default=60_000, ge=0)
    circuit_half_open_success_threshold: int = Field(default=2, ge=1)

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #
    routing_tables_path: str | None = Field(
        default=None,
        description="JSON routing tables overriding the packaged defaults",
    )
    default_chain: str = Field(default="frugal", description="Chain used when none is given")
    default_max_tokens: int = Field(default=4096, ge=1)
    budget_state: BudgetState = Field(
        default=BudgetState.NORMAL,
        description="Static budget posture when no budget collaborator is wired in",
    )

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> Settings:
        """Refuse to start in production with the development LiteLLM key."""
        if self.environment != Environment.PROD or not self.litellm_base_url:
            return self

        _insecure_tokens: set[str] = {"changeme", "default", "test", "sk-dev-key"}
        litellm_key_val = self.litellm_api_key.get_secret_value().lower()
        if any(token in litellm_key_val for token in _insecure_tokens):
            raise RuntimeError(
                "PRODUCTION STARTUP BLOCKED -- LITELLM_API_KEY contains an insecure "
                "default value. Set a real API key for production."
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
