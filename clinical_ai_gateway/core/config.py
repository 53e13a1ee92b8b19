"""
Configuration for the Clinical AI Gateway

This module defines the settings used to initialize the gateway. Settings are:
    1. Loaded from environment variables (prefix GATEWAY_) with .env support
    2. Validated at startup to fail fast on misconfiguration
    3. Immutable after creation

Configuration Hierarchy:
    GatewaySettings
    ├── Provider Settings  (API keys, endpoints, concrete model names)
    ├── Execution Settings (timeouts, retries, batch concurrency)
    ├── Audit Settings     (store location, retention, write attempts)
    ├── Session Settings   (idle TTL, size cap)
    ├── Policy Settings    (routing policy override, lower-trust callers)
    └── Logging Settings

Usage:
    from clinical_ai_gateway.core.config import GatewaySettings

    settings = GatewaySettings.from_environment()
    settings = GatewaySettings(batch_concurrency=5, audit_store_dir="audit/")
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clinical_ai_gateway.core.constants import AUDIT_RETENTION_DAYS
from clinical_ai_gateway.core.exceptions import ConfigurationError


# =============================================================================
# STAGE 1: DEFAULT VALUES
# =============================================================================


class ConfigDefaults:
    """Default configuration values."""

    # -------------------------------------------------------------------------
    # 1.1 Provider Defaults
    # -------------------------------------------------------------------------
    DEFAULT_OPENAI_MODEL = "gpt-4o"
    DEFAULT_CLAUDE_OPUS_MODEL = "claude-3-opus-20240229"
    DEFAULT_CLAUDE_SONNET_MODEL = "claude-3-5-sonnet-20241022"
    DEFAULT_MISTRAL_MODEL = "mistral-large-latest"
    DEFAULT_MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
    DEFAULT_LOCAL_MODEL = "llama3.1"
    DEFAULT_LOCAL_BASE_URL = "http://localhost:11434/v1"
    DEFAULT_RATE_LIMIT_DELAY = 0.0  # seconds between calls to one provider
    DEFAULT_MAX_PROVIDER_RETRIES = 1

    # -------------------------------------------------------------------------
    # 1.2 Execution Defaults
    # -------------------------------------------------------------------------
    DEFAULT_TIMEOUT_SECONDS = 30.0
    DEFAULT_BATCH_CONCURRENCY = 3

    # -------------------------------------------------------------------------
    # 1.3 Audit and Session Defaults
    # -------------------------------------------------------------------------
    DEFAULT_AUDIT_WRITE_ATTEMPTS = 3
    DEFAULT_SESSION_TTL_SECONDS = 3600.0
    DEFAULT_SESSION_MAX_ENTRIES = 10_000

    # -------------------------------------------------------------------------
    # 1.4 Policy Defaults
    # -------------------------------------------------------------------------
    DEFAULT_LOWER_TRUST_ROLES = ["technician", "researcher"]
    DEFAULT_LOWER_TRUST_DEPARTMENTS = ["research", "external"]


# =============================================================================
# STAGE 2: SETTINGS MODEL
# =============================================================================


class GatewaySettings(BaseSettings):
    """
    Centralized configuration for the gateway.

    Every field can be overridden with a GATEWAY_-prefixed environment
    variable. Provider keys also accept the vendor's conventional variable
    name (OPENAI_API_KEY, ANTHROPIC_API_KEY, MISTRAL_API_KEY).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATEWAY_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    # -------------------------------------------------------------------------
    # 2.1 Provider Configuration
    # -------------------------------------------------------------------------
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    anthropic_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )
    mistral_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_MISTRAL_API_KEY", "MISTRAL_API_KEY"),
    )
    mistral_base_url: str = ConfigDefaults.DEFAULT_MISTRAL_BASE_URL
    local_model_base_url: str = ConfigDefaults.DEFAULT_LOCAL_BASE_URL
    local_model_api_key: str = "local"

    openai_model: str = ConfigDefaults.DEFAULT_OPENAI_MODEL
    claude_opus_model: str = ConfigDefaults.DEFAULT_CLAUDE_OPUS_MODEL
    claude_sonnet_model: str = ConfigDefaults.DEFAULT_CLAUDE_SONNET_MODEL
    mistral_model: str = ConfigDefaults.DEFAULT_MISTRAL_MODEL
    local_model: str = ConfigDefaults.DEFAULT_LOCAL_MODEL

    rate_limit_delay: float = ConfigDefaults.DEFAULT_RATE_LIMIT_DELAY
    max_provider_retries: int = ConfigDefaults.DEFAULT_MAX_PROVIDER_RETRIES

    # -------------------------------------------------------------------------
    # 2.2 Execution Configuration
    # -------------------------------------------------------------------------
    default_timeout_seconds: float = Field(
        default=ConfigDefaults.DEFAULT_TIMEOUT_SECONDS,
        description="Per-attempt bound when the packet carries no timeout",
    )
    batch_concurrency: int = Field(
        default=ConfigDefaults.DEFAULT_BATCH_CONCURRENCY,
        description="Maximum simultaneous in-flight requests in a batch",
    )

    # -------------------------------------------------------------------------
    # 2.3 Audit Configuration
    # -------------------------------------------------------------------------
    audit_store_dir: Optional[Path] = Field(
        default=None,
        description="Directory for day-partitioned JSONL audit files; in-memory if unset",
    )
    audit_retention_days: int = AUDIT_RETENTION_DAYS
    audit_write_attempts: int = ConfigDefaults.DEFAULT_AUDIT_WRITE_ATTEMPTS

    # -------------------------------------------------------------------------
    # 2.4 Session Configuration
    # -------------------------------------------------------------------------
    session_ttl_seconds: float = ConfigDefaults.DEFAULT_SESSION_TTL_SECONDS
    session_max_entries: int = ConfigDefaults.DEFAULT_SESSION_MAX_ENTRIES

    # -------------------------------------------------------------------------
    # 2.5 Policy Configuration
    # -------------------------------------------------------------------------
    routing_policy_path: Optional[Path] = None
    lower_trust_roles: List[str] = Field(
        default_factory=lambda: list(ConfigDefaults.DEFAULT_LOWER_TRUST_ROLES)
    )
    lower_trust_departments: List[str] = Field(
        default_factory=lambda: list(ConfigDefaults.DEFAULT_LOWER_TRUST_DEPARTMENTS)
    )

    # -------------------------------------------------------------------------
    # 2.6 Logging Configuration
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    audit_near_miss_log_path: Optional[Path] = None

    # -------------------------------------------------------------------------
    # 2.7 Validators
    # -------------------------------------------------------------------------

    @field_validator(
        "batch_concurrency",
        "audit_write_attempts",
        "max_provider_retries",
        "audit_retention_days",
        "session_max_entries",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @field_validator("default_timeout_seconds", "session_ttl_seconds")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("rate_limit_delay")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"must not be negative, got {v}")
        return v

    @field_validator("lower_trust_roles", "lower_trust_departments")
    @classmethod
    def normalize_names(cls, v: List[str]) -> List[str]:
        return [item.strip().lower() for item in v if item and item.strip()]

    # -------------------------------------------------------------------------
    # 2.8 Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None, **overrides: Any) -> "GatewaySettings":
        """
        Load settings from the environment (and an optional .env file).

        Raises:
            ConfigurationError: If any setting is invalid
        """
        try:
            if env_file:
                return cls(_env_file=env_file, **overrides)
            return cls(**overrides)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid gateway configuration",
                context={"errors": "; ".join(_format_errors(e))},
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to a dictionary with secrets masked (for logging)."""
        data = self.model_dump(mode="json")
        for key in ("openai_api_key", "anthropic_api_key", "mistral_api_key", "local_model_api_key"):
            if data.get(key):
                data[key] = "***"
        return data


def _format_errors(error: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()
    ]
