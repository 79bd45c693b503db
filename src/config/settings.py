"""
Application Settings.

Centralized configuration using Pydantic Settings with environment variable loading.
All settings are validated at startup - invalid values will raise an error.

Production Mode:
    When app_env="production", additional validations apply:
    - api_key_enabled must be True
    - debug must be False
    - cors_allowed_origins cannot be ["*"]
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Supabase (optional persistence, in-memory fallback when unset)
    # -------------------------------------------------------------------------
    supabase_url: str | None = Field(default=None, description="Supabase project URL")
    supabase_key: SecretStr | None = Field(
        default=None, description="Supabase service key"
    )

    # -------------------------------------------------------------------------
    # Provisioning Tool
    # -------------------------------------------------------------------------
    provisioning_tool: Literal["terraform", "terragrunt"] = Field(
        default="terraform",
        description="Which binary drives plan/apply",
    )
    terraform_binary: str = Field(
        default="terraform",
        description="Path or name of the terraform executable",
    )
    terragrunt_binary: str = Field(
        default="terragrunt",
        description="Path or name of the terragrunt executable",
    )
    workspace_root: Path = Field(
        default=Path("./terraform-workspace"),
        description="Directory under which one working directory per job is created",
    )
    templates_dir: Path | None = Field(
        default=Path("./templates"),
        description="Directory of template manifests (*.json) loaded at startup",
    )

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------
    job_timeout_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Wall-clock ceiling for a running plan or apply phase",
    )
    cancel_grace_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL when cancelling",
    )
    workspace_retention_hours: float = Field(
        default=24.0,
        ge=0,
        description="How long working directories of finished jobs are kept",
    )
    precondition_policy: Literal["warn", "enforce"] = Field(
        default="warn",
        description="Whether an incompatible instance state warns or blocks apply",
    )

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------
    audit_retention_days: int = Field(
        default=90,
        ge=1,
        description="Audit entries older than this are purged by maintenance",
    )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------
    notification_auto_hide: bool = Field(
        default=True,
        description="Default auto-hide setting for new notification sessions",
    )
    notification_hide_delay_ms: int = Field(
        default=5000,
        ge=0,
        description="Delay before an unacknowledged notification is auto-marked read",
    )
    notification_history_limit: int = Field(
        default=100,
        ge=1,
        description="Maximum notifications kept per session",
    )
    notification_session_idle_minutes: int = Field(
        default=60,
        ge=0,
        description="Close sessions with no client activity for this long during maintenance. 0 keeps them",
    )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------
    maintenance_interval_minutes: int = Field(
        default=60,
        ge=0,
        description="Interval for audit purge and workspace cleanup. 0 disables the schedule",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    api_host: str = Field(default="0.0.0.0", description="Bind address")
    api_port: int = Field(default=5000, description="Bind port")

    # -------------------------------------------------------------------------
    # Security Settings
    # -------------------------------------------------------------------------
    api_key: SecretStr | None = Field(
        default=None,
        description="API key for authentication. If set, all requests require X-API-Key header.",
    )
    api_key_enabled: bool = Field(
        default=False,
        description="Enable API key authentication. Set True for production.",
    )

    # -------------------------------------------------------------------------
    # CORS Settings
    # -------------------------------------------------------------------------
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5000"],
        description="Allowed CORS origins. Use ['*'] for development only.",
    )
    cors_allow_credentials: bool = Field(
        default=True,
        description="Allow credentials in CORS requests",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def supabase_enabled(self) -> bool:
        """Whether Supabase persistence is configured."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def provisioning_binary(self) -> str:
        """Executable used for plan/apply."""
        if self.provisioning_tool == "terragrunt":
            return self.terragrunt_binary
        return self.terraform_binary

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production settings are secure."""
        if self.app_env == "production":
            errors = []

            if not self.api_key_enabled:
                errors.append("api_key_enabled must be True in production")

            if self.api_key_enabled and not self.api_key:
                errors.append("api_key must be set when api_key_enabled is True")

            if self.debug:
                errors.append("debug must be False in production")

            if "*" in self.cors_allowed_origins:
                errors.append("cors_allowed_origins cannot contain '*' in production")

            if errors:
                raise ValueError(
                    f"Production configuration errors: {'; '.join(errors)}"
                )

        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings if needed.
    """
    return Settings()


# Convenience export for direct import
settings = get_settings()
