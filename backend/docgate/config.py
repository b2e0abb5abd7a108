"""
DocGate Backend - Application Configuration
===========================================

What:  Centralized configuration using Pydantic Settings.
How:   Values come from environment variables (or a .env file), are coerced
       and range-checked once, and are exposed through the `settings`
       singleton. `create_app()` also accepts an explicit Settings instance,
       which is how the test-suite builds isolated apps.

Environment names follow the deployment the gateway replaced, so existing
.env files keep working: PORT, CORS_ORIGIN, NODE_ENV, FRONTEND_URL.
"""

from typing import List, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

MIB = 1024 * 1024


class Settings(BaseSettings):
    """
    Gateway settings loaded from environment variables.

    Attributes are grouped by concern. Every default is safe for local
    development except `collaborator_base_url`, which must point at the
    document service before the API routes can do anything useful.
    """

    # ── Server ────────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1, le=65535)

    # What: Deployment mode. Only "development" exposes error details to clients.
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("environment", "node_env"),
    )

    # What: Public URL of the web frontend. Logged at startup, never used for policy.
    frontend_url: str = Field(default="http://localhost:3000")

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return v.strip().lower() or "production"

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: comma-separated origins, e.g. "https://app.example.com,http://localhost:3000"
    cors_origin: str = Field(default="http://localhost:3000")

    # ── Admission ceilings ────────────────────────────────────────────────
    max_body_size: int = Field(default=10 * MIB, ge=1, le=100 * MIB)
    max_file_size: int = Field(default=10 * MIB, ge=1, le=100 * MIB)
    max_upload_files: int = Field(default=5, ge=1, le=50)

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Fixed-window limits per client IP, one rule per route class.
    # Windows are in seconds.
    rate_limit_general_requests: int = Field(default=100, ge=1)
    rate_limit_general_window: int = Field(default=900, ge=1)
    rate_limit_upload_requests: int = Field(default=20, ge=1)
    rate_limit_upload_window: int = Field(default=900, ge=1)
    rate_limit_heavy_requests: int = Field(default=30, ge=1)
    rate_limit_heavy_window: int = Field(default=900, ge=1)

    # ── Collaborators ─────────────────────────────────────────────────────
    # What: Base URL of the document service that owns upload/summarize/share/
    # pdf/templates/version-history/export. Each route group is forwarded to
    # <base>/<group>/<sub-path>. Empty means "not configured".
    collaborator_base_url: str = Field(default="")
    collaborator_timeout: float = Field(default=30.0, gt=0, le=300)

    # Tenacity retry settings for idempotent collaborator calls
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_min_wait: float = Field(default=0.5, ge=0, le=30)
    retry_max_wait: float = Field(default=5.0, ge=0, le=120)

    # Circuit breaker around the collaborator
    cb_failure_threshold: int = Field(default=5, ge=1, le=50)
    cb_recovery_timeout: int = Field(default=30, ge=1, le=600)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def allowed_origins(self) -> Tuple[str, ...]:
        """
        The Allowed-Origin Set: comma-split, trimmed, order kept, duplicates
        and blanks dropped. Immutable once built.
        """
        seen: List[str] = []
        for origin in self.cors_origin.split(","):
            origin = origin.strip()
            if origin and origin not in seen:
                seen.append(origin)
        return tuple(seen)

    def validate_required_for_production(self) -> None:
        """
        Raise ValueError listing every setting a production deployment must fix.

        Called from the application lifespan; the server keeps running so
        health checks still answer.
        """
        errors = []
        if not self.collaborator_base_url:
            errors.append(
                "COLLABORATOR_BASE_URL is not set. API route groups will fail "
                "until the document service URL is configured."
            )
        if not self.is_development and any(o.startswith("http://localhost") for o in self.allowed_origins):
            errors.append("CORS_ORIGIN still allows a localhost origin outside development.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance used by the module-level `app`
settings = Settings()
