"""
Configuration management for the Framtt admin backend.

Settings are read from the environment (and an optional ``.env`` file).
Variable names match the deployment environment of the admin backend,
e.g. ``SIGNING_SECRET``, ``PREVIOUS_SIGNING_SECRET``,
``NORMAL_SESSION_TTL`` and ``IMPERSONATION_TIMEOUT_HOURS``.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from framtt_admin.models.principal import (
    DEFAULT_IMPERSONATOR_ROLES,
    DEFAULT_ROLE_PRIVILEGES,
    Role,
)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server configuration
    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=5000, description="API server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Token signing
    signing_secret: SecretStr = Field(
        default=SecretStr("framtt-dev-secret-change-in-production"),
        description="Current secret used to sign new tokens",
    )
    previous_signing_secret: SecretStr | None = Field(
        default=None,
        description="Previous secret, still accepted for verification",
    )
    signing_secret_rotated_at: datetime | None = Field(
        default=None,
        description="When the current secret was put in place",
    )
    secret_rotation_days: int = Field(
        default=30, ge=1, description="Interval after which rotation is due"
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_issuer: str = Field(default="framtt-superadmin", description="JWT issuer")
    jwt_audience: str = Field(default="framtt-users", description="JWT audience")

    # Session lifetimes
    normal_session_ttl: timedelta = Field(
        default=timedelta(hours=24),
        description="Lifetime of normal session tokens",
    )
    impersonation_timeout_hours: float = Field(
        default=1.0,
        gt=0,
        description="Lifetime of impersonation tokens in hours",
    )

    # Role policy
    role_privileges: dict[Role, int] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_PRIVILEGES),
        description="Privilege level per role (higher = more privileged)",
    )
    impersonator_roles: list[Role] = Field(
        default_factory=lambda: list(DEFAULT_IMPERSONATOR_ROLES),
        description="Roles allowed to start impersonation",
    )

    # Collaborator timeouts
    audit_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for audit sink calls"
    )
    credential_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for credential checks"
    )

    # Persistence
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL for the audit sink (in-memory if unset)",
    )
    principals_file: Path | None = Field(
        default=None,
        description="YAML file with principals to seed the principal store",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "human"] = Field(
        default="json", description="Log output format"
    )

    @model_validator(mode="after")
    def _check_session_lifetimes(self) -> "Settings":
        if self.impersonation_ttl >= self.normal_session_ttl:
            raise ValueError(
                "IMPERSONATION_TIMEOUT_HOURS must be shorter than NORMAL_SESSION_TTL"
            )
        missing = [role.value for role in Role if role not in self.role_privileges]
        if missing:
            raise ValueError(f"ROLE_PRIVILEGES is missing roles: {', '.join(missing)}")
        return self

    @property
    def impersonation_ttl(self) -> timedelta:
        return timedelta(hours=self.impersonation_timeout_hours)

    def get_database_url(self) -> str | None:
        """Get database URL with home directory resolved."""
        if self.database_url is None:
            return None
        return self.database_url.replace("~", str(Path.home()))


def get_settings() -> Settings:
    """Load settings from the current environment."""
    return Settings()
