"""
Audit event models for security-relevant actions.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Authentication
    LOGIN = "auth.login"
    LOGIN_FAILED = "auth.login_failed"

    # Impersonation
    IMPERSONATION_START = "impersonation.start"
    IMPERSONATION_STOP = "impersonation.stop"
    IMPERSONATION_DENIED = "impersonation.denied"
    IMPERSONATION_FORCE_END = "impersonation.force_end"

    # Key management
    SECRET_ROTATED = "security.secret_rotated"


class AuditEvent(BaseModel):
    """Audit log entry."""

    id: str | None = Field(default=None, description="Assigned by the sink")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Event timestamp",
    )
    action: AuditAction = Field(description="Type of action")
    actor_id: str | None = Field(default=None, description="Real user performing the action")
    target_id: str | None = Field(default=None, description="Affected principal or resource")
    success: bool = Field(default=True, description="Whether the action succeeded")
    details: dict = Field(default_factory=dict, description="Additional details")
    ip_address: str | None = Field(default=None, description="Client IP address")
    user_agent: str | None = Field(default=None, description="Client user agent")
