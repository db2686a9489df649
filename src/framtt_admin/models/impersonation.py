"""
Impersonation models for staff support access.

Allows privileged staff to act as another user with a full audit trail.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from framtt_admin.models.principal import Role
from framtt_admin.models.token import IssuedToken


class ImpersonationStatus(str, Enum):
    """Derived status of an impersonation record."""

    ACTIVE = "active"
    ENDED = "ended"


class ImpersonationRecord(BaseModel):
    """Persisted audit row for one impersonation session."""

    id: str = Field(description="Unique record ID")
    impersonator_id: str = Field(description="Real, privileged principal")
    target_id: str = Field(description="Principal being impersonated")
    impersonator_role: Role = Field(description="Impersonator role at start")
    target_role: Role = Field(description="Target role at start")
    reason: str = Field(description="Justification given at start")
    started_at: datetime = Field(description="Session start")
    expires_at: datetime = Field(description="Token expiry")
    ended_at: datetime | None = Field(default=None, description="Null while active")
    end_reason: str | None = Field(default=None, description="Why the session ended")
    ip_address: str | None = Field(default=None, description="Client IP address")
    user_agent: str | None = Field(default=None, description="Client user agent")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def status(self) -> ImpersonationStatus:
        return ImpersonationStatus.ACTIVE if self.is_open else ImpersonationStatus.ENDED

    @property
    def duration_seconds(self) -> int | None:
        if self.ended_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds())


class ImpersonationStartRequest(BaseModel):
    """Request body for starting impersonation."""

    target_user_id: str = Field(..., min_length=1, description="Principal to impersonate")
    reason: str | None = Field(
        default=None,
        max_length=500,
        description="Reason for impersonation (recorded in the audit trail)",
    )


class ImpersonationGrant(BaseModel):
    """Result of a successful start."""

    token: IssuedToken
    record: ImpersonationRecord


class ImpersonationStopResult(BaseModel):
    """Result of a stop. ``audit_error`` is set when closing could not be recorded."""

    token: IssuedToken
    record: ImpersonationRecord | None = None
    audit_error: str | None = None

    @property
    def audit_degraded(self) -> bool:
        return self.audit_error is not None


class ImpersonationHistoryQuery(BaseModel):
    """Filters for impersonation history."""

    status: ImpersonationStatus | None = Field(default=None, description="Filter by status")
    impersonator_id: str | None = Field(default=None, description="Filter by impersonator")
    target_id: str | None = Field(default=None, description="Filter by target")
    start_time: datetime | None = Field(default=None, description="Started at or after")
    end_time: datetime | None = Field(default=None, description="Started at or before")
    limit: int = Field(default=10, ge=1, le=100, description="Maximum results")
    offset: int = Field(default=0, ge=0, description="Pagination offset")


class ImpersonationHistory(BaseModel):
    """Page of impersonation records."""

    records: list[ImpersonationRecord] = Field(default_factory=list)
    total: int = Field(default=0)
    limit: int = Field(default=10)
    offset: int = Field(default=0)


class ActorContext(BaseModel):
    """Context for the current actor (user or impersonator)."""

    real_user_id: str = Field(description="Actual user ID (impersonator if impersonating)")
    real_role: Role = Field(description="Role of the real user")
    effective_user_id: str = Field(description="Effective user ID")
    effective_role: Role = Field(description="Role the request acts with")
    is_impersonating: bool = Field(default=False, description="Whether this is an impersonation")
    impersonation_session_id: str | None = Field(
        default=None, description="Active impersonation record"
    )
    expires_at: datetime = Field(description="Token expiry")
