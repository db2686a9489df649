"""
Data models for the Framtt admin backend.

Principals, session token claims, impersonation records and audit events.
"""

from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.models.impersonation import (
    ActorContext,
    ImpersonationGrant,
    ImpersonationHistory,
    ImpersonationHistoryQuery,
    ImpersonationRecord,
    ImpersonationStartRequest,
    ImpersonationStatus,
    ImpersonationStopResult,
)
from framtt_admin.models.principal import Principal, PrincipalStatus, Role
from framtt_admin.models.token import (
    ImpersonationClaims,
    IssuedToken,
    NormalClaims,
    TokenClaims,
    TokenKind,
)

__all__ = [
    # Principal models
    "Principal",
    "PrincipalStatus",
    "Role",
    # Token models
    "ImpersonationClaims",
    "IssuedToken",
    "NormalClaims",
    "TokenClaims",
    "TokenKind",
    # Impersonation models
    "ActorContext",
    "ImpersonationGrant",
    "ImpersonationHistory",
    "ImpersonationHistoryQuery",
    "ImpersonationRecord",
    "ImpersonationStartRequest",
    "ImpersonationStatus",
    "ImpersonationStopResult",
    # Audit models
    "AuditAction",
    "AuditEvent",
]
