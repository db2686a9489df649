"""
Services for the Framtt admin backend.

These services handle the core business logic for:
- Token signing and verification
- Login and session issuance
- Impersonation
- Audit logging
"""

from framtt_admin.services.audit_service import AuditSink, InMemoryAuditSink
from framtt_admin.services.auth import CredentialVerifier, SessionIssuer
from framtt_admin.services.impersonation_service import ImpersonationController
from framtt_admin.services.principal_store import PrincipalStore
from framtt_admin.services.signing_keys import SigningSecretStore
from framtt_admin.services.sql_audit_sink import SqlAuditSink
from framtt_admin.services.token_codec import TokenCodec

__all__ = [
    "AuditSink",
    "CredentialVerifier",
    "ImpersonationController",
    "InMemoryAuditSink",
    "PrincipalStore",
    "SessionIssuer",
    "SigningSecretStore",
    "SqlAuditSink",
    "TokenCodec",
]
