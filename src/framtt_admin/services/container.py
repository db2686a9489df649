"""
Service graph construction.

Builds the signing secret store, codec, session issuer, impersonation
controller and audit sink from ``Settings``. Used by the API and the CLI.
"""

from dataclasses import dataclass

from framtt_admin.config import Settings
from framtt_admin.logging_config import get_logger
from framtt_admin.services.audit_service import AuditSink, InMemoryAuditSink
from framtt_admin.services.auth import CredentialVerifier, SessionIssuer
from framtt_admin.services.impersonation_service import ImpersonationController
from framtt_admin.services.principal_store import PrincipalStore
from framtt_admin.services.signing_keys import SigningSecretStore
from framtt_admin.services.sql_audit_sink import SqlAuditSink
from framtt_admin.services.token_codec import TokenCodec

logger = get_logger(__name__)


@dataclass
class AppServices:
    """Service graph shared by request handlers and CLI commands."""

    settings: Settings
    principals: PrincipalStore
    secrets: SigningSecretStore
    codec: TokenCodec
    audit: AuditSink
    sessions: SessionIssuer
    impersonation: ImpersonationController


def build_audit_sink(settings: Settings) -> AuditSink:
    """SQL sink when ``DATABASE_URL`` is set, otherwise in-memory."""
    database_url = settings.get_database_url()
    if database_url:
        return SqlAuditSink(database_url, echo=settings.debug)
    logger.warning("No DATABASE_URL configured; audit records are kept in memory only")
    return InMemoryAuditSink()


def build_services(
    settings: Settings,
    principals: PrincipalStore | None = None,
    audit: AuditSink | None = None,
) -> AppServices:
    """Wire the services from settings. Collaborators can be passed in."""
    if principals is None:
        if settings.principals_file:
            principals = PrincipalStore.from_yaml(settings.principals_file)
        else:
            logger.warning("No PRINCIPALS_FILE configured; principal store is empty")
            principals = PrincipalStore()

    if audit is None:
        audit = build_audit_sink(settings)

    secret_store = SigningSecretStore.from_settings(settings)
    codec = TokenCodec.from_settings(settings, secret_store)
    sessions = SessionIssuer(
        principals=principals,
        verifier=CredentialVerifier(principals),
        codec=codec,
        audit=audit,
        session_ttl=settings.normal_session_ttl,
        credential_timeout=settings.credential_timeout_seconds,
        audit_timeout=settings.audit_timeout_seconds,
    )
    controller = ImpersonationController(
        codec=codec,
        principals=principals,
        issuer=sessions,
        audit=audit,
        impersonation_ttl=settings.impersonation_ttl,
        role_privileges=settings.role_privileges,
        impersonator_roles=settings.impersonator_roles,
        audit_timeout=settings.audit_timeout_seconds,
    )
    return AppServices(
        settings=settings,
        principals=principals,
        secrets=secret_store,
        codec=codec,
        audit=audit,
        sessions=sessions,
        impersonation=controller,
    )
