"""
Unit tests for the authentication service.

These tests validate password hashing, credential verification and
normal session issuance in isolation.
"""

import asyncio
from datetime import timedelta

import pytest

from framtt_admin.errors import (
    AccountInactive,
    AuditSinkError,
    CredentialsUnavailable,
    InvalidCredentials,
)
from framtt_admin.models.audit import AuditAction
from framtt_admin.models.token import NormalClaims
from framtt_admin.services.audit_service import InMemoryAuditSink
from framtt_admin.services.auth import (
    CredentialVerifier,
    SessionIssuer,
    hash_password,
    verify_password,
)
from framtt_admin.services.principal_store import PrincipalStore


class TestPasswordHashing:
    """Tests for password hashing functions."""

    @pytest.mark.unit
    def test_hash_password_returns_hash(self):
        """Test password hashing returns a bcrypt hash string."""
        password = "SecurePassword123!"
        hashed = hash_password(password)

        assert hashed != password
        assert hashed.startswith("$2")  # BCrypt prefix

    @pytest.mark.unit
    def test_verify_password_correct(self):
        """Test verifying correct password returns True."""
        hashed = hash_password("CorrectPassword!")

        assert verify_password("CorrectPassword!", hashed) is True

    @pytest.mark.unit
    def test_verify_password_incorrect(self):
        """Test verifying incorrect password returns False."""
        hashed = hash_password("CorrectPassword!")

        assert verify_password("WrongPassword!", hashed) is False

    @pytest.mark.unit
    def test_verify_empty_password(self):
        """Test verifying empty password against hash."""
        hashed = hash_password("SomePassword!")

        assert verify_password("", hashed) is False

    @pytest.mark.unit
    def test_unrecognized_hash_never_matches(self):
        """Test a digest in an unknown format is rejected, not raised."""
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    @pytest.mark.unit
    def test_same_password_gets_new_salt(self):
        """Test hashing the same password twice gives different digests."""
        assert hash_password("Password1!") != hash_password("Password1!")


class TestCredentialVerifier:
    """Tests for CredentialVerifier."""

    @pytest.mark.unit
    async def test_verifies_stored_digest(self, test_password, principal_store, principals):
        verifier = CredentialVerifier(principal_store)

        assert await verifier.verify(principals["admin"].id, test_password) is True
        assert await verifier.verify(principals["admin"].id, "nope") is False

    @pytest.mark.unit
    async def test_unknown_principal_is_rejected(self, test_password, principal_store):
        verifier = CredentialVerifier(principal_store)

        assert await verifier.verify("missing", test_password) is False

    @pytest.mark.unit
    async def test_principal_without_digest_is_rejected(self, test_password, make_principal):
        principal = make_principal(password_hash=None)
        verifier = CredentialVerifier(PrincipalStore([principal]))

        assert await verifier.verify(principal.id, test_password) is False


class SlowPrincipalStore(PrincipalStore):
    """Principal store that never answers in time."""

    async def find_by_email(self, email):
        await asyncio.sleep(1)
        return None


class FailingAuditSink(InMemoryAuditSink):
    """Audit sink that rejects every event."""

    async def record(self, event):
        raise AuditSinkError("database is down")


class TestSessionIssuer:
    """Tests for login and normal token issuance."""

    @pytest.mark.unit
    @pytest.mark.critical
    async def test_login_success(self, test_password, services, principals):
        """Test an active principal with the right password gets a normal token."""
        admin = principals["admin"]

        issued = await services.sessions.login(admin.email, test_password)

        assert isinstance(issued.claims, NormalClaims)
        assert issued.claims.subject == admin.id
        assert issued.claims.role == admin.role
        assert issued.claims.expires_at - issued.claims.issued_at == timedelta(hours=24)
        assert services.codec.decode(issued.access_token).model_dump() == issued.claims.model_dump()

    @pytest.mark.unit
    async def test_login_email_is_case_insensitive(self, test_password, services, principals):
        issued = await services.sessions.login("ADMIN@Framtt.Test", test_password)

        assert issued.claims.subject == principals["admin"].id

    @pytest.mark.unit
    async def test_login_unknown_email(self, test_password, services):
        with pytest.raises(InvalidCredentials):
            await services.sessions.login("nobody@framtt.test", test_password)

    @pytest.mark.unit
    async def test_login_wrong_password(self, test_password, services, principals):
        with pytest.raises(InvalidCredentials):
            await services.sessions.login(principals["user"].email, "WrongPassword!")

    @pytest.mark.unit
    async def test_login_inactive_account(self, test_password, services, principals):
        """Test an inactive account is rejected even with the right password."""
        with pytest.raises(AccountInactive):
            await services.sessions.login(principals["suspended"].email, test_password)

    @pytest.mark.unit
    async def test_login_records_audit_events(self, test_password, services, principals, audit_sink):
        admin = principals["admin"]
        await services.sessions.login(admin.email, test_password, ip_address="10.0.0.7")
        with pytest.raises(InvalidCredentials):
            await services.sessions.login(admin.email, "bad")

        failures = await audit_sink.query_events(action=AuditAction.LOGIN_FAILED)
        successes = await audit_sink.query_events(action=AuditAction.LOGIN)

        assert len(successes) == 1
        assert successes[0].actor_id == admin.id
        assert successes[0].ip_address == "10.0.0.7"
        assert len(failures) == 1
        assert failures[0].success is False
        assert failures[0].details["reason"] == "Invalid password"

    @pytest.mark.unit
    async def test_audit_failure_does_not_block_login(self, test_password, services, principals, principal_store):
        issuer = SessionIssuer(
            principals=principal_store,
            verifier=CredentialVerifier(principal_store),
            codec=services.codec,
            audit=FailingAuditSink(),
        )

        issued = await issuer.login(principals["admin"].email, test_password)

        assert issued.claims.subject == principals["admin"].id

    @pytest.mark.unit
    async def test_slow_store_is_credentials_unavailable(self, test_password, services, audit_sink):
        store = SlowPrincipalStore()
        issuer = SessionIssuer(
            principals=store,
            verifier=CredentialVerifier(store),
            codec=services.codec,
            audit=audit_sink,
            credential_timeout=0.05,
        )

        with pytest.raises(CredentialsUnavailable):
            await issuer.login("admin@framtt.test", test_password)

    @pytest.mark.unit
    def test_issue_uses_configured_ttl(self, services, principal_store, principals, audit_sink):
        issuer = SessionIssuer(
            principals=principal_store,
            verifier=CredentialVerifier(principal_store),
            codec=services.codec,
            audit=audit_sink,
            session_ttl=timedelta(hours=8),
        )

        issued = issuer.issue(principals["csm"])

        assert issued.claims.expires_at - issued.claims.issued_at == timedelta(hours=8)
        assert 0 < issued.expires_in <= 8 * 3600
