"""
Authentication service.

Password hashing, credential verification and issuance of normal session
tokens. Login failures are distinguished internally (unknown user, inactive
account, wrong password) but the caller only sees ``InvalidCredentials`` or
``AccountInactive``.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from passlib.context import CryptContext

from framtt_admin.errors import (
    AccountInactive,
    CredentialsUnavailable,
    InvalidCredentials,
)
from framtt_admin.logging_config import LogEventType, get_logger
from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.models.principal import Principal
from framtt_admin.models.token import IssuedToken, NormalClaims
from framtt_admin.services.audit_service import AuditSink, record_best_effort
from framtt_admin.services.principal_store import PrincipalStore
from framtt_admin.services.token_codec import TokenCodec

logger = get_logger(__name__)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return _pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash. Unrecognized hashes never match."""
    try:
        return _pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.warning("Stored password hash has an unrecognized format")
        return False


class CredentialVerifier:
    """Checks a submitted password against the principal's stored digest."""

    def __init__(self, principals: PrincipalStore) -> None:
        self._principals = principals

    async def verify(self, principal_id: str, password: str) -> bool:
        digest = await self._principals.get_password_hash(principal_id)
        if not digest or not password:
            return False
        # bcrypt is deliberately slow; keep it off the event loop
        return await asyncio.to_thread(verify_password, password, digest)


class SessionIssuer:
    """
    Issues normal session tokens.

    Flow:
    1. Resolve the principal by email
    2. Reject inactive accounts
    3. Verify the password
    4. Mint a normal token with the configured session TTL
    """

    def __init__(
        self,
        principals: PrincipalStore,
        verifier: CredentialVerifier,
        codec: TokenCodec,
        audit: AuditSink,
        session_ttl: timedelta = timedelta(hours=24),
        credential_timeout: float = 5.0,
        audit_timeout: float = 5.0,
    ) -> None:
        self._principals = principals
        self._verifier = verifier
        self._codec = codec
        self._audit = audit
        self._session_ttl = session_ttl
        self._credential_timeout = credential_timeout
        self._audit_timeout = audit_timeout

    async def login(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedToken:
        """
        Authenticate by email and password.

        Raises:
            InvalidCredentials: Unknown email or wrong password.
            AccountInactive: The principal is not active.
            CredentialsUnavailable: The store or verifier failed or timed out.
        """
        principal = await self._bounded(self._principals.find_by_email(email))

        if principal is None:
            await self._record_login(None, False, "User not found", ip_address, user_agent, email)
            raise InvalidCredentials()

        if not principal.is_active:
            await self._record_login(
                principal.id, False, "Account not active", ip_address, user_agent, email
            )
            raise AccountInactive()

        if not await self._bounded(self._verifier.verify(principal.id, password)):
            await self._record_login(
                principal.id, False, "Invalid password", ip_address, user_agent, email
            )
            raise InvalidCredentials()

        issued = self.issue(principal)
        await self._record_login(principal.id, True, None, ip_address, user_agent, email)
        logger.auth_event(LogEventType.AUTH_LOGIN, user_id=principal.id, msg="Login succeeded")
        return issued

    def issue(self, principal: Principal) -> IssuedToken:
        """Mint a normal session token for an already-resolved principal."""
        now = datetime.now(timezone.utc).replace(microsecond=0)
        claims = NormalClaims(
            subject=principal.id,
            role=principal.role,
            issued_at=now,
            expires_at=now + self._session_ttl,
        )
        issued = self._codec.issue(claims)
        logger.auth_event(
            LogEventType.TOKEN_ISSUED,
            user_id=principal.id,
            msg=f"Issued session token for {principal.id}",
            extra={"role": principal.role.value, "expires_in": issued.expires_in},
        )
        return issued

    async def _bounded(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._credential_timeout)
        except asyncio.TimeoutError as e:
            raise CredentialsUnavailable("Credential check timed out") from e
        except (OSError, RuntimeError) as e:
            raise CredentialsUnavailable(f"Credential check failed: {e}") from e

    async def _record_login(
        self,
        principal_id: str | None,
        success: bool,
        reason: str | None,
        ip_address: str | None,
        user_agent: str | None,
        email: str,
    ) -> None:
        if not success:
            logger.auth_event(
                LogEventType.AUTH_LOGIN_FAILED,
                user_id=principal_id,
                msg=f"Login failed: {reason}",
            )
        details = {"email": email.strip().lower()}
        if reason:
            details["reason"] = reason
        await record_best_effort(
            self._audit,
            AuditEvent(
                action=AuditAction.LOGIN if success else AuditAction.LOGIN_FAILED,
                actor_id=principal_id,
                target_id=principal_id,
                success=success,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
            ),
            timeout=self._audit_timeout,
        )
