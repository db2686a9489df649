"""
Impersonation controller for staff support access.

Manages the per-impersonator state machine ``NONE -> ACTIVE -> NONE``:
starting and stopping impersonation sessions, validating impersonation
tokens against their audit record, and listing sessions.

Starting fails closed: no token is handed out unless the audit record was
written. Stopping fails open: relinquishing access succeeds even when the
audit trail cannot be updated.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from framtt_admin.errors import (
    AccountInactive,
    AlreadyImpersonating,
    AuditConflict,
    AuditSinkError,
    AuditUnavailable,
    AuthError,
    EncodingError,
    InvalidCredentials,
    InvalidTarget,
    NoActiveSession,
    NotImpersonating,
    Unauthorized,
)
from framtt_admin.logging_config import LogEventType, get_logger
from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.models.impersonation import (
    ActorContext,
    ImpersonationGrant,
    ImpersonationHistory,
    ImpersonationHistoryQuery,
    ImpersonationRecord,
    ImpersonationStatus,
    ImpersonationStopResult,
)
from framtt_admin.models.principal import (
    DEFAULT_IMPERSONATOR_ROLES,
    DEFAULT_ROLE_PRIVILEGES,
    Principal,
    Role,
)
from framtt_admin.models.token import ImpersonationClaims, TokenClaims
from framtt_admin.services.audit_service import (
    AuditSink,
    generate_record_id,
    record_best_effort,
)
from framtt_admin.services.auth import SessionIssuer
from framtt_admin.services.principal_store import PrincipalStore
from framtt_admin.services.token_codec import TokenCodec

logger = get_logger(__name__)

DEFAULT_REASON = "No reason provided"


class ImpersonationController:
    """
    Governs impersonation sessions.

    Flow:
    1. A superadmin or admin holding a normal token calls ``start``
    2. The target is validated against the role privilege ordering
    3. An open audit record is written, then an impersonation token issued
    4. ``stop`` closes the record and returns a fresh normal token for the
       impersonator
    """

    def __init__(
        self,
        codec: TokenCodec,
        principals: PrincipalStore,
        issuer: SessionIssuer,
        audit: AuditSink,
        impersonation_ttl: timedelta = timedelta(hours=1),
        role_privileges: dict[Role, int] | None = None,
        impersonator_roles: list[Role] | None = None,
        audit_timeout: float = 5.0,
    ) -> None:
        self._codec = codec
        self._principals = principals
        self._issuer = issuer
        self._audit = audit
        self._ttl = impersonation_ttl
        self._privileges = role_privileges or dict(DEFAULT_ROLE_PRIVILEGES)
        self._impersonator_roles = set(impersonator_roles or DEFAULT_IMPERSONATOR_ROLES)
        self._audit_timeout = audit_timeout

    def can_outrank(self, caller_role: Role, target_role: Role) -> bool:
        """Whether ``caller_role`` is strictly more privileged than ``target_role``."""
        return self._privileges[caller_role] > self._privileges[target_role]

    async def start(
        self,
        caller_token: str,
        target_id: str,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ImpersonationGrant:
        """
        Start impersonating ``target_id``.

        Raises:
            Unauthorized: The caller token is an impersonation token, or the
                caller's role may not impersonate.
            InvalidTarget: Unknown or inactive target, self-impersonation, or
                a target of equal or higher privilege.
            AlreadyImpersonating: The caller already has an open session.
            AuditUnavailable: The start could not be recorded.
        """
        claims = self._codec.decode(caller_token)
        if claims.is_impersonation:
            raise Unauthorized("Impersonation tokens cannot start a new impersonation")

        caller_id, caller_role = claims.subject, claims.role
        reason = (reason or "").strip() or DEFAULT_REASON
        context = {"ip_address": ip_address, "user_agent": user_agent}

        try:
            target = await self._validate_target(caller_id, caller_role, target_id)

            if caller_role not in self._impersonator_roles:
                raise Unauthorized(f"{caller_role.value} users do not have impersonation privileges")

            existing = await self._audit_call(self._audit.find_open_impersonation(caller_id))
            if existing is not None:
                raise AlreadyImpersonating(
                    f"Impersonation session {existing.id} is still active. "
                    "End it before starting a new one."
                )
        except (Unauthorized, InvalidTarget, AlreadyImpersonating) as e:
            await self._record_denied(caller_id, target_id, e, context)
            raise

        now = datetime.now(timezone.utc).replace(microsecond=0)
        record = ImpersonationRecord(
            id=generate_record_id(),
            impersonator_id=caller_id,
            target_id=target.id,
            impersonator_role=caller_role,
            target_role=target.role,
            reason=reason,
            started_at=now,
            expires_at=now + self._ttl,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        try:
            await asyncio.wait_for(
                self._audit.open_impersonation(record), timeout=self._audit_timeout
            )
        except AuditConflict as e:
            await self._record_denied(caller_id, target_id, AlreadyImpersonating(), context)
            raise AlreadyImpersonating() from e
        except (AuditSinkError, asyncio.TimeoutError) as e:
            logger.error(f"Refusing impersonation {caller_id} -> {target.id}: audit write failed")
            raise AuditUnavailable("Impersonation could not be recorded") from e

        impersonation_claims = ImpersonationClaims(
            subject=target.id,
            role=target.role,
            impersonator=caller_id,
            session_id=record.id,
            issued_at=record.started_at,
            expires_at=record.expires_at,
        )
        try:
            token = self._codec.issue(impersonation_claims)
        except EncodingError:
            await self._close_quietly(record.id, "token_error")
            raise

        await record_best_effort(
            self._audit,
            AuditEvent(
                action=AuditAction.IMPERSONATION_START,
                actor_id=caller_id,
                target_id=target.id,
                details={
                    "session_id": record.id,
                    "reason": reason,
                    "target_role": target.role.value,
                    "expires_at": record.expires_at.isoformat(),
                },
                **context,
            ),
            timeout=self._audit_timeout,
        )
        logger.impersonation_event(
            LogEventType.IMPERSONATION_START,
            impersonator_id=caller_id,
            target_id=target.id,
            session_id=record.id,
        )
        return ImpersonationGrant(token=token, record=record)

    async def stop(self, impersonation_token: str) -> ImpersonationStopResult:
        """
        End the impersonation session carried by ``impersonation_token``.

        Raises:
            NotImpersonating: The token is a normal session token.
            NoActiveSession: No open record matches the token.
        """
        claims = self._codec.decode(impersonation_token)
        if not isinstance(claims, ImpersonationClaims):
            raise NotImpersonating()

        audit_error: str | None = None
        closed: ImpersonationRecord | None = None

        try:
            open_record = await self._audit_call(
                self._audit.find_open_impersonation(claims.impersonator)
            )
        except AuditUnavailable as e:
            audit_error = f"Open record lookup failed: {e.message}"
        else:
            if not self._matches(open_record, claims):
                raise NoActiveSession()
            try:
                closed = await asyncio.wait_for(
                    self._audit.close_impersonation(
                        open_record.id, datetime.now(timezone.utc), "manual_stop"
                    ),
                    timeout=self._audit_timeout,
                )
            except (AuditSinkError, asyncio.TimeoutError) as e:
                audit_error = f"Closing record {open_record.id} failed: {str(e) or 'timeout'}"
            else:
                if closed is None:
                    raise NoActiveSession()

        if audit_error:
            logger.event(
                LogEventType.AUDIT_DEGRADED,
                f"Impersonation stop not fully recorded: {audit_error}",
                level=logging.WARNING,
                user_id=claims.impersonator,
                target_id=claims.subject,
                session_id=claims.session_id,
            )

        impersonator = await self._principals.find_by_id(claims.impersonator)
        if impersonator is None:
            raise InvalidCredentials("Impersonator account no longer exists")
        if not impersonator.is_active:
            raise AccountInactive()

        token = self._issuer.issue(impersonator)

        details: dict = {"session_id": claims.session_id, "end_reason": "manual_stop"}
        if closed is not None:
            details["duration_seconds"] = closed.duration_seconds
        await record_best_effort(
            self._audit,
            AuditEvent(
                action=AuditAction.IMPERSONATION_STOP,
                actor_id=claims.impersonator,
                target_id=claims.subject,
                details=details,
            ),
            timeout=self._audit_timeout,
        )
        logger.impersonation_event(
            LogEventType.IMPERSONATION_STOP,
            impersonator_id=claims.impersonator,
            target_id=claims.subject,
            session_id=claims.session_id,
        )
        return ImpersonationStopResult(token=token, record=closed, audit_error=audit_error)

    async def resolve_actor(self, token: str) -> ActorContext:
        """
        Decode ``token`` into the acting identity.

        Impersonation tokens are only honoured while their audit record is
        open, so a stopped session cannot be resumed with its old token.
        """
        claims = self._codec.decode(token)
        if not isinstance(claims, ImpersonationClaims):
            return ActorContext(
                real_user_id=claims.subject,
                real_role=claims.role,
                effective_user_id=claims.subject,
                effective_role=claims.role,
                expires_at=claims.expires_at,
            )

        if claims.session_id:
            record = await self._audit_call(self._audit.get_impersonation(claims.session_id))
        else:
            record = await self._audit_call(
                self._audit.find_open_impersonation(claims.impersonator)
            )
        if record is None or not record.is_open or not self._matches(record, claims):
            raise NoActiveSession("Impersonation session has ended or is invalid")

        return ActorContext(
            real_user_id=claims.impersonator,
            real_role=record.impersonator_role,
            effective_user_id=claims.subject,
            effective_role=claims.role,
            is_impersonating=True,
            impersonation_session_id=record.id,
            expires_at=claims.expires_at,
        )

    async def force_end(self, actor: ActorContext, session_id: str) -> ImpersonationRecord:
        """
        Close another staff member's open session (superadmin only).

        The session's token stops resolving immediately. Unlike ``stop``
        this fails closed: nothing is ended unless the close is recorded.

        Raises:
            Unauthorized: ``actor`` is not a superadmin acting as themselves.
            NoActiveSession: The record does not exist or is already closed.
            AuditUnavailable: The audit log could not be read or updated.
        """
        if actor.is_impersonating or actor.real_role != Role.SUPERADMIN:
            raise Unauthorized("Only superadmins can force end impersonation sessions")

        record = await self._audit_call(self._audit.get_impersonation(session_id))
        if record is None or not record.is_open:
            raise NoActiveSession(f"Impersonation session {session_id} is not active")

        closed = await self._audit_call(
            self._audit.close_impersonation(record.id, datetime.now(timezone.utc), "force_ended")
        )
        if closed is None:
            raise NoActiveSession(f"Impersonation session {session_id} is not active")

        await record_best_effort(
            self._audit,
            AuditEvent(
                action=AuditAction.IMPERSONATION_FORCE_END,
                actor_id=actor.real_user_id,
                target_id=closed.target_id,
                details={
                    "session_id": closed.id,
                    "impersonator_id": closed.impersonator_id,
                    "duration_seconds": closed.duration_seconds,
                },
            ),
            timeout=self._audit_timeout,
        )
        logger.impersonation_event(
            LogEventType.IMPERSONATION_FORCE_END,
            impersonator_id=closed.impersonator_id,
            target_id=closed.target_id,
            session_id=closed.id,
            msg=f"Impersonation session {closed.id} force-ended by {actor.real_user_id}",
        )
        return closed

    async def list_active(self, actor: ActorContext) -> list[ImpersonationRecord]:
        """Every open session visible to ``actor``: all for superadmins, own for admins."""
        query = ImpersonationHistoryQuery(status=ImpersonationStatus.ACTIVE, limit=100)
        sessions: list[ImpersonationRecord] = []
        while True:
            page = await self.history(actor, query)
            sessions.extend(page.records)
            if not page.records or len(sessions) >= page.total:
                return sessions
            query = query.model_copy(update={"offset": query.offset + len(page.records)})

    async def history(
        self, actor: ActorContext, query: ImpersonationHistoryQuery
    ) -> ImpersonationHistory:
        """Impersonation records visible to ``actor``, newest first."""
        if actor.real_role == Role.SUPERADMIN:
            pass
        elif actor.real_role in self._impersonator_roles:
            query = query.model_copy(update={"impersonator_id": actor.real_user_id})
        else:
            raise Unauthorized("Insufficient permissions to view impersonation sessions")
        return await self._audit_call(self._audit.query_impersonations(query))

    async def _validate_target(
        self, caller_id: str, caller_role: Role, target_id: str
    ) -> Principal:
        if target_id == caller_id:
            raise InvalidTarget("Cannot impersonate yourself")

        target = await self._principals.find_by_id(target_id)
        if target is None or not target.is_active:
            raise InvalidTarget("Target user not found or inactive")

        if not self.can_outrank(caller_role, target.role):
            raise InvalidTarget(
                f"{caller_role.value} cannot impersonate {target.role.value} users"
            )
        return target

    @staticmethod
    def _matches(record: ImpersonationRecord | None, claims: TokenClaims) -> bool:
        if record is None or not isinstance(claims, ImpersonationClaims):
            return False
        if record.impersonator_id != claims.impersonator or record.target_id != claims.subject:
            return False
        return claims.session_id is None or record.id == claims.session_id

    async def _audit_call(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._audit_timeout)
        except (AuditSinkError, asyncio.TimeoutError) as e:
            raise AuditUnavailable(f"Audit log unavailable: {str(e) or 'timeout'}") from e

    async def _close_quietly(self, record_id: str, end_reason: str) -> None:
        try:
            await asyncio.wait_for(
                self._audit.close_impersonation(record_id, datetime.now(timezone.utc), end_reason),
                timeout=self._audit_timeout,
            )
        except (AuditSinkError, asyncio.TimeoutError):
            logger.exception(f"Could not close impersonation record {record_id}")

    async def _record_denied(
        self, caller_id: str, target_id: str, error: AuthError, context: dict
    ) -> None:
        logger.impersonation_event(
            LogEventType.IMPERSONATION_DENIED,
            impersonator_id=caller_id,
            target_id=target_id,
            msg=f"Impersonation denied: {error.message}",
        )
        await record_best_effort(
            self._audit,
            AuditEvent(
                action=AuditAction.IMPERSONATION_DENIED,
                actor_id=caller_id,
                target_id=target_id,
                success=False,
                details={"code": error.code, "reason": error.message},
                **context,
            ),
            timeout=self._audit_timeout,
        )
