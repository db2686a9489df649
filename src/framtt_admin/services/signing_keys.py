"""
Signing secret management.

Holds the current JWT signing secret and, during a rotation grace period,
the previous one. The pair is an immutable snapshot that is swapped
atomically on rotation, so a verification in flight always sees a
consistent pair.
"""

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from framtt_admin.config import Settings
from framtt_admin.logging_config import LogEventType, get_logger
from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.services.audit_service import AuditSink, record_best_effort

logger = get_logger(__name__)


def generate_secret() -> str:
    """Generate a new random signing secret."""
    return secrets.token_hex(64)


@dataclass(frozen=True)
class SigningSecret:
    """A signing secret and the time it became current."""

    value: str
    rotated_at: datetime

    def __repr__(self) -> str:
        return f"SigningSecret(value='***', rotated_at={self.rotated_at.isoformat()})"


@dataclass(frozen=True)
class SigningSecretSet:
    """Immutable snapshot of the secrets accepted for verification."""

    current: SigningSecret
    previous: SigningSecret | None = None

    def verification_secrets(self) -> list[SigningSecret]:
        """Secrets to try, current first."""
        if self.previous is None:
            return [self.current]
        return [self.current, self.previous]


class SigningSecretStore:
    """
    Process-wide holder of the signing secret set.

    Readers call ``snapshot()`` once per operation; writers go through
    ``rotate()``, which replaces the whole snapshot under a lock.
    """

    def __init__(self, secret: str, previous_secret: str | None = None,
                 rotated_at: datetime | None = None) -> None:
        if not secret:
            raise ValueError("Signing secret must not be empty")
        rotated_at = rotated_at or datetime.now(timezone.utc)
        if rotated_at.tzinfo is None:
            rotated_at = rotated_at.replace(tzinfo=timezone.utc)
        previous = None
        if previous_secret:
            previous = SigningSecret(value=previous_secret, rotated_at=rotated_at)
        self._snapshot = SigningSecretSet(
            current=SigningSecret(value=secret, rotated_at=rotated_at),
            previous=previous,
        )
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SigningSecretStore":
        previous = settings.previous_signing_secret
        return cls(
            secret=settings.signing_secret.get_secret_value(),
            previous_secret=previous.get_secret_value() if previous else None,
            rotated_at=settings.signing_secret_rotated_at,
        )

    def snapshot(self) -> SigningSecretSet:
        """Current secret set. Reference reads are atomic."""
        return self._snapshot

    def rotate(self, new_secret: str | None = None) -> SigningSecretSet:
        """
        Make ``new_secret`` current and keep the old current as previous.

        The secret that was previous before this call is discarded, so
        tokens signed two rotations back stop verifying.
        """
        new_secret = new_secret or generate_secret()
        with self._lock:
            old = self._snapshot
            if new_secret == old.current.value:
                raise ValueError("New signing secret must differ from the current one")
            self._snapshot = SigningSecretSet(
                current=SigningSecret(value=new_secret, rotated_at=datetime.now(timezone.utc)),
                previous=old.current,
            )
            snapshot = self._snapshot

        logger.event(
            LogEventType.SECRET_ROTATED,
            "Signing secret rotated",
            extra={"previous_rotated_at": old.current.rotated_at.isoformat()},
        )
        return snapshot

    def rotation_due(self, interval_days: int, now: datetime | None = None) -> bool:
        """Whether the current secret is older than the rotation interval."""
        now = now or datetime.now(timezone.utc)
        age = now - self._snapshot.current.rotated_at
        return age >= timedelta(days=interval_days)


async def rotate_signing_secret(
    store: SigningSecretStore,
    audit: AuditSink,
    actor_id: str | None = None,
    new_secret: str | None = None,
    audit_timeout: float = 5.0,
) -> SigningSecretSet:
    """Rotate the signing secret and record who did it."""
    snapshot = store.rotate(new_secret)
    await record_best_effort(
        audit,
        AuditEvent(
            action=AuditAction.SECRET_ROTATED,
            actor_id=actor_id,
            details={"rotated_at": snapshot.current.rotated_at.isoformat()},
        ),
        timeout=audit_timeout,
    )
    return snapshot
