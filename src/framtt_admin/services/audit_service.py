"""
Audit sink for session and impersonation events.

The sink is the durable record of who impersonated whom and when. It also
owns the "one open impersonation per impersonator" rule: implementations
must check and insert atomically and raise ``AuditConflict`` on violation.
"""

import asyncio
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from framtt_admin.errors import AuditConflict, AuditSinkError
from framtt_admin.logging_config import get_logger
from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.models.impersonation import (
    ImpersonationHistory,
    ImpersonationHistoryQuery,
    ImpersonationRecord,
)

logger = get_logger(__name__)


def generate_record_id() -> str:
    """Generate a unique impersonation record ID."""
    return f"imp-{secrets.token_hex(12)}"


def generate_event_id() -> str:
    """Generate a unique audit event ID."""
    return f"audit-{secrets.token_hex(12)}"


def matches_query(record: ImpersonationRecord, query: ImpersonationHistoryQuery) -> bool:
    """Whether ``record`` passes the history filters."""
    if query.status and record.status != query.status:
        return False
    if query.impersonator_id and record.impersonator_id != query.impersonator_id:
        return False
    if query.target_id and record.target_id != query.target_id:
        return False
    if query.start_time and record.started_at < query.start_time:
        return False
    if query.end_time and record.started_at > query.end_time:
        return False
    return True


class AuditSink(ABC):
    """Interface the authentication core uses to persist audit data."""

    async def start(self) -> None:
        """Prepare the sink (create tables, open connections)."""

    async def stop(self) -> None:
        """Release resources held by the sink."""

    @abstractmethod
    async def record(self, event: AuditEvent) -> AuditEvent:
        """Append an audit event and return it with its assigned ID."""

    @abstractmethod
    async def open_impersonation(self, record: ImpersonationRecord) -> str:
        """
        Persist a new open impersonation record.

        Raises:
            AuditConflict: The impersonator already has an open record.
            AuditSinkError: The record could not be written.
        """

    @abstractmethod
    async def close_impersonation(
        self,
        record_id: str,
        end_time: datetime,
        end_reason: str = "manual_stop",
    ) -> ImpersonationRecord | None:
        """Set the end time of an open record. Returns None if it was not open."""

    @abstractmethod
    async def find_open_impersonation(self, impersonator_id: str) -> ImpersonationRecord | None:
        """The open record for ``impersonator_id``, if any."""

    @abstractmethod
    async def get_impersonation(self, record_id: str) -> ImpersonationRecord | None:
        """Look up a record by ID."""

    @abstractmethod
    async def query_impersonations(
        self, query: ImpersonationHistoryQuery
    ) -> ImpersonationHistory:
        """Records matching ``query``, newest first."""

    @abstractmethod
    async def query_events(
        self,
        action: AuditAction | None = None,
        actor_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Recent audit events, newest first."""

    @abstractmethod
    async def close_expired(self, now: datetime, end_reason: str = "expired") -> int:
        """Close open records whose token expiry is before ``now``."""


class InMemoryAuditSink(AuditSink):
    """
    Process-local audit sink.

    Used for development and tests. All mutations run under one lock, so the
    open-record uniqueness check and the insert are atomic within a process.
    """

    def __init__(self, max_events: int = 5000) -> None:
        self._events: list[AuditEvent] = []
        self._records: dict[str, ImpersonationRecord] = {}
        self._open_by_impersonator: dict[str, str] = {}
        self._lock = threading.Lock()
        self._max_events = max_events

    async def record(self, event: AuditEvent) -> AuditEvent:
        event = event.model_copy(update={"id": event.id or generate_event_id()})
        with self._lock:
            self._events.append(event)
            if len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]
        return event

    async def open_impersonation(self, record: ImpersonationRecord) -> str:
        if not record.is_open:
            raise AuditSinkError(f"Record {record.id} is already closed")
        with self._lock:
            existing = self._open_by_impersonator.get(record.impersonator_id)
            if existing is not None:
                raise AuditConflict(
                    f"Impersonator {record.impersonator_id} already has open record {existing}"
                )
            if record.id in self._records:
                raise AuditSinkError(f"Duplicate record ID {record.id}")
            self._records[record.id] = record
            self._open_by_impersonator[record.impersonator_id] = record.id
        return record.id

    async def close_impersonation(
        self,
        record_id: str,
        end_time: datetime,
        end_reason: str = "manual_stop",
    ) -> ImpersonationRecord | None:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or not record.is_open:
                return None
            record = record.model_copy(update={"ended_at": end_time, "end_reason": end_reason})
            self._records[record_id] = record
            self._open_by_impersonator.pop(record.impersonator_id, None)
        return record

    async def find_open_impersonation(self, impersonator_id: str) -> ImpersonationRecord | None:
        with self._lock:
            record_id = self._open_by_impersonator.get(impersonator_id)
            return self._records.get(record_id) if record_id else None

    async def get_impersonation(self, record_id: str) -> ImpersonationRecord | None:
        return self._records.get(record_id)

    async def query_impersonations(
        self, query: ImpersonationHistoryQuery
    ) -> ImpersonationHistory:
        with self._lock:
            records = [r for r in self._records.values() if matches_query(r, query)]

        records.sort(key=lambda r: r.started_at, reverse=True)
        return ImpersonationHistory(
            records=records[query.offset : query.offset + query.limit],
            total=len(records),
            limit=query.limit,
            offset=query.offset,
        )

    async def query_events(
        self,
        action: AuditAction | None = None,
        actor_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._lock:
            events = list(self._events)

        if action:
            events = [e for e in events if e.action == action]
        if actor_id:
            events = [e for e in events if e.actor_id == actor_id]
        events.reverse()
        return events[:limit]

    async def close_expired(self, now: datetime, end_reason: str = "expired") -> int:
        closed = 0
        with self._lock:
            stale = [r for r in self._records.values() if r.is_open and r.expires_at < now]
        for record in stale:
            if await self.close_impersonation(record.id, now, end_reason):
                closed += 1
        if closed:
            logger.info(f"Closed {closed} expired impersonation records")
        return closed


async def record_best_effort(
    sink: AuditSink, event: AuditEvent, timeout: float
) -> AuditEvent | None:
    """
    Record ``event`` without letting audit failures reach the caller.

    Used where the action must proceed even when the audit trail is
    degraded. The failure is logged instead.
    """
    try:
        return await asyncio.wait_for(sink.record(event), timeout=timeout)
    except (AuditSinkError, asyncio.TimeoutError) as e:
        logger.warning(
            f"Audit event {event.action.value} not recorded: {str(e) or 'timeout'}",
            extra={"event_type": "audit.degraded", "target_id": event.target_id},
        )
        return None
