"""
SQLAlchemy-backed audit sink for PostgreSQL (production) and SQLite (development).

A partial unique index on ``impersonator_id WHERE ended_at IS NULL`` makes
the database the arbiter of "one open impersonation per impersonator", so
the rule holds across server instances. A violation surfaces as
``AuditConflict``.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import NullPool

from framtt_admin.errors import AuditConflict, AuditSinkError
from framtt_admin.logging_config import get_logger
from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.models.impersonation import (
    ImpersonationHistory,
    ImpersonationHistoryQuery,
    ImpersonationRecord,
    ImpersonationStatus,
)
from framtt_admin.models.principal import Role
from framtt_admin.services.audit_service import AuditSink, generate_event_id

logger = get_logger(__name__)


def _utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class ImpersonationRecordRow(Base):
    __tablename__ = "impersonation_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    impersonator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    impersonator_role: Mapped[str] = mapped_column(String(20), nullable=False)
    target_role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "uq_impersonation_open_per_impersonator",
            "impersonator_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL"),
            postgresql_where=text("ended_at IS NULL"),
        ),
    )

    def to_model(self) -> ImpersonationRecord:
        return ImpersonationRecord(
            id=self.id,
            impersonator_id=self.impersonator_id,
            target_id=self.target_id,
            impersonator_role=Role(self.impersonator_role),
            target_role=Role(self.target_role),
            reason=self.reason,
            started_at=_utc(self.started_at),
            expires_at=_utc(self.expires_at),
            ended_at=_utc(self.ended_at),
            end_reason=self.end_reason,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )


class AuditEventRow(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    target_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_model(self) -> AuditEvent:
        return AuditEvent(
            id=self.id,
            timestamp=_utc(self.timestamp),
            action=AuditAction(self.action),
            actor_id=self.actor_id,
            target_id=self.target_id,
            success=self.success,
            details=self.details or {},
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )


class SqlAuditSink(AuditSink):
    """Audit sink on a relational database through SQLAlchemy's async engine."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self._database_url = database_url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker | None = None

    async def start(self) -> None:
        """Create the engine and make sure the tables exist."""
        if self._database_url.startswith("sqlite"):
            self._engine = create_async_engine(
                self._database_url, echo=self._echo, poolclass=NullPool
            )
        else:
            self._engine = create_async_engine(
                self._database_url, echo=self._echo, pool_pre_ping=True
            )
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not initialize audit tables: {e}") from e

        logger.info("SQL audit sink started")

    async def stop(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.info("SQL audit sink stopped")

    def _sessions(self) -> async_sessionmaker:
        if self._session_factory is None:
            raise AuditSinkError("Audit sink has not been started")
        return self._session_factory

    async def record(self, event: AuditEvent) -> AuditEvent:
        event = event.model_copy(update={"id": event.id or generate_event_id()})
        row = AuditEventRow(
            id=event.id,
            timestamp=event.timestamp,
            action=event.action.value,
            actor_id=event.actor_id,
            target_id=event.target_id,
            success=event.success,
            details=event.details,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
        )
        try:
            async with self._sessions()() as session, session.begin():
                session.add(row)
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not record audit event: {e}") from e
        return event

    async def open_impersonation(self, record: ImpersonationRecord) -> str:
        if not record.is_open:
            raise AuditSinkError(f"Record {record.id} is already closed")
        row = ImpersonationRecordRow(
            id=record.id,
            impersonator_id=record.impersonator_id,
            target_id=record.target_id,
            impersonator_role=record.impersonator_role.value,
            target_role=record.target_role.value,
            reason=record.reason,
            started_at=record.started_at,
            expires_at=record.expires_at,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        )
        try:
            async with self._sessions()() as session, session.begin():
                session.add(row)
        except IntegrityError as e:
            raise AuditConflict(
                f"Impersonator {record.impersonator_id} already has an open record"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not open impersonation record: {e}") from e
        return record.id

    async def close_impersonation(
        self,
        record_id: str,
        end_time: datetime,
        end_reason: str = "manual_stop",
    ) -> ImpersonationRecord | None:
        stmt = (
            update(ImpersonationRecordRow)
            .where(
                ImpersonationRecordRow.id == record_id,
                ImpersonationRecordRow.ended_at.is_(None),
            )
            .values(ended_at=end_time, end_reason=end_reason)
        )
        try:
            async with self._sessions()() as session, session.begin():
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    return None
                row = await session.get(ImpersonationRecordRow, record_id)
                return row.to_model() if row else None
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not close impersonation record: {e}") from e

    async def find_open_impersonation(self, impersonator_id: str) -> ImpersonationRecord | None:
        stmt = select(ImpersonationRecordRow).where(
            ImpersonationRecordRow.impersonator_id == impersonator_id,
            ImpersonationRecordRow.ended_at.is_(None),
        )
        try:
            async with self._sessions()() as session:
                row = (await session.execute(stmt)).scalars().first()
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not query impersonation records: {e}") from e
        return row.to_model() if row else None

    async def get_impersonation(self, record_id: str) -> ImpersonationRecord | None:
        try:
            async with self._sessions()() as session:
                row = await session.get(ImpersonationRecordRow, record_id)
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not load impersonation record: {e}") from e
        return row.to_model() if row else None

    async def query_impersonations(
        self, query: ImpersonationHistoryQuery
    ) -> ImpersonationHistory:
        conditions = []
        if query.status == ImpersonationStatus.ACTIVE:
            conditions.append(ImpersonationRecordRow.ended_at.is_(None))
        elif query.status == ImpersonationStatus.ENDED:
            conditions.append(ImpersonationRecordRow.ended_at.is_not(None))
        if query.impersonator_id:
            conditions.append(ImpersonationRecordRow.impersonator_id == query.impersonator_id)
        if query.target_id:
            conditions.append(ImpersonationRecordRow.target_id == query.target_id)
        if query.start_time:
            conditions.append(ImpersonationRecordRow.started_at >= query.start_time)
        if query.end_time:
            conditions.append(ImpersonationRecordRow.started_at <= query.end_time)

        count_stmt = select(func.count()).select_from(ImpersonationRecordRow).where(*conditions)
        page_stmt = (
            select(ImpersonationRecordRow)
            .where(*conditions)
            .order_by(ImpersonationRecordRow.started_at.desc())
            .offset(query.offset)
            .limit(query.limit)
        )
        try:
            async with self._sessions()() as session:
                total = (await session.execute(count_stmt)).scalar_one()
                rows = (await session.execute(page_stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not query impersonation history: {e}") from e

        return ImpersonationHistory(
            records=[row.to_model() for row in rows],
            total=total,
            limit=query.limit,
            offset=query.offset,
        )

    async def query_events(
        self,
        action: AuditAction | None = None,
        actor_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditEventRow)
        if action:
            stmt = stmt.where(AuditEventRow.action == action.value)
        if actor_id:
            stmt = stmt.where(AuditEventRow.actor_id == actor_id)
        stmt = stmt.order_by(AuditEventRow.timestamp.desc()).limit(limit)
        try:
            async with self._sessions()() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not query audit events: {e}") from e
        return [row.to_model() for row in rows]

    async def close_expired(self, now: datetime, end_reason: str = "expired") -> int:
        stmt = (
            update(ImpersonationRecordRow)
            .where(
                ImpersonationRecordRow.ended_at.is_(None),
                ImpersonationRecordRow.expires_at < now,
            )
            .values(ended_at=now, end_reason=end_reason)
        )
        try:
            async with self._sessions()() as session, session.begin():
                result = await session.execute(stmt)
        except (SQLAlchemyError, OSError) as e:
            raise AuditSinkError(f"Could not close expired records: {e}") from e
        if result.rowcount:
            logger.info(f"Closed {result.rowcount} expired impersonation records")
        return result.rowcount
