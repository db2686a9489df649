"""
Tests for the audit sinks.

The same behaviour is checked against the in-memory sink and the SQL sink
on a file-backed SQLite database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from framtt_admin.errors import AuditConflict, AuditSinkError
from framtt_admin.models.audit import AuditAction, AuditEvent
from framtt_admin.models.impersonation import (
    ImpersonationHistoryQuery,
    ImpersonationRecord,
    ImpersonationStatus,
)
from framtt_admin.models.principal import Role
from framtt_admin.services.audit_service import InMemoryAuditSink, generate_record_id
from framtt_admin.services.sql_audit_sink import SqlAuditSink


@pytest.fixture(params=["memory", "sql"])
async def sink(request, tmp_path):
    """Started audit sink of each flavour."""
    if request.param == "memory":
        sink = InMemoryAuditSink()
    else:
        sink = SqlAuditSink(f"sqlite+aiosqlite:///{tmp_path}/audit.db")
    await sink.start()
    yield sink
    await sink.stop()


@pytest.fixture
def make_record(fixed_datetime):
    """Factory for open impersonation records."""

    def _make(
        impersonator_id: str = "1",
        target_id: str = "5",
        started_at: datetime | None = None,
        **kwargs,
    ) -> ImpersonationRecord:
        started_at = started_at or fixed_datetime
        return ImpersonationRecord(
            id=kwargs.pop("id", generate_record_id()),
            impersonator_id=impersonator_id,
            target_id=target_id,
            impersonator_role=kwargs.pop("impersonator_role", Role.ADMIN),
            target_role=kwargs.pop("target_role", Role.USER),
            reason=kwargs.pop("reason", "support ticket"),
            started_at=started_at,
            expires_at=kwargs.pop("expires_at", started_at + timedelta(hours=1)),
            **kwargs,
        )

    return _make


class TestImpersonationRecords:
    """Tests for the open/close lifecycle of impersonation records."""

    @pytest.mark.integration
    async def test_open_and_find(self, sink, make_record):
        record = make_record(ip_address="10.0.0.1")

        assert await sink.open_impersonation(record) == record.id

        found = await sink.find_open_impersonation("1")
        assert found is not None
        assert found.id == record.id
        assert found.started_at == record.started_at
        assert found.ip_address == "10.0.0.1"
        assert found.is_open

    @pytest.mark.integration
    @pytest.mark.critical
    async def test_second_open_record_conflicts(self, sink, make_record):
        await sink.open_impersonation(make_record())

        with pytest.raises(AuditConflict):
            await sink.open_impersonation(make_record(target_id="7"))

    @pytest.mark.integration
    async def test_different_impersonators_do_not_conflict(self, sink, make_record):
        await sink.open_impersonation(make_record(impersonator_id="1"))
        await sink.open_impersonation(make_record(impersonator_id="3"))

        assert await sink.find_open_impersonation("3") is not None

    @pytest.mark.integration
    async def test_close_then_reopen(self, sink, make_record, fixed_datetime):
        first = make_record()
        await sink.open_impersonation(first)

        closed = await sink.close_impersonation(first.id, fixed_datetime + timedelta(minutes=5))

        assert closed.ended_at == fixed_datetime + timedelta(minutes=5)
        assert closed.end_reason == "manual_stop"
        assert closed.duration_seconds == 300
        assert await sink.find_open_impersonation("1") is None

        await sink.open_impersonation(make_record())
        assert (await sink.find_open_impersonation("1")).id != first.id

    @pytest.mark.integration
    async def test_close_twice_returns_none(self, sink, make_record, fixed_datetime):
        record = make_record()
        await sink.open_impersonation(record)
        await sink.close_impersonation(record.id, fixed_datetime)

        assert await sink.close_impersonation(record.id, fixed_datetime) is None
        assert await sink.close_impersonation("imp-missing", fixed_datetime) is None

    @pytest.mark.integration
    async def test_get_impersonation(self, sink, make_record):
        record = make_record()
        await sink.open_impersonation(record)

        assert (await sink.get_impersonation(record.id)).target_id == "5"
        assert await sink.get_impersonation("imp-missing") is None

    @pytest.mark.integration
    async def test_close_expired(self, sink, make_record, fixed_datetime):
        stale = make_record(impersonator_id="1", started_at=fixed_datetime - timedelta(hours=3))
        fresh = make_record(impersonator_id="3", started_at=fixed_datetime)
        await sink.open_impersonation(stale)
        await sink.open_impersonation(fresh)

        closed = await sink.close_expired(fixed_datetime + timedelta(minutes=1))

        assert closed == 1
        swept = await sink.get_impersonation(stale.id)
        assert swept.end_reason == "expired"
        assert await sink.find_open_impersonation("3") is not None


class TestHistoryQueries:
    """Tests for history filtering and pagination."""

    @pytest.fixture
    async def history(self, sink, make_record, fixed_datetime):
        for i in range(5):
            record = make_record(
                impersonator_id="1",
                target_id=f"t{i}",
                started_at=fixed_datetime + timedelta(hours=i),
            )
            await sink.open_impersonation(record)
            if i < 4:
                await sink.close_impersonation(
                    record.id, fixed_datetime + timedelta(hours=i, minutes=10)
                )
        await sink.open_impersonation(make_record(impersonator_id="3", target_id="t0"))
        return sink

    @pytest.mark.integration
    async def test_newest_first_with_pagination(self, history):
        page = await history.query_impersonations(
            ImpersonationHistoryQuery(impersonator_id="1", limit=2, offset=1)
        )

        assert page.total == 5
        assert [r.target_id for r in page.records] == ["t3", "t2"]

    @pytest.mark.integration
    async def test_status_filter(self, history):
        active = await history.query_impersonations(
            ImpersonationHistoryQuery(status=ImpersonationStatus.ACTIVE)
        )
        ended = await history.query_impersonations(
            ImpersonationHistoryQuery(status=ImpersonationStatus.ENDED, limit=100)
        )

        assert active.total == 2
        assert ended.total == 4
        assert all(not r.is_open for r in ended.records)

    @pytest.mark.integration
    async def test_target_and_time_filters(self, history, fixed_datetime):
        by_target = await history.query_impersonations(
            ImpersonationHistoryQuery(target_id="t0")
        )
        window = await history.query_impersonations(
            ImpersonationHistoryQuery(
                impersonator_id="1",
                start_time=fixed_datetime + timedelta(hours=1),
                end_time=fixed_datetime + timedelta(hours=2),
            )
        )

        assert by_target.total == 2
        assert sorted(r.target_id for r in window.records) == ["t1", "t2"]


class TestAuditEvents:
    """Tests for the append-only event log."""

    @pytest.mark.integration
    async def test_record_assigns_id(self, sink):
        event = await sink.record(AuditEvent(action=AuditAction.LOGIN, actor_id="1"))

        assert event.id is not None
        assert event.id.startswith("audit-")

    @pytest.mark.integration
    async def test_query_events_newest_first(self, sink, fixed_datetime):
        for minutes, actor in [(0, "1"), (1, "2"), (2, "1")]:
            await sink.record(
                AuditEvent(
                    action=AuditAction.LOGIN,
                    actor_id=actor,
                    timestamp=fixed_datetime + timedelta(minutes=minutes),
                    details={"email": f"{actor}@framtt.test"},
                )
            )
        await sink.record(
            AuditEvent(
                action=AuditAction.LOGIN_FAILED,
                actor_id="1",
                success=False,
                timestamp=fixed_datetime + timedelta(minutes=3),
            )
        )

        logins = await sink.query_events(action=AuditAction.LOGIN)
        mine = await sink.query_events(actor_id="1", limit=2)

        assert [e.actor_id for e in logins] == ["1", "2", "1"]
        assert logins[0].timestamp == fixed_datetime + timedelta(minutes=2)
        assert logins[0].details == {"email": "1@framtt.test"}
        assert [e.action for e in mine] == [AuditAction.LOGIN_FAILED, AuditAction.LOGIN]


class TestSqlSinkLifecycle:
    """Tests specific to the SQL sink."""

    @pytest.mark.integration
    async def test_unstarted_sink_raises(self, make_record):
        sink = SqlAuditSink("sqlite+aiosqlite:///:memory:")

        with pytest.raises(AuditSinkError):
            await sink.open_impersonation(make_record())

    @pytest.mark.integration
    async def test_records_survive_restart(self, tmp_path, make_record):
        url = f"sqlite+aiosqlite:///{tmp_path}/restart.db"
        record = make_record()

        first = SqlAuditSink(url)
        await first.start()
        await first.open_impersonation(record)
        await first.stop()

        second = SqlAuditSink(url)
        await second.start()
        try:
            assert (await second.find_open_impersonation("1")).id == record.id
            with pytest.raises(AuditConflict):
                await second.open_impersonation(make_record())
        finally:
            await second.stop()

    @pytest.mark.unit
    async def test_memory_sink_rejects_closed_records(self, make_record, fixed_datetime):
        sink = InMemoryAuditSink()

        with pytest.raises(AuditSinkError):
            await sink.open_impersonation(make_record(ended_at=fixed_datetime))
