"""Unit tests for the PostgreSQL persistence gateway.

The asyncpg pool is replaced with a fake whose connection records every
statement, so these tests check the SQL contract without a database.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import asyncpg
import pytest

from src.featureflow.state.gateway import (
    ADDITIVE_COLUMNS,
    DatabaseError,
    DuplicateRecordError,
    PersistenceGateway,
    PostgresPersistenceGateway,
    WRITABLE_COLUMNS,
)
from src.featureflow.workflow.models import FeatureRequestRecord, WorkflowState
from tests.fakes import InMemoryPersistenceGateway, run_async


class FakeConnection:
    def __init__(self):
        self.execute = AsyncMock(return_value="UPDATE 1")
        self.fetch = AsyncMock(return_value=[])
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=1)


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.close = AsyncMock()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def pg_gateway(conn):
    gateway = PostgresPersistenceGateway("postgresql://u:p@localhost/featureflow")
    gateway._pool = FakePool(conn)
    return gateway


def _sql(call) -> str:
    return " ".join(call.args[0].split())


class TestProtocol:
    def test_implementations_satisfy_protocol(self):
        gateway = PostgresPersistenceGateway("postgresql://localhost/db")
        assert isinstance(gateway, PersistenceGateway)
        assert isinstance(InMemoryPersistenceGateway(), PersistenceGateway)


class TestPool:
    def test_pool_access_before_connect_raises(self):
        gateway = PostgresPersistenceGateway("postgresql://localhost/db")
        with pytest.raises(DatabaseError):
            run_async(gateway.create(FeatureRequestRecord(thread_id="t1")))

    def test_disconnect_closes_pool(self, pg_gateway):
        pool = pg_gateway._pool
        run_async(pg_gateway.disconnect())
        pool.close.assert_awaited_once()
        assert pg_gateway._pool is None


class TestInitialize:
    def test_creates_table_then_adds_columns(self, pg_gateway, conn):
        conn.execute.return_value = None
        run_async(pg_gateway.initialize())

        statements = [_sql(call) for call in conn.execute.call_args_list]
        assert statements[0].startswith("CREATE TABLE IF NOT EXISTS feature_requests")
        assert "thread_id TEXT NOT NULL UNIQUE" in statements[0]
        assert statements[1:] == [
            f"ALTER TABLE feature_requests ADD COLUMN {name} {column_type}"
            for name, column_type in ADDITIVE_COLUMNS
        ]

    def test_existing_and_failing_columns_do_not_abort_startup(self, pg_gateway, conn):
        conn.execute.side_effect = [
            None,
            asyncpg.DuplicateColumnError("column user_id already exists"),
            asyncpg.DuplicateColumnError("column channel_id already exists"),
            RuntimeError("lock timeout"),
            None,
            None,
        ]
        run_async(pg_gateway.initialize())

        assert conn.execute.await_count == 1 + len(ADDITIVE_COLUMNS)

    def test_table_creation_failure_raises(self, pg_gateway, conn):
        conn.execute.side_effect = RuntimeError("permission denied")
        with pytest.raises(DatabaseError):
            run_async(pg_gateway.initialize())


class TestCreate:
    def test_inserts_every_writable_column(self, pg_gateway, conn):
        record = FeatureRequestRecord(
            thread_id="t1",
            channel_id="C1",
            username="ada",
            repo_name="gisbot",
            state=WorkflowState.AWAITING_REQUEST,
        )
        run_async(pg_gateway.create(record))

        call = conn.execute.call_args
        assert "INSERT INTO feature_requests" in _sql(call)
        values = call.args[1:]
        assert values[0] == "t1"
        assert len(values) == 1 + len(WRITABLE_COLUMNS)
        by_column = dict(zip(WRITABLE_COLUMNS, values[1:]))
        assert by_column["state"] == "AWAITING_REQUEST"
        assert by_column["repo_name"] == "gisbot"
        assert by_column["pr_url"] is None

    def test_unique_violation_becomes_duplicate_error(self, pg_gateway, conn):
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key")
        with pytest.raises(DuplicateRecordError) as exc_info:
            run_async(pg_gateway.create(FeatureRequestRecord(thread_id="t1")))
        assert exc_info.value.thread_id == "t1"

    def test_other_failures_become_database_error(self, pg_gateway, conn):
        conn.execute.side_effect = OSError("connection reset")
        with pytest.raises(DatabaseError) as exc_info:
            run_async(pg_gateway.create(FeatureRequestRecord(thread_id="t1")))
        assert not isinstance(exc_info.value, DuplicateRecordError)


class TestUpdate:
    def test_empty_fields_issue_no_query(self, pg_gateway, conn):
        run_async(pg_gateway.update("t1", {}))
        conn.execute.assert_not_awaited()

    def test_patches_fields_and_bumps_last_updated(self, pg_gateway, conn):
        run_async(
            pg_gateway.update(
                "t1",
                {"state": WorkflowState.FINALIZING, "final_plan": "1. Add toggle"},
            )
        )

        call = conn.execute.call_args
        sql = _sql(call)
        assert "SET state = $1, final_plan = $2, last_updated = now()" in sql
        assert "WHERE thread_id = $3" in sql
        assert call.args[1:] == ("FINALIZING", "1. Add toggle", "t1")

    def test_unknown_column_rejected(self, pg_gateway, conn):
        with pytest.raises(ValueError):
            run_async(pg_gateway.update("t1", {"id": 5}))
        conn.execute.assert_not_awaited()

    def test_missing_row_is_not_an_error(self, pg_gateway, conn):
        conn.execute.return_value = "UPDATE 0"
        run_async(pg_gateway.update("t1", {"pr_url": None}))

    def test_failure_becomes_database_error(self, pg_gateway, conn):
        conn.execute.side_effect = RuntimeError("server closed the connection")
        with pytest.raises(DatabaseError):
            run_async(pg_gateway.update("t1", {"state": "COMPLETED"}))


class TestQueries:
    def test_list_open_excludes_terminal_states(self, pg_gateway, conn):
        conn.fetch.return_value = [
            {"thread_id": "t1", "state": "MONITORING_PR", "pr_url": "https://github.com/a/b/pull/1"},
            {"thread_id": "t2", "state": None, "repo_name": "gisbot"},
        ]
        records = run_async(pg_gateway.list_open())

        call = conn.fetch.call_args
        assert "state IS NULL OR NOT (state = ANY($1::text[]))" in _sql(call)
        assert call.args[1] == ["ABORTED", "COMPLETED"]
        assert [r.thread_id for r in records] == ["t1", "t2"]
        assert records[0].state == WorkflowState.MONITORING_PR
        assert records[1].state is None

    def test_list_open_failure_raises(self, pg_gateway, conn):
        conn.fetch.side_effect = RuntimeError("boom")
        with pytest.raises(DatabaseError):
            run_async(pg_gateway.list_open())

    def test_get_returns_record_or_none(self, pg_gateway, conn):
        assert run_async(pg_gateway.get("missing")) is None

        conn.fetchrow.return_value = {"thread_id": "t1", "state": "AWAITING_APPROVAL"}
        record = run_async(pg_gateway.get("t1"))
        assert record.state == WorkflowState.AWAITING_APPROVAL

    def test_health_check(self, pg_gateway, conn):
        assert run_async(pg_gateway.health_check()) is True

        conn.fetchval.side_effect = RuntimeError("down")
        assert run_async(pg_gateway.health_check()) is False

    def test_health_check_without_pool(self):
        gateway = PostgresPersistenceGateway("postgresql://localhost/db")
        assert run_async(gateway.health_check()) is False
