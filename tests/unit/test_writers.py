"""Tests for the persistence sinks."""

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from orderbook_harvester.config.settings import StorageConfig
from orderbook_harvester.exceptions import ConfigurationError, PersistenceError
from orderbook_harvester.writers import LocalJsonlSink, PostgresOrderBookSink, create_sink

from conftest import T0, make_page


pytestmark = pytest.mark.unit


class TestLocalJsonlSink:

    @pytest.fixture
    def sink(self, tmp_path):
        return LocalJsonlSink(StorageConfig(type="local", local_directory=str(tmp_path / "books")))

    @pytest.mark.asyncio
    async def test_empty_symbol_has_no_latest_timestamp(self, sink):
        await sink.initialize()

        assert await sink.latest_timestamp("X_USD") is None

    @pytest.mark.asyncio
    async def test_appends_accumulate_per_symbol(self, sink):
        await sink.initialize()

        assert await sink.append_many("X_USD", make_page("X_USD", T0, count=3)) == 3
        assert await sink.append_many("X_USD", make_page("X_USD", T0 + timedelta(minutes=1), count=2)) == 2
        await sink.append_many("Y_USD", make_page("Y_USD", T0, count=4))

        with open(sink.path_for("X_USD")) as f:
            documents = [json.loads(line) for line in f]
        assert len(documents) == 5
        assert documents[0]["asks"] == [{"price": "42000.10", "size": "0.015"}]
        assert await sink.latest_timestamp("X_USD") == T0 + timedelta(minutes=1, seconds=40)
        assert await sink.latest_timestamp("Y_USD") == T0 + timedelta(seconds=40)

    @pytest.mark.asyncio
    async def test_duplicates_are_kept(self, sink):
        await sink.initialize()
        page = make_page("X_USD", T0, count=2)

        await sink.append_many("X_USD", page)
        await sink.append_many("X_USD", page)

        with open(sink.path_for("X_USD")) as f:
            assert len(f.readlines()) == 4

    @pytest.mark.asyncio
    async def test_latest_timestamp_ignores_append_order(self, sink):
        await sink.initialize()
        await sink.append_many("X_USD", make_page("X_USD", T0 + timedelta(hours=1), count=2))
        await sink.append_many("X_USD", make_page("X_USD", T0, count=2))

        assert await sink.latest_timestamp("X_USD") == T0 + timedelta(hours=1, seconds=40)

    @pytest.mark.asyncio
    async def test_corrupt_file_is_a_persistence_error(self, sink):
        await sink.initialize()
        with open(sink.path_for("X_USD"), "w") as f:
            f.write("{not json\n")

        with pytest.raises(PersistenceError):
            await sink.latest_timestamp("X_USD")

    @pytest.mark.asyncio
    async def test_interrupted_last_write_is_ignored_and_repaired(self, sink):
        await sink.initialize()
        first = make_page("X_USD", T0, count=50)
        await sink.append_many("X_USD", first)
        with open(sink.path_for("X_USD"), "a") as f:
            f.write('{"symbol_id": "X_USD", "time_exch')

        assert await sink.latest_timestamp("X_USD") == first[-1].time_exchange

        second = make_page("X_USD", T0 + timedelta(minutes=1), count=2)
        await sink.append_many("X_USD", second)

        with open(sink.path_for("X_USD")) as f:
            documents = [json.loads(line) for line in f]
        assert len(documents) == 52
        assert await sink.latest_timestamp("X_USD") == second[-1].time_exchange

    @pytest.mark.asyncio
    async def test_complete_last_record_without_newline_is_kept(self, sink):
        await sink.initialize()
        record = make_page("X_USD", T0, count=1)[0]
        with open(sink.path_for("X_USD"), "w") as f:
            f.write(json.dumps(record.to_document()))

        assert await sink.latest_timestamp("X_USD") == record.time_exchange

        await sink.append_many("X_USD", make_page("X_USD", T0 + timedelta(minutes=1), count=1))

        with open(sink.path_for("X_USD")) as f:
            assert len([json.loads(line) for line in f]) == 2

    @pytest.mark.asyncio
    async def test_corruption_before_the_last_line_stays_fatal(self, sink):
        await sink.initialize()
        await sink.append_many("X_USD", make_page("X_USD", T0, count=2))
        with open(sink.path_for("X_USD"), "a") as f:
            f.write("{not json\n")
        await sink.append_many("X_USD", make_page("X_USD", T0 + timedelta(minutes=1), count=2))

        with pytest.raises(PersistenceError):
            await sink.latest_timestamp("X_USD")

    @pytest.mark.asyncio
    async def test_write_failure_is_a_persistence_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        sink = LocalJsonlSink(StorageConfig(type="local", local_directory=str(blocker)))

        with pytest.raises(PersistenceError):
            await sink.append_many("X_USD", make_page("X_USD", T0, count=1))


class TestPostgresOrderBookSink:

    def test_rejects_unsafe_table_names(self):
        with pytest.raises(ConfigurationError):
            PostgresOrderBookSink(StorageConfig(table="books; DROP TABLE users"))

    def test_rows_store_levels_as_json(self):
        record = make_page("X_USD", T0, count=1)[0]

        row = PostgresOrderBookSink._to_row("X_USD", record)

        assert row[0] == "X_USD"
        assert row[2] == record.time_exchange
        assert json.loads(row[4]) == [{"price": "42000.10", "size": "0.015"}]
        assert json.loads(row[5]) == [{"price": "41999.90", "size": "1.20000000"}]

    @pytest.mark.asyncio
    async def test_initialize_failure_is_a_persistence_error(self):
        sink = PostgresOrderBookSink(StorageConfig())

        with patch("asyncpg.create_pool", AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(PersistenceError, match="connection refused"):
                await sink.initialize()

    @pytest.mark.asyncio
    async def test_append_and_latest_use_the_pool(self):
        sink = PostgresOrderBookSink(StorageConfig())
        conn = MagicMock()
        conn.executemany = AsyncMock()
        conn.fetchval = AsyncMock(return_value=T0)
        conn.transaction.return_value.__aenter__ = AsyncMock()
        conn.transaction.return_value.__aexit__ = AsyncMock(return_value=False)
        sink.pool = _pool_returning(conn)

        written = await sink.append_many("X_USD", make_page("X_USD", T0, count=3))
        latest = await sink.latest_timestamp("X_USD")

        assert written == 3
        assert len(conn.executemany.call_args.args[1]) == 3
        assert latest == T0
        assert conn.fetchval.call_args.args[1] == "X_USD"
        assert sink.stats["records_written"] == 3

    @pytest.mark.asyncio
    async def test_database_errors_become_persistence_errors(self):
        sink = PostgresOrderBookSink(StorageConfig())
        conn = MagicMock()
        conn.fetchval = AsyncMock(side_effect=asyncpg.InterfaceError("connection is closed"))
        sink.pool = _pool_returning(conn)

        with pytest.raises(PersistenceError):
            await sink.latest_timestamp("X_USD")

    @pytest.mark.asyncio
    async def test_command_timeouts_become_persistence_errors(self):
        sink = PostgresOrderBookSink(StorageConfig())
        conn = MagicMock()
        conn.executemany = AsyncMock(side_effect=asyncio.TimeoutError())
        conn.fetchval = AsyncMock(side_effect=asyncio.TimeoutError())
        conn.transaction.return_value.__aenter__ = AsyncMock()
        conn.transaction.return_value.__aexit__ = AsyncMock(return_value=False)
        sink.pool = _pool_returning(conn)

        with pytest.raises(PersistenceError):
            await sink.append_many("X_USD", make_page("X_USD", T0, count=2))
        with pytest.raises(PersistenceError):
            await sink.latest_timestamp("X_USD")
        assert sink.stats["write_errors"] == 1


def _pool_returning(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
    return pool


def test_create_sink_selects_by_type(tmp_path):
    assert isinstance(create_sink(StorageConfig(type="local", local_directory=str(tmp_path))), LocalJsonlSink)
    assert isinstance(create_sink(StorageConfig(type="postgres")), PostgresOrderBookSink)
