"""PostgreSQL sink for order book snapshots."""

import asyncio
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg
from asyncpg import Pool

from ..config.settings import StorageConfig
from ..exceptions import ConfigurationError, PersistenceError
from ..models import OrderBookSnapshot
from .base import OrderBookSink


logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

# asyncio.TimeoutError only became an OSError subclass in 3.11
_DATABASE_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PostgresOrderBookSink(OrderBookSink):
    """Stores snapshots in one table partitioned logically by symbol."""

    def __init__(self, config: StorageConfig):
        if not _IDENTIFIER.match(config.table):
            raise ConfigurationError(f"Invalid table name: {config.table!r}")

        self.config = config
        self.table = config.table
        self.pool: Optional[Pool] = None

        self.stats = {
            "records_written": 0,
            "batches_written": 0,
            "write_errors": 0,
            "last_write_time": None
        }

        logger.info(f"PostgresOrderBookSink initialized for table {self.table}")

    async def initialize(self):
        """Initialize database connection pool."""

        logger.info("Initializing database connection pool")

        try:
            self.pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                user=self.config.user,
                password=self.config.password,
                database=self.config.name,
                min_size=self.config.pool_min_size,
                max_size=self.config.pool_max_size,
                command_timeout=60
            )

            await self._create_tables()

            logger.info("Database connection pool initialized successfully")

        except _DATABASE_ERRORS as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise PersistenceError(f"Failed to initialize database: {e}") from e

    async def close(self):
        """Close database connection pool."""

        if self.pool:
            logger.info("Closing database connection pool")
            await self.pool.close()
            self.pool = None

    async def _create_tables(self):
        """Create the snapshot table and its index if they don't exist."""

        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id BIGSERIAL PRIMARY KEY,
                    symbol VARCHAR(128) NOT NULL,
                    symbol_id VARCHAR(128) NOT NULL,
                    time_exchange TIMESTAMPTZ NOT NULL,
                    time_coinapi TIMESTAMPTZ NOT NULL,
                    asks JSONB NOT NULL,
                    bids JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)

            # Resume queries read MAX(time_exchange) per symbol
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table}_symbol_time
                ON {self.table}(symbol, time_exchange)
            """)

            logger.info(f"Table {self.table} and indexes ready")

    async def append_many(self, symbol: str, records: List[OrderBookSnapshot]) -> int:
        """Insert a page of snapshots in one transaction."""

        if not records:
            return 0

        rows = [self._to_row(symbol, record) for record in records]

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(f"""
                        INSERT INTO {self.table}
                            (symbol, symbol_id, time_exchange, time_coinapi, asks, bids)
                        VALUES ($1, $2, $3, $4, $5, $6)
                    """, rows)

        except _DATABASE_ERRORS as e:
            self.stats["write_errors"] += 1
            raise PersistenceError(f"Failed to store {len(rows)} records for {symbol}: {e}") from e

        self.stats["records_written"] += len(rows)
        self.stats["batches_written"] += 1
        self.stats["last_write_time"] = datetime.now()

        logger.debug(f"Wrote {len(rows)} records for {symbol}")
        return len(rows)

    async def latest_timestamp(self, symbol: str) -> Optional[datetime]:
        """Get the latest exchange timestamp stored for a symbol."""

        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(f"""
                    SELECT MAX(time_exchange)
                    FROM {self.table}
                    WHERE symbol = $1
                """, symbol)

        except _DATABASE_ERRORS as e:
            raise PersistenceError(f"Failed to query latest timestamp for {symbol}: {e}") from e

    @staticmethod
    def _to_row(symbol: str, record: OrderBookSnapshot) -> tuple:
        document: Dict[str, Any] = record.to_document()
        return (
            symbol,
            record.symbol_id,
            record.time_exchange,
            record.time_coinapi,
            json.dumps(document['asks']),
            json.dumps(document['bids']),
        )
