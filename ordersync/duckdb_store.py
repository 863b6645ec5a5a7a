"""
DuckDB store for the synced Shopify replica.

Holds orders, their transactions and the per-entity sync state. Query
methods are organized into repository mixins:
- SyncStateMixin: sync state row, lease and optimistic version checks
- OrdersMixin: idempotent order/transaction upserts and id resolution
- AnalyticsMixin: keyset-paginated streaming aggregations
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any

import duckdb

from ordersync.duckdb_constants import DB_PATH, DEFAULT_QUERY_TIMEOUT
from ordersync.exceptions import QueryTimeoutError
from ordersync.observability import get_logger
from ordersync.repositories import SyncStateMixin, OrdersMixin, AnalyticsMixin

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE SEQUENCE IF NOT EXISTS orders_id_seq START 1;
CREATE SEQUENCE IF NOT EXISTS transactions_id_seq START 1;

-- One row per Shopify order; external_id is the only idempotency key
CREATE TABLE IF NOT EXISTS orders (
    id BIGINT PRIMARY KEY DEFAULT nextval('orders_id_seq'),
    external_id VARCHAR NOT NULL UNIQUE,
    name VARCHAR NOT NULL,
    created_at TIMESTAMP WITH TIME ZONE,
    processed_at TIMESTAMP WITH TIME ZONE,
    updated_at TIMESTAMP WITH TIME ZONE,
    financial_status VARCHAR,
    source_name VARCHAR,
    channel_id VARCHAR,
    channel_display_name VARCHAR,
    subtotal_amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
    total_amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
    total_tax_amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
    total_discounts_amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
    total_shipping_amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
    currency VARCHAR(3) NOT NULL DEFAULT 'USD',
    test BOOLEAN NOT NULL DEFAULT false,
    last_synced_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS transactions (
    id BIGINT PRIMARY KEY DEFAULT nextval('transactions_id_seq'),
    external_id VARCHAR NOT NULL UNIQUE,
    order_id BIGINT NOT NULL,
    -- FK to orders(id) omitted: DuckDB rejects updates of referenced rows,
    -- the sync writes orders before their transactions instead
    kind VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
    currency VARCHAR(3) NOT NULL DEFAULT 'USD',
    gateway VARCHAR,
    created_at TIMESTAMP WITH TIME ZONE,
    processed_at TIMESTAMP WITH TIME ZONE,
    source_name VARCHAR,
    channel_id VARCHAR,
    channel_display_name VARCHAR,
    last_synced_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sync_state (
    entity_type VARCHAR PRIMARY KEY,
    last_cursor VARCHAR,
    last_sync_at TIMESTAMP WITH TIME ZONE,
    sync_status VARCHAR NOT NULL DEFAULT 'completed'
        CHECK (sync_status IN ('running', 'completed', 'failed')),
    error_message VARCHAR,
    sync_mode VARCHAR CHECK (sync_mode IS NULL OR sync_mode IN ('initial', 'incremental')),
    filter_query VARCHAR,
    started_at TIMESTAMP WITH TIME ZONE,
    last_success_at TIMESTAMP WITH TIME ZONE,
    version INTEGER NOT NULL DEFAULT 0
);
"""


class DuckDBStore(SyncStateMixin, OrdersMixin, AnalyticsMixin):
    """
    Async-compatible DuckDB store.

    One connection, serialized by an asyncio.Lock. Read-path queries are
    offloaded to a single worker thread with a timeout.
    """

    def __init__(self, db_path: Path = DB_PATH, tracked_entities: tuple = ("orders",)):
        self.db_path = Path(db_path)
        self.tracked_entities = tracked_entities
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    async def connect(self) -> None:
        """Open the database, create the schema and seed sync state rows."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                self._connection = duckdb.connect(str(self.db_path))
                self._connection.execute("SET TimeZone = 'UTC'")
                self._init_schema()

                # Single worker - DuckDB connections are not thread-safe
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="duckdb")

                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection and thread pool."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None

            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @asynccontextmanager
    async def connection(self):
        """Yield the connection while holding the store lock."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    def _init_schema(self) -> None:
        """Create tables and seed one completed sync_state row per tracked entity."""
        self._connection.execute(SCHEMA_SQL)
        for entity_type in self.tracked_entities:
            self._connection.execute(
                """
                INSERT INTO sync_state (entity_type, sync_status, version)
                VALUES (?, 'completed', 0)
                ON CONFLICT (entity_type) DO NOTHING
                """,
                [entity_type],
            )

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _fetch_all(
        self,
        query: str,
        params: list = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
    ) -> List[tuple]:
        """
        Execute query in the worker thread and fetch all rows.

        Raises:
            QueryTimeoutError: If query exceeds timeout
        """
        async with self.connection() as conn:
            self._total_queries += 1
            loop = asyncio.get_running_loop()

            def _run():
                return conn.execute(query, params or []).fetchall()

            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(self._executor, _run),
                    timeout=timeout
                )
            except asyncio.TimeoutError:
                conn.interrupt()
                raise QueryTimeoutError(query, timeout, "Fetch all failed")

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts and file size for health checks."""
        async with self.connection() as conn:
            orders_count = conn.execute("SELECT COUNT(*) FROM orders").fetchone()[0]
            transactions_count = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
            test_orders = conn.execute("SELECT COUNT(*) FROM orders WHERE test").fetchone()[0]
            min_date, max_date = conn.execute(
                "SELECT MIN(created_at), MAX(created_at) FROM orders"
            ).fetchone()

        return {
            "orders": orders_count,
            "transactions": transactions_count,
            "test_orders": test_orders,
            "date_range": {
                "min": min_date.isoformat() if min_date else None,
                "max": max_date.isoformat() if max_date else None,
            },
            "total_queries": self._total_queries,
            "db_size_mb": round(self.db_path.stat().st_size / 1024 / 1024, 2) if self.db_path.exists() else 0,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[DuckDBStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> DuckDBStore:
    """Get singleton DuckDB store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = DuckDBStore()
            await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
