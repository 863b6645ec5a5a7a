"""DuckDBStore order and transaction upserts."""
from typing import Optional, List, Dict, Any, Iterable

import pandas as pd

from ordersync.exceptions import StoreWriteError
from ordersync.models import OrderRecord, TransactionRecord
from ordersync.observability import get_logger

logger = get_logger(__name__)

ORDER_COLUMNS = (
    "external_id", "name", "created_at", "processed_at", "updated_at",
    "financial_status", "source_name", "channel_id", "channel_display_name",
    "subtotal_amount", "total_amount", "total_tax_amount",
    "total_discounts_amount", "total_shipping_amount", "currency", "test",
)
TRANSACTION_COLUMNS = (
    "external_id", "order_id", "kind", "status", "amount", "currency", "gateway",
    "created_at", "processed_at", "source_name", "channel_id", "channel_display_name",
)
ORDER_AMOUNTS = (
    "subtotal_amount", "total_amount", "total_tax_amount",
    "total_discounts_amount", "total_shipping_amount",
)

_ORDERS_UPSERT_SQL = f"""
    INSERT INTO orders ({", ".join(ORDER_COLUMNS)}, last_synced_at)
    SELECT
        external_id, name, created_at, processed_at, updated_at,
        financial_status, source_name, channel_id, channel_display_name,
        {", ".join(f"CAST({c} AS DECIMAL(12, 2))" for c in ORDER_AMOUNTS)},
        currency, test, now()
    FROM stg_orders
    ON CONFLICT (external_id) DO UPDATE SET
        {", ".join(f"{c} = excluded.{c}" for c in ORDER_COLUMNS if c != "external_id")},
        last_synced_at = excluded.last_synced_at
"""

_TRANSACTIONS_UPSERT_SQL = f"""
    INSERT INTO transactions ({", ".join(TRANSACTION_COLUMNS)}, last_synced_at)
    SELECT
        external_id, order_id, kind, status, CAST(amount AS DECIMAL(12, 2)), currency, gateway,
        created_at, processed_at, source_name, channel_id, channel_display_name, now()
    FROM stg_transactions
    ON CONFLICT (external_id) DO UPDATE SET
        {", ".join(f"{c} = excluded.{c}" for c in TRANSACTION_COLUMNS if c != "external_id")},
        last_synced_at = excluded.last_synced_at
"""


def _dedupe_last(rows: Iterable[Any]) -> List[Any]:
    """Keep the last row per external_id (one conflict per key per statement)."""
    by_id: Dict[str, Any] = {}
    for row in rows:
        by_id.pop(row.external_id, None)
        by_id[row.external_id] = row
    return list(by_id.values())


def _frame(rows: List[Dict[str, Any]], timestamp_cols: tuple, text_cols: tuple) -> pd.DataFrame:
    df = pd.DataFrame(rows)
    for col in timestamp_cols:
        df[col] = pd.to_datetime(df[col], utc=True)
    # Nullable string columns must not be inferred as object/float by DuckDB
    for col in text_cols:
        df[col] = df[col].astype(pd.StringDtype())
    return df


class OrdersMixin:

    async def upsert_orders(self, orders: List[OrderRecord]) -> int:
        """
        Insert or fully replace orders keyed by external_id (last write wins).

        The surrogate `id` is assigned on first insert and never updated.
        All rows of the call commit together or not at all.

        Returns:
            Number of distinct orders written

        Raises:
            StoreWriteError: The batch was rolled back
        """
        if not orders:
            return 0

        orders = _dedupe_last(orders)
        orders_df = _frame(
            [o.to_row() for o in orders],
            timestamp_cols=("created_at", "processed_at", "updated_at"),
            text_cols=(
                "external_id", "name", "financial_status", "source_name", "channel_id",
                "channel_display_name", "currency", *ORDER_AMOUNTS,
            ),
        )

        await self._write_batch("orders", "stg_orders", orders_df, _ORDERS_UPSERT_SQL)
        logger.debug(f"Upserted {len(orders)} orders")
        return len(orders)

    async def upsert_transactions(self, transactions: List[TransactionRecord]) -> int:
        """
        Insert or fully replace transactions keyed by external_id.

        Callers must upsert the owning orders first and pass resolved
        surrogate ids in `order_id`.

        Raises:
            StoreWriteError: The batch was rolled back
        """
        if not transactions:
            return 0

        transactions = _dedupe_last(transactions)
        transactions_df = _frame(
            [t.to_row() for t in transactions],
            timestamp_cols=("created_at", "processed_at"),
            text_cols=(
                "external_id", "kind", "status", "amount", "currency", "gateway",
                "source_name", "channel_id", "channel_display_name",
            ),
        )
        transactions_df["order_id"] = transactions_df["order_id"].astype("int64")

        await self._write_batch("transactions", "stg_transactions", transactions_df, _TRANSACTIONS_UPSERT_SQL)
        logger.debug(f"Upserted {len(transactions)} transactions")
        return len(transactions)

    async def _write_batch(self, table: str, view: str, df: pd.DataFrame, sql: str) -> None:
        async with self.connection() as conn:
            conn.register(view, df)
            try:
                conn.execute("BEGIN TRANSACTION")
                conn.execute(sql)
                conn.execute("COMMIT")
            except Exception as e:
                conn.execute("ROLLBACK")
                logger.error(
                    f"Upsert into {table} failed, batch rolled back",
                    extra={"table": table, "rows": len(df), "error": str(e)},
                )
                raise StoreWriteError(
                    f"Failed to upsert {table}", details=str(e), table=table, row_count=len(df)
                ) from e
            finally:
                conn.unregister(view)

    async def resolve_local_ids(self, external_ids: List[str]) -> Dict[str, int]:
        """
        Map external order ids to surrogate ids.

        Only ids that exist are returned; call after `upsert_orders` completed.
        """
        if not external_ids:
            return {}

        unique_ids = list(dict.fromkeys(external_ids))
        placeholders = ",".join("?" * len(unique_ids))
        async with self.connection() as conn:
            rows = conn.execute(
                f"SELECT external_id, id FROM orders WHERE external_id IN ({placeholders})",
                unique_ids,
            ).fetchall()
        return {external_id: local_id for external_id, local_id in rows}

    async def get_order_by_external_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        """Full order row as a dict (for diagnostics and troubleshooting)."""
        async with self.connection() as conn:
            cursor = conn.execute("SELECT * FROM orders WHERE external_id = ?", [external_id])
            row = cursor.fetchone()
            if row is None:
                return None
            columns = [d[0] for d in cursor.description]
        return dict(zip(columns, row))

    async def get_transactions_for_order(self, order_id: int) -> List[Dict[str, Any]]:
        """Transactions of one order by surrogate id, oldest first."""
        async with self.connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM transactions WHERE order_id = ? ORDER BY processed_at, id",
                [order_id],
            )
            rows = cursor.fetchall()
            columns = [d[0] for d in cursor.description]
        return [dict(zip(columns, row)) for row in rows]
