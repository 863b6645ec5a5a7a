"""
Sync service for keeping DuckDB in sync with the Shopify order feed.

One entry point, `SyncService.sync_orders()`, decides the mode, walks the
cursor-paginated feed page by page and checkpoints after every page.

Features:
- Initial sync: historical backfill over the configured window
- Incremental sync: orders updated since the last successful run
- Resumption: an interrupted run continues from its last checkpoint
- Lease: one run at a time per state row (heartbeat + version check)
- Observability: correlation ID per run, per-page and final counts logged
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from ordersync.config import config, SyncConfig, ShopifyConfig
from ordersync.duckdb_store import get_store, DuckDBStore
from ordersync.exceptions import SyncError, FeedConnectionError, FeedDataError, SyncConflictError
from ordersync.feed_client import get_feed_client
from ordersync.models import FeedPage, SyncMode, SyncResult, SyncState, SyncStatus
from ordersync.observability import get_logger, Timer, correlation_context
from ordersync.transformer import transform_page, to_transactions

logger = get_logger(__name__)

PREDICATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_predicate_time(value: datetime) -> str:
    """Render a timestamp for a feed predicate: UTC, whole seconds, literal Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(PREDICATE_FORMAT)


def initial_filter(now: datetime, backfill_days: int) -> str:
    return f"created_at:>='{format_predicate_time(now - timedelta(days=backfill_days))}'"


def incremental_filter(since: datetime) -> str:
    return f"updated_at:>='{format_predicate_time(since)}'"


@dataclass
class RunLease:
    """State row version held by one run; None until the lease is acquired."""
    entity_type: str
    version: Optional[int] = None


class SyncService:
    """
    Service for syncing Shopify orders and transactions to DuckDB.

    The feed client is anything with `fetch_page(cursor, filter_query, page_size)`
    returning a FeedPage.
    """

    def __init__(
        self,
        store: DuckDBStore,
        feed_client=None,
        sync_config: SyncConfig = None,
        shopify_config: ShopifyConfig = None,
    ):
        self.store = store
        self._feed_client = feed_client
        self.sync_config = sync_config or config.sync
        self.shopify_config = shopify_config or config.shopify

    @property
    def feed_client(self):
        # Created lazily so status reads work without feed credentials
        if self._feed_client is None:
            self._feed_client = get_feed_client()
        return self._feed_client

    @property
    def entity_type(self) -> str:
        return self.sync_config.entity_type

    async def get_sync_status(self) -> Optional[Dict[str, Any]]:
        """Persisted state row for the status endpoint."""
        state = await self.store.get_sync_state(self.entity_type)
        return state.to_dict() if state else None

    def _plan(self, state: SyncState, now: datetime) -> Dict[str, Any]:
        """Decide mode, predicate and start cursor for this invocation."""
        if state.is_resumable:
            return {
                "mode": state.sync_mode or SyncMode.INCREMENTAL,
                "filter_query": state.filter_query,
                "cursor": state.last_cursor,
                "started_at": state.started_at or now,
                "resumed": True,
            }

        if state.last_success_at is None:
            mode = SyncMode.INITIAL
            filter_query = initial_filter(now, self.sync_config.backfill_days)
        else:
            mode = SyncMode.INCREMENTAL
            filter_query = incremental_filter(state.last_success_at)

        return {
            "mode": mode,
            "filter_query": filter_query,
            "cursor": None,
            "started_at": now,
            "resumed": False,
        }

    async def _fetch(self, cursor: Optional[str], filter_query: str) -> FeedPage:
        timeout = self.sync_config.page_timeout
        try:
            return await asyncio.wait_for(
                self.feed_client.fetch_page(cursor, filter_query, self.shopify_config.page_size),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise FeedConnectionError(
                f"Page fetch exceeded {timeout}s",
                details=f"cursor={cursor}",
            ) from e

    async def _process_page(self, page: FeedPage, result: SyncResult) -> None:
        """Transform and persist one page: orders first, then their transactions."""
        batch = transform_page(page.records)
        result.test_orders_skipped += batch.test_orders_skipped

        result.orders_processed += await self.store.upsert_orders(batch.orders)

        local_ids = await self.store.resolve_local_ids(batch.external_ids)
        transactions = []
        for order in batch.orders:
            raw = batch.raw_by_external_id[order.external_id]
            local_id = local_ids.get(order.external_id)
            records = to_transactions(raw, local_id or 0, order)
            if local_id is None:
                result.transactions_skipped += len(records)
                logger.warning(
                    "Order missing after upsert, dropping its transactions",
                    extra={"order_external_id": order.external_id, "transactions": len(records)},
                )
                continue
            transactions.extend(records)

        result.transactions_processed += await self.store.upsert_transactions(transactions)

    async def sync_orders(self) -> SyncResult:
        """
        Run one sync attempt to completion or failure.

        Never raises for feed, store or lease errors: they are reported in the
        returned SyncResult (and, except for lease conflicts, persisted as a
        `failed` state row). Cancellation propagates and leaves the row
        `running` with its last checkpoint, so the next run resumes.

        Returns:
            SyncResult with counts processed so far
        """
        with correlation_context():
            start = time.perf_counter()
            result = SyncResult(success=False)
            lease = RunLease(self.entity_type)

            try:
                await self._run(result, lease)
                result.success = True
            except SyncConflictError as e:
                result.error = str(e)
                logger.warning(f"Sync conflict: {e}")
            except Exception as e:
                result.error = str(e)
                logger.error(f"Sync failed: {e}", exc_info=not isinstance(e, SyncError))
                await self._mark_failed(lease, result.error)
            finally:
                result.duration_ms = (time.perf_counter() - start) * 1000

            logger.info(
                "Sync finished",
                extra={
                    "success": result.success,
                    "mode": result.mode.value if result.mode else None,
                    "resumed": result.resumed,
                    "orders": result.orders_processed,
                    "transactions": result.transactions_processed,
                    "test_orders_skipped": result.test_orders_skipped,
                    "transactions_skipped": result.transactions_skipped,
                    "pages": result.pages_fetched,
                    "duration_ms": round(result.duration_ms, 2),
                },
            )
            return result

    async def _run(self, result: SyncResult, lease: RunLease) -> None:
        state = await self.store.get_sync_state(self.entity_type)
        if state is None:
            raise SyncError(f"No sync state row for '{self.entity_type}'")

        plan = self._plan(state, datetime.now(timezone.utc))
        result.mode = plan["mode"]
        result.resumed = plan["resumed"]

        updates: Dict[str, Any] = {"error_message": None}
        if not plan["resumed"]:
            updates.update(
                last_cursor=None,
                started_at=plan["started_at"],
                sync_mode=plan["mode"],
                filter_query=plan["filter_query"],
            )
        state = await self.store.begin_sync(
            self.entity_type,
            expected_version=state.version,
            lease_timeout_seconds=self.sync_config.lease_timeout_seconds,
            **updates,
        )
        lease.version = state.version

        logger.info(
            f"{'Resuming' if plan['resumed'] else 'Starting'} {plan['mode'].value} sync",
            extra={"filter_query": plan["filter_query"], "cursor": plan["cursor"]},
        )

        cursor = plan["cursor"]
        while True:
            with Timer("fetch_page", logger, warn_threshold_ms=5000):
                page = await self._fetch(cursor, plan["filter_query"])
            result.pages_fetched += 1

            if page.is_empty:
                break

            await self._process_page(page, result)

            if page.has_more and not page.next_cursor:
                raise FeedDataError(
                    "Feed reported more pages without a cursor",
                    expected="endCursor",
                    got="null",
                )

            if page.next_cursor:
                cursor = page.next_cursor
                state = await self.store.set_sync_state(
                    self.entity_type,
                    expected_version=lease.version,
                    last_cursor=cursor,
                    sync_status=SyncStatus.RUNNING,
                )
                lease.version = state.version

            logger.info(
                "Page synced",
                extra={
                    "page": result.pages_fetched,
                    "records": len(page.records),
                    "orders_total": result.orders_processed,
                    "transactions_total": result.transactions_processed,
                    "test_orders_skipped": result.test_orders_skipped,
                },
            )

            if not page.has_more:
                break
            await asyncio.sleep(self.shopify_config.page_delay)

        state = await self.store.set_sync_state(
            self.entity_type,
            expected_version=lease.version,
            sync_status=SyncStatus.COMPLETED,
            error_message=None,
            last_success_at=plan["started_at"],
        )
        lease.version = state.version

    async def _mark_failed(self, lease: RunLease, message: str) -> None:
        """Persist `failed`; the cursor is kept so the next run resumes."""
        if lease.version is None:
            # The lease was never acquired, the row belongs to someone else
            return
        try:
            state = await self.store.set_sync_state(
                lease.entity_type,
                expected_version=lease.version,
                sync_status=SyncStatus.FAILED,
                error_message=message,
            )
            lease.version = state.version
        except Exception as e:
            logger.error(f"Could not persist failed sync state: {e}")


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_sync_service: Optional[SyncService] = None


async def get_sync_service() -> SyncService:
    """Get singleton sync service instance."""
    global _sync_service
    if _sync_service is None:
        store = await get_store()
        _sync_service = SyncService(store)
    return _sync_service
