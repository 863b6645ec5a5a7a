"""
Integration tests for SyncService against a real DuckDB store and a scripted feed.
"""
import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from ordersync.config import SyncConfig
from ordersync.exceptions import FeedAPIError, FeedConnectionError, StoreWriteError
from ordersync.models import FeedPage, SyncMode, SyncStatus
from ordersync.sync_service import SyncService


def _page(orders, next_cursor=None, has_more=False):
    return FeedPage(records=orders, next_cursor=next_cursor, has_more=has_more)


async def _count(store, sql):
    return (await store._fetch_all(sql))[0][0]


@pytest.fixture
def make_service(store, sync_config, shopify_config):
    def _make(feed, config=None):
        return SyncService(store, feed_client=feed, sync_config=config or sync_config, shopify_config=shopify_config)
    return _make


class TestEndToEnd:
    """Full runs from an empty replica."""

    @pytest.mark.asyncio
    async def test_two_pages_with_test_orders(self, store, make_service, fake_feed, make_order):
        """250 + 10 records with 5 test orders: 255 orders persisted, run completed."""
        first = [make_order(n, test=(n % 50 == 0)) for n in range(1, 251)]
        second = [make_order(n) for n in range(251, 261)]
        feed = fake_feed({
            None: _page(first, next_cursor="c1", has_more=True),
            "c1": _page(second, next_cursor="c2", has_more=False),
        })

        result = await make_service(feed).sync_orders()

        assert result.success is True
        assert result.mode == SyncMode.INITIAL
        assert result.resumed is False
        assert result.orders_processed == 255
        assert result.transactions_processed == 255
        assert result.test_orders_skipped == 5
        assert result.pages_fetched == 2

        assert feed.cursors == [None, "c1"]
        assert all(call["filter_query"].startswith("created_at:>='") for call in feed.calls)
        assert all(call["page_size"] == 250 for call in feed.calls)

        assert await _count(store, "SELECT COUNT(*) FROM orders") == 255
        assert await _count(store, "SELECT COUNT(*) FROM orders WHERE test") == 0

        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.COMPLETED
        assert state.last_cursor == "c2"
        assert state.error_message is None
        assert state.last_success_at == state.started_at

    @pytest.mark.asyncio
    async def test_every_transaction_has_its_order(self, store, make_service, fake_feed, make_order, make_transaction):
        """Orders are written before the transactions that reference them."""
        orders = [
            make_order(1, transactions=[make_transaction("11"), make_transaction("12", kind="REFUND", amount="-5.00")]),
            make_order(2, transactions=[]),
            make_order(3),
        ]
        feed = fake_feed({None: _page(orders)})

        result = await make_service(feed).sync_orders()

        assert result.success is True
        assert result.transactions_processed == 3
        orphans = await _count(
            store,
            "SELECT COUNT(*) FROM transactions t LEFT JOIN orders o ON o.id = t.order_id WHERE o.id IS NULL",
        )
        assert orphans == 0

    @pytest.mark.asyncio
    async def test_empty_feed(self, store, make_service, fake_feed):
        feed = fake_feed({None: _page([])})
        result = await make_service(feed).sync_orders()

        assert result.success is True
        assert result.orders_processed == 0
        assert (await store.get_sync_state("orders")).sync_status == SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_replay_does_not_duplicate(self, store, make_service, fake_feed, make_order):
        """Syncing the same feed twice keeps one row per external id."""
        pages = {None: _page([make_order(n) for n in range(1, 6)], next_cursor="c1")}

        await make_service(fake_feed(pages)).sync_orders()
        second = await make_service(fake_feed(pages)).sync_orders()

        assert second.mode == SyncMode.INCREMENTAL
        assert await _count(store, "SELECT COUNT(*) FROM orders") == 5
        assert await _count(store, "SELECT COUNT(*) FROM transactions") == 5

    @pytest.mark.asyncio
    async def test_incremental_uses_last_success(self, store, make_service, fake_feed, make_order):
        await make_service(fake_feed({None: _page([make_order(1)])})).sync_orders()
        first_state = await store.get_sync_state("orders")

        feed = fake_feed({None: _page([])})
        result = await make_service(feed).sync_orders()

        expected = first_state.last_success_at.strftime("%Y-%m-%dT%H:%M:%SZ")
        assert result.mode == SyncMode.INCREMENTAL
        assert feed.calls[0]["filter_query"] == f"updated_at:>='{expected}'"
        assert feed.calls[0]["cursor"] is None


class TestResumption:
    """Interrupted runs continue from the last checkpoint."""

    @pytest.mark.asyncio
    async def test_crash_then_resume(self, store, make_service, fake_feed, make_order):
        """A crash after page 1 leaves the cursor; the next run fetches only pages 2 and 3."""
        pages = {
            None: _page([make_order(n) for n in range(1, 4)], next_cursor="c1", has_more=True),
            "c1": asyncio.CancelledError(),
        }
        crashing = fake_feed(pages)

        with pytest.raises(asyncio.CancelledError):
            await make_service(crashing).sync_orders()

        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.RUNNING
        assert state.last_cursor == "c1"
        crashed_filter = state.filter_query

        resumed_feed = fake_feed({
            "c1": _page([make_order(n) for n in range(4, 7)], next_cursor="c2", has_more=True),
            "c2": _page([make_order(n) for n in range(7, 9)], next_cursor="c3", has_more=False),
        })
        result = await make_service(resumed_feed).sync_orders()

        assert result.success is True
        assert result.resumed is True
        assert result.mode == SyncMode.INITIAL
        assert resumed_feed.cursors == ["c1", "c2"]
        assert all(call["filter_query"] == crashed_filter for call in resumed_feed.calls)

        assert await _count(store, "SELECT COUNT(*) FROM orders") == 8
        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.COMPLETED
        assert state.last_cursor == "c3"

    @pytest.mark.asyncio
    async def test_feed_failure_then_resume(self, store, make_service, fake_feed, make_order):
        """A feed error marks the run failed with partial counts; the next run resumes."""
        failing = fake_feed({
            None: _page([make_order(1), make_order(2)], next_cursor="c1", has_more=True),
            "c1": FeedAPIError("API returned 503", status_code=503),
        })

        result = await make_service(failing).sync_orders()

        assert result.success is False
        assert "503" in result.error
        assert result.orders_processed == 2
        assert result.to_dict()["ordersProcessed"] == 2

        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.FAILED
        assert "503" in state.error_message
        assert state.last_cursor == "c1"
        first_started_at = state.started_at

        recovered = fake_feed({"c1": _page([make_order(3)], next_cursor="c2")})
        result = await make_service(recovered).sync_orders()

        assert result.success is True
        assert result.resumed is True
        assert recovered.cursors == ["c1"]

        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.COMPLETED
        assert state.error_message is None
        assert state.last_success_at == first_started_at

    @pytest.mark.asyncio
    async def test_page_timeout(self, store, make_service):
        """A page that never arrives fails the run as a connection error."""

        class HangingFeed:
            async def fetch_page(self, cursor, filter_query, page_size=None):
                await asyncio.sleep(10)

        config = SyncConfig(backfill_days=365, lease_timeout_seconds=0, page_timeout=0.05)
        result = await make_service(HangingFeed(), config).sync_orders()

        assert result.success is False
        assert "exceeded" in result.error
        assert (await store.get_sync_state("orders")).sync_status == SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_connection_error_fails_run(self, store, make_service, fake_feed):
        result = await make_service(fake_feed({None: FeedConnectionError("Request failed")})).sync_orders()
        assert result.success is False
        assert result.pages_fetched == 0

    @pytest.mark.asyncio
    async def test_more_pages_without_cursor(self, store, make_service, fake_feed, make_order):
        feed = fake_feed({None: _page([make_order(1)], next_cursor=None, has_more=True)})
        result = await make_service(feed).sync_orders()

        assert result.success is False
        assert "without a cursor" in result.error
        # The page's rows are kept; only the checkpoint is missing
        assert await _count(store, "SELECT COUNT(*) FROM orders") == 1


class TestFailureHandling:
    """Store failures, unresolved owners and lease conflicts."""

    @pytest.mark.asyncio
    async def test_store_failure_keeps_previous_checkpoint(self, store, make_service, fake_feed, make_order):
        feed = fake_feed({None: _page([make_order(1)], next_cursor="c1", has_more=True)})
        service = make_service(feed)

        with patch.object(store, "upsert_transactions", AsyncMock(side_effect=StoreWriteError("Failed to upsert transactions"))):
            result = await service.sync_orders()

        assert result.success is False
        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.FAILED
        assert state.last_cursor is None

    @pytest.mark.asyncio
    async def test_unresolved_orders_skip_transactions(self, store, make_service, fake_feed, make_order):
        feed = fake_feed({None: _page([make_order(1), make_order(2)])})

        with patch.object(store, "resolve_local_ids", AsyncMock(return_value={})):
            result = await make_service(feed).sync_orders()

        assert result.success is True
        assert result.transactions_processed == 0
        assert result.transactions_skipped == 2
        assert await _count(store, "SELECT COUNT(*) FROM transactions") == 0

    @pytest.mark.asyncio
    async def test_live_run_blocks_second(self, store, make_service, fake_feed, make_order):
        """A second invocation during a live run changes nothing."""
        state = await store.get_sync_state("orders")
        held = await store.begin_sync("orders", expected_version=state.version, lease_timeout_seconds=900)

        feed = fake_feed({None: _page([make_order(1)])})
        config = SyncConfig(backfill_days=365, lease_timeout_seconds=900, page_timeout=5.0)
        result = await make_service(feed, config).sync_orders()

        assert result.success is False
        assert "already running" in result.error
        assert feed.calls == []

        after = await store.get_sync_state("orders")
        assert after.version == held.version
        assert after.sync_status == SyncStatus.RUNNING

    @pytest.mark.asyncio
    async def test_missing_state_row(self, store, make_service, fake_feed):
        feed = fake_feed({None: _page([])})
        config = SyncConfig(entity_type="customers", lease_timeout_seconds=0)
        result = await make_service(feed, config).sync_orders()

        assert result.success is False
        assert "customers" in result.error
        assert feed.calls == []

    @pytest.mark.asyncio
    async def test_get_sync_status(self, store, make_service, fake_feed):
        status = await make_service(fake_feed({})).get_sync_status()
        assert status["entity_type"] == "orders"
        assert status["sync_status"] == "completed"


class GatedFeed:
    """First page succeeds; the second waits for `release` and then fails with a 503."""

    def __init__(self, first_page):
        self.first_page = first_page
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_page(self, cursor, filter_query, page_size=None):
        if cursor is None:
            return self.first_page
        self.reached.set()
        await self.release.wait()
        raise FeedAPIError("API returned 503", status_code=503)


class TestSharedService:
    """Overlapping calls on the one service instance the trigger endpoint uses."""

    @pytest.mark.asyncio
    async def test_second_call_does_not_disturb_running_call(self, store, make_service, make_order):
        """The running call still persists `failed` after a concurrent call is turned away."""
        feed = GatedFeed(_page([make_order(1)], next_cursor="c1", has_more=True))
        config = SyncConfig(backfill_days=365, lease_timeout_seconds=900, page_timeout=5.0)
        service = make_service(feed, config)

        first = asyncio.create_task(service.sync_orders())
        await asyncio.wait_for(feed.reached.wait(), timeout=5)

        second = await service.sync_orders()
        assert second.success is False
        assert "already running" in second.error

        feed.release.set()
        result = await first

        assert result.success is False
        assert "503" in result.error
        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.FAILED
        assert "503" in state.error_message
        assert state.last_cursor == "c1"


class TestDefaultLease:
    """Crash recovery with the default lease derived from the page timeout."""

    @pytest.mark.asyncio
    async def test_crashed_run_resumes_once_heartbeat_expires(
        self, store, make_service, fake_feed, make_order, monkeypatch
    ):
        monkeypatch.delenv("SYNC_LEASE_TIMEOUT", raising=False)
        config = SyncConfig()
        assert config.lease_timeout_seconds == int(2 * config.page_timeout) + 1

        crashing = fake_feed({
            None: _page([make_order(1)], next_cursor="c1", has_more=True),
            "c1": asyncio.CancelledError(),
        })
        with pytest.raises(asyncio.CancelledError):
            await make_service(crashing, config).sync_orders()

        # Heartbeat still fresh: the crashed run looks alive
        blocked = fake_feed({"c1": _page([make_order(2)], next_cursor="c2")})
        result = await make_service(blocked, config).sync_orders()
        assert result.success is False
        assert "already running" in result.error
        assert blocked.cursors == []

        stale = datetime.now(timezone.utc) - timedelta(seconds=config.lease_timeout_seconds + 1)
        await store.set_sync_state("orders", last_sync_at=stale)

        resumed = fake_feed({"c1": _page([make_order(2)], next_cursor="c2")})
        result = await make_service(resumed, config).sync_orders()

        assert result.success is True
        assert result.resumed is True
        assert resumed.cursors == ["c1"]
        assert await _count(store, "SELECT COUNT(*) FROM orders") == 2
