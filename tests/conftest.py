"""
Pytest configuration and shared fixtures.
"""
import pytest
import pytest_asyncio
from typing import Dict, List, Any, Optional

from ordersync.config import ShopifyConfig, SyncConfig
from ordersync.duckdb_store import DuckDBStore
from ordersync.models import FeedPage


def money(amount: str, currency: str = "USD") -> Dict[str, Any]:
    """Shopify MoneyBag with the presentment amount."""
    return {"presentmentMoney": {"amount": amount, "currencyCode": currency}}


def raw_transaction(
    tx_id: str,
    kind: str = "SALE",
    status: str = "SUCCESS",
    amount: str = "100.00",
    processed_at: str = "2024-01-01T10:05:00Z",
) -> Dict[str, Any]:
    return {
        "id": f"gid://shopify/OrderTransaction/{tx_id}",
        "kind": kind,
        "status": status,
        "gateway": "shopify_payments",
        "createdAt": processed_at,
        "processedAt": processed_at,
        "amountSet": money(amount),
    }


def raw_order(
    number: int,
    test: bool = False,
    total: str = "100.00",
    channel: Optional[str] = "Online Store",
    source_name: str = "web",
    created_at: str = "2024-01-01T10:00:00Z",
    financial_status: Optional[str] = "PAID",
    transactions: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Raw Shopify order node as the feed returns it (one sale by default)."""
    if transactions is None:
        transactions = [raw_transaction(f"{number}01", amount=total, processed_at=created_at)]
    return {
        "id": f"gid://shopify/Order/{number}",
        "name": f"#{number}",
        "createdAt": created_at,
        "processedAt": created_at,
        "updatedAt": created_at,
        "displayFinancialStatus": financial_status,
        "sourceName": source_name,
        "test": test,
        "channelInformation": {"channelId": "gid://shopify/Channel/1", "displayName": channel} if channel else None,
        "subtotalPriceSet": money(total),
        "totalPriceSet": money(total),
        "totalTaxSet": money("8.00"),
        "totalDiscountsSet": money("0.00"),
        "totalShippingPriceSet": money("5.00"),
        "transactions": transactions,
    }


class FakeFeed:
    """
    Scripted order feed.

    `pages` maps the requested cursor (None for the first page) to a FeedPage,
    or to an exception instance to raise for that cursor.
    """

    def __init__(self, pages: Dict[Optional[str], Any]):
        self.pages = pages
        self.calls: List[Dict[str, Any]] = []

    async def fetch_page(self, cursor, filter_query, page_size=None) -> FeedPage:
        self.calls.append({"cursor": cursor, "filter_query": filter_query, "page_size": page_size})
        page = self.pages[cursor]
        if isinstance(page, BaseException):
            raise page
        return page

    @property
    def cursors(self) -> List[Optional[str]]:
        return [call["cursor"] for call in self.calls]


@pytest.fixture
def sample_order() -> Dict[str, Any]:
    """Raw order with a sale and a partial refund."""
    return raw_order(
        1001,
        transactions=[
            raw_transaction("1", kind="SALE", amount="100.00"),
            raw_transaction("2", kind="REFUND", amount="-30.00", processed_at="2024-01-02T09:00:00Z"),
        ],
    )


@pytest.fixture
def make_order():
    """Factory for raw order nodes."""
    return raw_order


@pytest.fixture
def make_transaction():
    """Factory for raw transaction nodes."""
    return raw_transaction


@pytest.fixture
def fake_feed():
    """Factory for FakeFeed instances."""
    return FakeFeed


@pytest.fixture
def sync_config() -> SyncConfig:
    """Sync config with an expired lease so crashed runs can be resumed at once."""
    return SyncConfig(backfill_days=365, lease_timeout_seconds=0, page_timeout=5.0)


@pytest.fixture
def shopify_config() -> ShopifyConfig:
    return ShopifyConfig(store_domain="test-shop.myshopify.com", access_token="shpat_test", page_delay=0)


@pytest_asyncio.fixture
async def store(tmp_path):
    """Connected DuckDB store in a temporary directory."""
    duckdb_store = DuckDBStore(db_path=tmp_path / "orders.duckdb")
    await duckdb_store.connect()
    yield duckdb_store
    await duckdb_store.close()
