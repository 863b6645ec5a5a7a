"""
Domain models for synced Shopify data.

Record dataclasses mirror the `orders` and `transactions` tables; the sync
state and run result types are shared by the orchestrator, the store and
the trigger endpoint; aggregate types are what the readers return.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List, Dict, Any

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """Round to two decimal places (DECIMAL(12, 2) in the store)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _money(value: Decimal) -> float:
    return float(quantize_money(value))


def _pct(part: Decimal, whole: Decimal) -> float:
    if not whole:
        return 0.0
    return round(float(part / whole * 100), 1)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class SyncStatus(str, Enum):
    """Lifecycle of one sync attempt."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncMode(str, Enum):
    """Initial backfill vs. incremental catch-up."""
    INITIAL = "initial"
    INCREMENTAL = "incremental"


SALE_KINDS = frozenset({"sale", "capture"})
REFUND_KINDS = frozenset({"refund", "change"})
SUCCESS_STATUS = "success"


def classify_transaction(kind: Optional[str], status: Optional[str]) -> Optional[str]:
    """'sale', 'refund' or None for a transaction (case-insensitive)."""
    if (status or "").lower() != SUCCESS_STATUS:
        return None
    kind = (kind or "").lower()
    if kind in SALE_KINDS:
        return "sale"
    if kind in REFUND_KINDS:
        return "refund"
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# FEED
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class FeedPage:
    """One page of raw order nodes plus the continuation cursor."""
    records: List[Dict[str, Any]]
    next_cursor: Optional[str] = None
    has_more: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.records


# ═══════════════════════════════════════════════════════════════════════════════
# RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class OrderRecord:
    """Order snapshot as written to the `orders` table."""
    external_id: str
    name: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    financial_status: Optional[str] = None
    source_name: Optional[str] = None
    channel_id: Optional[str] = None
    channel_display_name: Optional[str] = None
    subtotal_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    total_tax_amount: Decimal = ZERO
    total_discounts_amount: Decimal = ZERO
    total_shipping_amount: Decimal = ZERO
    currency: str = "USD"
    test: bool = False

    def to_row(self) -> Dict[str, Any]:
        """Flatten to a DataFrame row (amounts as text, CAST to DECIMAL in SQL)."""
        return {
            "external_id": self.external_id,
            "name": self.name,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "updated_at": self.updated_at,
            "financial_status": self.financial_status,
            "source_name": self.source_name,
            "channel_id": self.channel_id,
            "channel_display_name": self.channel_display_name,
            "subtotal_amount": str(self.subtotal_amount),
            "total_amount": str(self.total_amount),
            "total_tax_amount": str(self.total_tax_amount),
            "total_discounts_amount": str(self.total_discounts_amount),
            "total_shipping_amount": str(self.total_shipping_amount),
            "currency": self.currency,
            "test": self.test,
        }


@dataclass
class TransactionRecord:
    """Financial event as written to the `transactions` table."""
    external_id: str
    order_id: int
    kind: str
    status: str
    amount: Decimal = ZERO
    currency: str = "USD"
    gateway: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    source_name: Optional[str] = None
    channel_id: Optional[str] = None
    channel_display_name: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "order_id": self.order_id,
            "kind": self.kind,
            "status": self.status,
            "amount": str(self.amount),
            "currency": self.currency,
            "gateway": self.gateway,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "source_name": self.source_name,
            "channel_id": self.channel_id,
            "channel_display_name": self.channel_display_name,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC STATE & RESULT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SyncState:
    """One row of `sync_state`."""
    entity_type: str
    sync_status: SyncStatus = SyncStatus.COMPLETED
    last_cursor: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    error_message: Optional[str] = None
    sync_mode: Optional[SyncMode] = None
    filter_query: Optional[str] = None
    started_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncState":
        """Build from a column-name -> value mapping."""
        mode = row.get("sync_mode")
        return cls(
            entity_type=row["entity_type"],
            sync_status=SyncStatus(row["sync_status"]),
            last_cursor=row.get("last_cursor"),
            last_sync_at=row.get("last_sync_at"),
            error_message=row.get("error_message"),
            sync_mode=SyncMode(mode) if mode else None,
            filter_query=row.get("filter_query"),
            started_at=row.get("started_at"),
            last_success_at=row.get("last_success_at"),
            version=int(row.get("version") or 0),
        )

    @property
    def is_resumable(self) -> bool:
        """An interrupted run left a cursor and the predicate it belongs to."""
        return (
            self.sync_status in (SyncStatus.RUNNING, SyncStatus.FAILED)
            and self.last_cursor is not None
            and self.filter_query is not None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "sync_status": self.sync_status.value,
            "last_cursor": self.last_cursor,
            "last_sync_at": _iso(self.last_sync_at),
            "error_message": self.error_message,
            "sync_mode": self.sync_mode.value if self.sync_mode else None,
            "filter_query": self.filter_query,
            "started_at": _iso(self.started_at),
            "last_success_at": _iso(self.last_success_at),
            "version": self.version,
        }


@dataclass
class SyncResult:
    """Outcome of one `SyncService.sync_orders()` call."""
    success: bool
    mode: Optional[SyncMode] = None
    resumed: bool = False
    orders_processed: int = 0
    transactions_processed: int = 0
    test_orders_skipped: int = 0
    transactions_skipped: int = 0
    pages_fetched: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def message(self) -> str:
        if not self.success:
            return f"Sync failed: {self.error}"
        return (
            f"Synced {self.orders_processed} orders and "
            f"{self.transactions_processed} transactions"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Payload reported by the trigger endpoint."""
        payload = {
            "success": self.success,
            "message": self.message,
            "ordersProcessed": self.orders_processed,
            "transactionsProcessed": self.transactions_processed,
            "testOrdersSkipped": self.test_orders_skipped,
            "transactionsSkipped": self.transactions_skipped,
            "pagesFetched": self.pages_fetched,
            "mode": self.mode.value if self.mode else None,
            "resumed": self.resumed,
            "durationMs": round(self.duration_ms, 2),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DateRange:
    """Inclusive calendar-day range a reader was asked for."""
    start: date
    end: date

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.start.isoformat(), "to": self.end.isoformat()}


@dataclass
class ChannelSales:
    """Sales, refunds and order-level amounts for one channel."""
    channel: str
    currency: str
    gross_sales: Decimal = ZERO
    refunds: Decimal = ZERO
    discounts: Decimal = ZERO
    taxes: Decimal = ZERO
    shipping: Decimal = ZERO
    orders: int = 0

    @property
    def net_sales(self) -> Decimal:
        return self.gross_sales - self.refunds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "gross_sales": _money(self.gross_sales),
            "refunds": _money(self.refunds),
            "net_sales": _money(self.net_sales),
            "discounts": _money(self.discounts),
            "taxes": _money(self.taxes),
            "shipping_charges": _money(self.shipping),
            "orders": self.orders,
            "currency": self.currency,
        }


@dataclass
class SalesByChannel:
    date_range: DateRange
    channels: List[ChannelSales] = field(default_factory=list)
    currency: str = "USD"

    @property
    def gross_sales(self) -> Decimal:
        return sum((c.gross_sales for c in self.channels), ZERO)

    @property
    def refunds(self) -> Decimal:
        return sum((c.refunds for c in self.channels), ZERO)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_range": self.date_range.to_dict(),
            "channels": [c.to_dict() for c in self.channels],
            "totals": {
                "gross_sales": _money(self.gross_sales),
                "refunds": _money(self.refunds),
                "net_sales": _money(self.gross_sales - self.refunds),
                "currency": self.currency,
            },
        }


@dataclass
class RevenueComponent:
    """One line of the revenue breakdown; percentage is of gross revenue."""
    category: str
    amount: Decimal
    percentage: float
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "amount": _money(self.amount),
            "percentage": self.percentage,
            "currency": self.currency,
        }


@dataclass
class RevenueBreakdown:
    date_range: DateRange
    gross_revenue: Decimal = ZERO
    refunds: Decimal = ZERO
    taxes: Decimal = ZERO
    discounts: Decimal = ZERO
    shipping: Decimal = ZERO
    currency: str = "USD"

    @property
    def net_revenue(self) -> Decimal:
        return self.gross_revenue - self.refunds

    @property
    def breakdown(self) -> List[RevenueComponent]:
        """Non-zero components; refunds and discounts are negative."""
        lines = [
            ("Gross Revenue", self.gross_revenue),
            ("Refunds", -self.refunds),
            ("Taxes Collected", self.taxes),
            ("Discounts Given", -self.discounts),
            ("Shipping Revenue", self.shipping),
        ]
        return [
            RevenueComponent(category, amount, _pct(amount, self.gross_revenue), self.currency)
            for category, amount in lines
            if amount != 0
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_range": self.date_range.to_dict(),
            "breakdown": [line.to_dict() for line in self.breakdown],
            "totals": {
                "gross_revenue": _money(self.gross_revenue),
                "refunds": _money(self.refunds),
                "net_revenue": _money(self.net_revenue),
                "taxes": _money(self.taxes),
                "discounts": _money(self.discounts),
                "shipping": _money(self.shipping),
                "currency": self.currency,
            },
        }


@dataclass
class StatusCount:
    """Orders sharing one (lower-cased) financial status."""
    status: str
    currency: str
    count: int = 0
    total_amount: Decimal = ZERO

    @property
    def label(self) -> str:
        return self.status.replace("_", " ").capitalize()

    def to_dict(self, total_orders: int) -> Dict[str, Any]:
        return {
            "status": self.status,
            "label": self.label,
            "count": self.count,
            "total_amount": _money(self.total_amount),
            "percentage": round(self.count / total_orders * 100, 1) if total_orders else 0.0,
            "currency": self.currency,
        }


@dataclass
class StatusBreakdown:
    date_range: DateRange
    statuses: List[StatusCount] = field(default_factory=list)
    currency: str = "USD"

    @property
    def total_orders(self) -> int:
        return sum(s.count for s in self.statuses)

    @property
    def total_amount(self) -> Decimal:
        return sum((s.total_amount for s in self.statuses), ZERO)

    def to_dict(self) -> Dict[str, Any]:
        total = self.total_orders
        return {
            "date_range": self.date_range.to_dict(),
            "status_breakdown": [s.to_dict(total) for s in self.statuses],
            "totals": {
                "total_orders": total,
                "total_amount": _money(self.total_amount),
                "currency": self.currency,
            },
        }


@dataclass
class DailySales:
    day: date
    gross_sales: Decimal = ZERO
    refunds: Decimal = ZERO
    currency: str = "USD"

    @property
    def net_sales(self) -> Decimal:
        return self.gross_sales - self.refunds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "gross_sales": _money(self.gross_sales),
            "refunds": _money(self.refunds),
            "net_sales": _money(self.net_sales),
            "currency": self.currency,
        }


@dataclass
class SalesOverTime:
    date_range: DateRange
    days: List[DailySales] = field(default_factory=list)
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        gross = sum((d.gross_sales for d in self.days), ZERO)
        refunds = sum((d.refunds for d in self.days), ZERO)
        return {
            "date_range": self.date_range.to_dict(),
            "daily_data": [d.to_dict() for d in self.days],
            "totals": {
                "gross_sales": _money(gross),
                "refunds": _money(refunds),
                "net_sales": _money(gross - refunds),
                "currency": self.currency,
            },
        }


@dataclass
class DailyOrders:
    day: date
    total_orders: int = 0
    total_value: Decimal = ZERO
    currency: str = "USD"

    @property
    def average_order_value(self) -> Decimal:
        return self.total_value / self.total_orders if self.total_orders else ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "total_orders": self.total_orders,
            "total_value": _money(self.total_value),
            "average_order_value": _money(self.average_order_value),
            "currency": self.currency,
        }


@dataclass
class OrdersOverTime:
    date_range: DateRange
    days: List[DailyOrders] = field(default_factory=list)
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        orders = sum(d.total_orders for d in self.days)
        value = sum((d.total_value for d in self.days), ZERO)
        return {
            "date_range": self.date_range.to_dict(),
            "daily_data": [d.to_dict() for d in self.days],
            "totals": {
                "total_orders": orders,
                "total_value": _money(value),
                "average_order_value": _money(value / orders) if orders else 0.0,
                "currency": self.currency,
            },
        }


@dataclass
class KindStats:
    """Transaction counts and successful amount for one kind."""
    kind: str
    currency: str
    count: int = 0
    successful: int = 0
    successful_amount: Decimal = ZERO

    @property
    def success_rate(self) -> float:
        return round(self.successful / self.count * 100, 1) if self.count else 0.0

    @property
    def average_amount(self) -> Decimal:
        return self.successful_amount / self.successful if self.successful else ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "count": self.count,
            "total_amount": _money(self.successful_amount),
            "average_amount": _money(self.average_amount),
            "success_rate": self.success_rate,
            "currency": self.currency,
        }


@dataclass
class TransactionAnalysis:
    date_range: DateRange
    kinds: List[KindStats] = field(default_factory=list)
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        total = sum(k.count for k in self.kinds)
        successful = sum(k.successful for k in self.kinds)
        amount = sum((k.successful_amount for k in self.kinds), ZERO)
        return {
            "date_range": self.date_range.to_dict(),
            "by_type": [k.to_dict() for k in self.kinds],
            "totals": {
                "total_transactions": total,
                "successful_transactions": successful,
                "failed_transactions": total - successful,
                "total_amount": _money(amount),
                "average_transaction_amount": _money(amount / successful) if successful else 0.0,
                "success_rate": round(successful / total * 100, 1) if total else 0.0,
                "currency": self.currency,
            },
        }


@dataclass
class ChannelOrders:
    channel: str
    orders: int = 0
    revenue: Decimal = ZERO


@dataclass
class ChannelPerformance:
    date_range: DateRange
    channels: List[ChannelOrders] = field(default_factory=list)
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        total_orders = sum(c.orders for c in self.channels)
        total_revenue = sum((c.revenue for c in self.channels), ZERO)
        return {
            "date_range": self.date_range.to_dict(),
            "channels": [
                {
                    "channel": c.channel,
                    "orders": c.orders,
                    "revenue": _money(c.revenue),
                    "average_order_value": _money(c.revenue / c.orders) if c.orders else 0.0,
                    "order_share": round(c.orders / total_orders * 100, 1) if total_orders else 0.0,
                    "revenue_share": _pct(c.revenue, total_revenue),
                    "currency": self.currency,
                }
                for c in self.channels
            ],
            "totals": {
                "total_orders": total_orders,
                "total_revenue": _money(total_revenue),
                "average_order_value": _money(total_revenue / total_orders) if total_orders else 0.0,
                "currency": self.currency,
            },
        }


@dataclass
class IndividualOrder:
    """One order with its in-range transactions, for troubleshooting."""
    id: int
    external_id: str
    name: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    financial_status: Optional[str] = None
    channel: str = "Unknown"
    channel_id: Optional[str] = None
    source_name: Optional[str] = None
    subtotal_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    total_tax_amount: Decimal = ZERO
    total_discounts_amount: Decimal = ZERO
    total_shipping_amount: Decimal = ZERO
    currency: str = "USD"
    transactions: List[TransactionRecord] = field(default_factory=list)
    total_sales: Decimal = ZERO
    total_refunds: Decimal = ZERO

    @property
    def net_amount(self) -> Decimal:
        return self.total_sales - self.total_refunds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "name": self.name,
            "created_at": _iso(self.created_at),
            "processed_at": _iso(self.processed_at),
            "updated_at": _iso(self.updated_at),
            "financial_status": self.financial_status,
            "channel": self.channel,
            "channel_id": self.channel_id,
            "source_name": self.source_name,
            "subtotal_amount": _money(self.subtotal_amount),
            "total_amount": _money(self.total_amount),
            "total_tax_amount": _money(self.total_tax_amount),
            "total_discounts_amount": _money(self.total_discounts_amount),
            "total_shipping_amount": _money(self.total_shipping_amount),
            "currency": self.currency,
            "transactions": [
                {
                    "external_id": t.external_id,
                    "kind": t.kind,
                    "status": t.status,
                    "amount": _money(t.amount),
                    "currency": t.currency,
                    "gateway": t.gateway,
                    "processed_at": _iso(t.processed_at),
                    "created_at": _iso(t.created_at),
                }
                for t in self.transactions
            ],
            "total_sales": _money(self.total_sales),
            "total_refunds": _money(self.total_refunds),
            "net_amount": _money(self.net_amount),
            "transaction_count": len(self.transactions),
        }


@dataclass
class IndividualOrders:
    """
    One page of orders with transactions in range.

    Pagination and summary cover every order in range, not just this page.
    """
    date_range: DateRange
    page: int
    page_size: int
    orders: List[IndividualOrder] = field(default_factory=list)
    total_count: int = 0
    total_sales: Decimal = ZERO
    total_refunds: Decimal = ZERO
    currency: str = "USD"

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_range": self.date_range.to_dict(),
            "orders": [o.to_dict() for o in self.orders],
            "pagination": {
                "page": self.page,
                "page_size": self.page_size,
                "total_count": self.total_count,
                "total_pages": self.total_pages,
            },
            "summary": {
                "total_orders": self.total_count,
                "total_sales": _money(self.total_sales),
                "total_refunds": _money(self.total_refunds),
                "total_net": _money(self.total_sales - self.total_refunds),
                "currency": self.currency,
            },
        }
