"""
Pure mapping from raw Shopify order nodes to persisted records.

Policy applied here:
- test orders are dropped (and counted), together with their transactions
- missing money amounts become 0.00, missing/invalid currency falls back
- channel display name falls back to the raw source name
- transactions copy the channel fields of the order snapshot they belong to
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Tuple

from ordersync.config import config
from ordersync.exceptions import FeedDataError
from ordersync.models import OrderRecord, TransactionRecord, ZERO, quantize_money
from ordersync.observability import get_logger

logger = get_logger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


@dataclass
class PageBatch:
    """Accepted orders of one feed page, keyed for the transaction pass."""
    orders: List[OrderRecord] = field(default_factory=list)
    raw_by_external_id: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    test_orders_skipped: int = 0

    @property
    def external_ids(self) -> List[str]:
        return [order.external_id for order in self.orders]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp ("Z" suffix allowed); None when absent or invalid."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        logger.warning(f"Unparseable timestamp from feed: {value!r}")
        return None


def normalize_currency(code: Optional[str], fallback: Optional[str] = None) -> str:
    """Upper-case a currency code; anything that isn't three letters uses the fallback."""
    fallback = fallback or config.analytics.default_currency
    if not code or not isinstance(code, str):
        return fallback
    code = code.strip().upper()
    return code if _CURRENCY_RE.match(code) else fallback


def parse_money(money_set: Optional[Dict[str, Any]]) -> Tuple[Decimal, Optional[str]]:
    """
    Read `{presentmentMoney: {amount, currencyCode}}` (shopMoney as fallback).

    Returns:
        (amount rounded to cents, raw currency code or None)
    """
    if not money_set:
        return ZERO, None
    money = money_set.get("presentmentMoney") or money_set.get("shopMoney") or {}
    raw_amount = money.get("amount")
    currency = money.get("currencyCode")
    if raw_amount is None or raw_amount == "":
        return ZERO, currency
    try:
        return quantize_money(Decimal(str(raw_amount))), currency
    except InvalidOperation:
        logger.warning(f"Unparseable money amount from feed: {raw_amount!r}")
        return ZERO, currency


def _nodes(value: Any) -> List[Dict[str, Any]]:
    """Accept a plain list, `{nodes: [...]}` or `{edges: [{node}]}`."""
    if not value:
        return []
    if isinstance(value, list):
        return value
    if "nodes" in value:
        return value["nodes"] or []
    return [edge["node"] for edge in value.get("edges") or [] if edge.get("node")]


def to_order(raw: Dict[str, Any]) -> OrderRecord:
    """
    Map one raw order node to an OrderRecord.

    Raises:
        FeedDataError: If the node has no id
    """
    external_id = raw.get("id")
    if not external_id:
        raise FeedDataError("Order node without id", expected="id", got=str(sorted(raw))[:200])

    subtotal, currency_code = parse_money(raw.get("subtotalPriceSet"))
    total, total_currency = parse_money(raw.get("totalPriceSet"))
    tax, _ = parse_money(raw.get("totalTaxSet"))
    discounts, _ = parse_money(raw.get("totalDiscountsSet"))
    shipping, _ = parse_money(raw.get("totalShippingPriceSet"))

    channel = raw.get("channelInformation") or {}
    source_name = raw.get("sourceName")
    status = raw.get("displayFinancialStatus")

    return OrderRecord(
        external_id=str(external_id),
        name=raw.get("name") or str(external_id),
        created_at=parse_timestamp(raw.get("createdAt")),
        processed_at=parse_timestamp(raw.get("processedAt")),
        updated_at=parse_timestamp(raw.get("updatedAt")),
        financial_status=status.lower() if status else None,
        source_name=source_name,
        channel_id=channel.get("channelId"),
        channel_display_name=channel.get("displayName") or source_name,
        subtotal_amount=subtotal,
        total_amount=total,
        total_tax_amount=tax,
        total_discounts_amount=discounts,
        total_shipping_amount=shipping,
        currency=normalize_currency(currency_code or total_currency),
        test=bool(raw.get("test")),
    )


def to_transactions(
    raw: Dict[str, Any],
    local_order_id: int,
    order: Optional[OrderRecord] = None,
) -> List[TransactionRecord]:
    """
    Map the transactions embedded in a raw order node.

    Args:
        raw: Raw order node (with `transactions`)
        local_order_id: Surrogate id the store assigned to the owning order
        order: Order snapshot to inherit channel/currency from (derived from raw if omitted)
    """
    order = order or to_order(raw)
    records = []

    for node in _nodes(raw.get("transactions")):
        external_id = node.get("id")
        if not external_id:
            logger.warning(
                "Dropping transaction without id",
                extra={"order_external_id": order.external_id},
            )
            continue

        amount, currency_code = parse_money(node.get("amountSet"))
        created_at = parse_timestamp(node.get("createdAt"))

        records.append(TransactionRecord(
            external_id=str(external_id),
            order_id=local_order_id,
            kind=(node.get("kind") or "unknown").lower(),
            status=(node.get("status") or "unknown").lower(),
            amount=amount,
            currency=normalize_currency(currency_code, fallback=order.currency),
            gateway=node.get("gateway"),
            created_at=created_at,
            processed_at=parse_timestamp(node.get("processedAt")) or created_at,
            source_name=order.source_name,
            channel_id=order.channel_id,
            channel_display_name=order.channel_display_name,
        ))

    return records


def transform_page(records: List[Dict[str, Any]]) -> PageBatch:
    """
    Split a feed page into accepted orders and a test-record count.

    Duplicate order ids within one page collapse to the last occurrence.
    """
    batch = PageBatch()
    accepted: Dict[str, OrderRecord] = {}

    for raw in records:
        order = to_order(raw)
        if order.test:
            batch.test_orders_skipped += 1
            accepted.pop(order.external_id, None)
            batch.raw_by_external_id.pop(order.external_id, None)
            continue
        # Re-insert so the last occurrence also determines the position
        accepted.pop(order.external_id, None)
        accepted[order.external_id] = order
        batch.raw_by_external_id[order.external_id] = raw

    batch.orders = list(accepted.values())
    return batch
