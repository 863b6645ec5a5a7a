"""
DuckDBStore aggregation readers.

Every reader walks its rows with keyset pagination (READ_PAGE_SIZE rows
per query) and folds each page into per-group accumulators, so memory is
bounded by the number of groups, not by the number of rows in range.

Date arguments are inclusive calendar days in UTC. Test orders and their
transactions never contribute.
"""
from datetime import date, timedelta
from typing import Optional, List, Dict, Any, AsyncIterator

from ordersync.config import config
from ordersync.duckdb_constants import READ_PAGE_SIZE, _date_in_utc, _channel
from ordersync.models import (
    ZERO, SUCCESS_STATUS, classify_transaction,
    DateRange, ChannelSales, SalesByChannel, RevenueBreakdown,
    StatusCount, StatusBreakdown, DailySales, SalesOverTime,
    DailyOrders, OrdersOverTime, KindStats, TransactionAnalysis,
    ChannelOrders, ChannelPerformance,
    TransactionRecord, IndividualOrder, IndividualOrders,
)
from ordersync.observability import get_logger, Timer
from ordersync.validators import validate_date_range, validate_channel, validate_limit, utc_bounds

logger = get_logger(__name__)


def _days(start: date, end: date) -> List[date]:
    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


class AnalyticsMixin:

    # ─── Keyset scans ───────────────────────────────────────────────────────

    async def _scan_orders(
        self,
        columns: str,
        time_column: str,
        start: date,
        end: date,
        channel: Optional[str] = None,
        page_size: int = READ_PAGE_SIZE,
    ) -> AsyncIterator[List[tuple]]:
        """
        Yield pages of non-test orders with `time_column` in [start, end].

        Each row is `columns` followed by `o.id` (the keyset).
        """
        lower, upper = utc_bounds(start, end)
        where = [
            "NOT o.test",
            f"o.{time_column} >= CAST(? AS TIMESTAMPTZ)",
            f"o.{time_column} < CAST(? AS TIMESTAMPTZ)",
            "o.id > ?",
        ]
        base_params: List[Any] = [lower, upper]
        if channel:
            where.append(f"{_channel('o')} = ?")

        sql = f"""
            SELECT {columns}, o.id
            FROM orders o
            WHERE {" AND ".join(where)}
            ORDER BY o.id
            LIMIT {int(page_size)}
        """

        last_id = 0
        while True:
            params = base_params + [last_id] + ([channel] if channel else [])
            rows = await self._fetch_all(sql, params)
            if not rows:
                return
            yield rows
            if len(rows) < page_size:
                return
            last_id = rows[-1][-1]

    async def _scan_transactions(
        self,
        columns: str,
        start: date,
        end: date,
        channel: Optional[str] = None,
        successful_only: bool = False,
        page_size: int = READ_PAGE_SIZE,
    ) -> AsyncIterator[List[tuple]]:
        """
        Yield pages of transactions processed in [start, end] whose order is not a test.

        Rows are ordered by (order_id, id) and end with those two columns, so
        a fold sees all transactions of one order consecutively.
        """
        lower, upper = utc_bounds(start, end)
        where = [
            "NOT o.test",
            "t.processed_at >= CAST(? AS TIMESTAMPTZ)",
            "t.processed_at < CAST(? AS TIMESTAMPTZ)",
            "(t.order_id > ? OR (t.order_id = ? AND t.id > ?))",
        ]
        if successful_only:
            where.append(f"LOWER(t.status) = '{SUCCESS_STATUS}'")
        if channel:
            where.append(f"{_channel('t')} = ?")

        sql = f"""
            SELECT {columns}, t.order_id, t.id
            FROM transactions t
            JOIN orders o ON o.id = t.order_id
            WHERE {" AND ".join(where)}
            ORDER BY t.order_id, t.id
            LIMIT {int(page_size)}
        """

        last_order_id, last_id = 0, 0
        while True:
            params = [lower, upper, last_order_id, last_order_id, last_id]
            if channel:
                params.append(channel)

            rows = await self._fetch_all(sql, params)
            if not rows:
                return
            yield rows
            if len(rows) < page_size:
                return
            last_order_id, last_id = rows[-1][-2], rows[-1][-1]

    def _prepare(self, start_date, end_date, channel):
        start, end = validate_date_range(start_date, end_date)
        return start, end, validate_channel(channel), DateRange(start, end)

    # ─── Readers ────────────────────────────────────────────────────────────

    async def get_sales_by_channel(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> SalesByChannel:
        """
        Gross sales, refunds and order-level amounts per channel.

        Tax, discounts and shipping are added once per distinct order that
        has transactions in range, however many transactions it has.
        """
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        channels: Dict[str, ChannelSales] = {}
        currency = None
        previous_order = None

        columns = f"""
            t.kind, t.status, t.amount, {_channel('t')}, o.currency,
            o.total_tax_amount, o.total_discounts_amount, o.total_shipping_amount
        """
        with Timer("sales_by_channel", logger):
            async for rows in self._scan_transactions(columns, start, end, channel):
                for kind, status, amount, channel_name, order_currency, tax, discounts, shipping, order_id, _ in rows:
                    currency = currency or order_currency
                    bucket = channels.get(channel_name)
                    if bucket is None:
                        bucket = channels[channel_name] = ChannelSales(channel_name, order_currency)

                    if order_id != previous_order:
                        previous_order = order_id
                        bucket.orders += 1
                        bucket.taxes += tax or ZERO
                        bucket.discounts += discounts or ZERO
                        bucket.shipping += shipping or ZERO

                    category = classify_transaction(kind, status)
                    if category == "sale":
                        bucket.gross_sales += amount
                    elif category == "refund":
                        bucket.refunds += abs(amount)

        return SalesByChannel(
            date_range=date_range,
            channels=sorted(channels.values(), key=lambda c: c.net_sales, reverse=True),
            currency=currency or config.analytics.default_currency,
        )

    async def get_revenue_breakdown(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> RevenueBreakdown:
        """Revenue components from successful transactions in range."""
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        result = RevenueBreakdown(date_range=date_range)
        currency = None
        previous_order = None

        columns = """
            t.kind, t.status, t.amount, t.currency,
            o.total_tax_amount, o.total_discounts_amount, o.total_shipping_amount
        """
        async for rows in self._scan_transactions(columns, start, end, channel, successful_only=True):
            for kind, status, amount, tx_currency, tax, discounts, shipping, order_id, _ in rows:
                currency = currency or tx_currency
                category = classify_transaction(kind, status)
                if category == "sale":
                    result.gross_revenue += amount
                elif category == "refund":
                    result.refunds += abs(amount)

                if order_id != previous_order:
                    previous_order = order_id
                    result.taxes += tax or ZERO
                    result.discounts += discounts or ZERO
                    result.shipping += shipping or ZERO

        result.currency = currency or config.analytics.default_currency
        return result

    async def get_order_status_breakdown(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> StatusBreakdown:
        """Orders processed in range grouped by financial status, most common first."""
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        statuses: Dict[str, StatusCount] = {}
        currency = None

        async for rows in self._scan_orders(
            "o.financial_status, o.total_amount, o.currency", "processed_at", start, end, channel
        ):
            for financial_status, total_amount, order_currency, _ in rows:
                currency = currency or order_currency
                key = (financial_status or "unknown").lower()
                bucket = statuses.get(key)
                if bucket is None:
                    bucket = statuses[key] = StatusCount(key, order_currency)
                bucket.count += 1
                bucket.total_amount += total_amount or ZERO

        return StatusBreakdown(
            date_range=date_range,
            statuses=sorted(statuses.values(), key=lambda s: s.count, reverse=True),
            currency=currency or config.analytics.default_currency,
        )

    async def get_sales_over_time(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> SalesOverTime:
        """Daily gross/refund/net sales by transaction processed day, zero-filled."""
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        default_currency = config.analytics.default_currency
        by_day: Dict[date, DailySales] = {}
        currency = None

        columns = f"t.kind, t.status, t.amount, t.currency, {_date_in_utc('t.processed_at')}"
        async for rows in self._scan_transactions(columns, start, end, channel):
            for kind, status, amount, tx_currency, day, _, _ in rows:
                currency = currency or tx_currency
                bucket = by_day.get(day)
                if bucket is None:
                    bucket = by_day[day] = DailySales(day, currency=tx_currency or default_currency)
                category = classify_transaction(kind, status)
                if category == "sale":
                    bucket.gross_sales += amount
                elif category == "refund":
                    bucket.refunds += abs(amount)

        return SalesOverTime(
            date_range=date_range,
            days=[by_day.get(day) or DailySales(day, currency=default_currency) for day in _days(start, end)],
            currency=currency or default_currency,
        )

    async def get_orders_over_time(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> OrdersOverTime:
        """Daily order count, value and AOV by order creation day, zero-filled."""
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        default_currency = config.analytics.default_currency
        by_day: Dict[date, DailyOrders] = {}
        currency = None

        columns = f"o.total_amount, o.currency, {_date_in_utc('o.created_at')}"
        async for rows in self._scan_orders(columns, "created_at", start, end, channel):
            for total_amount, order_currency, day, _ in rows:
                currency = currency or order_currency
                bucket = by_day.get(day)
                if bucket is None:
                    bucket = by_day[day] = DailyOrders(day, currency=order_currency or default_currency)
                bucket.total_orders += 1
                bucket.total_value += total_amount or ZERO

        return OrdersOverTime(
            date_range=date_range,
            days=[by_day.get(day) or DailyOrders(day, currency=default_currency) for day in _days(start, end)],
            currency=currency or default_currency,
        )

    async def get_transaction_analysis(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> TransactionAnalysis:
        """Count, success rate and successful amount per transaction kind."""
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        kinds: Dict[str, KindStats] = {}
        currency = None

        async for rows in self._scan_transactions("t.kind, t.status, t.amount, t.currency", start, end, channel):
            for kind, status, amount, tx_currency, _, _ in rows:
                currency = currency or tx_currency
                key = (kind or "unknown").lower()
                bucket = kinds.get(key)
                if bucket is None:
                    bucket = kinds[key] = KindStats(key, tx_currency)
                bucket.count += 1
                if (status or "").lower() == SUCCESS_STATUS:
                    bucket.successful += 1
                    bucket.successful_amount += amount

        return TransactionAnalysis(
            date_range=date_range,
            kinds=sorted(kinds.values(), key=lambda k: k.count, reverse=True),
            currency=currency or config.analytics.default_currency,
        )

    async def get_channel_performance(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> ChannelPerformance:
        """Orders created in range per channel, highest revenue first."""
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        channels: Dict[str, ChannelOrders] = {}
        currency = None

        async for rows in self._scan_orders(
            f"{_channel('o')}, o.total_amount, o.currency", "created_at", start, end, channel
        ):
            for channel_name, total_amount, order_currency, _ in rows:
                currency = currency or order_currency
                bucket = channels.get(channel_name)
                if bucket is None:
                    bucket = channels[channel_name] = ChannelOrders(channel_name)
                bucket.orders += 1
                bucket.revenue += total_amount or ZERO

        return ChannelPerformance(
            date_range=date_range,
            channels=sorted(channels.values(), key=lambda c: c.revenue, reverse=True),
            currency=currency or config.analytics.default_currency,
        )

    async def get_individual_orders(
        self,
        start_date: date,
        end_date: date,
        page: int = 1,
        page_size: int = 50,
        channel: Optional[str] = None,
    ) -> IndividualOrders:
        """
        Orders with transactions processed in range, most recent activity first.

        Count and summary come from a fold over the whole range; only the
        requested page of orders is loaded with its in-range transactions.
        """
        start, end, channel, date_range = self._prepare(start_date, end_date, channel)
        page = validate_limit(page, "page", max_value=None)
        page_size = validate_limit(page_size, "page_size")
        result = IndividualOrders(date_range=date_range, page=page, page_size=page_size)
        currency = None
        previous_order = None

        async for rows in self._scan_transactions("t.kind, t.status, t.amount, t.currency", start, end, channel):
            for kind, status, amount, tx_currency, order_id, _ in rows:
                currency = currency or tx_currency
                if order_id != previous_order:
                    previous_order = order_id
                    result.total_count += 1
                category = classify_transaction(kind, status)
                if category == "sale":
                    result.total_sales += amount
                elif category == "refund":
                    result.total_refunds += abs(amount)

        result.currency = currency or config.analytics.default_currency
        offset = (page - 1) * page_size
        if offset >= result.total_count:
            return result

        lower, upper = utc_bounds(start, end)
        where = [
            "t.processed_at >= CAST(? AS TIMESTAMPTZ)",
            "t.processed_at < CAST(? AS TIMESTAMPTZ)",
        ]
        params: List[Any] = [lower, upper]
        if channel:
            where.append(f"{_channel('t')} = ?")
            params.append(channel)
        in_range = " AND ".join(where)

        order_rows = await self._fetch_all(
            f"""
            SELECT o.id, o.external_id, o.name, o.created_at, o.processed_at, o.updated_at,
                   o.financial_status, {_channel('o')}, o.channel_id, o.source_name,
                   o.subtotal_amount, o.total_amount, o.total_tax_amount,
                   o.total_discounts_amount, o.total_shipping_amount, o.currency,
                   MAX(t.processed_at) AS last_activity
            FROM transactions t
            JOIN orders o ON o.id = t.order_id
            WHERE NOT o.test AND {in_range}
            GROUP BY ALL
            ORDER BY last_activity DESC, o.id DESC
            LIMIT {int(page_size)} OFFSET {int(offset)}
            """,
            params,
        )

        orders: Dict[int, IndividualOrder] = {}
        for (order_id, external_id, name, created_at, processed_at, updated_at, financial_status,
             channel_name, channel_id, source_name, subtotal, total, tax, discounts, shipping,
             order_currency, _) in order_rows:
            orders[order_id] = IndividualOrder(
                id=order_id,
                external_id=external_id,
                name=name,
                created_at=created_at,
                processed_at=processed_at,
                updated_at=updated_at,
                financial_status=financial_status,
                channel=channel_name,
                channel_id=channel_id,
                source_name=source_name,
                subtotal_amount=subtotal or ZERO,
                total_amount=total or ZERO,
                total_tax_amount=tax or ZERO,
                total_discounts_amount=discounts or ZERO,
                total_shipping_amount=shipping or ZERO,
                currency=order_currency,
            )

        placeholders = ",".join("?" * len(orders))
        tx_rows = await self._fetch_all(
            f"""
            SELECT t.order_id, t.external_id, t.kind, t.status, t.amount, t.currency,
                   t.gateway, t.created_at, t.processed_at
            FROM transactions t
            WHERE t.order_id IN ({placeholders}) AND {in_range}
            ORDER BY t.processed_at DESC, t.id DESC
            """,
            list(orders) + params,
        )
        for order_id, external_id, kind, status, amount, tx_currency, gateway, created_at, processed_at in tx_rows:
            order = orders[order_id]
            order.transactions.append(TransactionRecord(
                external_id=external_id,
                order_id=order_id,
                kind=kind,
                status=status,
                amount=amount,
                currency=tx_currency,
                gateway=gateway,
                created_at=created_at,
                processed_at=processed_at,
            ))
            category = classify_transaction(kind, status)
            if category == "sale":
                order.total_sales += amount
            elif category == "refund":
                order.total_refunds += abs(amount)

        result.orders = list(orders.values())
        return result

    async def get_dashboard_summary(
        self,
        start_date: date,
        end_date: date,
        channel: Optional[str] = None,
    ) -> Dict[str, Any]:
        """The three headline aggregates in one call."""
        sales = await self.get_sales_by_channel(start_date, end_date, channel)
        revenue = await self.get_revenue_breakdown(start_date, end_date, channel)
        statuses = await self.get_order_status_breakdown(start_date, end_date, channel)
        return {
            "sales_by_channel": sales.to_dict(),
            "revenue_breakdown": revenue.to_dict(),
            "order_status": statuses.to_dict(),
        }
