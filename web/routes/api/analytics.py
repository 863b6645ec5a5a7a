"""Aggregation endpoints over the synced replica."""
from typing import Optional

from fastapi import APIRouter, Query, Request, HTTPException

from ordersync.exceptions import QueryTimeoutError
from ._deps import limiter, get_store, get_logger, bad_request, ValidationError

router = APIRouter(prefix="/analytics")
logger = get_logger(__name__)

# URL slug -> DuckDBStore reader
READERS = {
    "sales-by-channel": "get_sales_by_channel",
    "revenue-breakdown": "get_revenue_breakdown",
    "order-status": "get_order_status_breakdown",
    "sales-over-time": "get_sales_over_time",
    "orders-over-time": "get_orders_over_time",
    "transactions": "get_transaction_analysis",
    "channel-performance": "get_channel_performance",
    "summary": "get_dashboard_summary",
    "orders": "get_individual_orders",
}

# Readers that take page / page_size
PAGINATED = {"orders"}


@router.get("/{report}")
@limiter.limit("30/minute")
async def get_report(
    request: Request,
    report: str,
    start_date: str = Query(..., description="First day (YYYY-MM-DD)"),
    end_date: str = Query(..., description="Last day, included (YYYY-MM-DD)"),
    channel: Optional[str] = Query(None, description="Filter by channel name"),
    page: int = Query(1, description="Page number (order listing only)"),
    page_size: int = Query(50, description="Orders per page (order listing only)"),
):
    """Run one aggregation reader for an inclusive UTC date range."""
    method = READERS.get(report)
    if method is None:
        raise HTTPException(status_code=404, detail=f"Unknown report: {report}")

    store = await get_store()
    try:
        paging = {"page": page, "page_size": page_size} if report in PAGINATED else {}
        result = await getattr(store, method)(start_date, end_date, channel=channel, **paging)
    except ValidationError as e:
        raise bad_request(e)
    except QueryTimeoutError as e:
        logger.error(f"Report {report} timed out: {e}")
        raise HTTPException(status_code=504, detail="Report query timed out")

    return result if isinstance(result, dict) else result.to_dict()
