"""Health check endpoint."""
import time

from fastapi import APIRouter, Request

from ordersync.config import config
from ordersync.observability import get_correlation_id, Timer
from web.schemas import HealthResponse
from ._deps import limiter, get_store, get_logger, START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint for Docker/load balancer monitoring."""
    uptime_seconds = int(time.time() - START_TIME)

    db_latency_ms = None
    duckdb_stats = None
    sync_state = None
    try:
        with Timer("health_check_db") as timer:
            store = await get_store()
            duckdb_stats = await store.get_stats()
            state = await store.get_sync_state(config.sync.entity_type)
        duckdb_status = "connected"
        db_latency_ms = round(timer.elapsed_ms, 2)
        sync_state = state.to_dict() if state else None
    except Exception as e:
        logger.warning(f"Health check could not reach DuckDB: {e}")
        duckdb_status = f"error: {e}"

    return {
        "status": "healthy" if duckdb_stats else "degraded",
        "version": config.version,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_correlation_id(),
        "duckdb": {
            "status": duckdb_status,
            "latency_ms": db_latency_ms,
            **{k: v for k, v in (duckdb_stats or {}).items() if k != "date_range"},
        },
        "sync": sync_state,
    }
