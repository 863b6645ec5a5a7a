"""
FastAPI application exposing the sync trigger, sync state and readers.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, JSONResponse

from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from web.routes import api
from web.routes.api._deps import limiter
from web.middleware import RequestLoggingMiddleware
from ordersync.config import config, validate_config, ConfigurationError
from ordersync.duckdb_store import get_store, close_store
from ordersync.feed_client import close_feed_client
from ordersync.observability import setup_logging, get_logger

# Configure structured logging
# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
setup_logging(level=config.log_level, json_format=(config.log_format == "json"))
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Order sync service starting...")

    # Validate configuration early - fail fast with clear errors
    try:
        validate_config(require_feed=True)
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    try:
        store = await get_store()
        stats = await store.get_stats()
        logger.info(
            f"DuckDB ready: {stats['orders']} orders, "
            f"{stats['transactions']} transactions, "
            f"{stats['db_size_mb']} MB"
        )
    except Exception as e:
        logger.error(f"DuckDB initialization failed: {e}", exc_info=True)
        raise  # Fail fast - DuckDB is required

    yield

    await close_feed_client()
    await close_store()
    logger.info("Order sync service stopped")


# Create FastAPI app
app = FastAPI(
    title="Shopify Order Sync",
    description="Incremental Shopify order replica with aggregation readers",
    version=config.version,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter

# Custom rate limit exceeded handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": "Too many requests. Please try again later.",
            "retry_after": exc.detail
        }
    )

# Add request logging middleware (adds correlation IDs and timing)
app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(api.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.web.host, port=config.web.port)
