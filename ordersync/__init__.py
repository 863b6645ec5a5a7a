"""
Shopify order replica: incremental sync engine, DuckDB store and readers.

- exceptions: Custom exception hierarchy
- validators: Input validation functions
- config: Centralized configuration
- sync_service: The sync orchestrator (`get_sync_service().sync_orders()`)
- duckdb_store: The replica and its readers (`get_store()`)
"""

# Import in dependency order
from ordersync.exceptions import (
    SyncError,
    FeedError,
    FeedConnectionError,
    FeedAPIError,
    FeedDataError,
    StoreError,
    StoreWriteError,
    SyncConflictError,
    ValidationError,
    QueryTimeoutError,
)

from ordersync.validators import (
    validate_date,
    validate_date_range,
    validate_channel,
    validate_limit,
)

from ordersync.config import config

__all__ = [
    # Exceptions
    "SyncError",
    "FeedError",
    "FeedConnectionError",
    "FeedAPIError",
    "FeedDataError",
    "StoreError",
    "StoreWriteError",
    "SyncConflictError",
    "ValidationError",
    "QueryTimeoutError",
    # Validators
    "validate_date",
    "validate_date_range",
    "validate_channel",
    "validate_limit",
    # Config
    "config",
]
