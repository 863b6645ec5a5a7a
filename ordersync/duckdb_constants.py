"""Shared constants and SQL helpers for the DuckDB store and its mixins."""
from ordersync.config import config

# Database configuration
DB_PATH = config.store.db_path

# Query timeout settings
DEFAULT_QUERY_TIMEOUT = config.store.query_timeout  # seconds

# Rows per keyset page on the aggregation read path
READ_PAGE_SIZE = config.analytics.page_size

# Day boundaries for reports; timestamps are stored as TIMESTAMPTZ
REPORTING_TIMEZONE = "UTC"


def _date_in_utc(column: str) -> str:
    """Generate SQL for extracting the calendar day of a TIMESTAMPTZ column."""
    return f"CAST(timezone('{REPORTING_TIMEZONE}', {column}) AS DATE)"


def _channel(alias: str) -> str:
    """Generate SQL for the channel grouping key of an orders/transactions row."""
    return f"COALESCE({alias}.channel_display_name, {alias}.source_name, 'Unknown')"
