"""
Centralized configuration for the order sync service.

Values are read from environment variables (a local .env file is loaded
first) with defaults suitable for development.

Usage:
    from ordersync.config import config

    token = config.shopify.access_token
    window = config.sync.backfill_days
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


@dataclass(frozen=True)
class ShopifyConfig:
    """Shopify Admin GraphQL API configuration."""

    store_domain: str = field(default_factory=lambda: os.getenv("SHOPIFY_STORE_DOMAIN", ""))
    access_token: str = field(default_factory=lambda: os.getenv("SHOPIFY_API_ACCESS_TOKEN", ""))
    api_version: str = field(default_factory=lambda: os.getenv("SHOPIFY_API_VERSION", "2025-07"))

    # Shopify caps `first:` at 250 per connection page
    max_page_size: int = 250
    page_size: int = 250
    request_timeout: float = field(default_factory=lambda: _env_float("SHOPIFY_REQUEST_TIMEOUT", 30.0))

    # Cooperative throttle between pages (upstream ceiling is ~40 req/s)
    page_delay: float = 0.1


@dataclass(frozen=True)
class SyncConfig:
    """Orchestrator configuration."""

    entity_type: str = "orders"

    # Historical window for the first sync. The two legacy sync paths used
    # 365 and 30 days; 365 is the default until the owner decides.
    backfill_days: int = field(default_factory=lambda: _env_int("SYNC_BACKFILL_DAYS", 365))

    # Upper bound for one page fetch, on top of the HTTP timeout
    page_timeout: float = field(default_factory=lambda: _env_float("SYNC_PAGE_TIMEOUT", 60.0))

    # A `running` row whose heartbeat is older than this is treated as abandoned.
    # Unset: two page timeouts plus a second for the inter-page delay, since a
    # live run refreshes the heartbeat after every page.
    lease_timeout_seconds: Optional[int] = field(default_factory=lambda: _env_optional_int("SYNC_LEASE_TIMEOUT"))

    def __post_init__(self):
        if self.lease_timeout_seconds is None:
            object.__setattr__(self, "lease_timeout_seconds", math.ceil(2 * self.page_timeout) + 1)


@dataclass(frozen=True)
class StoreConfig:
    """DuckDB store configuration."""

    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DUCKDB_PATH", "data/orders.duckdb"))
    )
    query_timeout: float = 30.0


@dataclass(frozen=True)
class AnalyticsConfig:
    """Aggregation reader configuration."""

    page_size: int = 1000
    default_currency: str = "USD"


@dataclass(frozen=True)
class WebConfig:
    """Trigger endpoint configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("WEB_PORT", 8080))
    sync_rate_limit: str = "10/minute"


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: os.getenv("LOG_FORMAT", "text"))
    shopify: ShopifyConfig = field(default_factory=ShopifyConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(require_feed: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Args:
        require_feed: If True, Shopify credentials must be set

    Raises:
        ConfigurationError: If required configuration is missing
    """
    errors = []

    if require_feed:
        if not config.shopify.store_domain:
            errors.append("SHOPIFY_STORE_DOMAIN is required but not set")
        if not config.shopify.access_token:
            errors.append("SHOPIFY_API_ACCESS_TOKEN is required but not set")

    if config.shopify.store_domain.startswith(("http://", "https://")):
        errors.append("SHOPIFY_STORE_DOMAIN must be a bare host (e.g. my-shop.myshopify.com)")

    if config.sync.backfill_days < 1:
        errors.append("SYNC_BACKFILL_DAYS must be a positive number of days")

    if config.sync.lease_timeout_seconds < 0:
        errors.append("SYNC_LEASE_TIMEOUT cannot be negative")
    elif config.sync.lease_timeout_seconds < config.sync.page_timeout:
        errors.append("SYNC_LEASE_TIMEOUT must be at least SYNC_PAGE_TIMEOUT")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
