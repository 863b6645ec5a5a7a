#!/usr/bin/env python3
"""
Run one Shopify order sync against the local DuckDB replica.

Picks the mode automatically: resumes an interrupted run, backfills when
nothing has been synced yet, otherwise catches up incrementally.

Usage:
    python scripts/run_sync.py
    python scripts/run_sync.py --status   # Print the sync state row only
    python scripts/run_sync.py --order gid://shopify/Order/123   # Inspect one stored order
"""
import asyncio
import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ordersync.config import config, validate_config, ConfigurationError
from ordersync.duckdb_store import get_store, close_store
from ordersync.feed_client import close_feed_client
from ordersync.observability import setup_logging, get_logger
from ordersync.sync_service import get_sync_service

setup_logging(level=config.log_level, json_format=(config.log_format == "json"))
logger = get_logger(__name__)


async def show_order(external_id: str) -> int:
    """Print one stored order with its transactions."""
    store = await get_store()
    order = await store.get_order_by_external_id(external_id)
    if order is None:
        logger.error(f"Order {external_id} is not in the replica")
        return 1

    order["transactions"] = await store.get_transactions_for_order(order["id"])
    print(json.dumps(order, indent=2, default=str))
    return 0


async def main(status_only: bool = False, order_id: str = None) -> int:
    """Run a sync (or print state / one order) and return the process exit code."""
    try:
        validate_config(require_feed=not (status_only or order_id))
    except ConfigurationError as e:
        logger.critical(str(e))
        return 2

    try:
        if order_id:
            return await show_order(order_id)

        sync_service = await get_sync_service()

        if status_only:
            print(json.dumps(await sync_service.get_sync_status(), indent=2))
            return 0

        store = await get_store()
        stats_before = await store.get_stats()
        logger.info(f"Before sync: {stats_before['orders']} orders, "
                    f"{stats_before['transactions']} transactions")

        result = await sync_service.sync_orders()
        print(json.dumps(result.to_dict(), indent=2))

        stats_after = await store.get_stats()
        logger.info(f"After sync: {stats_after['orders']} orders, "
                    f"{stats_after['transactions']} transactions")
        return 0 if result.success else 1
    finally:
        await close_feed_client()
        await close_store()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Sync Shopify orders into DuckDB")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the persisted sync state and exit"
    )
    parser.add_argument(
        "--order",
        metavar="EXTERNAL_ID",
        help="Print one stored order with its transactions and exit"
    )
    args = parser.parse_args()

    exit_code = asyncio.run(main(status_only=args.status, order_id=args.order))
    sys.exit(exit_code)
