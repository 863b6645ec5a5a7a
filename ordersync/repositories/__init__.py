"""
Repository mixins composed into DuckDBStore.

- SyncStateMixin: sync_state row reads, guarded writes and the run lease
- OrdersMixin: order/transaction upserts and surrogate id lookup
- AnalyticsMixin: aggregation readers over the replica
"""
from ordersync.repositories.sync_state import SyncStateMixin
from ordersync.repositories.orders import OrdersMixin
from ordersync.repositories.analytics import AnalyticsMixin

__all__ = [
    "SyncStateMixin",
    "OrdersMixin",
    "AnalyticsMixin",
]
