"""
Integration tests for the sync_state row: guarded writes and the run lease.
"""
import pytest

from ordersync.exceptions import StoreError, SyncConflictError
from ordersync.models import SyncMode, SyncStatus


class TestSyncStateRow:
    """Tests for get/set of the sync state row."""

    @pytest.mark.asyncio
    async def test_seeded_on_connect(self, store):
        state = await store.get_sync_state("orders")
        assert state.sync_status == SyncStatus.COMPLETED
        assert state.version == 0
        assert state.last_cursor is None
        assert state.last_success_at is None

    @pytest.mark.asyncio
    async def test_unknown_entity(self, store):
        assert await store.get_sync_state("customers") is None
        with pytest.raises(StoreError):
            await store.set_sync_state("customers", sync_status=SyncStatus.FAILED)

    @pytest.mark.asyncio
    async def test_ensure_sync_state(self, store):
        state = await store.ensure_sync_state("customers")
        assert state.entity_type == "customers"
        again = await store.ensure_sync_state("customers")
        assert again.version == state.version

    @pytest.mark.asyncio
    async def test_set_bumps_version_and_heartbeat(self, store):
        state = await store.set_sync_state(
            "orders", last_cursor="c1", sync_status=SyncStatus.RUNNING, sync_mode=SyncMode.INITIAL
        )
        assert state.version == 1
        assert state.last_cursor == "c1"
        assert state.sync_status == SyncStatus.RUNNING
        assert state.sync_mode == SyncMode.INITIAL
        assert state.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_columns(self, store):
        await store.set_sync_state("orders", last_cursor="c1", filter_query="q")
        state = await store.set_sync_state("orders", error_message="boom")
        assert state.last_cursor == "c1"
        assert state.filter_query == "q"
        assert state.error_message == "boom"

    @pytest.mark.asyncio
    async def test_version_mismatch(self, store):
        await store.set_sync_state("orders", last_cursor="c1")
        with pytest.raises(SyncConflictError) as exc_info:
            await store.set_sync_state("orders", expected_version=0, last_cursor="c2")

        assert exc_info.value.actual_version == 1
        assert (await store.get_sync_state("orders")).last_cursor == "c1"

    @pytest.mark.asyncio
    async def test_unknown_column_rejected(self, store):
        with pytest.raises(ValueError):
            await store.set_sync_state("orders", version=10)


class TestBeginSync:
    """Tests for the run lease."""

    @pytest.mark.asyncio
    async def test_claims_idle_row(self, store):
        state = await store.begin_sync("orders", expected_version=0, lease_timeout_seconds=900, filter_query="q")
        assert state.sync_status == SyncStatus.RUNNING
        assert state.filter_query == "q"
        assert state.version == 1

    @pytest.mark.asyncio
    async def test_live_lease_blocks_second_run(self, store):
        state = await store.begin_sync("orders", expected_version=0, lease_timeout_seconds=900)
        with pytest.raises(SyncConflictError, match="already running"):
            await store.begin_sync("orders", expected_version=state.version, lease_timeout_seconds=900)

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken_over(self, store):
        state = await store.begin_sync("orders", expected_version=0, lease_timeout_seconds=900)
        taken = await store.begin_sync("orders", expected_version=state.version, lease_timeout_seconds=0)
        assert taken.version == state.version + 1

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, store):
        await store.set_sync_state("orders", error_message=None)
        with pytest.raises(SyncConflictError, match="changed before the run"):
            await store.begin_sync("orders", expected_version=0, lease_timeout_seconds=900)

    @pytest.mark.asyncio
    async def test_holder_writes_fail_after_takeover(self, store):
        """The previous holder's checkpoint is rejected once another run claims the row."""
        first = await store.begin_sync("orders", expected_version=0, lease_timeout_seconds=900)
        await store.begin_sync("orders", expected_version=first.version, lease_timeout_seconds=0)

        with pytest.raises(SyncConflictError):
            await store.set_sync_state("orders", expected_version=first.version, last_cursor="late")
