"""DuckDBStore sync state methods."""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple

from ordersync.exceptions import StoreError, SyncConflictError
from ordersync.models import SyncState, SyncStatus
from ordersync.observability import get_logger

logger = get_logger(__name__)

SYNC_STATE_COLUMNS = (
    "entity_type", "last_cursor", "last_sync_at", "sync_status", "error_message",
    "sync_mode", "filter_query", "started_at", "last_success_at", "version",
)
_WRITABLE_COLUMNS = frozenset(SYNC_STATE_COLUMNS) - {"entity_type", "version"}
_SELECT_SQL = ", ".join(SYNC_STATE_COLUMNS)


def _set_clause(updates: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Build `col = ?, ...` for an update, stamping last_sync_at and bumping version."""
    unknown = set(updates) - _WRITABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown sync_state columns: {sorted(unknown)}")

    updates = dict(updates)
    updates.setdefault("last_sync_at", datetime.now(timezone.utc))

    assignments = []
    params = []
    for column, value in updates.items():
        assignments.append(f"{column} = ?")
        params.append(value.value if isinstance(value, Enum) else value)
    assignments.append("version = version + 1")
    return ", ".join(assignments), params


class SyncStateMixin:

    def _row_to_state(self, row: Optional[tuple]) -> Optional[SyncState]:
        if row is None:
            return None
        return SyncState.from_row(dict(zip(SYNC_STATE_COLUMNS, row)))

    async def get_sync_state(self, entity_type: str = "orders") -> Optional[SyncState]:
        """Get the sync state row for an entity type, or None if it was never seeded."""
        async with self.connection() as conn:
            row = conn.execute(
                f"SELECT {_SELECT_SQL} FROM sync_state WHERE entity_type = ?",
                [entity_type],
            ).fetchone()
        return self._row_to_state(row)

    async def ensure_sync_state(self, entity_type: str) -> SyncState:
        """Seed a completed state row for a new entity type (no-op if present)."""
        async with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (entity_type, sync_status, version)
                VALUES (?, 'completed', 0)
                ON CONFLICT (entity_type) DO NOTHING
                """,
                [entity_type],
            )
            row = conn.execute(
                f"SELECT {_SELECT_SQL} FROM sync_state WHERE entity_type = ?",
                [entity_type],
            ).fetchone()
        return self._row_to_state(row)

    async def set_sync_state(
        self,
        entity_type: str,
        expected_version: Optional[int] = None,
        **updates: Any,
    ) -> SyncState:
        """
        Apply a partial update to the state row.

        `last_sync_at` is stamped with the current time unless passed
        explicitly; `version` is always incremented.

        Args:
            entity_type: State row key
            expected_version: Only apply if the row still carries this version
            **updates: Column values (enums are stored by value)

        Returns:
            The row as written

        Raises:
            SyncConflictError: expected_version no longer matches
            StoreError: the row does not exist
        """
        set_sql, params = _set_clause(updates)
        where_sql = "entity_type = ?"
        params.append(entity_type)
        if expected_version is not None:
            where_sql += " AND version = ?"
            params.append(expected_version)

        async with self.connection() as conn:
            row = conn.execute(
                f"UPDATE sync_state SET {set_sql} WHERE {where_sql} RETURNING {_SELECT_SQL}",
                params,
            ).fetchone()
            if row is None:
                current = conn.execute(
                    "SELECT version FROM sync_state WHERE entity_type = ?", [entity_type]
                ).fetchone()

        if row is not None:
            return self._row_to_state(row)

        if current is None:
            raise StoreError(f"No sync state row for '{entity_type}'")

        raise SyncConflictError(
            "Sync state was modified by another run",
            entity_type=entity_type,
            expected_version=expected_version,
            actual_version=current[0],
        )

    async def begin_sync(
        self,
        entity_type: str,
        expected_version: int,
        lease_timeout_seconds: float,
        **updates: Any,
    ) -> SyncState:
        """
        Claim the state row for a new run (compare-and-swap to `running`).

        Succeeds only if the row still has `expected_version` and is not held
        by a live run. A `running` row whose heartbeat (`last_sync_at`) is
        older than the lease timeout counts as abandoned and can be claimed.

        Raises:
            SyncConflictError: another run holds the row, or it changed since read
            StoreError: the row does not exist
        """
        updates["sync_status"] = SyncStatus.RUNNING
        set_sql, params = _set_clause(updates)
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=lease_timeout_seconds)
        params.extend([entity_type, expected_version, cutoff])

        async with self.connection() as conn:
            row = conn.execute(
                f"""
                UPDATE sync_state SET {set_sql}
                WHERE entity_type = ?
                  AND version = ?
                  AND (sync_status <> 'running' OR last_sync_at IS NULL OR last_sync_at <= ?)
                RETURNING {_SELECT_SQL}
                """,
                params,
            ).fetchone()
            if row is None:
                current = conn.execute(
                    f"SELECT {_SELECT_SQL} FROM sync_state WHERE entity_type = ?",
                    [entity_type],
                ).fetchone()

        if row is not None:
            state = self._row_to_state(row)
            logger.info(
                "Sync lease acquired",
                extra={"entity_type": entity_type, "version": state.version},
            )
            return state

        existing = self._row_to_state(current)
        if existing is None:
            raise StoreError(f"No sync state row for '{entity_type}'")

        if existing.version != expected_version:
            raise SyncConflictError(
                "Sync state changed before the run could start",
                entity_type=entity_type,
                expected_version=expected_version,
                actual_version=existing.version,
            )

        raise SyncConflictError(
            "Another sync is already running",
            details=f"last heartbeat {existing.last_sync_at.isoformat() if existing.last_sync_at else 'never'}",
            entity_type=entity_type,
            expected_version=expected_version,
            actual_version=existing.version,
        )
