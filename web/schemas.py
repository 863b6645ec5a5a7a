"""
Pydantic response models for API endpoints.

Provides type-safe response models with automatic validation and documentation.
"""
from typing import Optional
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC
# ═══════════════════════════════════════════════════════════════════════════════

class SyncResponse(BaseModel):
    """Outcome of one triggered sync run."""
    success: bool
    message: str
    ordersProcessed: int = Field(0, description="Orders written by this run")
    transactionsProcessed: int = Field(0, description="Transactions written by this run")
    testOrdersSkipped: int = Field(0, description="Test orders dropped before persistence")
    transactionsSkipped: int = Field(0, description="Transactions dropped because their order was not found")
    pagesFetched: int = Field(0, description="Feed pages requested")
    mode: Optional[str] = Field(None, description="initial or incremental")
    resumed: bool = Field(False, description="Whether the run continued from a saved cursor")
    durationMs: float = Field(0.0, description="Run duration in milliseconds")
    error: Optional[str] = Field(None, description="Failure reason")


class SyncStateResponse(BaseModel):
    """Persisted sync state row."""
    entity_type: str
    sync_status: str = Field(description="running, completed or failed")
    last_cursor: Optional[str] = None
    last_sync_at: Optional[str] = Field(None, description="Last heartbeat (ISO format)")
    error_message: Optional[str] = None
    sync_mode: Optional[str] = None
    filter_query: Optional[str] = None
    started_at: Optional[str] = None
    last_success_at: Optional[str] = None
    version: int = 0


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════════════════════════

class DuckDBStats(BaseModel):
    """DuckDB store statistics."""
    status: str = Field(description="Connection status: connected or error message")
    latency_ms: Optional[float] = Field(None, description="Stats query latency in milliseconds")
    orders: int = Field(0, description="Orders in the replica")
    transactions: int = Field(0, description="Transactions in the replica")
    test_orders: int = Field(0, description="Test orders stored (always excluded from readers)")
    db_size_mb: float = Field(0.0, description="Database file size in MB")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    duckdb: DuckDBStats
    sync: Optional[SyncStateResponse] = Field(None, description="Persisted sync state")
