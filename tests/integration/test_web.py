"""
Integration tests for the FastAPI trigger and status endpoints.
"""
import pytest
from decimal import Decimal
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from ordersync.exceptions import ValidationError
from ordersync.models import (
    SyncMode, SyncResult, SyncState, SyncStatus, SalesByChannel, ChannelSales, DateRange,
    IndividualOrders,
)
from web.main import app
from web.routes.api._deps import limiter


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    # No context manager: startup (config validation, DuckDB) is not run
    return TestClient(app)


def _service(result=None, status=None):
    service = MagicMock()
    service.sync_orders = AsyncMock(return_value=result)
    service.get_sync_status = AsyncMock(return_value=status)
    return service


class TestSyncTrigger:
    """Tests for /api/sync."""

    def test_post_success(self, client):
        result = SyncResult(success=True, mode=SyncMode.INCREMENTAL, orders_processed=12, transactions_processed=15)
        service = _service(result)

        with patch("web.routes.api.sync.get_sync_service", AsyncMock(return_value=service)):
            response = client.post("/api/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["ordersProcessed"] == 12
        assert body["transactionsProcessed"] == 15
        assert body["mode"] == "incremental"
        service.sync_orders.assert_awaited_once()

    def test_get_allowed_for_manual_runs(self, client):
        service = _service(SyncResult(success=True))
        with patch("web.routes.api.sync.get_sync_service", AsyncMock(return_value=service)):
            response = client.get("/api/sync")
        assert response.status_code == 200

    def test_failure_is_500_with_payload(self, client):
        result = SyncResult(success=False, error="API returned 503", orders_processed=250)
        with patch("web.routes.api.sync.get_sync_service", AsyncMock(return_value=_service(result))):
            response = client.post("/api/sync")

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "API returned 503"
        assert body["ordersProcessed"] == 250

    def test_request_id_echoed(self, client):
        with patch("web.routes.api.sync.get_sync_service", AsyncMock(return_value=_service(SyncResult(success=True)))):
            response = client.post("/api/sync", headers={"X-Request-ID": "abc12345"})
        assert response.headers["X-Request-ID"] == "abc12345"


class TestSyncStatus:
    """Tests for /api/sync/status."""

    def test_state_row(self, client):
        status = SyncState("orders", SyncStatus.RUNNING, last_cursor="c1", version=3).to_dict()
        with patch("web.routes.api.sync.get_sync_service", AsyncMock(return_value=_service(status=status))):
            response = client.get("/api/sync/status")

        assert response.status_code == 200
        assert response.json()["sync_status"] == "running"
        assert response.json()["last_cursor"] == "c1"

    def test_missing_row(self, client):
        with patch("web.routes.api.sync.get_sync_service", AsyncMock(return_value=_service(status=None))):
            response = client.get("/api/sync/status")
        assert response.status_code == 404


class TestHealth:
    """Tests for /api/health."""

    def test_healthy(self, client):
        store = MagicMock()
        store.get_stats = AsyncMock(return_value={
            "orders": 10, "transactions": 12, "test_orders": 1,
            "date_range": {"min": None, "max": None}, "total_queries": 3, "db_size_mb": 0.5,
        })
        store.get_sync_state = AsyncMock(return_value=SyncState("orders"))

        with patch("web.routes.api.health.get_store", AsyncMock(return_value=store)):
            response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["duckdb"]["orders"] == 10
        assert body["sync"]["sync_status"] == "completed"

    def test_degraded(self, client):
        with patch("web.routes.api.health.get_store", AsyncMock(side_effect=RuntimeError("locked"))):
            response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


class TestAnalyticsRoutes:
    """Tests for /api/analytics/{report}."""

    def test_report(self, client):
        result = SalesByChannel(
            date_range=DateRange(date(2024, 1, 1), date(2024, 1, 3)),
            channels=[ChannelSales("POS", "USD", gross_sales=Decimal("50.00"), orders=1)],
        )
        store = MagicMock()
        store.get_sales_by_channel = AsyncMock(return_value=result)

        with patch("web.routes.api.analytics.get_store", AsyncMock(return_value=store)):
            response = client.get(
                "/api/analytics/sales-by-channel",
                params={"start_date": "2024-01-01", "end_date": "2024-01-03", "channel": "POS"},
            )

        assert response.status_code == 200
        assert response.json()["channels"][0]["gross_sales"] == 50.0
        store.get_sales_by_channel.assert_awaited_once_with("2024-01-01", "2024-01-03", channel="POS")

    def test_summary_is_plain_dict(self, client):
        store = MagicMock()
        store.get_dashboard_summary = AsyncMock(return_value={"sales_by_channel": {}, "order_status": {}})

        with patch("web.routes.api.analytics.get_store", AsyncMock(return_value=store)):
            response = client.get(
                "/api/analytics/summary",
                params={"start_date": "2024-01-01", "end_date": "2024-01-03"},
            )

        assert response.status_code == 200
        assert response.json() == {"sales_by_channel": {}, "order_status": {}}

    def test_order_listing_pages(self, client):
        listing = IndividualOrders(
            date_range=DateRange(date(2024, 1, 1), date(2024, 1, 3)), page=2, page_size=1, total_count=2,
        )
        store = MagicMock()
        store.get_individual_orders = AsyncMock(return_value=listing)

        with patch("web.routes.api.analytics.get_store", AsyncMock(return_value=store)):
            response = client.get(
                "/api/analytics/orders",
                params={"start_date": "2024-01-01", "end_date": "2024-01-03", "page": 2, "page_size": 1},
            )

        assert response.status_code == 200
        assert response.json()["pagination"] == {"page": 2, "page_size": 1, "total_count": 2, "total_pages": 2}
        store.get_individual_orders.assert_awaited_once_with(
            "2024-01-01", "2024-01-03", channel=None, page=2, page_size=1
        )

    def test_invalid_dates(self, client):
        store = MagicMock()
        store.get_sales_over_time = AsyncMock(side_effect=ValidationError("start_date", "Invalid date format"))

        with patch("web.routes.api.analytics.get_store", AsyncMock(return_value=store)):
            response = client.get(
                "/api/analytics/sales-over-time",
                params={"start_date": "01/01/2024", "end_date": "2024-01-03"},
            )

        assert response.status_code == 400

    def test_unknown_report(self, client):
        response = client.get(
            "/api/analytics/forecast",
            params={"start_date": "2024-01-01", "end_date": "2024-01-03"},
        )
        assert response.status_code == 404


class TestLifespan:
    """Startup and shutdown wiring."""

    def test_startup_validates_and_opens_store(self):
        store = MagicMock()
        store.get_stats = AsyncMock(return_value={"orders": 0, "transactions": 0, "db_size_mb": 0.0})

        with patch("web.main.validate_config") as validate, \
                patch("web.main.get_store", AsyncMock(return_value=store)), \
                patch("web.main.close_store", AsyncMock()) as close_store, \
                patch("web.main.close_feed_client", AsyncMock()) as close_feed:
            with TestClient(app):
                validate.assert_called_once_with(require_feed=True)
                store.get_stats.assert_awaited_once()
                close_store.assert_not_awaited()

        close_feed.assert_awaited_once()
        close_store.assert_awaited_once()

