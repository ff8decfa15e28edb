"""
Tests for the inventory-health job.

Covers:
- Forecast snapshots and their restock threshold
- Restock alerts raised once per forecast
- Threshold updates
- KPI snapshots with FIFO batch assignments
- Scoping and access control
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from cogs_kernel.domain.inventory import FifoAllocation, StockStatus
from cogs_kernel.exceptions import (
    AccessDeniedError,
    ForecastNotFoundError,
    ValidationError,
)
from cogs_kernel.models.inventory import InventoryForecastModel, InventoryKPIModel
from cogs_services.collaborators import StaticSalesHistory
from cogs_services.inventory_health_service import InventoryHealthService
from tests.conftest import (
    OTHER_USER_ID,
    TEST_ACCOUNT_ID,
    TEST_MARKETPLACE_ID,
    TEST_SKU,
    TEST_USER_ID,
)


@pytest.fixture
def service_with_sales(session, access_policy, clock):
    """Health service whose sales history reports the given 30-day totals."""

    def _build(sold=None, returned=None):
        return InventoryHealthService(
            session,
            access_policy,
            StaticSalesHistory(sold=sold or {}, returned=returned or {}),
            clock=clock,
        )

    return _build


KEY = (TEST_SKU, TEST_MARKETPLACE_ID)


class TestForecasts:
    def test_forecast_snapshot(self, service_with_sales, stock_row, session, clock):
        stock_row(100, low_stock_threshold=10)
        service = service_with_sales(sold={KEY: 96}, returned={KEY: 6})

        [forecast] = service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert forecast.sales_velocity == Decimal("3")
        assert forecast.forecast_3_day == Decimal("91.00")
        assert forecast.forecast_7_day == Decimal("79.00")
        assert forecast.forecast_30_day == Decimal("10.00")
        assert forecast.restock_threshold == 10
        assert not forecast.needs_restock
        assert forecast.last_calculated_at == clock.now()

        stored = session.execute(select(InventoryForecastModel)).scalars().one()
        assert stored.restock_threshold == 10
        assert stored.alert_sent is False

    def test_recalculation_upserts(self, service_with_sales, stock_row, session):
        stock_row(100)
        service = service_with_sales()

        service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID)
        service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID)

        count = session.execute(select(func.count()).select_from(InventoryForecastModel)).scalar_one()
        assert count == 1

    def test_user_threshold_survives_recalculation(self, service_with_sales, stock_row):
        stock_row(100, low_stock_threshold=10)
        service = service_with_sales()
        service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID)

        service.update_restock_threshold(TEST_USER_ID, TEST_ACCOUNT_ID, TEST_SKU, 40)
        [forecast] = service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert forecast.restock_threshold == 40

    def test_scope_filters(self, service_with_sales, stock_row):
        stock_row(10)
        stock_row(10, marketplace_id="ebay-uk")
        stock_row(10, sku="SKU-2")
        service = service_with_sales()

        by_marketplace = service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID, marketplace_id="ebay-uk")
        by_sku = service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID, sku=TEST_SKU)

        assert [(f.sku, f.marketplace_id) for f in by_marketplace] == [(TEST_SKU, "ebay-uk")]
        assert [f.marketplace_id for f in by_sku] == [TEST_MARKETPLACE_ID, "ebay-uk"]

    def test_access_denied(self, service_with_sales):
        with pytest.raises(AccessDeniedError):
            service_with_sales().recalculate_forecasts(OTHER_USER_ID, TEST_ACCOUNT_ID)


class TestRestockAlerts:
    def test_alert_raised_once(self, service_with_sales, stock_row, captured_logs):
        stock_row(20, low_stock_threshold=10)
        service = service_with_sales(sold={KEY: 60})

        [first] = service.restock_alerts(TEST_USER_ID, TEST_ACCOUNT_ID)
        [second] = service.restock_alerts(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert first.newly_alerted
        assert not second.newly_alerted
        assert first.forecast_7_day == Decimal("6.00")
        assert first.suggested_reorder_quantity == 10
        raised = [r for r in captured_logs() if r["message"] == "restock_alert_raised"]
        assert len(raised) == 1
        assert raised[0]["level"] == "WARNING"

    def test_alert_flag_persisted(self, service_with_sales, stock_row, session):
        stock_row(20, low_stock_threshold=10)
        service_with_sales(sold={KEY: 60}).restock_alerts(TEST_USER_ID, TEST_ACCOUNT_ID)

        stored = session.execute(select(InventoryForecastModel)).scalars().one()
        assert stored.alert_sent is True

    def test_healthy_stock_not_alerted(self, service_with_sales, stock_row):
        stock_row(500, low_stock_threshold=10)

        assert service_with_sales(sold={KEY: 30}).restock_alerts(TEST_USER_ID, TEST_ACCOUNT_ID) == []

    def test_threshold_at_projection_alerts(self, service_with_sales, stock_row):
        # velocity 1: 7-day projection 10 equals the threshold
        stock_row(17, low_stock_threshold=10)

        alerts = service_with_sales(sold={KEY: 30}).restock_alerts(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert len(alerts) == 1


class TestUpdateRestockThreshold:
    def test_update(self, service_with_sales, stock_row, session):
        stock_row(100)
        service = service_with_sales()
        service.recalculate_forecasts(TEST_USER_ID, TEST_ACCOUNT_ID)

        forecast = service.update_restock_threshold(TEST_USER_ID, TEST_ACCOUNT_ID, TEST_SKU, 25)

        assert forecast.restock_threshold == 25
        stored = session.execute(select(InventoryForecastModel)).scalars().one()
        assert stored.restock_threshold == 25

    def test_missing_forecast(self, service_with_sales):
        with pytest.raises(ForecastNotFoundError) as exc_info:
            service_with_sales().update_restock_threshold(TEST_USER_ID, TEST_ACCOUNT_ID, TEST_SKU, 5)
        assert exc_info.value.code == "FORECAST_NOT_FOUND"

    @pytest.mark.parametrize("threshold", [-1, "5", 2.5])
    def test_invalid_threshold(self, service_with_sales, threshold):
        with pytest.raises(ValidationError):
            service_with_sales().update_restock_threshold(
                TEST_USER_ID, TEST_ACCOUNT_ID, TEST_SKU, threshold
            )


class TestKpis:
    def test_kpi_with_fifo(self, service_with_sales, stock_row, two_batches, session, clock):
        b1, b2 = two_batches
        stock_row(90)
        service = service_with_sales(sold={KEY: 90})

        [kpi] = service.recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert kpi.days_of_stock_left == Decimal("30.00")
        assert not kpi.overstock_risk
        assert kpi.status is StockStatus.NORMAL
        assert [(a.batch_id, a.quantity_assigned) for a in kpi.fifo_batch_assignments] == [
            (b1.id, 50),
            (b2.id, 40),
        ]
        assert kpi.last_calculated_at == clock.now()

        stored = session.execute(select(InventoryKPIModel)).scalars().one()
        assert FifoAllocation.from_json(stored.fifo_batch_assignments) == kpi.fifo

    def test_uncosted_stock_in_snapshot(self, service_with_sales, stock_row, two_batches, session):
        stock_row(130)

        service_with_sales(sold={KEY: 30}).recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID)

        stored = session.execute(select(InventoryKPIModel)).scalars().one()
        assert stored.fifo_batch_assignments[-1] == {
            "batch_id": None,
            "received_at": None,
            "quantity_assigned": 10,
        }

    def test_no_batches_stores_empty_assignments(self, service_with_sales, stock_row, session):
        stock_row(10)

        [kpi] = service_with_sales(sold={KEY: 30}).recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert kpi.fifo_batch_assignments == []
        stored = session.execute(select(InventoryKPIModel)).scalars().one()
        assert stored.fifo_batch_assignments == []

    def test_zero_velocity_is_overstock(self, service_with_sales, stock_row):
        stock_row(10)

        [kpi] = service_with_sales().recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID)

        assert kpi.days_of_stock_left == Decimal("999")
        assert kpi.overstock_risk

    def test_status_filter(self, service_with_sales, stock_row, session):
        stock_row(5)
        stock_row(300, sku="SKU-2")
        service = service_with_sales(sold={KEY: 30, ("SKU-2", TEST_MARKETPLACE_ID): 30})

        low = service.recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID, status="low")

        assert [k.sku for k in low] == [TEST_SKU]
        # Filtering narrows the result, not the refresh
        count = session.execute(select(func.count()).select_from(InventoryKPIModel)).scalar_one()
        assert count == 2

    def test_unknown_status(self, service_with_sales):
        with pytest.raises(ValidationError) as exc_info:
            service_with_sales().recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID, status="critical")
        assert exc_info.value.field == "status"

    def test_kpi_upserts(self, service_with_sales, stock_row, session):
        stock_row(10)
        service = service_with_sales()

        service.recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID)
        service.recalculate_kpis(TEST_USER_ID, TEST_ACCOUNT_ID)

        count = session.execute(select(func.count()).select_from(InventoryKPIModel)).scalar_one()
        assert count == 1
