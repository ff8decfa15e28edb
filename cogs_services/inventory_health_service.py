"""
cogs_services.inventory_health_service -- Periodic inventory-health recomputation.

Responsibility:
    For every stock row in scope, derive sales velocity from the sales
    history, compute forecast and KPI snapshots with the pure engines, and
    upsert them keyed by (account_id, sku, marketplace_id).  Also raises
    restock alerts and lets users tune the restock threshold.

Architecture position:
    Services -- the scheduled job's contract.  Reads InventoryStock (never
    writes it), reads batches through BatchLedger, writes only snapshot
    tables.  Flushes; the caller commits.

Invariants enforced:
    - A new forecast snapshot takes its restock threshold from the stock
      row's low_stock_threshold; recalculation never overwrites a threshold
      the user has since changed.
    - alert_sent flips to True once per forecast; an alert is reported as
      newly raised only on that flip.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_config.schema import CostingSettings, InventoryHealthSettings
from cogs_engines.inventory_health import (
    compute_forecast,
    compute_kpi,
    compute_sales_velocity,
    suggested_reorder_quantity,
)
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.inventory import (
    InventoryForecast,
    InventoryKPI,
    RestockAlert,
    StockStatus,
)
from cogs_kernel.exceptions import ForecastNotFoundError, ValidationError
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_kernel.models.inventory import (
    InventoryForecastModel,
    InventoryKPIModel,
    InventoryStockModel,
)
from cogs_services.batch_ledger import BatchLedger
from cogs_services.collaborators import AccessPolicy, SalesHistory, require_access

logger = get_logger("services.inventory_health")


def _forecast_to_domain(model: InventoryForecastModel) -> InventoryForecast:
    forecast_30 = Decimal(model.forecast_30_day)
    return InventoryForecast(
        sku=model.sku,
        marketplace_id=model.marketplace_id,
        current_stock=model.current_stock,
        sales_velocity=Decimal(model.sales_velocity),
        forecast_3_day=Decimal(model.forecast_3_day),
        forecast_7_day=Decimal(model.forecast_7_day),
        forecast_30_day=forecast_30,
        restock_threshold=model.restock_threshold,
        alert_sent=model.alert_sent,
        suggested_reorder_quantity=suggested_reorder_quantity(forecast_30, model.restock_threshold),
        last_calculated_at=model.last_calculated_at,
    )


class InventoryHealthService:
    """Forecast, KPI and restock-alert job for one session."""

    def __init__(
        self,
        session: Session,
        access_policy: AccessPolicy,
        sales_history: SalesHistory,
        clock: Clock | None = None,
        settings: InventoryHealthSettings | None = None,
        costing: CostingSettings | None = None,
    ):
        self.session = session
        self.access_policy = access_policy
        self.sales_history = sales_history
        self._clock = clock or SystemClock()
        self._settings = settings or InventoryHealthSettings()
        self._costing = costing or CostingSettings()
        self.ledger = BatchLedger(session, self._clock)

    # =========================================================================
    # Forecasts
    # =========================================================================

    def recalculate_forecasts(
        self,
        user_id: str,
        account_id: str,
        marketplace_id: str | None = None,
        sku: str | None = None,
    ) -> list[InventoryForecast]:
        require_access(self.access_policy, user_id, account_id)
        with LogContext.bind(actor_id=user_id, account_id=account_id):
            return [forecast for _, forecast in self._refresh_forecasts(account_id, marketplace_id, sku)]

    def restock_alerts(
        self,
        user_id: str,
        account_id: str,
        marketplace_id: str | None = None,
        sku: str | None = None,
    ) -> list[RestockAlert]:
        """Recalculate forecasts and report those at or below their threshold."""
        require_access(self.access_policy, user_id, account_id)
        alerts: list[RestockAlert] = []
        with LogContext.bind(actor_id=user_id, account_id=account_id):
            for model, forecast in self._refresh_forecasts(account_id, marketplace_id, sku):
                if not forecast.needs_restock:
                    continue
                newly_alerted = not model.alert_sent
                if newly_alerted:
                    model.alert_sent = True
                    logger.warning(
                        "restock_alert_raised",
                        extra={
                            "sku": forecast.sku,
                            "marketplace_id": forecast.marketplace_id,
                            "forecast_7_day": str(forecast.forecast_7_day),
                            "restock_threshold": forecast.restock_threshold,
                        },
                    )
                alerts.append(
                    RestockAlert(
                        sku=forecast.sku,
                        marketplace_id=forecast.marketplace_id,
                        current_stock=forecast.current_stock,
                        forecast_7_day=forecast.forecast_7_day,
                        forecast_30_day=forecast.forecast_30_day,
                        restock_threshold=forecast.restock_threshold,
                        suggested_reorder_quantity=forecast.suggested_reorder_quantity,
                        newly_alerted=newly_alerted,
                    )
                )
            self.session.flush()
        return alerts

    def update_restock_threshold(
        self,
        user_id: str,
        account_id: str,
        sku: str,
        restock_threshold: int,
        marketplace_id: str | None = None,
    ) -> InventoryForecast:
        require_access(self.access_policy, user_id, account_id)
        if isinstance(restock_threshold, bool) or not isinstance(restock_threshold, int) or (
            restock_threshold < 0
        ):
            raise ValidationError(
                "restock_threshold", f"must be a non-negative integer, got {restock_threshold!r}"
            )

        stmt = select(InventoryForecastModel).where(
            InventoryForecastModel.account_id == account_id,
            InventoryForecastModel.sku == sku,
        )
        if marketplace_id:
            stmt = stmt.where(InventoryForecastModel.marketplace_id == marketplace_id)
        model = self.session.execute(
            stmt.order_by(InventoryForecastModel.marketplace_id)
        ).scalars().first()
        if model is None:
            logger.warning(
                "forecast_not_found",
                extra={"account_id": account_id, "sku": sku, "marketplace_id": marketplace_id},
            )
            raise ForecastNotFoundError(account_id, sku, marketplace_id)

        model.restock_threshold = restock_threshold
        model.updated_at = self._clock.now()
        self.session.flush()
        logger.info(
            "restock_threshold_updated",
            extra={
                "account_id": account_id,
                "sku": sku,
                "marketplace_id": model.marketplace_id,
                "restock_threshold": restock_threshold,
            },
        )
        return _forecast_to_domain(model)

    # =========================================================================
    # KPIs
    # =========================================================================

    def recalculate_kpis(
        self,
        user_id: str,
        account_id: str,
        marketplace_id: str | None = None,
        sku: str | None = None,
        status: StockStatus | str | None = None,
    ) -> list[InventoryKPI]:
        """
        Recompute KPI snapshots for every stock row in scope.

        All snapshots are refreshed; ``status`` only filters what is returned.
        """
        require_access(self.access_policy, user_id, account_id)
        wanted = None
        if status:
            try:
                wanted = StockStatus(status)
            except ValueError:
                raise ValidationError(
                    "status", f"must be one of {[s.value for s in StockStatus]}, got {status!r}"
                ) from None

        results: list[InventoryKPI] = []
        with LogContext.bind(actor_id=user_id, account_id=account_id):
            now = self._clock.now()
            stock_rows = self._stock_rows(account_id, marketplace_id, sku)
            logger.info("kpi_recalculation_started", extra={"stock_rows": len(stock_rows)})

            for stock in stock_rows:
                kpi = compute_kpi(
                    stock.sku,
                    stock.marketplace_id,
                    stock.quantity_available,
                    self._velocity(account_id, stock.sku, stock.marketplace_id, now),
                    self.ledger.list_batches(account_id, stock.sku),
                    overstock_stock_threshold=self._settings.overstock_stock_threshold,
                    overstock_days_threshold=self._settings.overstock_days_threshold,
                    indefinite_days=self._settings.indefinite_runway_days,
                    low_stock_days=self._settings.low_stock_days,
                    decimal_places=self._costing.decimal_places,
                    rounding=self._costing.rounding_mode,
                )
                self._upsert_kpi(account_id, kpi, now)
                results.append(
                    InventoryKPI(
                        sku=kpi.sku,
                        marketplace_id=kpi.marketplace_id,
                        current_stock=kpi.current_stock,
                        sales_velocity=kpi.sales_velocity,
                        days_of_stock_left=kpi.days_of_stock_left,
                        overstock_risk=kpi.overstock_risk,
                        status=kpi.status,
                        fifo=kpi.fifo,
                        last_calculated_at=now,
                    )
                )

            self.session.flush()
            logger.info("kpi_recalculation_completed", extra={"kpi_count": len(results)})

        if wanted is not None:
            results = [k for k in results if k.status is wanted]
        return results

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _refresh_forecasts(
        self, account_id: str, marketplace_id: str | None, sku: str | None
    ) -> list[tuple[InventoryForecastModel, InventoryForecast]]:
        now = self._clock.now()
        stock_rows = self._stock_rows(account_id, marketplace_id, sku)
        logger.info("forecast_recalculation_started", extra={"stock_rows": len(stock_rows)})

        refreshed = []
        for stock in stock_rows:
            model = self._snapshot(InventoryForecastModel, account_id, stock.sku, stock.marketplace_id)
            threshold = model.restock_threshold if model is not None else stock.low_stock_threshold
            forecast = compute_forecast(
                stock.sku,
                stock.marketplace_id,
                stock.quantity_available,
                self._velocity(account_id, stock.sku, stock.marketplace_id, now),
                threshold,
                decimal_places=self._costing.decimal_places,
                rounding=self._costing.rounding_mode,
            )

            values: dict[str, Any] = {
                "current_stock": forecast.current_stock,
                "sales_velocity": forecast.sales_velocity,
                "forecast_3_day": forecast.forecast_3_day,
                "forecast_7_day": forecast.forecast_7_day,
                "forecast_30_day": forecast.forecast_30_day,
                "last_calculated_at": now,
                "updated_at": now,
            }
            if model is None:
                model = InventoryForecastModel(
                    account_id=account_id,
                    sku=stock.sku,
                    marketplace_id=stock.marketplace_id,
                    restock_threshold=threshold,
                    alert_sent=False,
                    created_at=now,
                    **values,
                )
                self.session.add(model)
            else:
                for key, value in values.items():
                    setattr(model, key, value)

            refreshed.append(
                (
                    model,
                    InventoryForecast(
                        sku=forecast.sku,
                        marketplace_id=forecast.marketplace_id,
                        current_stock=forecast.current_stock,
                        sales_velocity=forecast.sales_velocity,
                        forecast_3_day=forecast.forecast_3_day,
                        forecast_7_day=forecast.forecast_7_day,
                        forecast_30_day=forecast.forecast_30_day,
                        restock_threshold=threshold,
                        alert_sent=model.alert_sent,
                        suggested_reorder_quantity=forecast.suggested_reorder_quantity,
                        last_calculated_at=now,
                    ),
                )
            )

        self.session.flush()
        logger.info("forecast_recalculation_completed", extra={"forecast_count": len(refreshed)})
        return refreshed

    def _upsert_kpi(self, account_id: str, kpi: InventoryKPI, now) -> None:
        values: dict[str, Any] = {
            "days_of_stock_left": kpi.days_of_stock_left,
            "overstock_risk": kpi.overstock_risk,
            "fifo_batch_assignments": kpi.fifo.to_json(),
            "last_calculated_at": now,
            "updated_at": now,
        }
        model = self._snapshot(InventoryKPIModel, account_id, kpi.sku, kpi.marketplace_id)
        if model is None:
            self.session.add(
                InventoryKPIModel(
                    account_id=account_id,
                    sku=kpi.sku,
                    marketplace_id=kpi.marketplace_id,
                    created_at=now,
                    **values,
                )
            )
        else:
            for key, value in values.items():
                setattr(model, key, value)

    def _snapshot(self, model_cls, account_id: str, sku: str, marketplace_id: str):
        return self.session.execute(
            select(model_cls).where(
                model_cls.account_id == account_id,
                model_cls.sku == sku,
                model_cls.marketplace_id == marketplace_id,
            )
        ).scalars().first()

    def _stock_rows(
        self, account_id: str, marketplace_id: str | None, sku: str | None
    ) -> list[InventoryStockModel]:
        stmt = select(InventoryStockModel).where(InventoryStockModel.account_id == account_id)
        if marketplace_id:
            stmt = stmt.where(InventoryStockModel.marketplace_id == marketplace_id)
        if sku:
            stmt = stmt.where(InventoryStockModel.sku == sku)
        stmt = stmt.order_by(InventoryStockModel.sku, InventoryStockModel.marketplace_id)
        return list(self.session.execute(stmt).scalars().all())

    def _velocity(self, account_id: str, sku: str, marketplace_id: str, now) -> Decimal:
        lookback = self._settings.sales_lookback_days
        since = now - timedelta(days=lookback)
        return compute_sales_velocity(
            self.sales_history.units_sold(account_id, sku, marketplace_id, since),
            self.sales_history.units_returned(account_id, sku, marketplace_id, since),
            lookback,
        )
