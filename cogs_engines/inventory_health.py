"""
cogs_engines.inventory_health -- Forecasts, runway and overstock signals.

Responsibility:
    Pure derivations from (current stock, daily sales velocity, batches):

        forecast_N           max(0, stock - velocity * N)   N in {3, 7, 30}
        days_of_stock_left   stock / velocity, or a sentinel at zero velocity
        overstock_risk       stock > stock threshold or days > days threshold
        status               overstock | low | normal
        suggested reorder    ceil(threshold - forecast_30) when positive

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The job that reads stock
    and sales and persists snapshots is
    cogs_services.inventory_health_service.

Invariants enforced:
    - days_of_stock_left is rounded to money precision before the overstock
      comparison, so the boundary is decided on the reported value.
    - Zero velocity: days = sentinel (999) when stock > 0, else 0.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_CEILING, Decimal
from typing import Any

from cogs_engines.fifo import allocate_fifo
from cogs_engines.tracer import traced_engine
from cogs_kernel.db.types import DEFAULT_ROUNDING, MONEY_DECIMAL_PLACES, round_money, to_decimal
from cogs_kernel.domain.inventory import InventoryForecast, InventoryKPI, StockStatus
from cogs_kernel.domain.ledger import Batch
from cogs_kernel.exceptions import ValidationError

FORECAST_HORIZONS = (3, 7, 30)

OVERSTOCK_STOCK_THRESHOLD = 200
OVERSTOCK_DAYS_THRESHOLD = Decimal("90")
INDEFINITE_RUNWAY_DAYS = Decimal("999")
LOW_STOCK_DAYS = Decimal("7")
SALES_LOOKBACK_DAYS = 30


def _stock(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("current_stock", f"must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError("current_stock", f"must be non-negative, got {value}")
    return value


def _velocity(value: Any) -> Decimal:
    try:
        velocity = to_decimal(value, "sales_velocity")
    except (TypeError, ValueError) as exc:
        raise ValidationError("sales_velocity", str(exc)) from None
    if velocity < 0:
        raise ValidationError("sales_velocity", f"must be non-negative, got {velocity}")
    return velocity


def compute_sales_velocity(
    units_sold: int,
    units_returned: int = 0,
    lookback_days: int = SALES_LOOKBACK_DAYS,
) -> Decimal:
    """Net units sold per day over the lookback window, never negative."""
    if lookback_days <= 0:
        raise ValidationError("lookback_days", f"must be positive, got {lookback_days}")
    net_units = max(units_sold - units_returned, 0)
    return Decimal(net_units) / Decimal(lookback_days)


def suggested_reorder_quantity(forecast_30_day: Decimal, restock_threshold: int) -> int:
    """Units needed to lift the 30-day projection back to the threshold."""
    delta = Decimal(restock_threshold) - forecast_30_day
    if delta <= 0:
        return 0
    return int(delta.to_integral_value(rounding=ROUND_CEILING))


def days_of_stock_left(
    current_stock: int,
    sales_velocity: Decimal,
    *,
    indefinite_days: Decimal = INDEFINITE_RUNWAY_DAYS,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    if sales_velocity > 0:
        return round_money(Decimal(current_stock) / sales_velocity, decimal_places, rounding)
    if current_stock > 0:
        return Decimal(indefinite_days)
    return Decimal("0")


def is_overstock(
    current_stock: int,
    days_left: Decimal,
    *,
    stock_threshold: int = OVERSTOCK_STOCK_THRESHOLD,
    days_threshold: Decimal = OVERSTOCK_DAYS_THRESHOLD,
) -> bool:
    return current_stock > stock_threshold or days_left > days_threshold


def classify_stock_status(
    days_left: Decimal,
    overstock_risk: bool,
    *,
    low_stock_days: Decimal = LOW_STOCK_DAYS,
) -> StockStatus:
    """Overstock wins; otherwise low when runway is at most ``low_stock_days``."""
    if overstock_risk:
        return StockStatus.OVERSTOCK
    if days_left <= low_stock_days:
        return StockStatus.LOW
    return StockStatus.NORMAL


@traced_engine(
    "inventory_forecast",
    "1.0",
    fingerprint_fields=("sku", "marketplace_id", "current_stock", "sales_velocity", "restock_threshold"),
)
def compute_forecast(
    sku: str,
    marketplace_id: str,
    current_stock: int,
    sales_velocity: Any,
    restock_threshold: int = 0,
    *,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> InventoryForecast:
    stock = _stock(current_stock)
    velocity = _velocity(sales_velocity)

    projections = {}
    for horizon in FORECAST_HORIZONS:
        projected = Decimal(stock) - velocity * horizon
        projections[horizon] = round_money(max(projected, Decimal("0")), decimal_places, rounding)

    return InventoryForecast(
        sku=sku,
        marketplace_id=marketplace_id,
        current_stock=stock,
        sales_velocity=velocity,
        forecast_3_day=projections[3],
        forecast_7_day=projections[7],
        forecast_30_day=projections[30],
        restock_threshold=restock_threshold,
        suggested_reorder_quantity=suggested_reorder_quantity(projections[30], restock_threshold),
    )


@traced_engine(
    "inventory_kpi",
    "1.0",
    fingerprint_fields=("sku", "marketplace_id", "current_stock", "sales_velocity", "batches"),
)
def compute_kpi(
    sku: str,
    marketplace_id: str,
    current_stock: int,
    sales_velocity: Any,
    batches: Sequence[Batch] = (),
    *,
    overstock_stock_threshold: int = OVERSTOCK_STOCK_THRESHOLD,
    overstock_days_threshold: Decimal = OVERSTOCK_DAYS_THRESHOLD,
    indefinite_days: Decimal = INDEFINITE_RUNWAY_DAYS,
    low_stock_days: Decimal = LOW_STOCK_DAYS,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> InventoryKPI:
    stock = _stock(current_stock)
    velocity = _velocity(sales_velocity)

    days_left = days_of_stock_left(
        stock,
        velocity,
        indefinite_days=indefinite_days,
        decimal_places=decimal_places,
        rounding=rounding,
    )
    overstock = is_overstock(
        stock,
        days_left,
        stock_threshold=overstock_stock_threshold,
        days_threshold=overstock_days_threshold,
    )

    return InventoryKPI(
        sku=sku,
        marketplace_id=marketplace_id,
        current_stock=stock,
        sales_velocity=velocity,
        days_of_stock_left=days_left,
        overstock_risk=overstock,
        status=classify_stock_status(days_left, overstock, low_stock_days=low_stock_days),
        fifo=allocate_fifo(batches, stock),
    )
