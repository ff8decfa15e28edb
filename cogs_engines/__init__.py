"""
Pure calculation engines for cost-layer accounting.

Engines take value objects and return value objects.  They do no I/O apart
from the COGS_ENGINE_TRACE log record emitted by ``@traced_engine``.
"""

from cogs_engines.costing import recompute_total, resolve_cost, weighted_average_unit_cost
from cogs_engines.fifo import allocate_fifo
from cogs_engines.inventory_health import (
    classify_stock_status,
    compute_forecast,
    compute_kpi,
    compute_sales_velocity,
    days_of_stock_left,
    suggested_reorder_quantity,
)
from cogs_engines.tracer import traced_engine

__all__ = [
    "resolve_cost",
    "recompute_total",
    "weighted_average_unit_cost",
    "allocate_fifo",
    "compute_forecast",
    "compute_kpi",
    "compute_sales_velocity",
    "classify_stock_status",
    "days_of_stock_left",
    "suggested_reorder_quantity",
    "traced_engine",
]
