"""Pure domain types: clock, costing variants and ledger/inventory value objects."""

from cogs_kernel.domain.clock import Clock, DeterministicClock, SystemClock, as_utc
from cogs_kernel.domain.costing import (
    BatchCosting,
    Costing,
    CostMethod,
    CostResolution,
    TimePeriodCosting,
    WeightedAverageCosting,
    costing_from_dict,
)
from cogs_kernel.domain.inventory import (
    FifoAllocation,
    FifoAssignment,
    InventoryForecast,
    InventoryKPI,
    RestockAlert,
    StockStatus,
)
from cogs_kernel.domain.ledger import (
    Batch,
    BatchDetails,
    CogsEntry,
    CogsHistoryPage,
    CogsHistorySummary,
    MarketplaceCogs,
    SkuCogsSummary,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "as_utc",
    "CostMethod",
    "BatchCosting",
    "TimePeriodCosting",
    "WeightedAverageCosting",
    "Costing",
    "costing_from_dict",
    "CostResolution",
    "Batch",
    "BatchDetails",
    "CogsEntry",
    "CogsHistoryPage",
    "CogsHistorySummary",
    "MarketplaceCogs",
    "SkuCogsSummary",
    "FifoAssignment",
    "FifoAllocation",
    "InventoryForecast",
    "InventoryKPI",
    "RestockAlert",
    "StockStatus",
]
