"""ORM models for the costing kernel."""

from cogs_kernel.models.batch import BATCH_MUTABLE_FIELDS, BatchModel
from cogs_kernel.models.cogs_entry import (
    COGS_ENTRY_CORRECTABLE_FIELDS,
    COGS_ENTRY_MUTABLE_FIELDS,
    CogsEntryModel,
)
from cogs_kernel.models.inventory import (
    InventoryForecastModel,
    InventoryKPIModel,
    InventoryStockModel,
)

__all__ = [
    "BatchModel",
    "BATCH_MUTABLE_FIELDS",
    "CogsEntryModel",
    "COGS_ENTRY_CORRECTABLE_FIELDS",
    "COGS_ENTRY_MUTABLE_FIELDS",
    "InventoryStockModel",
    "InventoryForecastModel",
    "InventoryKPIModel",
]
