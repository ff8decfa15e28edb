"""
Stateful services over the costing kernel.

    CogsService              transactional facade (create/update/list COGS)
    InventoryHealthService   scheduled forecast/KPI/restock job
    BatchLedger              cost layers and their consumption
    CostingResolver          ledger-backed unit-cost resolution
    CogsEntryStore           COGS entry persistence and history
"""

from cogs_services.batch_ledger import BatchLedger
from cogs_services.cogs_entry_store import UNSET, CogsEntryStore
from cogs_services.cogs_service import CogsRequest, CogsService
from cogs_services.collaborators import (
    AccessPolicy,
    MembershipAccessPolicy,
    ProductCatalog,
    ProductInfo,
    SalesHistory,
    StaticSalesHistory,
    SystemAccessPolicy,
    require_access,
)
from cogs_services.costing_resolver import CostingResolver
from cogs_services.inventory_health_service import InventoryHealthService

__all__ = [
    "BatchLedger",
    "CogsEntryStore",
    "UNSET",
    "CogsRequest",
    "CogsService",
    "CostingResolver",
    "InventoryHealthService",
    "AccessPolicy",
    "MembershipAccessPolicy",
    "ProductCatalog",
    "ProductInfo",
    "SalesHistory",
    "StaticSalesHistory",
    "SystemAccessPolicy",
    "require_access",
]
