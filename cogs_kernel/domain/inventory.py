"""
Inventory-health value objects: FIFO allocations, forecasts, KPIs, alerts.

Snapshots derived here are non-authoritative: they are recomputed from
stock, sales and the batch ledger on every run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class StockStatus(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    OVERSTOCK = "overstock"


@dataclass(frozen=True, slots=True)
class FifoAssignment:
    """Units of current stock attributed to one batch."""

    batch_id: UUID | None
    received_at: datetime | None
    quantity_assigned: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": str(self.batch_id) if self.batch_id is not None else None,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "quantity_assigned": self.quantity_assigned,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FifoAssignment:
        batch_id = data.get("batch_id")
        received_at = data.get("received_at")
        return cls(
            batch_id=UUID(batch_id) if batch_id else None,
            received_at=datetime.fromisoformat(received_at) if received_at else None,
            quantity_assigned=int(data["quantity_assigned"]),
        )


@dataclass(frozen=True, slots=True)
class FifoAllocation:
    """
    Attribution of current stock to batches, oldest first.

    ``assignments`` holds batch-backed entries only; stock exceeding the
    ledger is reported as ``uncosted_quantity`` instead of being dropped.
    """

    assignments: tuple[FifoAssignment, ...] = field(default_factory=tuple)
    uncosted_quantity: int = 0

    @property
    def allocated_quantity(self) -> int:
        return sum(a.quantity_assigned for a in self.assignments)

    @property
    def is_fully_costed(self) -> bool:
        return self.uncosted_quantity == 0

    def entries(self) -> list[FifoAssignment]:
        """Assignments plus a batch-less sentinel for any uncosted remainder."""
        result = list(self.assignments)
        if self.uncosted_quantity > 0:
            result.append(
                FifoAssignment(
                    batch_id=None,
                    received_at=None,
                    quantity_assigned=self.uncosted_quantity,
                )
            )
        return result

    def to_json(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries()]

    @classmethod
    def from_json(cls, rows: list[dict[str, Any]]) -> FifoAllocation:
        assignments = []
        uncosted = 0
        for row in rows or ():
            item = FifoAssignment.from_dict(row)
            if item.batch_id is None:
                uncosted += item.quantity_assigned
            else:
                assignments.append(item)
        return cls(assignments=tuple(assignments), uncosted_quantity=uncosted)


@dataclass(frozen=True, slots=True)
class InventoryForecast:
    """Projected stock after 3, 7 and 30 days at the current velocity."""

    sku: str
    marketplace_id: str
    current_stock: int
    sales_velocity: Decimal
    forecast_3_day: Decimal
    forecast_7_day: Decimal
    forecast_30_day: Decimal
    restock_threshold: int = 0
    alert_sent: bool = False
    suggested_reorder_quantity: int = 0
    last_calculated_at: datetime | None = None

    @property
    def needs_restock(self) -> bool:
        return self.forecast_7_day <= self.restock_threshold


@dataclass(frozen=True, slots=True)
class InventoryKPI:
    """Days of stock left, overstock flag and FIFO batch assignments."""

    sku: str
    marketplace_id: str
    current_stock: int
    sales_velocity: Decimal
    days_of_stock_left: Decimal
    overstock_risk: bool
    status: StockStatus
    fifo: FifoAllocation = field(default_factory=FifoAllocation)
    last_calculated_at: datetime | None = None

    @property
    def fifo_batch_assignments(self) -> list[FifoAssignment]:
        return self.fifo.entries()


@dataclass(frozen=True, slots=True)
class RestockAlert:
    """A SKU projected to fall to or below its restock threshold within 7 days."""

    sku: str
    marketplace_id: str
    current_stock: int
    forecast_7_day: Decimal
    forecast_30_day: Decimal
    restock_threshold: int
    suggested_reorder_quantity: int
    newly_alerted: bool
