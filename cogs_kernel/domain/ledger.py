"""
Ledger value objects: batches, COGS entries and their read-side aggregates.

These are the immutable views services hand back to callers.  ORM rows never
leave the service layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from cogs_kernel.domain.costing import CostMethod


@dataclass(frozen=True, slots=True)
class Batch:
    """A cost layer: one inventory receipt at one unit cost."""

    id: UUID
    account_id: str
    sku: str
    seq: int
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    received_at: datetime
    notes: str | None = None
    consumed_quantity: int = 0
    created_at: datetime | None = None

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - self.consumed_quantity

    @property
    def ordering_key(self) -> tuple:
        """Ledger order: receipt time, then insertion sequence, then id."""
        return (self.received_at, self.seq, str(self.id))


@dataclass(frozen=True, slots=True)
class CogsEntry:
    """The persisted outcome of one costing request."""

    id: UUID
    account_id: str
    marketplace_id: str
    sku: str
    quantity: int
    cost_method: CostMethod
    unit_cost: Decimal
    total_cost: Decimal
    shipment_cost: Decimal
    batch_id: UUID | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    as_of: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class BatchDetails:
    """A batch with its consumption and the entries that consumed it."""

    batch: Batch
    used_quantity: int
    remaining_quantity: int
    entries: tuple[CogsEntry, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class CogsHistoryPage:
    """One page of COGS history, newest first."""

    entries: tuple[CogsEntry, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.entries) < self.total


@dataclass(frozen=True, slots=True)
class CogsHistorySummary:
    """Totals over every entry matching a history filter."""

    total_entries: int
    total_quantity: int
    total_cost: Decimal
    total_shipment_cost: Decimal
    average_unit_cost: Decimal
    method_breakdown: dict[CostMethod, Decimal]


@dataclass(frozen=True, slots=True)
class MarketplaceCogs:
    marketplace_id: str
    quantity: int
    total_cost: Decimal
    average_unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class SkuCogsSummary:
    """Aggregated COGS for one SKU, overall and per marketplace."""

    account_id: str
    sku: str
    total_entries: int
    total_quantity: int
    total_cost: Decimal
    average_unit_cost: Decimal
    by_marketplace: tuple[MarketplaceCogs, ...] = field(default_factory=tuple)
