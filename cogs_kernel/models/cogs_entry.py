"""
Module: cogs_kernel.models.cogs_entry
Responsibility: ORM persistence for COGS entries, the auditable record of
    each costing request.  The list of entries for an account is the
    historical COGS trail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - total_cost == round2(unit_cost * quantity) + round2(shipment_cost).
      Derived by the entry store on insert and on every correction.
    - quantity > 0, shipment_cost >= 0 (CHECK constraints).
    - Only marketplace_id, quantity, unit_cost, shipment_cost (and the
      re-derived total_cost) may change after insert; rows are never
      deleted (ORM listener in db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TimestampedBase, UTCDateTime, UUIDString
from cogs_kernel.db.types import IdentifierColumn, MoneyColumn, SkuColumn


class CogsEntryModel(TimestampedBase):
    """
    Persistent storage for COGS entries.

    Guarantees:
        - (account_id, sku, created_at) index for history reads.
        - batch_id references the batch whose unit cost was used (BATCH
          method only).
        - The costing parameters that produced the entry are kept with it
          (period_start/period_end or as_of), so an auditor can recompute.
    """

    __tablename__ = "cogs_entries"

    __table_args__ = (
        Index("idx_cogs_account_sku_created", "account_id", "sku", "created_at"),
        Index("idx_cogs_batch", "batch_id"),
        Index("idx_cogs_account_marketplace", "account_id", "marketplace_id"),
        CheckConstraint("quantity > 0", name="ck_cogs_quantity_positive"),
        CheckConstraint("shipment_cost >= 0", name="ck_cogs_shipment_non_negative"),
    )

    account_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)

    marketplace_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)

    sku: Mapped[str] = mapped_column(SkuColumn, nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # BATCH | TIME_PERIOD | WEIGHTED_AVERAGE
    cost_method: Mapped[str] = mapped_column(String(20), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)

    # round(unit_cost * quantity) + round(shipment_cost)
    total_cost: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)

    shipment_cost: Mapped[Decimal] = mapped_column(
        MoneyColumn, nullable=False, default=Decimal("0")
    )

    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=True,
    )

    period_start: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    period_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    as_of: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<CogsEntry {self.id}: sku={self.sku} {self.cost_method} "
            f"qty={self.quantity} total={self.total_cost}>"
        )


# Fields a correction may change (total_cost is re-derived, updated_at is metadata)
COGS_ENTRY_CORRECTABLE_FIELDS: frozenset[str] = frozenset({
    "marketplace_id",
    "quantity",
    "unit_cost",
    "shipment_cost",
})

COGS_ENTRY_MUTABLE_FIELDS: frozenset[str] = COGS_ENTRY_CORRECTABLE_FIELDS | {
    "total_cost",
    "updated_at",
}
