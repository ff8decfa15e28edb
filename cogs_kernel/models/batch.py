"""
Module: cogs_kernel.models.batch
Responsibility: ORM persistence for batches (cost layers).  Each batch is a
    discrete inventory receipt at a specific unit cost, the unit of FIFO
    allocation and of BATCH costing.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity > 0 and unit_cost > 0 (CHECK constraints, and validated by
      the ledger service before insert).
    - quantity, unit_cost, total_cost, received_at, sku and account_id never
      change after insert (ORM listener in db/immutability.py).
    - 0 <= consumed_quantity <= quantity.  consumed_quantity only moves
      through the conditional UPDATE in the ledger service.
    - (account_id, sku, received_at) index supports ordered ledger reads;
      seq breaks ties in receipt time deterministically.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TimestampedBase, UTCDateTime
from cogs_kernel.db.types import IdentifierColumn, MoneyColumn, NotesColumn, SkuColumn


class BatchModel(TimestampedBase):
    """
    Persistent storage for cost layers.

    Guarantees:
        - (account_id, sku, received_at) index for ordered ledger reads.
        - (account_id, sku, seq) is unique, so insertion order is total.

    Non-goals:
        - This model does NOT decide remaining quantity; it only stores the
          consumed counter that the ledger advances atomically.
    """

    __tablename__ = "batches"

    __table_args__ = (
        Index("idx_batch_account_sku_received", "account_id", "sku", "received_at"),
        UniqueConstraint("account_id", "sku", "seq", name="uq_batch_account_sku_seq"),
        CheckConstraint("quantity > 0", name="ck_batch_quantity_positive"),
        CheckConstraint("unit_cost > 0", name="ck_batch_unit_cost_positive"),
        CheckConstraint(
            "consumed_quantity >= 0 AND consumed_quantity <= quantity",
            name="ck_batch_consumed_within_quantity",
        ),
    )

    account_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)

    sku: Mapped[str] = mapped_column(SkuColumn, nullable=False)

    # Insertion sequence within (account_id, sku)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Positive; never changes after insert
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)

    total_cost: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)

    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    notes: Mapped[str | None] = mapped_column(NotesColumn, nullable=True)

    # Advanced only by the ledger's conditional UPDATE
    consumed_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<Batch {self.id}: sku={self.sku} "
            f"qty={self.quantity} @ {self.unit_cost}>"
        )


# Columns that may change on an existing batch
BATCH_MUTABLE_FIELDS: frozenset[str] = frozenset({
    "consumed_quantity",
    "updated_at",
})
