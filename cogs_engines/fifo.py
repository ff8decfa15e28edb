"""
cogs_engines.fifo -- Attribute current stock to batches, oldest first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Batches are walked in ledger order (received_at, seq, id).
    - Each batch contributes min(batch.quantity, remaining) units.
    - Only positive assignments are emitted; the walk stops once stock is
      exhausted.
    - sum(assignments) + uncosted_quantity == current_stock.
"""

from __future__ import annotations

from collections.abc import Iterable

from cogs_engines.tracer import traced_engine
from cogs_kernel.domain.inventory import FifoAllocation, FifoAssignment
from cogs_kernel.domain.ledger import Batch
from cogs_kernel.exceptions import ValidationError
from cogs_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")


@traced_engine("fifo", "1.0", fingerprint_fields=("batches", "current_stock"))
def allocate_fifo(batches: Iterable[Batch], current_stock: int) -> FifoAllocation:
    """
    Allocate ``current_stock`` across ``batches`` in FIFO order.

    Stock beyond the total batch quantity is returned as
    ``uncosted_quantity``. With no batches at all there is nothing to
    attribute against and the allocation is empty.
    """
    if isinstance(current_stock, bool) or not isinstance(current_stock, int):
        raise ValidationError("current_stock", f"must be an integer, got {current_stock!r}")
    if current_stock < 0:
        raise ValidationError("current_stock", f"must be non-negative, got {current_stock}")

    ordered = sorted(batches, key=lambda b: b.ordering_key)
    if not ordered:
        return FifoAllocation()

    remaining = current_stock
    assignments: list[FifoAssignment] = []
    for batch in ordered:
        if remaining <= 0:
            break
        assigned = min(batch.quantity, remaining)
        if assigned <= 0:
            continue
        assignments.append(
            FifoAssignment(
                batch_id=batch.id,
                received_at=batch.received_at,
                quantity_assigned=assigned,
            )
        )
        remaining -= assigned

    if remaining > 0:
        logger.info(
            "fifo_stock_exceeds_ledger",
            extra={
                "current_stock": current_stock,
                "uncosted_quantity": remaining,
                "batch_count": len(assignments),
            },
        )

    return FifoAllocation(assignments=tuple(assignments), uncosted_quantity=remaining)
