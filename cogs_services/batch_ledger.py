"""
cogs_services.batch_ledger -- Append-only store of cost layers per SKU.

Responsibility:
    Record inventory receipts as batches, read them back in ledger order,
    and advance each batch's consumed quantity when BATCH costing draws on
    it.

Architecture position:
    Services -- stateful orchestration over kernel models.  Returns frozen
    ``cogs_kernel.domain.ledger.Batch`` values; ORM rows never escape.

Invariants enforced:
    - quantity > 0, unit_cost > 0, sku non-empty (validated before insert).
    - Ledger order is (received_at, seq, id) ascending; ``seq`` is assigned
      as max(seq) + 1 within (account_id, sku).
    - consumed_quantity only moves through a conditional UPDATE
      (``consumed_quantity + q <= quantity``), so two writers can never
      over-draw a batch, in one process or across processes.  Within one
      process a lock keyed by (account_id, sku, batch_id) also serializes
      the statement.

Failure modes:
    - ValidationError for invalid batch attributes or consumption quantity.
    - BatchNotFoundError when the batch is missing or belongs to another
      account or SKU.
    - InsufficientBatchQuantityError when the conditional UPDATE matches
      no row.
"""

from __future__ import annotations

import threading
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cogs_engines.costing import coerce_amount, validate_quantity
from cogs_engines.fifo import allocate_fifo
from cogs_kernel.db.types import STORAGE_DECIMAL_PLACES, round_money
from cogs_kernel.domain.clock import Clock, SystemClock, as_utc
from cogs_kernel.domain.inventory import FifoAllocation
from cogs_kernel.domain.ledger import Batch, BatchDetails
from cogs_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientBatchQuantityError,
    ValidationError,
)
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_kernel.models.batch import BatchModel
from cogs_kernel.models.cogs_entry import CogsEntryModel
from cogs_services.cogs_entry_store import entry_model_to_domain

logger = get_logger("services.batch_ledger")


# Fixed-size lock table; batches share stripes by key hash.
CONSUMPTION_LOCK_STRIPES = 64
_consumption_locks: tuple[threading.Lock, ...] = tuple(
    threading.Lock() for _ in range(CONSUMPTION_LOCK_STRIPES)
)


def _consumption_lock(account_id: str, sku: str, batch_id: UUID) -> threading.Lock:
    key = (account_id, sku, str(batch_id))
    return _consumption_locks[hash(key) % CONSUMPTION_LOCK_STRIPES]


class BatchLedger:
    """
    Batch (cost layer) ledger for one database session.

    The ledger flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    # =========================================================================
    # Writes
    # =========================================================================

    def add_batch(
        self,
        account_id: str,
        sku: str,
        quantity: int,
        unit_cost: Any,
        received_at: datetime | None = None,
        notes: str | None = None,
    ) -> Batch:
        """Record a receipt of ``quantity`` units at ``unit_cost`` each."""
        if not sku or not sku.strip():
            raise ValidationError("sku", "must be a non-empty string")
        quantity = validate_quantity(quantity)
        cost = coerce_amount(unit_cost, "unit_cost", allow_zero=False)
        now = self._clock.now()
        received = as_utc(received_at) if received_at is not None else now

        with LogContext.bind(account_id=account_id, sku=sku):
            logger.info(
                "batch_creation_started",
                extra={
                    "quantity": quantity,
                    "unit_cost": str(cost),
                    "received_at": received.isoformat(),
                },
            )

            model = BatchModel(
                account_id=account_id,
                sku=sku,
                seq=self._next_seq(account_id, sku),
                quantity=quantity,
                unit_cost=cost,
                total_cost=round_money(cost * quantity, STORAGE_DECIMAL_PLACES),
                received_at=received,
                notes=notes,
                consumed_quantity=0,
                created_at=now,
                updated_at=now,
            )
            self.session.add(model)
            self.session.flush()

            logger.info(
                "batch_creation_completed",
                extra={"batch_id": str(model.id), "seq": model.seq},
            )
            return self._model_to_domain(model)

    def consume(self, batch: Batch, quantity: int) -> Batch:
        """
        Atomically draw ``quantity`` units from ``batch``.

        Returns the batch as stored after the decrement.
        """
        quantity = validate_quantity(quantity)
        with _consumption_lock(batch.account_id, batch.sku, batch.id):
            stmt = (
                update(BatchModel)
                .where(
                    BatchModel.id == batch.id,
                    BatchModel.account_id == batch.account_id,
                    BatchModel.sku == batch.sku,
                    BatchModel.consumed_quantity + quantity <= BatchModel.quantity,
                )
                .values(
                    consumed_quantity=BatchModel.consumed_quantity + quantity,
                    updated_at=self._clock.now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            current = self._reload(batch.id)

        if result.rowcount != 1:
            if current is None or current.account_id != batch.account_id:
                raise BatchNotFoundError(str(batch.id), batch.account_id, batch.sku)
            remaining = current.quantity - current.consumed_quantity
            logger.warning(
                "batch_consumption_rejected",
                extra={
                    "batch_id": str(batch.id),
                    "requested_quantity": quantity,
                    "remaining_quantity": remaining,
                },
            )
            raise InsufficientBatchQuantityError(str(batch.id), quantity, remaining)

        logger.info(
            "batch_consumed",
            extra={
                "batch_id": str(batch.id),
                "quantity": quantity,
                "consumed_quantity": current.consumed_quantity,
            },
        )
        return self._model_to_domain(current)

    def release(self, batch: Batch, quantity: int) -> Batch:
        """Return ``quantity`` previously consumed units to ``batch``."""
        quantity = validate_quantity(quantity)
        with _consumption_lock(batch.account_id, batch.sku, batch.id):
            stmt = (
                update(BatchModel)
                .where(
                    BatchModel.id == batch.id,
                    BatchModel.account_id == batch.account_id,
                    BatchModel.consumed_quantity >= quantity,
                )
                .values(
                    consumed_quantity=BatchModel.consumed_quantity - quantity,
                    updated_at=self._clock.now(),
                )
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            current = self._reload(batch.id)

        if result.rowcount != 1:
            if current is None:
                raise BatchNotFoundError(str(batch.id), batch.account_id, batch.sku)
            raise ValidationError(
                "quantity",
                f"cannot release {quantity} unit(s); only {current.consumed_quantity} consumed",
            )
        logger.info(
            "batch_consumption_released",
            extra={"batch_id": str(batch.id), "quantity": quantity},
        )
        return self._model_to_domain(current)

    # =========================================================================
    # Reads
    # =========================================================================

    def list_batches(
        self,
        account_id: str,
        sku: str,
        received_from: datetime | None = None,
        received_to: datetime | None = None,
    ) -> list[Batch]:
        """Batches for the SKU in ledger order, optionally bounded by receipt time."""
        stmt = select(BatchModel).where(
            BatchModel.account_id == account_id,
            BatchModel.sku == sku,
        )
        if received_from is not None:
            stmt = stmt.where(BatchModel.received_at >= as_utc(received_from))
        if received_to is not None:
            stmt = stmt.where(BatchModel.received_at <= as_utc(received_to))
        stmt = stmt.order_by(
            BatchModel.received_at, BatchModel.seq, BatchModel.id
        ).execution_options(populate_existing=True)

        models = self.session.execute(stmt).scalars().all()
        logger.debug(
            "batches_listed",
            extra={"account_id": account_id, "sku": sku, "batch_count": len(models)},
        )
        return [self._model_to_domain(m) for m in models]

    def find_batch(self, account_id: str, sku: str, batch_id: UUID) -> Batch | None:
        """The batch, or None when missing or owned by another account or SKU."""
        model = self._reload(batch_id)
        if model is None or model.account_id != account_id or model.sku != sku:
            return None
        return self._model_to_domain(model)

    def get_batch(self, account_id: str, sku: str, batch_id: UUID) -> Batch:
        batch = self.find_batch(account_id, sku, batch_id)
        if batch is None:
            logger.warning(
                "batch_not_found",
                extra={"batch_id": str(batch_id), "account_id": account_id, "sku": sku},
            )
            raise BatchNotFoundError(str(batch_id), account_id, sku)
        return batch

    def get_batch_details(self, account_id: str, batch_id: UUID) -> BatchDetails:
        """A batch, how much of it is used, and the entries that used it."""
        model = self._reload(batch_id)
        if model is None or model.account_id != account_id:
            logger.warning(
                "batch_not_found",
                extra={"batch_id": str(batch_id), "account_id": account_id},
            )
            raise BatchNotFoundError(str(batch_id), account_id)

        entries = self.session.execute(
            select(CogsEntryModel)
            .where(
                CogsEntryModel.account_id == account_id,
                CogsEntryModel.batch_id == batch_id,
            )
            .order_by(CogsEntryModel.created_at.desc(), CogsEntryModel.id)
        ).scalars().all()

        batch = self._model_to_domain(model)
        return BatchDetails(
            batch=batch,
            used_quantity=batch.consumed_quantity,
            remaining_quantity=batch.remaining_quantity,
            entries=tuple(entry_model_to_domain(e) for e in entries),
        )

    def allocate_fifo(self, account_id: str, sku: str, current_stock: int) -> FifoAllocation:
        """Attribute ``current_stock`` of the SKU to its batches, oldest first."""
        return allocate_fifo(self.list_batches(account_id, sku), current_stock)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _next_seq(self, account_id: str, sku: str) -> int:
        current = self.session.execute(
            select(func.max(BatchModel.seq)).where(
                BatchModel.account_id == account_id,
                BatchModel.sku == sku,
            )
        ).scalar()
        return (current or 0) + 1

    def _reload(self, batch_id: UUID) -> BatchModel | None:
        return self.session.get(BatchModel, batch_id, populate_existing=True)

    @staticmethod
    def _model_to_domain(model: BatchModel) -> Batch:
        """Convert a BatchModel ORM row to a Batch domain object."""
        return Batch(
            id=model.id,
            account_id=model.account_id,
            sku=model.sku,
            seq=model.seq,
            quantity=model.quantity,
            unit_cost=Decimal(model.unit_cost),
            total_cost=Decimal(model.total_cost),
            received_at=model.received_at,
            notes=model.notes,
            consumed_quantity=model.consumed_quantity,
            created_at=model.created_at,
        )
