"""
Tests for the batch ledger.

Covers:
- Batch creation and validation
- Ledger order and receipt-time bounds
- Atomic consumption and release
- Batch details with consuming entries
- FIFO allocation over persisted batches
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from cogs_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientBatchQuantityError,
    ValidationError,
)
from cogs_services import batch_ledger
from cogs_services.batch_ledger import CONSUMPTION_LOCK_STRIPES
from tests.conftest import OTHER_ACCOUNT_ID, TEST_ACCOUNT_ID, TEST_SKU


class TestAddBatch:
    """Receipts become append-only cost layers."""

    def test_add_batch(self, ledger, clock):
        batch = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 50, Decimal("32.50"), notes="PO-1")

        assert batch.quantity == 50
        assert batch.unit_cost == Decimal("32.50")
        assert batch.total_cost == Decimal("1625.00")
        assert batch.consumed_quantity == 0
        assert batch.remaining_quantity == 50
        assert batch.received_at == clock.now()
        assert batch.notes == "PO-1"
        assert batch.seq == 1

    def test_string_unit_cost_accepted(self, ledger):
        batch = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "4.25")

        assert batch.unit_cost == Decimal("4.25")

    def test_naive_received_at_taken_as_utc(self, ledger, clock):
        naive = clock.now().replace(tzinfo=None) - timedelta(days=1)

        batch = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00", received_at=naive)

        assert batch.received_at == clock.now() - timedelta(days=1)

    def test_seq_increments_per_sku(self, ledger):
        first = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00")
        second = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00")
        other_sku = ledger.add_batch(TEST_ACCOUNT_ID, "SKU-2", 1, "1.00")

        assert (first.seq, second.seq, other_sku.seq) == (1, 2, 1)

    @pytest.mark.parametrize("quantity", [0, -5, 2.5])
    def test_quantity_must_be_positive_integer(self, ledger, quantity):
        with pytest.raises(ValidationError) as exc_info:
            ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, quantity, "1.00")
        assert exc_info.value.field == "quantity"

    @pytest.mark.parametrize("unit_cost", ["0", "-1.00", "abc", 1.5])
    def test_unit_cost_must_be_positive_decimal(self, ledger, unit_cost):
        with pytest.raises(ValidationError) as exc_info:
            ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, unit_cost)
        assert exc_info.value.field == "unit_cost"

    def test_sku_required(self, ledger):
        with pytest.raises(ValidationError) as exc_info:
            ledger.add_batch(TEST_ACCOUNT_ID, "  ", 1, "1.00")
        assert exc_info.value.field == "sku"

    def test_creation_logged(self, ledger, captured_logs):
        batch = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 3, "2.00")

        completed = [r for r in captured_logs() if r["message"] == "batch_creation_completed"]
        assert completed[0]["batch_id"] == str(batch.id)
        assert completed[0]["account_id"] == TEST_ACCOUNT_ID


class TestListBatches:
    def test_ledger_order(self, ledger, clock):
        now = clock.now()
        late = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00", received_at=now)
        early = ledger.add_batch(
            TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00", received_at=now - timedelta(days=3)
        )
        tie = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00", received_at=now)

        ids = [b.id for b in ledger.list_batches(TEST_ACCOUNT_ID, TEST_SKU)]

        assert ids == [early.id, late.id, tie.id]

    def test_receipt_bounds_inclusive(self, ledger, two_batches, clock):
        b1, b2 = two_batches

        bounded = ledger.list_batches(
            TEST_ACCOUNT_ID,
            TEST_SKU,
            received_from=b1.received_at,
            received_to=b1.received_at,
        )

        assert [b.id for b in bounded] == [b1.id]

    def test_scoped_to_account_and_sku(self, ledger, two_batches):
        ledger.add_batch(OTHER_ACCOUNT_ID, TEST_SKU, 9, "9.00")
        ledger.add_batch(TEST_ACCOUNT_ID, "SKU-2", 9, "9.00")

        assert len(ledger.list_batches(TEST_ACCOUNT_ID, TEST_SKU)) == 2


class TestConsume:
    """consumed_quantity only moves through the conditional decrement."""

    def test_consume(self, ledger, two_batches):
        b1, _ = two_batches

        updated = ledger.consume(b1, 20)

        assert updated.consumed_quantity == 20
        assert updated.remaining_quantity == 30
        assert ledger.get_batch(TEST_ACCOUNT_ID, TEST_SKU, b1.id).consumed_quantity == 20

    def test_consume_exact_remaining(self, ledger, two_batches):
        b1, _ = two_batches

        assert ledger.consume(b1, 50).remaining_quantity == 0

    def test_over_consumption_rejected(self, ledger, two_batches):
        b1, _ = two_batches
        ledger.consume(b1, 45)

        with pytest.raises(InsufficientBatchQuantityError) as exc_info:
            ledger.consume(b1, 6)

        assert exc_info.value.remaining_quantity == 5
        assert ledger.get_batch(TEST_ACCOUNT_ID, TEST_SKU, b1.id).consumed_quantity == 45

    def test_stale_batch_value_cannot_overdraw(self, ledger, two_batches):
        """The guard reads the stored counter, not the caller's copy."""
        b1, _ = two_batches
        ledger.consume(b1, 50)

        with pytest.raises(InsufficientBatchQuantityError):
            ledger.consume(b1, 1)

    def test_consume_unknown_batch(self, ledger, two_batches):
        b1, _ = two_batches
        ghost = replace(b1, id=uuid4())

        with pytest.raises(BatchNotFoundError):
            ledger.consume(ghost, 1)

    def test_release(self, ledger, two_batches):
        b1, _ = two_batches
        ledger.consume(b1, 10)

        assert ledger.release(b1, 4).consumed_quantity == 6

    def test_release_more_than_consumed(self, ledger, two_batches):
        b1, _ = two_batches
        ledger.consume(b1, 2)

        with pytest.raises(ValidationError):
            ledger.release(b1, 3)

    def test_lock_table_does_not_grow(self, ledger):
        for _ in range(CONSUMPTION_LOCK_STRIPES + 10):
            batch = ledger.add_batch(TEST_ACCOUNT_ID, TEST_SKU, 1, "1.00")
            ledger.consume(batch, 1)

        assert len(batch_ledger._consumption_locks) == CONSUMPTION_LOCK_STRIPES

    def test_same_batch_same_lock(self, two_batches):
        b1, _ = two_batches

        assert batch_ledger._consumption_lock(
            b1.account_id, b1.sku, b1.id
        ) is batch_ledger._consumption_lock(b1.account_id, b1.sku, b1.id)


class TestLookups:
    def test_find_batch_wrong_sku(self, ledger, two_batches):
        b1, _ = two_batches

        assert ledger.find_batch(TEST_ACCOUNT_ID, "SKU-2", b1.id) is None

    def test_get_batch_wrong_account(self, ledger, two_batches):
        b1, _ = two_batches

        with pytest.raises(BatchNotFoundError):
            ledger.get_batch(OTHER_ACCOUNT_ID, TEST_SKU, b1.id)

    def test_batch_details_without_entries(self, ledger, two_batches):
        b1, _ = two_batches
        ledger.consume(b1, 5)

        details = ledger.get_batch_details(TEST_ACCOUNT_ID, b1.id)

        assert details.batch.id == b1.id
        assert details.used_quantity == 5
        assert details.remaining_quantity == 45
        assert details.entries == ()

    def test_batch_details_other_account(self, ledger, two_batches):
        b1, _ = two_batches

        with pytest.raises(BatchNotFoundError):
            ledger.get_batch_details(OTHER_ACCOUNT_ID, b1.id)


class TestLedgerFifo:
    def test_allocate_over_persisted_batches(self, ledger, two_batches):
        b1, b2 = two_batches

        allocation = ledger.allocate_fifo(TEST_ACCOUNT_ID, TEST_SKU, 90)

        assert [(a.batch_id, a.quantity_assigned) for a in allocation.assignments] == [
            (b1.id, 50),
            (b2.id, 40),
        ]
