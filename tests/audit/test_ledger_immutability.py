"""
Immutability of the cost-layer ledger at the ORM level.

Batches: only consumed_quantity (and updated_at) may change; never deleted.
COGS entries: only correction inputs and the re-derived total may change;
never deleted.
"""

from decimal import Decimal

import pytest

from cogs_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from cogs_kernel.domain.costing import CostMethod, CostResolution
from cogs_kernel.exceptions import ImmutabilityViolationError
from cogs_kernel.models.batch import BatchModel
from cogs_kernel.models.cogs_entry import CogsEntryModel
from tests.conftest import TEST_ACCOUNT_ID, TEST_MARKETPLACE_ID, TEST_SKU


@pytest.fixture
def batch_row(session, two_batches):
    b1, _ = two_batches
    return session.get(BatchModel, b1.id)


@pytest.fixture
def entry_row(session, store):
    entry = store.record(
        TEST_ACCOUNT_ID,
        TEST_MARKETPLACE_ID,
        TEST_SKU,
        CostResolution(
            cost_method=CostMethod.WEIGHTED_AVERAGE,
            quantity=2,
            unit_cost=Decimal("10.00"),
            total_cost=Decimal("20.00"),
            shipment_cost=Decimal("0"),
        ),
    )
    session.commit()
    return session.get(CogsEntryModel, entry.id)


class TestBatchImmutability:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("unit_cost", Decimal("1.00")),
            ("quantity", 999),
            ("sku", "SKU-OTHER"),
            ("account_id", "acct-x"),
        ],
    )
    def test_layer_fields_frozen(self, session, batch_row, field, value):
        setattr(batch_row, field, value)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Batch"
        assert field in exc_info.value.reason
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_consumption_counter_may_move(self, session, batch_row):
        batch_row.consumed_quantity = 3
        session.flush()

        assert session.get(BatchModel, batch_row.id).consumed_quantity == 3

    def test_delete_rejected(self, session, batch_row):
        session.delete(batch_row)

        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            session.flush()

    def test_violation_logged(self, session, batch_row, captured_logs):
        batch_row.unit_cost = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["field"] == "unit_cost"
        assert blocked[0]["level"] == "ERROR"


class TestCogsEntryImmutability:
    @pytest.mark.parametrize("field,value", [("sku", "SKU-OTHER"), ("cost_method", "BATCH")])
    def test_identity_fields_frozen(self, session, entry_row, field, value):
        setattr(entry_row, field, value)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "CogsEntry"

    def test_correction_fields_may_change(self, session, entry_row):
        entry_row.marketplace_id = "ebay-uk"
        entry_row.quantity = 3
        entry_row.total_cost = Decimal("30.00")
        session.flush()

        assert session.get(CogsEntryModel, entry_row.id).quantity == 3

    def test_delete_rejected(self, session, entry_row):
        session.delete(entry_row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestListenerRegistration:
    def test_registration_is_idempotent(self, session, batch_row):
        register_immutability_listeners()
        register_immutability_listeners()
        batch_row.unit_cost = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unregistered_listeners_allow_edits(self, session, batch_row):
        unregister_immutability_listeners()
        try:
            batch_row.notes = "edited"
            session.flush()
        finally:
            register_immutability_listeners()

        assert session.get(BatchModel, batch_row.id).notes == "edited"
