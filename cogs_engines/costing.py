"""
cogs_engines.costing -- Pure unit-cost resolution over cost layers.

Responsibility:
    Given the batches of one SKU and a costing variant, compute the unit cost
    and total cost of a shipment.  Three methods:

        BATCH             unit cost of one named batch
        TIME_PERIOD       quantity-weighted average of batches received in
                          [period_start, period_end], both ends inclusive
        WEIGHTED_AVERAGE  quantity-weighted average of batches received on
                          or before as_of

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stateful resolver that
    reads the ledger lives in cogs_services.costing_resolver.

Invariants enforced:
    - unit_cost = round(raw_unit_cost)
    - total_cost = round(unit_cost * quantity) + round(shipment_cost)
    - Rounding mode and decimal places are parameters; nothing here touches
      floating point.

Failure modes:
    - ValidationError for non-positive/non-integer quantity or negative
      shipment cost.
    - BatchNotFoundError when the named batch is not among the supplied
      batches (wrong id, account or SKU).
    - InsufficientBatchQuantityError when quantity exceeds what remains.
    - CostLayersNotFoundError when no batch qualifies for an averaging window.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from cogs_engines.tracer import traced_engine
from cogs_kernel.db.types import DEFAULT_ROUNDING, MONEY_DECIMAL_PLACES, round_money, to_decimal
from cogs_kernel.domain.clock import as_utc
from cogs_kernel.domain.costing import (
    BatchCosting,
    Costing,
    CostResolution,
    TimePeriodCosting,
    WeightedAverageCosting,
)
from cogs_kernel.domain.ledger import Batch
from cogs_kernel.exceptions import (
    BatchNotFoundError,
    CostLayersNotFoundError,
    InsufficientBatchQuantityError,
    ValidationError,
)
from cogs_kernel.logging_config import get_logger

logger = get_logger("engines.costing")


def validate_quantity(quantity: Any) -> int:
    """Quantity must be a positive integer (bool is not an integer here)."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")
    if quantity <= 0:
        raise ValidationError("quantity", f"must be a positive integer, got {quantity}")
    return quantity


def coerce_amount(value: Any, field: str, *, allow_zero: bool = True) -> Decimal:
    """Coerce a monetary input to Decimal, mapping failures to ValidationError."""
    try:
        amount = to_decimal(value, field)
    except (TypeError, ValueError) as exc:
        raise ValidationError(field, str(exc)) from None
    if amount < 0 or (amount == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise ValidationError(field, f"must be {bound}, got {amount}")
    return amount


def weighted_average_unit_cost(batches: Sequence[Batch]) -> Decimal:
    """
    Unrounded quantity-weighted mean of unit costs.

    sum(quantity * unit_cost) / sum(quantity)
    """
    total_quantity = sum(b.quantity for b in batches)
    if total_quantity <= 0:
        raise ValueError("weighted average requires at least one batch with quantity")
    total_value = sum((b.unit_cost * b.quantity for b in batches), Decimal("0"))
    return total_value / Decimal(total_quantity)


def batches_in_period(
    batches: Iterable[Batch], period_start: datetime, period_end: datetime
) -> list[Batch]:
    start, end = as_utc(period_start), as_utc(period_end)
    return sorted(
        (b for b in batches if start <= as_utc(b.received_at) <= end),
        key=lambda b: b.ordering_key,
    )


def batches_as_of(batches: Iterable[Batch], as_of: datetime) -> list[Batch]:
    cutoff = as_utc(as_of)
    return sorted(
        (b for b in batches if as_utc(b.received_at) <= cutoff),
        key=lambda b: b.ordering_key,
    )


def price(
    costing: Costing,
    raw_unit_cost: Decimal,
    quantity: int,
    shipment_cost: Decimal,
    *,
    source_batch_id=None,
    batches_considered: tuple = (),
    as_of: datetime | None = None,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> CostResolution:
    """Apply the rounding rules to a raw unit cost."""
    unit_cost = round_money(raw_unit_cost, decimal_places, rounding)
    rounded_shipment = round_money(shipment_cost, decimal_places, rounding)
    merchandise = round_money(unit_cost * quantity, decimal_places, rounding)
    return CostResolution(
        cost_method=costing.method,
        quantity=quantity,
        unit_cost=unit_cost,
        total_cost=merchandise + rounded_shipment,
        shipment_cost=rounded_shipment,
        source_batch_id=source_batch_id,
        batches_considered=tuple(batches_considered),
        as_of=as_of,
    )


@traced_engine(
    "costing",
    "1.0",
    fingerprint_fields=("costing", "quantity", "shipment_cost", "batches", "now"),
)
def resolve_cost(
    *,
    account_id: str,
    sku: str,
    quantity: int,
    costing: Costing,
    batches: Sequence[Batch],
    shipment_cost: Any = Decimal("0"),
    now: datetime | None = None,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> CostResolution:
    """
    Resolve the cost of ``quantity`` units of ``sku`` from ``batches``.

    ``batches`` may be the full ledger for the SKU or any superset of the
    batches the method needs; the engine applies the method's own filter.
    ``now`` is required for WeightedAverageCosting without ``as_of``.
    """
    quantity = validate_quantity(quantity)
    shipment = coerce_amount(shipment_cost, "shipment_cost")
    pricing = {"decimal_places": decimal_places, "rounding": rounding}

    if isinstance(costing, BatchCosting):
        batch = next(
            (
                b for b in batches
                if b.id == costing.batch_id and b.account_id == account_id and b.sku == sku
            ),
            None,
        )
        if batch is None:
            raise BatchNotFoundError(str(costing.batch_id), account_id, sku)
        if quantity > batch.remaining_quantity:
            raise InsufficientBatchQuantityError(
                str(batch.id), quantity, batch.remaining_quantity
            )
        return price(
            costing,
            batch.unit_cost,
            quantity,
            shipment,
            source_batch_id=batch.id,
            batches_considered=(batch.id,),
            **pricing,
        )

    cutoff = None
    if isinstance(costing, TimePeriodCosting):
        selected = batches_in_period(batches, costing.period_start, costing.period_end)
        if not selected:
            raise CostLayersNotFoundError(
                account_id,
                sku,
                f"in period {costing.period_start.isoformat()} to {costing.period_end.isoformat()}",
            )
    elif isinstance(costing, WeightedAverageCosting):
        as_of = costing.as_of or now
        if as_of is None:
            raise ValidationError("as_of", "required when no clock time is supplied")
        cutoff = as_utc(as_of)
        selected = batches_as_of(batches, cutoff)
        if not selected:
            raise CostLayersNotFoundError(account_id, sku, f"as of {cutoff.isoformat()}")
    else:
        raise ValidationError("costing", f"unsupported costing variant {type(costing).__name__}")

    logger.debug(
        "cost_layers_selected",
        extra={
            "cost_method": costing.method.value,
            "layer_count": len(selected),
        },
    )
    return price(
        costing,
        weighted_average_unit_cost(selected),
        quantity,
        shipment,
        batches_considered=tuple(b.id for b in selected),
        as_of=cutoff,
        **pricing,
    )


def recompute_total(
    unit_cost: Any,
    quantity: int,
    shipment_cost: Any = Decimal("0"),
    *,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> tuple[Decimal, Decimal, Decimal]:
    """
    Re-derive (unit_cost, shipment_cost, total_cost) for a corrected entry.

    Used by the entry store, which never re-runs the resolver.
    """
    quantity = validate_quantity(quantity)
    unit = round_money(coerce_amount(unit_cost, "unit_cost", allow_zero=False), decimal_places, rounding)
    shipment = round_money(coerce_amount(shipment_cost, "shipment_cost"), decimal_places, rounding)
    total = round_money(unit * quantity, decimal_places, rounding) + shipment
    return unit, shipment, total
