"""
Costing value objects.

Responsibility:
    Define the cost-method tag, the per-method costing parameters (a tagged
    variant: one frozen dataclass per method, each declaring exactly the
    parameters that method needs) and the resolver's result.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by engines and services.

Invariants enforced:
    - TimePeriodCosting rejects period_start > period_end at construction.
    - CostResolution amounts are Decimal, never float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Union
from uuid import UUID

from cogs_kernel.domain.clock import as_utc
from cogs_kernel.exceptions import ValidationError


class CostMethod(str, Enum):
    """How the unit cost of a COGS entry was determined."""

    BATCH = "BATCH"
    TIME_PERIOD = "TIME_PERIOD"
    WEIGHTED_AVERAGE = "WEIGHTED_AVERAGE"


@dataclass(frozen=True, slots=True)
class BatchCosting:
    """Use the unit cost of one specific batch."""

    method: ClassVar[CostMethod] = CostMethod.BATCH

    batch_id: UUID


@dataclass(frozen=True, slots=True)
class TimePeriodCosting:
    """Quantity-weighted average of batches received within a closed window."""

    method: ClassVar[CostMethod] = CostMethod.TIME_PERIOD

    period_start: datetime
    period_end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "period_start", as_utc(self.period_start))
        object.__setattr__(self, "period_end", as_utc(self.period_end))
        if self.period_start > self.period_end:
            raise ValidationError(
                "period_start",
                f"period_start {self.period_start.isoformat()} is after "
                f"period_end {self.period_end.isoformat()}",
            )


@dataclass(frozen=True, slots=True)
class WeightedAverageCosting:
    """
    Quantity-weighted average of all batches received on or before ``as_of``.

    ``as_of=None`` means "now" according to the resolver's clock.
    """

    method: ClassVar[CostMethod] = CostMethod.WEIGHTED_AVERAGE

    as_of: datetime | None = None

    def __post_init__(self) -> None:
        if self.as_of is not None:
            object.__setattr__(self, "as_of", as_utc(self.as_of))


Costing = Union[BatchCosting, TimePeriodCosting, WeightedAverageCosting]


def _parse_datetime(value, name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(name, f"not an ISO-8601 datetime: {value!r}") from None


def costing_from_dict(data: dict) -> Costing:
    """
    Build a costing variant from a request payload.

    ``data["cost_method"]`` selects the variant.  Keys the selected variant
    does not take are ignored; datetimes may be given as ISO-8601 strings.
    """
    raw_method = data.get("cost_method")
    try:
        method = CostMethod(raw_method)
    except ValueError:
        raise ValidationError(
            "cost_method",
            f"must be one of {', '.join(m.value for m in CostMethod)}, got {raw_method!r}",
        ) from None

    if method is CostMethod.BATCH:
        batch_id = data.get("batch_id")
        if batch_id is None:
            raise ValidationError("batch_id", "required for BATCH costing")
        if not isinstance(batch_id, UUID):
            try:
                batch_id = UUID(str(batch_id))
            except ValueError:
                raise ValidationError("batch_id", f"not a UUID: {batch_id!r}") from None
        return BatchCosting(batch_id=batch_id)

    if method is CostMethod.TIME_PERIOD:
        start = _parse_datetime(data.get("period_start"), "period_start")
        end = _parse_datetime(data.get("period_end"), "period_end")
        if start is None or end is None:
            raise ValidationError(
                "period_start", "period_start and period_end are required for TIME_PERIOD costing"
            )
        return TimePeriodCosting(period_start=start, period_end=end)

    return WeightedAverageCosting(as_of=_parse_datetime(data.get("as_of"), "as_of"))


@dataclass(frozen=True, slots=True)
class CostResolution:
    """
    Outcome of resolving a unit cost against the batch ledger.

    ``total_cost`` already includes the rounded shipment cost.
    ``source_batch_id`` is set only for BATCH costing; ``as_of`` only for
    WEIGHTED_AVERAGE, where it is the cutoff the layers were selected by.
    """

    cost_method: CostMethod
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    shipment_cost: Decimal
    source_batch_id: UUID | None = None
    batches_considered: tuple[UUID, ...] = field(default_factory=tuple)
    as_of: datetime | None = None

    @property
    def merchandise_cost(self) -> Decimal:
        """Total cost net of shipment."""
        return self.total_cost - self.shipment_cost
