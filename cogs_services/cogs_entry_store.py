"""
cogs_services.cogs_entry_store -- Persistence and history queries for COGS entries.

Responsibility:
    Insert resolved COGS entries, apply corrections to their cost inputs,
    and answer paginated/aggregated history queries.

Architecture position:
    Services -- stateful orchestration over kernel models.  Never calls the
    costing resolver: corrections re-derive totals with
    ``cogs_engines.costing.recompute_total`` from the corrected inputs.

Invariants enforced:
    - total_cost == round(unit_cost * quantity) + round(shipment_cost) on
      every insert and every correction.
    - Only marketplace_id, quantity, unit_cost and shipment_cost are
      correctable; any other field is a ValidationError.
    - History is ordered created_at DESC, id ASC; limit within 1..max_limit.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cogs_config.schema import CostingSettings, HistorySettings
from cogs_engines.costing import recompute_total
from cogs_kernel.db.types import round_money
from cogs_kernel.domain.clock import Clock, SystemClock, as_utc
from cogs_kernel.domain.costing import CostMethod, CostResolution
from cogs_kernel.domain.ledger import (
    CogsEntry,
    CogsHistoryPage,
    CogsHistorySummary,
    MarketplaceCogs,
    SkuCogsSummary,
)
from cogs_kernel.exceptions import CogsEntryNotFoundError, ValidationError
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_kernel.models.cogs_entry import COGS_ENTRY_CORRECTABLE_FIELDS, CogsEntryModel

logger = get_logger("services.cogs_entry_store")

AVERAGE_UNIT_COST_PLACES = 4


class _Unset:
    """Marker for correction fields the caller did not supply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class HistoryFilter:
    """Filters shared by history listing and summaries."""

    sku: str | None = None
    marketplace_id: str | None = None
    start_date: date | datetime | None = None
    end_date: date | datetime | None = None
    cost_method: CostMethod | str | None = None


def entry_model_to_domain(model: CogsEntryModel) -> CogsEntry:
    """Convert a CogsEntryModel ORM row to a CogsEntry domain object."""
    return CogsEntry(
        id=model.id,
        account_id=model.account_id,
        marketplace_id=model.marketplace_id,
        sku=model.sku,
        quantity=model.quantity,
        cost_method=CostMethod(model.cost_method),
        unit_cost=Decimal(model.unit_cost),
        total_cost=Decimal(model.total_cost),
        shipment_cost=Decimal(model.shipment_cost),
        batch_id=model.batch_id,
        period_start=model.period_start,
        period_end=model.period_end,
        as_of=model.as_of,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _start_bound(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _end_bound(value: date | datetime) -> tuple[datetime, bool]:
    """Upper bound and whether it is exclusive (dates cover the whole day)."""
    if isinstance(value, datetime):
        return as_utc(value), False
    return datetime.combine(value + timedelta(days=1), time.min, tzinfo=timezone.utc), True


class CogsEntryStore:
    """COGS entry persistence for one database session; flushes, never commits."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        costing: CostingSettings | None = None,
        history: HistorySettings | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._costing = costing or CostingSettings()
        self._history = history or HistorySettings()

    # =========================================================================
    # Writes
    # =========================================================================

    def record(
        self,
        account_id: str,
        marketplace_id: str,
        sku: str,
        resolution: CostResolution,
        *,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        as_of: datetime | None = None,
    ) -> CogsEntry:
        """Build an entry from a resolved cost and save it."""
        return self.save(
            CogsEntry(
                id=uuid4(),
                account_id=account_id,
                marketplace_id=marketplace_id,
                sku=sku,
                quantity=resolution.quantity,
                cost_method=resolution.cost_method,
                unit_cost=resolution.unit_cost,
                total_cost=resolution.total_cost,
                shipment_cost=resolution.shipment_cost,
                batch_id=resolution.source_batch_id,
                period_start=period_start,
                period_end=period_end,
                as_of=as_of,
            )
        )

    def save(self, entry: CogsEntry) -> CogsEntry:
        """
        Insert ``entry`` (single flush) and return it as stored.

        The total must already satisfy the rounding rule; the store checks
        it rather than trusting the caller.
        """
        if not entry.marketplace_id:
            raise ValidationError("marketplace_id", "must be a non-empty string")
        if not entry.sku:
            raise ValidationError("sku", "must be a non-empty string")
        unit, shipment, total = recompute_total(
            entry.unit_cost,
            entry.quantity,
            entry.shipment_cost,
            decimal_places=self._costing.decimal_places,
            rounding=self._costing.rounding_mode,
        )
        if total != entry.total_cost or unit != entry.unit_cost:
            logger.error(
                "cogs_entry_total_mismatch",
                extra={
                    "entry_id": str(entry.id),
                    "total_cost": str(entry.total_cost),
                    "expected_total_cost": str(total),
                },
            )
            raise ValidationError(
                "total_cost",
                f"{entry.total_cost} does not equal round(unit_cost * quantity) "
                f"+ round(shipment_cost) = {total}",
            )

        now = self._clock.now()
        model = CogsEntryModel(
            id=entry.id,
            account_id=entry.account_id,
            marketplace_id=entry.marketplace_id,
            sku=entry.sku,
            quantity=entry.quantity,
            cost_method=CostMethod(entry.cost_method).value,
            unit_cost=unit,
            total_cost=total,
            shipment_cost=shipment,
            batch_id=entry.batch_id,
            period_start=entry.period_start,
            period_end=entry.period_end,
            as_of=entry.as_of,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "cogs_entry_saved",
            extra={
                "entry_id": str(model.id),
                "account_id": entry.account_id,
                "sku": entry.sku,
                "cost_method": model.cost_method,
                "quantity": entry.quantity,
                "total_cost": str(total),
            },
        )
        return entry_model_to_domain(model)

    def update(
        self,
        account_id: str,
        entry_id: UUID,
        *,
        marketplace_id: Any = UNSET,
        quantity: Any = UNSET,
        unit_cost: Any = UNSET,
        shipment_cost: Any = UNSET,
        **other: Any,
    ) -> CogsEntry:
        """
        Correct an entry's cost inputs and re-derive its total.

        Fields left UNSET keep their stored values.
        """
        if other:
            field = sorted(other)[0]
            raise ValidationError(
                field,
                f"not correctable; allowed fields are {sorted(COGS_ENTRY_CORRECTABLE_FIELDS)}",
            )

        model = self._load(account_id, entry_id)
        with LogContext.bind(account_id=account_id, sku=model.sku):
            new_marketplace = model.marketplace_id if marketplace_id is UNSET else marketplace_id
            if not new_marketplace:
                raise ValidationError("marketplace_id", "must be a non-empty string")

            unit, shipment, total = recompute_total(
                Decimal(model.unit_cost) if unit_cost is UNSET else unit_cost,
                model.quantity if quantity is UNSET else quantity,
                Decimal(model.shipment_cost) if shipment_cost is UNSET else shipment_cost,
                decimal_places=self._costing.decimal_places,
                rounding=self._costing.rounding_mode,
            )

            model.marketplace_id = new_marketplace
            if quantity is not UNSET:
                model.quantity = quantity
            model.unit_cost = unit
            model.shipment_cost = shipment
            model.total_cost = total
            model.updated_at = self._clock.now()
            self.session.flush()

            logger.info(
                "cogs_entry_corrected",
                extra={
                    "entry_id": str(entry_id),
                    "quantity": model.quantity,
                    "unit_cost": str(unit),
                    "total_cost": str(total),
                },
            )
            return entry_model_to_domain(model)

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, account_id: str, entry_id: UUID) -> CogsEntry:
        return entry_model_to_domain(self._load(account_id, entry_id))

    def list_history(
        self,
        account_id: str,
        sku: str | None = None,
        marketplace_id: str | None = None,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        cost_method: CostMethod | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> CogsHistoryPage:
        """One page of entries, newest first."""
        limit = self._history.default_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not (
            1 <= limit <= self._history.max_limit
        ):
            raise ValidationError("limit", f"must be in 1..{self._history.max_limit}, got {limit!r}")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError("offset", f"must be a non-negative integer, got {offset!r}")

        criteria = self._criteria(
            account_id,
            HistoryFilter(sku, marketplace_id, start_date, end_date, cost_method),
        )
        total = self.session.execute(
            select(func.count()).select_from(CogsEntryModel).where(*criteria)
        ).scalar_one()
        models = self.session.execute(
            select(CogsEntryModel)
            .where(*criteria)
            .order_by(CogsEntryModel.created_at.desc(), CogsEntryModel.id)
            .limit(limit)
            .offset(offset)
        ).scalars().all()

        return CogsHistoryPage(
            entries=tuple(entry_model_to_domain(m) for m in models),
            total=total,
            limit=limit,
            offset=offset,
        )

    def summarize_history(
        self,
        account_id: str,
        sku: str | None = None,
        marketplace_id: str | None = None,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        cost_method: CostMethod | str | None = None,
    ) -> CogsHistorySummary:
        """Totals over every entry matching the filter, not just one page."""
        entries = self._matching(
            account_id,
            HistoryFilter(sku, marketplace_id, start_date, end_date, cost_method),
        )
        total_quantity = sum(e.quantity for e in entries)
        total_cost = sum((e.total_cost for e in entries), Decimal("0"))
        breakdown = {method: Decimal("0") for method in CostMethod}
        for e in entries:
            breakdown[e.cost_method] += e.total_cost

        return CogsHistorySummary(
            total_entries=len(entries),
            total_quantity=total_quantity,
            total_cost=total_cost,
            total_shipment_cost=sum((e.shipment_cost for e in entries), Decimal("0")),
            average_unit_cost=self._average(total_cost, total_quantity),
            method_breakdown=breakdown,
        )

    def summarize_sku(self, account_id: str, sku: str) -> SkuCogsSummary:
        entries = self._matching(account_id, HistoryFilter(sku=sku))

        per_marketplace: dict[str, list[Decimal | int]] = defaultdict(lambda: [0, Decimal("0")])
        for e in entries:
            bucket = per_marketplace[e.marketplace_id]
            bucket[0] += e.quantity
            bucket[1] += e.total_cost

        total_quantity = sum(e.quantity for e in entries)
        total_cost = sum((e.total_cost for e in entries), Decimal("0"))
        return SkuCogsSummary(
            account_id=account_id,
            sku=sku,
            total_entries=len(entries),
            total_quantity=total_quantity,
            total_cost=total_cost,
            average_unit_cost=self._average(total_cost, total_quantity),
            by_marketplace=tuple(
                MarketplaceCogs(
                    marketplace_id=marketplace,
                    quantity=quantity,
                    total_cost=cost,
                    average_unit_cost=self._average(cost, quantity),
                )
                for marketplace, (quantity, cost) in sorted(per_marketplace.items())
            ),
        )

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _load(self, account_id: str, entry_id: UUID) -> CogsEntryModel:
        model = self.session.get(CogsEntryModel, entry_id)
        if model is None or model.account_id != account_id:
            logger.warning(
                "cogs_entry_not_found",
                extra={"entry_id": str(entry_id), "account_id": account_id},
            )
            raise CogsEntryNotFoundError(str(entry_id), account_id)
        return model

    def _matching(self, account_id: str, filters: HistoryFilter) -> list[CogsEntry]:
        models = self.session.execute(
            select(CogsEntryModel)
            .where(*self._criteria(account_id, filters))
            .order_by(CogsEntryModel.created_at.desc(), CogsEntryModel.id)
        ).scalars().all()
        return [entry_model_to_domain(m) for m in models]

    @staticmethod
    def _criteria(account_id: str, filters: HistoryFilter) -> list:
        criteria = [CogsEntryModel.account_id == account_id]
        if filters.sku:
            criteria.append(CogsEntryModel.sku == filters.sku)
        if filters.marketplace_id:
            criteria.append(CogsEntryModel.marketplace_id == filters.marketplace_id)
        if filters.cost_method:
            try:
                method = CostMethod(filters.cost_method)
            except ValueError:
                raise ValidationError(
                    "cost_method", f"unknown cost method {filters.cost_method!r}"
                ) from None
            criteria.append(CogsEntryModel.cost_method == method.value)
        if filters.start_date is not None:
            criteria.append(CogsEntryModel.created_at >= _start_bound(filters.start_date))
        if filters.end_date is not None:
            bound, exclusive = _end_bound(filters.end_date)
            criteria.append(
                CogsEntryModel.created_at < bound if exclusive else CogsEntryModel.created_at <= bound
            )
        return criteria

    @staticmethod
    def _average(total_cost: Decimal, quantity: int) -> Decimal:
        if quantity <= 0:
            return Decimal("0")
        return round_money(total_cost / Decimal(quantity), AVERAGE_UNIT_COST_PLACES)
