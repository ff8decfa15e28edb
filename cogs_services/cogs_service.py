"""
cogs_services.cogs_service -- Transactional facade for COGS operations.

Responsibility:
    The contract surface an HTTP layer calls.  Each write is one unit of
    work:

        access check -> resolve cost -> consume batch (BATCH only)
                     -> save entry -> commit

    Any failure rolls the whole unit back, so no partial entry and no
    orphaned consumption is ever visible.

Architecture position:
    Services -- composes BatchLedger, CostingResolver and CogsEntryStore
    over one session.  The only component in the package that commits.

Usage:
    service = CogsService(session, access_policy, clock=SystemClock())
    entry = service.create_cogs_entry(
        user_id,
        CogsRequest(
            account_id="acct-1",
            marketplace_id="amazon-us",
            sku="SKU-1",
            quantity=2,
            costing=WeightedAverageCosting(),
            shipment_cost=Decimal("5.00"),
        ),
    )
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from cogs_config.schema import EngineConfig
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.costing import (
    BatchCosting,
    Costing,
    CostMethod,
    TimePeriodCosting,
    costing_from_dict,
)
from cogs_kernel.domain.ledger import (
    Batch,
    BatchDetails,
    CogsEntry,
    CogsHistoryPage,
    CogsHistorySummary,
    SkuCogsSummary,
)
from cogs_kernel.exceptions import ValidationError
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_services.batch_ledger import BatchLedger
from cogs_services.cogs_entry_store import UNSET, CogsEntryStore
from cogs_services.collaborators import AccessPolicy, ProductCatalog, require_access
from cogs_services.costing_resolver import CostingResolver

logger = get_logger("services.cogs")

T = TypeVar("T")


@dataclass(frozen=True)
class CogsRequest:
    """A request to cost ``quantity`` units of ``sku`` shipped to a marketplace."""

    account_id: str
    marketplace_id: str
    sku: str
    quantity: int
    costing: Costing
    shipment_cost: Decimal | int | str = Decimal("0")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CogsRequest:
        """Build from a flat payload carrying ``cost_method`` and its parameters."""
        for required in ("account_id", "marketplace_id", "sku", "quantity"):
            if data.get(required) in (None, ""):
                raise ValidationError(required, "is required")
        return cls(
            account_id=data["account_id"],
            marketplace_id=data["marketplace_id"],
            sku=data["sku"],
            quantity=data["quantity"],
            costing=costing_from_dict(dict(data)),
            shipment_cost=data.get("shipment_cost") or Decimal("0"),
        )


class CogsService:
    """COGS facade bound to one session."""

    def __init__(
        self,
        session: Session,
        access_policy: AccessPolicy,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        product_catalog: ProductCatalog | None = None,
    ):
        self.session = session
        self.access_policy = access_policy
        self._clock = clock or SystemClock()
        self.config = config or EngineConfig()
        self.ledger = BatchLedger(session, self._clock)
        self.resolver = CostingResolver(
            self.ledger,
            clock=self._clock,
            settings=self.config.costing,
            product_catalog=product_catalog,
        )
        self.store = CogsEntryStore(
            session,
            clock=self._clock,
            costing=self.config.costing,
            history=self.config.history,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def create_cogs_entry(self, user_id: str, request: CogsRequest) -> CogsEntry:
        """Resolve, consume (BATCH only) and persist one COGS entry atomically."""
        require_access(self.access_policy, user_id, request.account_id)

        def work() -> CogsEntry:
            costing = request.costing
            resolution = self.resolver.resolve_cost(
                request.account_id,
                request.sku,
                request.quantity,
                costing,
                request.shipment_cost,
            )
            if isinstance(costing, BatchCosting):
                batch = self.ledger.get_batch(request.account_id, request.sku, costing.batch_id)
                self.ledger.consume(batch, resolution.quantity)

            return self.store.record(
                request.account_id,
                request.marketplace_id,
                request.sku,
                resolution,
                period_start=costing.period_start if isinstance(costing, TimePeriodCosting) else None,
                period_end=costing.period_end if isinstance(costing, TimePeriodCosting) else None,
                as_of=resolution.as_of,
            )

        with LogContext.bind(actor_id=user_id, account_id=request.account_id, sku=request.sku):
            logger.info(
                "cogs_entry_creation_started",
                extra={
                    "cost_method": request.costing.method.value,
                    "quantity": request.quantity,
                    "marketplace_id": request.marketplace_id,
                },
            )
            entry = self._in_transaction("create_cogs_entry", work)
            logger.info(
                "cogs_entry_creation_completed",
                extra={"entry_id": str(entry.id), "total_cost": str(entry.total_cost)},
            )
            return entry

    def update_cogs_entry(
        self,
        user_id: str,
        account_id: str,
        entry_id: UUID,
        **fields: Any,
    ) -> CogsEntry:
        """
        Correct an entry's marketplace, quantity, unit cost or shipment cost.

        For BATCH entries a quantity change moves the batch's consumption by
        the difference, under the same atomic guard as the initial draw.
        """
        require_access(self.access_policy, user_id, account_id)

        def work() -> CogsEntry:
            existing = self.store.get(account_id, entry_id)
            new_quantity = fields.get("quantity", UNSET)
            if existing.batch_id is not None and new_quantity is not UNSET:
                delta = new_quantity - existing.quantity if isinstance(new_quantity, int) else 0
                if delta:
                    batch = self.ledger.get_batch(account_id, existing.sku, existing.batch_id)
                    if delta > 0:
                        self.ledger.consume(batch, delta)
                    else:
                        self.ledger.release(batch, -delta)
            return self.store.update(account_id, entry_id, **fields)

        with LogContext.bind(actor_id=user_id, account_id=account_id):
            logger.info(
                "cogs_entry_update_started",
                extra={"entry_id": str(entry_id), "fields": sorted(fields)},
            )
            return self._in_transaction("update_cogs_entry", work)

    def add_batch(
        self,
        user_id: str,
        account_id: str,
        sku: str,
        quantity: int,
        unit_cost: Any,
        received_at: datetime | None = None,
        notes: str | None = None,
    ) -> Batch:
        require_access(self.access_policy, user_id, account_id)
        with LogContext.bind(actor_id=user_id):
            return self._in_transaction(
                "add_batch",
                lambda: self.ledger.add_batch(
                    account_id, sku, quantity, unit_cost, received_at=received_at, notes=notes
                ),
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def list_cogs_history(
        self,
        user_id: str,
        account_id: str,
        sku: str | None = None,
        marketplace_id: str | None = None,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        cost_method: CostMethod | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> CogsHistoryPage:
        require_access(self.access_policy, user_id, account_id)
        return self.store.list_history(
            account_id,
            sku=sku,
            marketplace_id=marketplace_id,
            start_date=start_date,
            end_date=end_date,
            cost_method=cost_method,
            limit=limit,
            offset=offset,
        )

    def summarize_cogs_history(
        self,
        user_id: str,
        account_id: str,
        sku: str | None = None,
        marketplace_id: str | None = None,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        cost_method: CostMethod | str | None = None,
    ) -> CogsHistorySummary:
        require_access(self.access_policy, user_id, account_id)
        return self.store.summarize_history(
            account_id,
            sku=sku,
            marketplace_id=marketplace_id,
            start_date=start_date,
            end_date=end_date,
            cost_method=cost_method,
        )

    def get_sku_summary(self, user_id: str, account_id: str, sku: str) -> SkuCogsSummary:
        require_access(self.access_policy, user_id, account_id)
        return self.store.summarize_sku(account_id, sku)

    def get_batch_details(self, user_id: str, account_id: str, batch_id: UUID) -> BatchDetails:
        require_access(self.access_policy, user_id, account_id)
        return self.ledger.get_batch_details(account_id, batch_id)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _in_transaction(self, operation: str, work: Callable[[], T]) -> T:
        try:
            result = work()
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.warning(
                "cogs_transaction_rolled_back",
                extra={
                    "operation": operation,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                },
            )
            raise
        return result
