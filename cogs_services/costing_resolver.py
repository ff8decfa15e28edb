"""
cogs_services.costing_resolver -- Resolve unit cost against the batch ledger.

Responsibility:
    Read exactly the cost layers a costing variant needs from the ledger and
    hand them to the pure engine ``cogs_engines.costing.resolve_cost``.

Architecture position:
    Services -- reads through BatchLedger, computes through engines.
    Performs no writes: resolving the same request twice against an
    unchanged ledger yields the same CostResolution.

Failure modes:
    - ProductNotFoundError when a product catalog is configured and the SKU
      is unknown to it.
    - Everything ``resolve_cost`` raises (validation, missing batch or
      layers, insufficient batch quantity).
"""

from __future__ import annotations

from typing import Any

from cogs_config.schema import CostingSettings
from cogs_engines.costing import resolve_cost
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.costing import (
    BatchCosting,
    Costing,
    CostResolution,
    TimePeriodCosting,
    WeightedAverageCosting,
)
from cogs_kernel.exceptions import ProductNotFoundError
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_services.batch_ledger import BatchLedger
from cogs_services.collaborators import ProductCatalog

logger = get_logger("services.costing_resolver")


class CostingResolver:
    """Ledger-backed costing for one session."""

    def __init__(
        self,
        ledger: BatchLedger,
        clock: Clock | None = None,
        settings: CostingSettings | None = None,
        product_catalog: ProductCatalog | None = None,
    ):
        self.ledger = ledger
        self._clock = clock or SystemClock()
        self._settings = settings or CostingSettings()
        self._catalog = product_catalog

    def resolve_cost(
        self,
        account_id: str,
        sku: str,
        quantity: int,
        costing: Costing,
        shipment_cost: Any = 0,
    ) -> CostResolution:
        with LogContext.bind(account_id=account_id, sku=sku):
            logger.info(
                "cost_resolution_started",
                extra={"cost_method": costing.method.value, "quantity": quantity},
            )
            product = None
            if self._catalog is not None:
                product = self._catalog.get_product(account_id, sku)
                if product is None:
                    logger.warning("product_not_found", extra={"account_id": account_id, "sku": sku})
                    raise ProductNotFoundError(account_id, sku)

            now = self._clock.now()
            batches = self._load_layers(account_id, sku, costing, now)
            try:
                resolution = resolve_cost(
                    account_id=account_id,
                    sku=sku,
                    quantity=quantity,
                    costing=costing,
                    batches=batches,
                    shipment_cost=shipment_cost,
                    now=now,
                    decimal_places=self._settings.decimal_places,
                    rounding=self._settings.rounding_mode,
                )
            except Exception as exc:
                logger.warning(
                    "cost_resolution_failed",
                    extra={
                        "cost_method": costing.method.value,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                        "error": str(exc),
                    },
                )
                raise

            logger.info(
                "cost_resolution_completed",
                extra={
                    "cost_method": costing.method.value,
                    "unit_cost": str(resolution.unit_cost),
                    "total_cost": str(resolution.total_cost),
                    "layers_considered": len(resolution.batches_considered),
                    "baseline_unit_cost": (
                        str(product.baseline_unit_cost)
                        if product is not None and product.baseline_unit_cost is not None
                        else None
                    ),
                },
            )
            return resolution

    def _load_layers(self, account_id, sku, costing, now):
        if isinstance(costing, BatchCosting):
            # A missing batch surfaces from the engine as BatchNotFoundError
            batch = self.ledger.find_batch(account_id, sku, costing.batch_id)
            return [batch] if batch is not None else []
        if isinstance(costing, TimePeriodCosting):
            return self.ledger.list_batches(
                account_id,
                sku,
                received_from=costing.period_start,
                received_to=costing.period_end,
            )
        if isinstance(costing, WeightedAverageCosting):
            return self.ledger.list_batches(account_id, sku, received_to=costing.as_of or now)
        return []
