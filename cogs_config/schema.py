"""
Engine configuration schema.

Frozen dataclasses parsed from YAML by ``cogs_config.loader``.  Every field
has a default matching the shipped ``defaults.yaml``; validation happens in
``__post_init__`` so an invalid file fails at load time, never mid-request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from cogs_kernel.db.types import SUPPORTED_ROUNDING_MODES


@dataclass(frozen=True)
class CostingSettings:
    """Money precision and rounding for unit and total costs."""

    decimal_places: int = 2
    rounding: str = "ROUND_HALF_UP"

    def __post_init__(self):
        if self.rounding not in SUPPORTED_ROUNDING_MODES:
            raise ValueError(
                f"rounding must be one of {sorted(SUPPORTED_ROUNDING_MODES)}, got '{self.rounding}'"
            )
        if not 0 <= self.decimal_places <= 9:
            raise ValueError(f"decimal_places must be in 0..9, got {self.decimal_places}")

    @property
    def rounding_mode(self) -> str:
        """The ``decimal`` module constant for ``rounding``."""
        return SUPPORTED_ROUNDING_MODES[self.rounding]


@dataclass(frozen=True)
class InventoryHealthSettings:
    """Thresholds for runway, overstock and sales velocity."""

    overstock_stock_threshold: int = 200
    overstock_days_threshold: Decimal = Decimal("90")
    indefinite_runway_days: Decimal = Decimal("999")
    low_stock_days: Decimal = Decimal("7")
    sales_lookback_days: int = 30

    def __post_init__(self):
        if self.overstock_stock_threshold < 0:
            raise ValueError("overstock_stock_threshold cannot be negative")
        if self.overstock_days_threshold <= 0:
            raise ValueError("overstock_days_threshold must be positive")
        if self.sales_lookback_days <= 0:
            raise ValueError("sales_lookback_days must be positive")
        if self.low_stock_days < 0:
            raise ValueError("low_stock_days cannot be negative")


@dataclass(frozen=True)
class HistorySettings:
    """Pagination bounds for COGS history."""

    default_limit: int = 50
    max_limit: int = 500

    def __post_init__(self):
        if self.max_limit < 1:
            raise ValueError("max_limit must be at least 1")
        if not 1 <= self.default_limit <= self.max_limit:
            raise ValueError(
                f"default_limit must be in 1..{self.max_limit}, got {self.default_limit}"
            )


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration with identity."""

    config_id: str = "default"
    version: int = 1
    costing: CostingSettings = field(default_factory=CostingSettings)
    inventory_health: InventoryHealthSettings = field(default_factory=InventoryHealthSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    checksum: str = ""
