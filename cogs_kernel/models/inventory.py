"""
Module: cogs_kernel.models.inventory
Responsibility: ORM persistence for stock levels (read-only to the engine)
    and the derived inventory-health snapshots (forecast and KPI) that the
    periodic job upserts.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - InventoryStock is mutated only by marketplace synchronization
      collaborators; the engine never writes it.
    - Forecast and KPI snapshots are unique per (account_id, sku,
      marketplace_id) and are overwritten on every recalculation.  They are
      non-authoritative and hold no foreign key to batches.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, CheckConstraint, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TimestampedBase, UTCDateTime
from cogs_kernel.db.types import IdentifierColumn, MoneyColumn, SkuColumn


class InventoryStockModel(TimestampedBase):
    """Current stock level per (account, SKU, marketplace)."""

    __tablename__ = "inventory_stock"

    __table_args__ = (
        UniqueConstraint(
            "account_id", "sku", "marketplace_id", name="uq_stock_account_sku_marketplace"
        ),
        CheckConstraint("quantity_available >= 0", name="ck_stock_available_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_stock_reserved_non_negative"),
        CheckConstraint("low_stock_threshold >= 0", name="ck_stock_threshold_non_negative"),
    )

    account_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)
    sku: Mapped[str] = mapped_column(SkuColumn, nullable=False)
    marketplace_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class InventoryForecastModel(TimestampedBase):
    """Projected stock after 3/7/30 days at the current sales velocity."""

    __tablename__ = "inventory_forecasts"

    __table_args__ = (
        UniqueConstraint(
            "account_id", "sku", "marketplace_id", name="uq_forecast_account_sku_marketplace"
        ),
    )

    account_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)
    sku: Mapped[str] = mapped_column(SkuColumn, nullable=False)
    marketplace_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    sales_velocity: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    forecast_3_day: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    forecast_7_day: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    forecast_30_day: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    restock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    alert_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_calculated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class InventoryKPIModel(TimestampedBase):
    """Days of stock left, overstock flag and FIFO batch assignment snapshot."""

    __tablename__ = "inventory_kpis"

    __table_args__ = (
        UniqueConstraint(
            "account_id", "sku", "marketplace_id", name="uq_kpi_account_sku_marketplace"
        ),
    )

    account_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)
    sku: Mapped[str] = mapped_column(SkuColumn, nullable=False)
    marketplace_id: Mapped[str] = mapped_column(IdentifierColumn, nullable=False)
    days_of_stock_left: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    overstock_risk: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # [{batch_id, received_at, quantity_assigned}], batch_id null for the uncosted remainder
    fifo_batch_assignments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    last_calculated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
