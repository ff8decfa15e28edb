#!/usr/bin/env python3
"""
Scheduled inventory-health job: recompute forecasts and KPIs, raise restock
alerts.

For each account, reads stock rows, takes sales and returns over the
lookback window from a YAML sales file, and upserts forecast and KPI
snapshots.  One transaction per account.

Sales file format:

    - sku: SKU-1
      marketplace_id: amazon-us
      sold: 120
      returned: 6

Usage:
  python3 scripts/run_inventory_health.py --account-id acct-1 --sales-file sales.yaml
  python3 scripts/run_inventory_health.py --account-id acct-1 --account-id acct-2 --alerts

Environment:
  COGS_DATABASE_URL   database URL (default: sqlite:///cogs.db)
  COGS_CONFIG_PATH    engine configuration YAML (default: packaged defaults)
"""

import argparse
import logging
import os
import sys
from pathlib import Path

import yaml

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = os.environ.get("COGS_DATABASE_URL", "sqlite:///cogs.db")
SYSTEM_USER = "system"


def load_sales_file(path):
    """Parse the sales YAML into (sold, returned) maps keyed by (sku, marketplace_id)."""
    with open(path) as f:
        rows = yaml.safe_load(f) or []
    if not isinstance(rows, list):
        raise ValueError(f"{path}: expected a list of sales rows")

    sold, returned = {}, {}
    for i, row in enumerate(rows):
        try:
            key = (str(row["sku"]), str(row["marketplace_id"]))
        except (KeyError, TypeError):
            raise ValueError(f"{path}: row {i} needs 'sku' and 'marketplace_id'") from None
        sold[key] = sold.get(key, 0) + int(row.get("sold", 0))
        returned[key] = returned.get(key, 0) + int(row.get("returned", 0))
    return sold, returned


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Recompute inventory forecasts, KPIs and restock alerts")
    p.add_argument("--account-id", action="append", required=True, help="Account to process (repeatable)")
    p.add_argument("--marketplace-id", default=None, help="Limit to one marketplace")
    p.add_argument("--sku", default=None, help="Limit to one SKU")
    p.add_argument("--sales-file", type=Path, default=None, help="YAML sales totals for the lookback window")
    p.add_argument("--config", type=Path, default=None, help="Engine configuration YAML")
    p.add_argument("--db-url", default=DEFAULT_DB_URL, help="Database URL")
    p.add_argument("--create-tables", action="store_true", help="Create tables before running")
    p.add_argument("--alerts", action="store_true", help="Also evaluate restock alerts")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    from cogs_config import get_active_config
    from cogs_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from cogs_kernel.db.immutability import register_immutability_listeners
    from cogs_kernel.exceptions import CostingKernelError
    from cogs_kernel.logging_config import LogContext, configure_logging
    from cogs_services.collaborators import StaticSalesHistory, SystemAccessPolicy
    from cogs_services.inventory_health_service import InventoryHealthService

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = get_active_config(args.config)
        sold, returned = load_sales_file(args.sales_file) if args.sales_file else ({}, {})
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    init_engine_from_url(args.db_url)
    if args.create_tables:
        create_tables()
    register_immutability_listeners()

    sales = StaticSalesHistory(sold=sold, returned=returned)
    failures = 0

    for account_id in args.account_id:
        with LogContext.bind(correlation_id=f"inventory-health:{account_id}"):
            try:
                with session_scope() as session:
                    service = InventoryHealthService(
                        session,
                        SystemAccessPolicy(SYSTEM_USER),
                        sales,
                        settings=config.inventory_health,
                        costing=config.costing,
                    )
                    forecasts = service.recalculate_forecasts(
                        SYSTEM_USER, account_id, args.marketplace_id, args.sku
                    )
                    kpis = service.recalculate_kpis(
                        SYSTEM_USER, account_id, args.marketplace_id, args.sku
                    )
                    alerts = (
                        service.restock_alerts(SYSTEM_USER, account_id, args.marketplace_id, args.sku)
                        if args.alerts
                        else []
                    )
            except CostingKernelError as exc:
                failures += 1
                print(f"  {account_id}: FAILED [{exc.code}] {exc}", file=sys.stderr)
                continue

        print(f"  {account_id}: {len(forecasts)} forecast(s), {len(kpis)} KPI snapshot(s)")
        for alert in alerts:
            marker = "NEW" if alert.newly_alerted else "   "
            print(
                f"    {marker} restock {alert.sku} @ {alert.marketplace_id}: "
                f"7-day {alert.forecast_7_day} <= {alert.restock_threshold}, "
                f"reorder {alert.suggested_reorder_quantity}"
            )

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
