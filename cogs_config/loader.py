"""
Configuration Loader (``cogs_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``cogs_config.schema``.  Runtime callers go through
``cogs_config.get_active_config()``; this module is its implementation.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` from the schema's ``__post_init__``.
* Unknown top-level or section keys  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from cogs_config.schema import (
    CostingSettings,
    EngineConfig,
    HistorySettings,
    InventoryHealthSettings,
)

_SECTIONS = ("costing", "inventory_health", "history")
_TOP_LEVEL_KEYS = frozenset({"config_id", "version", *_SECTIONS})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a Decimal from YAML (string, int or float literal)."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    return Decimal(str(value))


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")


def parse_costing(data: dict[str, Any]) -> CostingSettings:
    _check_keys("costing", data, {"decimal_places", "rounding"})
    defaults = CostingSettings()
    return CostingSettings(
        decimal_places=int(data.get("decimal_places", defaults.decimal_places)),
        rounding=str(data.get("rounding", defaults.rounding)),
    )


def parse_inventory_health(data: dict[str, Any]) -> InventoryHealthSettings:
    _check_keys(
        "inventory_health",
        data,
        {
            "overstock_stock_threshold",
            "overstock_days_threshold",
            "indefinite_runway_days",
            "low_stock_days",
            "sales_lookback_days",
        },
    )
    defaults = InventoryHealthSettings()
    return InventoryHealthSettings(
        overstock_stock_threshold=int(
            data.get("overstock_stock_threshold", defaults.overstock_stock_threshold)
        ),
        overstock_days_threshold=parse_decimal(
            data.get("overstock_days_threshold", defaults.overstock_days_threshold),
            "overstock_days_threshold",
        ),
        indefinite_runway_days=parse_decimal(
            data.get("indefinite_runway_days", defaults.indefinite_runway_days),
            "indefinite_runway_days",
        ),
        low_stock_days=parse_decimal(
            data.get("low_stock_days", defaults.low_stock_days), "low_stock_days"
        ),
        sales_lookback_days=int(data.get("sales_lookback_days", defaults.sales_lookback_days)),
    )


def parse_history(data: dict[str, Any]) -> HistorySettings:
    _check_keys("history", data, {"default_limit", "max_limit"})
    defaults = HistorySettings()
    return HistorySettings(
        default_limit=int(data.get("default_limit", defaults.default_limit)),
        max_limit=int(data.get("max_limit", defaults.max_limit)),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse an ``EngineConfig`` from a dict.

    Missing sections fall back to schema defaults; the checksum covers the
    dict exactly as given.
    """
    _check_keys("<root>", data, set(_TOP_LEVEL_KEYS))
    return EngineConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        costing=parse_costing(data.get("costing") or {}),
        inventory_health=parse_inventory_health(data.get("inventory_health") or {}),
        history=parse_history(data.get("history") or {}),
        checksum=compute_checksum(data),
    )


def load_engine_config(path: Path) -> EngineConfig:
    return parse_engine_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
