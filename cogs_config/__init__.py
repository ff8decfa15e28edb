"""
cogs_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    Resolution order for the YAML file:

        1. the ``path`` argument
        2. the ``COGS_CONFIG_PATH`` environment variable
        3. ``defaults.yaml`` shipped with this package

Audit relevance:
    Every load emits a ``COGS_CONFIG_TRACE`` log entry with the config id,
    version and checksum, tying computed costs to the rounding and
    thresholds that produced them.
"""

from __future__ import annotations

import os
from pathlib import Path

from cogs_config.loader import load_engine_config
from cogs_config.schema import (
    CostingSettings,
    EngineConfig,
    HistorySettings,
    InventoryHealthSettings,
)
from cogs_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "COGS_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """
    Load and validate the engine configuration.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If any value fails schema validation.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = load_engine_config(resolved)

    _logger.info(
        "COGS_CONFIG_TRACE",
        extra={
            "trace_type": "COGS_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(resolved),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "EngineConfig",
    "CostingSettings",
    "InventoryHealthSettings",
    "HistorySettings",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
]
