"""Database layer - engine, base classes, types, and immutability."""

from cogs_kernel.db.base import UUID, Base, TimestampedBase, UTCDateTime, UUIDString
from cogs_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from cogs_kernel.db.types import MoneyColumn, round_money, to_decimal

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "MoneyColumn",
    "round_money",
    "to_decimal",
]
