"""
ORM-Level Immutability Enforcement for the cost-layer ledger.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check which attributes
changed:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity      | Mutable fields                                   | Delete
------------|--------------------------------------------------|--------
Batch       | consumed_quantity, updated_at                    | never
CogsEntry   | marketplace_id, quantity, unit_cost,             | never
            | shipment_cost, total_cost, updated_at            |

Bulk/Core UPDATE statements bypass ORM events.  The only Core UPDATE issued
against batches is the ledger's conditional consumption statement, which
touches consumed_quantity and updated_at alone.

Usage:
    from cogs_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup
"""

from sqlalchemy import event, inspect

from cogs_kernel.exceptions import ImmutabilityViolationError
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.batch import BATCH_MUTABLE_FIELDS, BatchModel
from cogs_kernel.models.cogs_entry import COGS_ENTRY_MUTABLE_FIELDS, CogsEntryModel

logger = get_logger("db.immutability")


def _reject_changed_fields(target, entity_type: str, mutable: frozenset[str]) -> None:
    """Raise if any attribute outside ``mutable`` has pending changes."""
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in mutable:
            continue
        if attr.history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=str(target.id),
                reason=f"Cannot modify field '{attr.key}'",
            )


def _check_batch_immutability(mapper, connection, target):
    """Batches are append-only: only the consumption counter may move."""
    _reject_changed_fields(target, "Batch", BATCH_MUTABLE_FIELDS)


def _check_batch_delete(mapper, connection, target):
    """Batches are never deleted; corrections are new batches."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Batch",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Batch",
        entity_id=str(target.id),
        reason="Batches are append-only and cannot be deleted",
    )


def _check_cogs_entry_immutability(mapper, connection, target):
    """COGS entries accept corrections to cost inputs only."""
    _reject_changed_fields(target, "CogsEntry", COGS_ENTRY_MUTABLE_FIELDS)


def _check_cogs_entry_delete(mapper, connection, target):
    """COGS entries form the audit trail and cannot be deleted."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "CogsEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="CogsEntry",
        entity_id=str(target.id),
        reason="COGS entries are part of the audit trail and cannot be deleted",
    )


_LISTENERS = (
    (BatchModel, "before_update", _check_batch_immutability),
    (BatchModel, "before_delete", _check_batch_delete),
    (CogsEntryModel, "before_update", _check_cogs_entry_immutability),
    (CogsEntryModel, "before_delete", _check_cogs_entry_delete),
)


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left in place.
    """
    for target, event_name, listener_fn in _LISTENERS:
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _LISTENERS:
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
