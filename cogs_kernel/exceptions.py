"""
Typed Exception Hierarchy for the Costing Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from CostingKernelError:

    CostingKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- BatchNotFoundError
    |   +-- CostLayersNotFoundError
    |   +-- CogsEntryNotFoundError
    |   +-- ProductNotFoundError
    |   +-- ForecastNotFoundError
    |
    +-- InsufficientBatchQuantityError
    |
    +-- AccessDeniedError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR             | Missing/out-of-range input
----------------|------------------------------|-----------------------------------------
Not found       | BATCH_NOT_FOUND              | Batch missing or owned by other account/SKU
                | COST_LAYERS_NOT_FOUND        | No batches in period / as of date
                | COGS_ENTRY_NOT_FOUND         | Entry id unknown for the account
                | PRODUCT_NOT_FOUND            | SKU unknown to the product catalog
                | FORECAST_NOT_FOUND           | No forecast snapshot for SKU
----------------|------------------------------|-----------------------------------------
Consumption     | INSUFFICIENT_BATCH_QUANTITY  | BATCH costing exceeds remaining quantity
----------------|------------------------------|-----------------------------------------
Access          | ACCESS_DENIED                | Authorization collaborator refused
----------------|------------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION       | In-place edit of a ledger record

===============================================================================
HANDLING PATTERNS
===============================================================================

Catch by type, read structured attributes, never parse messages:

    try:
        entry = cogs_service.create_cogs_entry(user_id, request)
    except InsufficientBatchQuantityError as e:
        api_response(code=e.code, remaining=e.remaining_quantity)
    except NotFoundError as e:
        api_response(code=e.code, status=404)

None of these errors is retried internally: costing is deterministic, so an
identical request against an unchanged ledger fails identically.
"""


class CostingKernelError(Exception):
    """
    Base exception for all costing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COSTING_KERNEL_ERROR"


class ValidationError(CostingKernelError):
    """Input is missing, malformed, or out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Lookup failures


class NotFoundError(CostingKernelError):
    """Base exception for lookups that found nothing."""

    code: str = "NOT_FOUND"


class BatchNotFoundError(NotFoundError):
    """Batch does not exist for the given account and SKU."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str, account_id: str, sku: str | None = None):
        self.batch_id = batch_id
        self.account_id = account_id
        self.sku = sku
        scope = f"account {account_id}" + (f", SKU {sku}" if sku else "")
        super().__init__(f"Batch {batch_id} not found for {scope}")


class CostLayersNotFoundError(NotFoundError):
    """No cost layers qualify for the requested window."""

    code: str = "COST_LAYERS_NOT_FOUND"

    def __init__(self, account_id: str, sku: str, window: str):
        self.account_id = account_id
        self.sku = sku
        self.window = window
        super().__init__(f"No cost layers for SKU {sku} {window}")


class CogsEntryNotFoundError(NotFoundError):
    """COGS entry does not exist for the given account."""

    code: str = "COGS_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str, account_id: str):
        self.entry_id = entry_id
        self.account_id = account_id
        super().__init__(f"COGS entry {entry_id} not found for account {account_id}")


class ProductNotFoundError(NotFoundError):
    """SKU is unknown to the product catalog."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, account_id: str, sku: str):
        self.account_id = account_id
        self.sku = sku
        super().__init__(f"Product {sku} not found for account {account_id}")


class ForecastNotFoundError(NotFoundError):
    """No forecast snapshot exists for the SKU."""

    code: str = "FORECAST_NOT_FOUND"

    def __init__(self, account_id: str, sku: str, marketplace_id: str | None):
        self.account_id = account_id
        self.sku = sku
        self.marketplace_id = marketplace_id
        super().__init__(f"Forecast not found for SKU {sku}")


# Consumption


class InsufficientBatchQuantityError(CostingKernelError):
    """
    Requested quantity exceeds what remains unconsumed in a batch.

    Raised both by the pre-check in the resolver and by the atomic
    conditional decrement when a concurrent request won the race.
    """

    code: str = "INSUFFICIENT_BATCH_QUANTITY"

    def __init__(self, batch_id: str, requested_quantity: int, remaining_quantity: int):
        self.batch_id = batch_id
        self.requested_quantity = requested_quantity
        self.remaining_quantity = remaining_quantity
        super().__init__(
            f"Batch {batch_id} has {remaining_quantity} unit(s) remaining, "
            f"requested {requested_quantity}"
        )


# Access


class AccessDeniedError(CostingKernelError):
    """The authorization collaborator refused access to the account."""

    code: str = "ACCESS_DENIED"

    def __init__(self, user_id: str, account_id: str):
        self.user_id = user_id
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found or access denied")


# Immutability


class ImmutabilityViolationError(CostingKernelError):
    """Attempted to modify or delete an append-only ledger record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
