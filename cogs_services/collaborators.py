"""
cogs_services.collaborators -- Interfaces supplied by the host application.

Responsibility:
    Declare the narrow protocols the services depend on for authorization,
    product lookup and sales history, plus small in-process adapters used by
    the scheduled job and by tests.

Architecture position:
    Services -- boundary types only.  No persistence of its own.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, runtime_checkable

from cogs_kernel.exceptions import AccessDeniedError
from cogs_kernel.logging_config import get_logger

logger = get_logger("services.collaborators")


@runtime_checkable
class AccessPolicy(Protocol):
    """Answers whether a user may act on an account."""

    def can_access(self, user_id: str, account_id: str) -> bool: ...


@dataclass(frozen=True)
class ProductInfo:
    """
    Catalog view of a product.

    ``baseline_unit_cost`` is informational: it is logged alongside a
    resolved cost for comparison and never used to price an entry.
    """

    sku: str
    baseline_unit_cost: Decimal | None = None


@runtime_checkable
class ProductCatalog(Protocol):
    """Looks up a product by SKU; ``None`` when the SKU is unknown."""

    def get_product(self, account_id: str, sku: str) -> ProductInfo | None: ...


@runtime_checkable
class SalesHistory(Protocol):
    """Units sold and returned for a SKU since a point in time."""

    def units_sold(
        self, account_id: str, sku: str, marketplace_id: str, since: datetime
    ) -> int: ...

    def units_returned(
        self, account_id: str, sku: str, marketplace_id: str, since: datetime
    ) -> int: ...


def require_access(policy: AccessPolicy, user_id: str, account_id: str) -> None:
    """Raise AccessDeniedError unless ``policy`` grants access."""
    if not policy.can_access(user_id, account_id):
        logger.warning(
            "account_access_denied",
            extra={"user_id": user_id, "account_id": account_id},
        )
        raise AccessDeniedError(user_id, account_id)


class MembershipAccessPolicy:
    """Grants access when the user is a member of the account."""

    def __init__(self, memberships: Mapping[str, set[str]] | None = None):
        self._memberships: dict[str, set[str]] = {
            user: set(accounts) for user, accounts in (memberships or {}).items()
        }

    def grant(self, user_id: str, account_id: str) -> None:
        self._memberships.setdefault(user_id, set()).add(account_id)

    def can_access(self, user_id: str, account_id: str) -> bool:
        return account_id in self._memberships.get(user_id, set())


class SystemAccessPolicy:
    """Access policy for the scheduled job, which acts on behalf of the system."""

    def __init__(self, system_user_id: str = "system"):
        self.system_user_id = system_user_id

    def can_access(self, user_id: str, account_id: str) -> bool:
        return user_id == self.system_user_id


class StaticSalesHistory:
    """
    Sales history backed by a mapping of (sku, marketplace_id) to totals.

    The totals are taken to already cover the lookback window, so ``since``
    is accepted for interface compatibility only.
    """

    def __init__(
        self,
        sold: Mapping[tuple[str, str], int] | None = None,
        returned: Mapping[tuple[str, str], int] | None = None,
    ):
        self._sold = dict(sold or {})
        self._returned = dict(returned or {})

    def units_sold(self, account_id: str, sku: str, marketplace_id: str, since: datetime) -> int:
        return self._sold.get((sku, marketplace_id), 0)

    def units_returned(
        self, account_id: str, sku: str, marketplace_id: str, since: datetime
    ) -> int:
        return self._returned.get((sku, marketplace_id), 0)
