"""
Pytest fixtures for the costing kernel test suite.

Provides:
- A file-backed SQLite database per test (tables created, immutability
  listeners registered)
- Deterministic clock, access policy and sales history collaborators
- Ledger, store and service instances bound to the test session
- Structured log capture

Environment Variables:
- COGS_TEST_DATABASE_URL: run against another database (e.g. PostgreSQL)
  instead of the per-test SQLite file.  The database must be empty.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO

import pytest

from cogs_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from cogs_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from cogs_kernel.domain.clock import DeterministicClock
from cogs_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from cogs_kernel.models.inventory import InventoryStockModel
from cogs_services.batch_ledger import BatchLedger
from cogs_services.cogs_entry_store import CogsEntryStore
from cogs_services.cogs_service import CogsService
from cogs_services.collaborators import MembershipAccessPolicy, StaticSalesHistory
from cogs_services.costing_resolver import CostingResolver
from cogs_services.inventory_health_service import InventoryHealthService

# Shared identities for all tests
TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"
TEST_ACCOUNT_ID = "acct-1"
OTHER_ACCOUNT_ID = "acct-2"
TEST_SKU = "SKU-1"
TEST_MARKETPLACE_ID = "amazon-us"

# 2024-06-15 12:00 UTC
TEST_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture cogs_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, cogs_service):
            cogs_service.create_cogs_entry(...)
            logs = captured_logs()
            assert any(r["message"] == "cogs_entry_saved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("cogs_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """
    Engine over a fresh database for one test.

    A file (not ``:memory:``) so that threads in concurrency tests share it
    through separate connections.
    """
    url = os.environ.get("COGS_TEST_DATABASE_URL") or f"sqlite:///{tmp_path / 'cogs_test.db'}"
    eng = init_engine_from_url(url)
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    if not url.startswith("sqlite"):
        drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine):
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def access_policy():
    return MembershipAccessPolicy({TEST_USER_ID: {TEST_ACCOUNT_ID}})


@pytest.fixture
def sales_history():
    return StaticSalesHistory()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def ledger(session, clock):
    return BatchLedger(session, clock)


@pytest.fixture
def store(session, clock):
    return CogsEntryStore(session, clock)


@pytest.fixture
def resolver(ledger, clock):
    return CostingResolver(ledger, clock=clock)


@pytest.fixture
def cogs_service(session, access_policy, clock):
    return CogsService(session, access_policy, clock=clock)


@pytest.fixture
def health_service(session, access_policy, sales_history, clock):
    return InventoryHealthService(session, access_policy, sales_history, clock=clock)


# =============================================================================
# Test data
# =============================================================================


@pytest.fixture
def two_batches(ledger, session, clock):
    """
    The reference pair of cost layers for SKU-1.

    b1: 50 units @ 32.50, received 15 days ago
    b2: 70 units @ 31.80, received 5 days ago
    """
    now = clock.now()
    b1 = ledger.add_batch(
        TEST_ACCOUNT_ID, TEST_SKU, 50, Decimal("32.50"), received_at=now - timedelta(days=15)
    )
    b2 = ledger.add_batch(
        TEST_ACCOUNT_ID, TEST_SKU, 70, Decimal("31.80"), received_at=now - timedelta(days=5)
    )
    session.commit()
    return b1, b2


@pytest.fixture
def stock_row(session, clock):
    """Factory for InventoryStock rows (written by marketplace sync in production)."""

    def _create(
        quantity_available,
        sku=TEST_SKU,
        marketplace_id=TEST_MARKETPLACE_ID,
        low_stock_threshold=0,
        account_id=TEST_ACCOUNT_ID,
    ):
        now = clock.now()
        row = InventoryStockModel(
            account_id=account_id,
            sku=sku,
            marketplace_id=marketplace_id,
            quantity_available=quantity_available,
            quantity_reserved=0,
            low_stock_threshold=low_stock_threshold,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        session.flush()
        return row

    return _create
