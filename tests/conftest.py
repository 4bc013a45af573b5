"""
Pytest fixtures for the billing test suite.

Provides:
- A file-backed SQLite database per test (threads share one file, so the
  concurrency tests exercise real locking)
- Session factory, state store and selectors bound to that database
- Deterministic clock and scripted payment gateways
- Structured log capture

Environment Variables:
- BILLING_TEST_POSTGRES_URL: PostgreSQL URL for tests marked ``postgres``.
  Those tests are skipped when it is not set.
"""

import json
import logging
import os
from datetime import datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from billing_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.invoice import Invoice, InvoiceStatus
from billing_kernel.domain.values import Currency, Money
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.pending_cursor import PendingInvoiceCursor
from billing_kernel.services.invoice_store import InvoiceStateStore

from billing_batch.services.audit_log import DBBackedAuditLog
from billing_batch.services.coordinator import PaymentAttemptCoordinator


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Naive: SQLite does not store offsets
TEST_NOW = datetime(2024, 3, 15, 10, 0, 0)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as running real threads against one database"
    )


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
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.attempt(invoice)
            logs = captured_logs()
            assert any(r["message"] == "payment_attempt_succeeded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'billing.db'}"


@pytest.fixture
def engine(database_url):
    """Fresh schema in a per-test SQLite file, with append-only listeners on."""
    eng = init_engine_from_url(database_url)
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def postgres_engine():
    """PostgreSQL engine for tests marked ``postgres``."""
    url = os.environ.get("BILLING_TEST_POSTGRES_URL")
    if not url:
        pytest.skip("BILLING_TEST_POSTGRES_URL not set")

    from billing_kernel.db.engine import drop_tables

    eng = init_engine_from_url(url)
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def store(session_factory, deterministic_clock):
    return InvoiceStateStore(session_factory, clock=deterministic_clock)


class SessionPerQuerySelector:
    """Runs each InvoiceSelector query in its own short session.

    Tests interleave reads with writes from other sessions; a fresh session
    per call keeps the identity map from serving stale rows.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def __getattr__(self, name):
        def query(*args, **kwargs):
            with self._session_factory() as session:
                return getattr(InvoiceSelector(session), name)(*args, **kwargs)
        return query


@pytest.fixture
def selector(session_factory):
    return SessionPerQuerySelector(session_factory)


@pytest.fixture
def cursor(session_factory):
    return PendingInvoiceCursor(session_factory)


@pytest.fixture
def audit_log(session_factory, deterministic_clock):
    return DBBackedAuditLog(
        session_factory, clock=deterministic_clock, actor_id=TEST_ACTOR_ID,
    )


# =============================================================================
# Data helpers
# =============================================================================


@pytest.fixture
def customer(store):
    return store.create_customer(Currency.EUR)


@pytest.fixture
def make_invoice(store, customer):
    """Factory: ``make_invoice(amount="10.00", status=PENDING)``."""

    def _make(
        amount: str | Decimal = "10.00",
        status: InvoiceStatus = InvoiceStatus.PENDING,
        customer_id: int | None = None,
        currency: Currency = Currency.EUR,
    ) -> Invoice:
        return store.create_invoice(
            customer_id if customer_id is not None else customer.id,
            Money.of(amount, currency),
            status=status,
        )

    return _make


# =============================================================================
# Gateways
# =============================================================================


class ScriptedGateway:
    """PaymentGateway that answers from a script.

    ``result`` is returned for every charge, or raised when it is an
    exception.  ``per_invoice`` overrides it for specific invoice ids.
    """

    def __init__(self, result: bool | BaseException = True, per_invoice=None):
        self.result = result
        self.per_invoice = dict(per_invoice or {})
        self.charged: list[int] = []

    def charge(self, invoice: Invoice) -> bool:
        self.charged.append(invoice.id)
        result = self.per_invoice.get(invoice.id, self.result)
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def gateway():
    return ScriptedGateway(True)


@pytest.fixture
def coordinator(store, gateway, audit_log, deterministic_clock):
    return PaymentAttemptCoordinator(
        store=store,
        gateway=gateway,
        audit_log=audit_log,
        clock=deterministic_clock,
    )
