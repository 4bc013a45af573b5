"""
Property-based tests for the billing invariants that hold for any input.

Boundaries covered here:
- Calendar months: add_months / monthly_from over arbitrary datetimes
- Conditional transition: every (actual status, allowed edge) mismatch
- Coordinator: every ChargeOutcomeKind the gateway can produce
- Pending cursor: batch size against table size

DB-backed properties reuse the per-test SQLite engine, so each example
creates its own invoices (or clears the table first).
"""

import calendar
from datetime import datetime, timedelta

from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st
from sqlalchemy import delete

from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.invoice import ALLOWED_TRANSITIONS, InvoiceStatus
from billing_kernel.exceptions import (
    CurrencyMismatchError,
    NetworkError,
    StateConflictError,
    UnknownCustomerError,
)
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.invoice import InvoiceModel

from billing_batch.domain.schedule import add_months, monthly_from
from billing_batch.domain.types import AttemptStatus, ChargeOutcome, ChargeOutcomeKind
from billing_batch.services.coordinator import PaymentAttemptCoordinator

from conftest import ScriptedGateway

DB_SETTINGS = settings(
    max_examples=30,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

moments = st.datetimes(min_value=datetime(1900, 1, 1), max_value=datetime(2200, 12, 31))

# What the gateway does to produce each outcome kind
GATEWAY_RESULTS = {
    ChargeOutcomeKind.SUCCESS: True,
    ChargeOutcomeKind.DECLINED: False,
    ChargeOutcomeKind.NETWORK_FAILURE: NetworkError("read timeout"),
    ChargeOutcomeKind.UNKNOWN_CUSTOMER: UnknownCustomerError(7),
    ChargeOutcomeKind.CURRENCY_MISMATCH: CurrencyMismatchError(1, 7),
    ChargeOutcomeKind.UNKNOWN_FAILURE: RuntimeError("card processor exploded"),
}


# =============================================================================
# Recurrence
# =============================================================================


class TestCalendarMonths:

    @given(moment=moments, months=st.integers(min_value=0, max_value=14))
    def test_add_months_moves_month_and_clamps_day(self, moment, months):
        result = add_months(moment, months)

        month_index = moment.month - 1 + months
        assert (result.year, result.month) == (moment.year + month_index // 12, month_index % 12 + 1)
        assert result.day == min(moment.day, calendar.monthrange(result.year, result.month)[1])
        assert result.time() == moment.time()

    @given(moment=moments)
    def test_add_months_zero_is_identity(self, moment):
        assert add_months(moment, 0) == moment

    @given(now=moments, n=st.integers(min_value=1, max_value=14))
    def test_monthly_nth_is_first_plus_calendar_months(self, now, n):
        instants = monthly_from(DeterministicClock(now)).take(n)

        first = instants[0]
        assert first > now
        assert first - now <= timedelta(days=32)
        assert (first.day, first.hour, first.minute, first.second, first.microsecond) == (1, 0, 0, 0, 0)
        assert instants[-1] == add_months(first, n - 1)
        assert all(a < b for a, b in zip(instants, instants[1:]))
        assert all(i.day == 1 for i in instants)


# =============================================================================
# Conditional transition
# =============================================================================


class TestTransitionMismatch:

    @DB_SETTINGS
    @given(
        actual=st.sampled_from(list(InvoiceStatus)),
        edge=st.sampled_from(sorted(ALLOWED_TRANSITIONS)),
    )
    def test_mismatched_expected_status_conflicts_and_leaves_row(
        self, store, selector, make_invoice, actual, edge,
    ):
        expected, target = edge
        assume(expected != actual)
        invoice = make_invoice(status=actual)
        before = selector.get_invoice(invoice.id)

        try:
            store.transition(invoice.id, expected, target)
        except StateConflictError as exc:
            assert exc.actual_status == actual.value
        else:
            raise AssertionError(f"{expected.value} -> {target.value} applied to {actual.value}")

        assert selector.get_invoice(invoice.id) == before


# =============================================================================
# Coordinator outcomes
# =============================================================================


class TestCoordinatorOutcomes:

    @DB_SETTINGS
    @given(kind=st.sampled_from(list(ChargeOutcomeKind)))
    def test_one_start_one_terminal_event_per_attempt(
        self, store, audit_log, deterministic_clock, selector, make_invoice, kind,
    ):
        coordinator = PaymentAttemptCoordinator(
            store=store,
            gateway=ScriptedGateway(GATEWAY_RESULTS[kind]),
            audit_log=audit_log,
            clock=deterministic_clock,
        )
        invoice = make_invoice()

        result = coordinator.execute(invoice)

        actions = audit_log.trace(invoice.id).actions
        history = selector.failed_billing_history(invoice.id)
        reason = ChargeOutcome(kind).reason
        if kind == ChargeOutcomeKind.SUCCESS:
            assert result.status == AttemptStatus.SUCCEEDED
            assert actions == (AuditAction.PAYMENT_STARTED, AuditAction.PAYMENT_COMPLETED)
            assert history == []
            assert selector.get_invoice(invoice.id).status == InvoiceStatus.PAID
        else:
            assert result.status == AttemptStatus.FAILED
            assert actions == (AuditAction.PAYMENT_STARTED, AuditAction.PAYMENT_FAILED)
            assert [h.reason for h in history] == [reason]
            assert selector.get_invoice(invoice.id).status == InvoiceStatus.FAILED_PAYMENT


# =============================================================================
# Pending cursor
# =============================================================================


class TestCursorPaging:

    @DB_SETTINGS
    @given(
        table_size=st.integers(min_value=0, max_value=25),
        batch_size=st.integers(min_value=1, max_value=10),
    )
    def test_pages_and_order(self, session_factory, cursor, make_invoice, table_size, batch_size):
        with session_factory() as session:
            session.execute(delete(InvoiceModel))
            session.commit()
        created = [make_invoice().id for _ in range(table_size)]

        scan = cursor.scan(batch_size)
        seen = [invoice.id for invoice in scan]

        assert seen == created
        assert all(a < b for a, b in zip(seen, seen[1:]))
        assert scan.pages_fetched == table_size // batch_size + 1
