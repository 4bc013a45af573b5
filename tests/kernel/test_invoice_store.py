"""
Tests for billing_kernel.services.invoice_store.

Validates the conditional status transition: the happy path along every
edge of the status graph, conflicts that leave the row untouched, edge
validation before the database is touched, the atomic failure record, and
the operator requeue.
"""

from datetime import datetime

import pytest

from billing_kernel.domain.invoice import FailureReason, InvoiceStatus
from billing_kernel.domain.values import Currency, Money
from billing_kernel.exceptions import (
    CustomerNotFoundError,
    InvalidTransitionError,
    InvoiceCurrencyMismatchError,
    InvoiceNotFoundError,
    StateConflictError,
)


class TestTransition:

    def test_pending_to_started(self, store, selector, make_invoice):
        invoice = make_invoice()

        updated = store.transition(
            invoice.id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT,
        )

        assert updated.status == InvoiceStatus.STARTED_PAYMENT
        assert selector.get_invoice(invoice.id).status == InvoiceStatus.STARTED_PAYMENT

    def test_started_to_paid(self, store, selector, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.STARTED_PAYMENT)

        updated = store.transition(invoice.id, "STARTED_PAYMENT", "PAID")

        assert updated.status == InvoiceStatus.PAID
        assert updated.amount == invoice.amount

    def test_failed_to_pending(self, store, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.FAILED_PAYMENT)

        updated = store.transition(
            invoice.id, InvoiceStatus.FAILED_PAYMENT, InvoiceStatus.PENDING,
        )

        assert updated.status == InvoiceStatus.PENDING

    def test_mismatched_expectation_raises_and_leaves_row(self, store, selector, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.PAID)

        with pytest.raises(StateConflictError) as exc_info:
            store.transition(
                invoice.id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT,
            )

        assert exc_info.value.actual_status == InvoiceStatus.PAID.value
        assert exc_info.value.code == "STATE_CONFLICT"
        assert selector.get_invoice(invoice.id).status == InvoiceStatus.PAID

    def test_second_identical_transition_conflicts(self, store, make_invoice):
        invoice = make_invoice()
        store.transition(invoice.id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT)

        with pytest.raises(StateConflictError):
            store.transition(invoice.id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT)

    @pytest.mark.parametrize("from_status,to_status", [
        (InvoiceStatus.PENDING, InvoiceStatus.PAID),
        (InvoiceStatus.PAID, InvoiceStatus.PENDING),
        (InvoiceStatus.FAILED_PAYMENT, InvoiceStatus.PAID),
        (InvoiceStatus.STARTED_PAYMENT, InvoiceStatus.PENDING),
    ])
    def test_edges_outside_graph_rejected(self, store, selector, make_invoice, from_status, to_status):
        invoice = make_invoice(status=from_status)

        with pytest.raises(InvalidTransitionError):
            store.transition(invoice.id, from_status, to_status)

        assert selector.get_invoice(invoice.id).status == from_status

    def test_unknown_invoice(self, store, engine):
        with pytest.raises(InvoiceNotFoundError):
            store.transition(9999, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT)

    def test_conflict_is_logged(self, store, make_invoice, captured_logs):
        invoice = make_invoice(status=InvoiceStatus.PAID)

        with pytest.raises(StateConflictError):
            store.transition(invoice.id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT)

        conflicts = [r for r in captured_logs() if r["message"] == "invoice_transition_conflict"]
        assert len(conflicts) == 1
        assert conflicts[0]["actual_status"] == "PAID"


class TestFailPayment:

    def test_records_failure_with_transition(self, store, selector, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.STARTED_PAYMENT)

        updated = store.fail_payment(
            invoice.id, FailureReason.NETWORK_ERROR, "timeout",
        )

        assert updated.status == InvoiceStatus.FAILED_PAYMENT
        history = selector.failed_billing_history(invoice.id)
        assert len(history) == 1
        assert history[0].reason == FailureReason.NETWORK_ERROR
        assert history[0].message == "timeout"
        assert history[0].timestamp == datetime(2024, 3, 15, 10, 0, 0)

    def test_conflict_writes_no_record(self, store, selector, make_invoice):
        invoice = make_invoice()

        with pytest.raises(StateConflictError):
            store.fail_payment(invoice.id, FailureReason.UNKNOWN_ERROR, "boom")

        assert selector.failed_billing_history(invoice.id) == []
        assert selector.get_invoice(invoice.id).status == InvoiceStatus.PENDING

    def test_history_ordered_by_timestamp(self, store, selector, make_invoice, deterministic_clock):
        invoice = make_invoice(status=InvoiceStatus.STARTED_PAYMENT)
        store.fail_payment(invoice.id, FailureReason.NETWORK_ERROR, "first")
        store.force_requeue(invoice.id)
        store.transition(invoice.id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT)
        deterministic_clock.advance(60)
        store.fail_payment(invoice.id, FailureReason.INSUFFICIENT_BALANCE, "second")

        history = selector.failed_billing_history(invoice.id)

        assert [h.message for h in history] == ["first", "second"]
        assert history[0].timestamp < history[1].timestamp


class TestForceRequeue:

    @pytest.mark.parametrize("status", [
        InvoiceStatus.FAILED_PAYMENT,
        InvoiceStatus.STARTED_PAYMENT,
    ])
    def test_requeues_to_pending(self, store, make_invoice, status):
        invoice = make_invoice(status=status)

        result = store.force_requeue(invoice.id)

        assert result.requeued
        assert result.previous_status == status
        assert result.invoice.status == InvoiceStatus.PENDING

    def test_pending_is_noop(self, store, make_invoice, captured_logs):
        invoice = make_invoice()

        result = store.force_requeue(invoice.id)

        assert not result.requeued
        assert result.invoice.status == InvoiceStatus.PENDING
        assert any(r["message"] == "invoice_requeue_noop" for r in captured_logs())

    def test_paid_cannot_be_requeued(self, store, selector, make_invoice):
        invoice = make_invoice(status=InvoiceStatus.PAID)

        with pytest.raises(InvalidTransitionError):
            store.force_requeue(invoice.id)

        assert selector.get_invoice(invoice.id).status == InvoiceStatus.PAID

    def test_unknown_invoice(self, store, engine):
        with pytest.raises(InvoiceNotFoundError):
            store.force_requeue(12345)


class TestCreateInvoice:

    def test_identities_increase(self, make_invoice):
        ids = [make_invoice().id for _ in range(3)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    def test_amount_round_trips_exactly(self, selector, make_invoice):
        invoice = make_invoice(amount="1234.56")

        loaded = selector.get_invoice(invoice.id)

        assert loaded.amount == Money.of("1234.56", Currency.EUR)

    def test_currency_must_match_customer(self, store, customer):
        with pytest.raises(InvoiceCurrencyMismatchError):
            store.create_invoice(customer.id, Money.of("5", Currency.USD))

    def test_unknown_customer(self, store, engine):
        with pytest.raises(CustomerNotFoundError):
            store.create_invoice(404, Money.of("5", Currency.EUR))
