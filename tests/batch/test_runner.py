"""
Tests for billing_batch.services.runner -- one end-to-end billing pass.
"""

import pytest

from billing_kernel.domain.invoice import InvoiceStatus
from billing_kernel.exceptions import InvalidBatchSizeError, NetworkError

from billing_batch.domain.types import AttemptResult, AttemptStatus, PassTrigger
from billing_batch.services.coordinator import PaymentAttemptCoordinator
from billing_batch.services.runner import BillingRunner

from conftest import ScriptedGateway


@pytest.fixture
def runner(cursor, coordinator, deterministic_clock):
    return BillingRunner(cursor, coordinator, clock=deterministic_clock)


class TestRunPass:

    def test_charges_pending_in_identity_order(self, runner, gateway, selector, make_invoice):
        pending = [make_invoice().id for _ in range(5)]
        make_invoice(status=InvoiceStatus.PAID)

        summary = runner.run_pass(batch_size=2)

        assert gateway.charged == pending
        assert summary.succeeded == 5
        assert summary.total == 5
        assert summary.pages_fetched == 3
        assert selector.count_by_status()[InvoiceStatus.PAID] == 6

    def test_mixed_outcomes_counted(
        self, store, cursor, audit_log, deterministic_clock, selector, make_invoice,
    ):
        ok, declined, timeout = make_invoice(), make_invoice(), make_invoice()
        gateway = ScriptedGateway(True, per_invoice={
            declined.id: False,
            timeout.id: NetworkError("timeout"),
        })
        runner = BillingRunner(
            cursor,
            PaymentAttemptCoordinator(store, gateway, audit_log, deterministic_clock),
            clock=deterministic_clock,
        )

        summary = runner.run_pass(batch_size=10)

        assert (summary.succeeded, summary.failed, summary.skipped, summary.errored) == (1, 2, 0, 0)
        assert selector.get_invoice(ok.id).status == InvoiceStatus.PAID
        assert selector.get_invoice(declined.id).status == InvoiceStatus.FAILED_PAYMENT
        assert selector.get_invoice(timeout.id).status == InvoiceStatus.FAILED_PAYMENT

    def test_unexpected_exception_isolated(self, cursor, deterministic_clock, make_invoice, captured_logs):
        invoices = [make_invoice() for _ in range(3)]
        attempted = []

        class ExplodingCoordinator:
            def execute(self, invoice):
                attempted.append(invoice.id)
                if invoice.id == invoices[1].id:
                    raise RuntimeError("audit store down")
                return AttemptResult(invoice.id, AttemptStatus.SUCCEEDED)

        runner = BillingRunner(cursor, ExplodingCoordinator(), clock=deterministic_clock)

        summary = runner.run_pass(batch_size=2)

        assert attempted == [i.id for i in invoices]
        assert summary.errored == 1
        assert summary.succeeded == 2
        errored = [r for r in captured_logs() if r["message"] == "payment_attempt_errored"]
        assert errored[0]["invoice_id"] == invoices[1].id
        assert "traceback" in errored[0]

    def test_summary_metadata(self, runner, make_invoice, deterministic_clock):
        make_invoice()

        summary = runner.run_pass(trigger=PassTrigger.MANUAL)

        assert summary.trigger == PassTrigger.MANUAL
        assert summary.started_at == deterministic_clock.now()
        assert summary.duration_ms >= 0

    def test_empty_pass(self, runner, engine, captured_logs):
        summary = runner.run_pass(batch_size=5)

        assert summary.total == 0
        completed = [r for r in captured_logs() if r["message"] == "billing_pass_completed"]
        assert completed[0]["pages"] == summary.pages_fetched == 1
        assert completed[0]["pass_id"] == str(summary.pass_id)
        assert completed[0]["trigger"] == "scheduled"

    def test_second_pass_finds_nothing_new(self, runner, gateway, make_invoice):
        make_invoice()
        runner.run_pass()

        summary = runner.run_pass()

        assert summary.total == 0
        assert len(gateway.charged) == 1

    def test_invalid_batch_size(self, runner, engine):
        with pytest.raises(InvalidBatchSizeError):
            runner.run_pass(batch_size=0)

    def test_audit_chain_valid_after_pass(
        self, store, cursor, audit_log, deterministic_clock, make_invoice,
    ):
        invoices = [make_invoice() for _ in range(4)]
        gateway = ScriptedGateway(True, per_invoice={invoices[2].id: False})
        runner = BillingRunner(
            cursor,
            PaymentAttemptCoordinator(store, gateway, audit_log, deterministic_clock),
            clock=deterministic_clock,
        )

        runner.run_pass(batch_size=3)

        assert audit_log.validate_chain()
