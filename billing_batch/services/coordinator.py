"""
PaymentAttemptCoordinator -- one invoice's trip through the payment lifecycle.

Contract:
    ``execute(invoice)`` moves a PENDING invoice to STARTED_PAYMENT, charges
    it, and records the outcome as PAID or FAILED_PAYMENT.  ``attempt()``
    returns True only on a confirmed successful charge.

Architecture: billing_batch/services.  Composes the kernel's
    InvoiceStateStore with a PaymentGateway and an AuditLog.

Invariants enforced:
    - The PENDING -> STARTED_PAYMENT transition is the only lock: whoever
      wins it owns the attempt; the loser returns SKIPPED without touching
      the gateway or the audit log.
    - Exactly one ``payment_started`` and one terminal audit event per
      owned attempt.
    - The gateway is called between transactions, never inside one.
    - Gateway failures of any kind become FAILED_PAYMENT with a reason;
      they are never propagated.

Failure modes:
    - A crash between STARTED_PAYMENT and the terminal transition strands the
      invoice in STARTED_PAYMENT; recovery is the operator requeue.
    - StateConflictError on the terminal transition (operator requeued the
      invoice mid-flight) is logged as ``payment_outcome_unrecorded`` and
      re-raised: the charge outcome could not be stored.
"""

from __future__ import annotations

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.invoice import Invoice, InvoiceStatus
from billing_kernel.exceptions import StateConflictError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.invoice_store import InvoiceStateStore

from billing_batch.domain.types import AttemptResult, AttemptStatus, ChargeOutcome
from billing_batch.services.contracts import AuditLog, PaymentGateway

logger = get_logger("batch.coordinator")


class PaymentAttemptCoordinator:
    """Runs single payment attempts.

    Non-goals:
        - Does NOT retry.  Failed invoices wait for an operator requeue.
        - Does NOT pass idempotency keys to the gateway.
    """

    def __init__(
        self,
        store: InvoiceStateStore,
        gateway: PaymentGateway,
        audit_log: AuditLog,
        clock: Clock | None = None,
    ):
        self._store = store
        self._gateway = gateway
        self._audit_log = audit_log
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def attempt(self, invoice: Invoice) -> bool:
        """True only when the invoice was charged and is now PAID."""
        return self.execute(invoice).succeeded

    def execute(self, invoice: Invoice) -> AttemptResult:
        with LogContext.bind(invoice_id=invoice.id):
            try:
                started = self._store.transition(
                    invoice.id,
                    InvoiceStatus.PENDING,
                    InvoiceStatus.STARTED_PAYMENT,
                )
            except StateConflictError as exc:
                logger.info(
                    "payment_attempt_skipped",
                    extra={"actual_status": exc.actual_status},
                )
                return AttemptResult(invoice_id=invoice.id, status=AttemptStatus.SKIPPED)

            self._audit_log.payment_started(started)
            logger.info(
                "payment_attempt_started",
                extra={
                    "customer_id": started.customer_id,
                    "amount": str(started.amount.amount),
                    "currency": started.currency.value,
                },
            )

            outcome = self._charge(started)

            try:
                return self._record(started, outcome)
            except StateConflictError as exc:
                logger.error(
                    "payment_outcome_unrecorded",
                    extra={
                        "outcome": outcome.kind.value,
                        "outcome_message": outcome.message,
                        "actual_status": exc.actual_status,
                    },
                )
                raise

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _charge(self, invoice: Invoice) -> ChargeOutcome:
        """Call the gateway and classify the result.  Never raises."""
        try:
            charged = self._gateway.charge(invoice)
        except Exception as exc:
            outcome = ChargeOutcome.from_exception(exc)
            logger.warning(
                "payment_gateway_error",
                extra={
                    "outcome": outcome.kind.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            return outcome

        return ChargeOutcome.success() if charged else ChargeOutcome.declined()

    def _record(self, invoice: Invoice, outcome: ChargeOutcome) -> AttemptResult:
        if outcome.succeeded:
            paid = self._store.transition(
                invoice.id,
                InvoiceStatus.STARTED_PAYMENT,
                InvoiceStatus.PAID,
            )
            self._audit_log.payment_completed(paid)
            logger.info("payment_attempt_succeeded")
            return AttemptResult(
                invoice_id=invoice.id,
                status=AttemptStatus.SUCCEEDED,
                outcome=outcome,
            )

        failed = self._store.fail_payment(
            invoice.id,
            reason=outcome.reason,
            message=outcome.message,
            occurred_at=self._clock.now(),
        )
        self._audit_log.payment_failed(failed, outcome)
        logger.info(
            "payment_attempt_failed",
            extra={"reason": outcome.reason.value, "outcome_message": outcome.message},
        )
        return AttemptResult(
            invoice_id=invoice.id,
            status=AttemptStatus.FAILED,
            outcome=outcome,
        )
