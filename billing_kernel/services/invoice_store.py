"""
InvoiceStateStore -- atomic conditional invoice status transitions.

Responsibility:
    Owns every write to the ``invoices`` and ``failed_billings`` tables.  The
    database row is the state machine: a status change is a single
    ``UPDATE invoices SET status = :new WHERE id = :id AND status = :expected``
    whose row count decides whether the caller won.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the PaymentAttemptCoordinator (forward edges), by the
    orchestrator's operator requeue, and by seeding/tests (create_*).

Invariants enforced:
    - Only edges of the invoice status graph are accepted by ``transition``.
      STARTED_PAYMENT -> PENDING exists only through ``force_requeue``.
    - Every transition is conditioned on the current status.  A mismatch
      raises StateConflictError and leaves the row untouched.
    - The FAILED_PAYMENT transition and its FailedBilling row commit in the
      same transaction, or neither does.
    - Each operation runs in its own short-lived session at SERIALIZABLE
      isolation; a serialization failure (SQLSTATE 40001) is reported as
      StateConflictError.

Failure modes:
    - StateConflictError: expected status did not match, or the database
      aborted the transaction with a serialization failure.
    - InvalidTransitionError: requested edge is not in the status graph.
    - InvoiceNotFoundError / CustomerNotFoundError: unknown identity.
    - InvoiceCurrencyMismatchError: invoice currency != customer currency.

Audit relevance:
    The store does not write audit events itself; the coordinator and the
    orchestrator append them after each successful transition.  Every
    transition and conflict is logged with invoice_id and both statuses.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.invoice import (
    REQUEUE_SOURCES,
    Customer,
    FailureReason,
    Invoice,
    InvoiceStatus,
    is_allowed_transition,
)
from billing_kernel.domain.values import Currency, Money
from billing_kernel.exceptions import (
    CustomerNotFoundError,
    InvalidTransitionError,
    InvoiceCurrencyMismatchError,
    InvoiceNotFoundError,
    StateConflictError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.failed_billing import FailedBillingModel
from billing_kernel.models.invoice import CustomerModel, InvoiceModel

logger = get_logger("services.invoice_store")

SERIALIZATION_FAILURE = "40001"


def _is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == SERIALIZATION_FAILURE


@dataclass(frozen=True)
class RequeueResult:
    """Outcome of an operator requeue."""

    invoice: Invoice
    previous_status: InvoiceStatus

    @property
    def requeued(self) -> bool:
        """False when the invoice was already PENDING and nothing changed."""
        return self.previous_status != InvoiceStatus.PENDING


class InvoiceStateStore:
    """
    Conditional-update state store for invoices.

    Contract:
        ``transition(invoice_id, expected, new)`` returns the updated
        Invoice or raises StateConflictError.  There is no partial mutation:
        either the status changed from ``expected`` to ``new`` or nothing
        did.

    Non-goals:
        - Does NOT talk to the payment gateway.
        - Does NOT write audit events.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _serializable(self) -> Iterator[Session]:
        """Session in a SERIALIZABLE transaction; commits on clean exit."""
        with self._session_factory() as session:
            with session.begin():
                session.connection(
                    execution_options={"isolation_level": "SERIALIZABLE"}
                )
                yield session

    def _cas(
        self,
        invoice_id: int,
        expected: InvoiceStatus,
        new: InvoiceStatus,
        failure: tuple[FailureReason, str, datetime] | None = None,
    ) -> Invoice:
        try:
            with self._serializable() as session:
                result = session.execute(
                    update(InvoiceModel)
                    .where(
                        InvoiceModel.id == invoice_id,
                        InvoiceModel.status == expected.value,
                    )
                    .values(status=new.value)
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount != 1:
                    actual = session.execute(
                        select(InvoiceModel.status).where(InvoiceModel.id == invoice_id)
                    ).scalar_one_or_none()
                    if actual is None:
                        raise InvoiceNotFoundError(invoice_id)
                    logger.info(
                        "invoice_transition_conflict",
                        extra={
                            "invoice_id": invoice_id,
                            "expected_status": expected.value,
                            "target_status": new.value,
                            "actual_status": actual,
                        },
                    )
                    raise StateConflictError(
                        invoice_id, expected.value, new.value, actual
                    )

                if failure is not None:
                    reason, message, occurred_at = failure
                    session.add(
                        FailedBillingModel(
                            invoice_id=invoice_id,
                            reason=reason.value,
                            message=message,
                            timestamp=occurred_at,
                        )
                    )

                invoice = session.execute(
                    select(InvoiceModel).where(InvoiceModel.id == invoice_id)
                ).scalar_one().to_dto()
        except DBAPIError as exc:
            if not _is_serialization_failure(exc):
                raise
            logger.info(
                "invoice_transition_serialization_failure",
                extra={
                    "invoice_id": invoice_id,
                    "expected_status": expected.value,
                    "target_status": new.value,
                },
            )
            raise StateConflictError(invoice_id, expected.value, new.value) from exc

        logger.info(
            "invoice_transitioned",
            extra={
                "invoice_id": invoice_id,
                "from_status": expected.value,
                "to_status": new.value,
            },
        )
        return invoice

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        invoice_id: int,
        expected_status: InvoiceStatus | str,
        new_status: InvoiceStatus | str,
    ) -> Invoice:
        """
        Atomically move an invoice from ``expected_status`` to ``new_status``.

        Raises:
            InvalidTransitionError: The edge is not in the status graph.
                Checked before the database is touched.
            StateConflictError: Current status != expected_status.
            InvoiceNotFoundError: No invoice with this id.
        """
        expected = InvoiceStatus.parse(expected_status)
        new = InvoiceStatus.parse(new_status)
        if not is_allowed_transition(expected, new):
            raise InvalidTransitionError(invoice_id, expected.value, new.value)
        return self._cas(invoice_id, expected, new)

    def fail_payment(
        self,
        invoice_id: int,
        reason: FailureReason,
        message: str,
        occurred_at: datetime | None = None,
    ) -> Invoice:
        """
        STARTED_PAYMENT -> FAILED_PAYMENT plus one FailedBilling row, atomically.

        Raises:
            StateConflictError: Invoice is no longer STARTED_PAYMENT; no
                FailedBilling row is written.
        """
        return self._cas(
            invoice_id,
            InvoiceStatus.STARTED_PAYMENT,
            InvoiceStatus.FAILED_PAYMENT,
            failure=(reason, message, occurred_at or self._clock.now()),
        )

    def force_requeue(self, invoice_id: int) -> RequeueResult:
        """
        Operator recovery: put a failed or stranded invoice back to PENDING.

        The status observed just before the update is used as the CAS
        expectation, so a concurrent change still surfaces as a conflict.

        Raises:
            InvoiceNotFoundError: No invoice with this id.
            InvalidTransitionError: Invoice is PAID.
            StateConflictError: Status changed between read and update.
        """
        current = self._current_status(invoice_id)

        if current == InvoiceStatus.PENDING:
            logger.info(
                "invoice_requeue_noop",
                extra={"invoice_id": invoice_id},
            )
            return RequeueResult(
                invoice=self._load(invoice_id),
                previous_status=current,
            )

        if current not in REQUEUE_SOURCES:
            raise InvalidTransitionError(
                invoice_id, current.value, InvoiceStatus.PENDING.value
            )

        invoice = self._cas(invoice_id, current, InvoiceStatus.PENDING)
        logger.warning(
            "invoice_force_requeued",
            extra={"invoice_id": invoice_id, "previous_status": current.value},
        )
        return RequeueResult(invoice=invoice, previous_status=current)

    # ------------------------------------------------------------------
    # Invoicing side
    # ------------------------------------------------------------------

    def create_customer(self, currency: Currency | str) -> Customer:
        with self._session_factory() as session, session.begin():
            customer = CustomerModel(currency=Currency.parse(currency).value)
            session.add(customer)
            session.flush()
            dto = customer.to_dto()

        logger.info(
            "customer_created",
            extra={"customer_id": dto.id, "currency": dto.currency.value},
        )
        return dto

    def create_invoice(
        self,
        customer_id: int,
        amount: Money,
        status: InvoiceStatus = InvoiceStatus.PENDING,
    ) -> Invoice:
        """
        Create an invoice for a customer, in the customer's currency.

        Raises:
            CustomerNotFoundError: Unknown customer.
            InvoiceCurrencyMismatchError: ``amount`` is not in the customer's
                currency.
        """
        with self._session_factory() as session, session.begin():
            customer = session.get(CustomerModel, customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)
            if customer.currency != amount.currency.value:
                raise InvoiceCurrencyMismatchError(
                    customer_id, customer.currency, amount.currency.value
                )

            invoice = InvoiceModel(
                customer_id=customer_id,
                amount_value=amount.amount,
                currency=amount.currency.value,
                status=InvoiceStatus.parse(status).value,
            )
            session.add(invoice)
            session.flush()
            dto = Invoice(
                id=invoice.id,
                customer_id=customer_id,
                amount=amount,
                status=InvoiceStatus(invoice.status),
            )

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": dto.id,
                "customer_id": customer_id,
                "amount": str(amount.amount),
                "currency": amount.currency.value,
                "status": dto.status.value,
            },
        )
        return dto

    # ------------------------------------------------------------------
    # Internal reads
    # ------------------------------------------------------------------

    def _current_status(self, invoice_id: int) -> InvoiceStatus:
        with self._session_factory() as session:
            status = session.execute(
                select(InvoiceModel.status).where(InvoiceModel.id == invoice_id)
            ).scalar_one_or_none()
        if status is None:
            raise InvoiceNotFoundError(invoice_id)
        return InvoiceStatus(status)

    def _load(self, invoice_id: int) -> Invoice:
        with self._session_factory() as session:
            model = session.get(InvoiceModel, invoice_id)
            if model is None:
                raise InvoiceNotFoundError(invoice_id)
            return model.to_dto()
