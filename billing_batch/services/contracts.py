"""
External capabilities consumed by the payment attempt coordinator.

Contract:
    ``PaymentGateway`` charges an invoice; ``AuditLog`` records payment
    milestones.  Both are structural Protocols so tests and alternative
    back ends need no inheritance.

Architecture: billing_batch/services.  Imports only kernel DTOs and batch
    domain types.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from billing_kernel.domain.invoice import Invoice, InvoiceStatus

from billing_batch.domain.types import ChargeOutcome


@runtime_checkable
class PaymentGateway(Protocol):
    """Charges invoices against the customer's account.

    ``charge`` returns True when the customer was charged and False when the
    charge was declined (insufficient balance).  It may raise
    ``NetworkError``, ``UnknownCustomerError`` / ``CustomerNotFoundError``,
    ``CurrencyMismatchError`` or any other exception.  It is never called
    while the caller holds an open database transaction.
    """

    def charge(self, invoice: Invoice) -> bool: ...


@runtime_checkable
class AuditLog(Protocol):
    """Append-only record of payment milestones."""

    def payment_started(self, invoice: Invoice) -> None: ...

    def payment_completed(self, invoice: Invoice) -> None: ...

    def payment_failed(self, invoice: Invoice, outcome: ChargeOutcome) -> None: ...

    def invoice_requeued(self, invoice: Invoice, previous_status: InvoiceStatus) -> None: ...
