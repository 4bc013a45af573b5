"""
Invoice -- Billing domain records and the invoice status graph.

Responsibility:
    Defines the invoice lifecycle (InvoiceStatus and its allowed edges), the
    categorical failure reasons, and the immutable DTOs that cross the
    boundary between the persistence layer and the billing batch.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ORM models convert to
    these DTOs via ``to_dto()``; nothing outside billing_kernel.models sees
    an ORM object.

Invariants enforced:
    - Status transitions form a restricted graph:
      PENDING -> STARTED_PAYMENT -> {PAID | FAILED_PAYMENT}, and
      FAILED_PAYMENT -> PENDING as the only operator-initiated reverse edge.
    - A STARTED_PAYMENT -> PENDING move is NOT a graph edge; it exists only as
      the operator recovery path for a stranded attempt (see
      ``REQUEUE_SOURCES``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from billing_kernel.domain.values import Currency, Money


class InvoiceStatus(str, Enum):
    """Lifecycle status of an invoice."""

    PENDING = "PENDING"
    STARTED_PAYMENT = "STARTED_PAYMENT"
    PAID = "PAID"
    FAILED_PAYMENT = "FAILED_PAYMENT"

    @classmethod
    def parse(cls, value: "str | InvoiceStatus") -> "InvoiceStatus":
        if isinstance(value, InvoiceStatus):
            return value
        try:
            return cls(value.upper().strip())
        except ValueError:
            raise ValueError(f"Unknown invoice status: {value}") from None


ALLOWED_TRANSITIONS: frozenset[tuple[InvoiceStatus, InvoiceStatus]] = frozenset({
    (InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT),
    (InvoiceStatus.STARTED_PAYMENT, InvoiceStatus.PAID),
    (InvoiceStatus.STARTED_PAYMENT, InvoiceStatus.FAILED_PAYMENT),
    (InvoiceStatus.FAILED_PAYMENT, InvoiceStatus.PENDING),
})

# Statuses an operator may force back to PENDING.
REQUEUE_SOURCES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.FAILED_PAYMENT,
    InvoiceStatus.STARTED_PAYMENT,
})


def is_allowed_transition(from_status: InvoiceStatus, to_status: InvoiceStatus) -> bool:
    """True when ``from_status -> to_status`` is an edge of the status graph."""
    return (from_status, to_status) in ALLOWED_TRANSITIONS


class FailureReason(str, Enum):
    """Categorical reason stored on a FailedBilling record."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    NETWORK_ERROR = "network_error"
    UNKNOWN_CUSTOMER = "unknown_customer"
    CURRENCY_MISMATCH = "currency_mismatch"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class Customer:
    id: int
    currency: Currency


@dataclass(frozen=True)
class Invoice:
    """Snapshot of an invoice row at the moment it was read."""

    id: int
    customer_id: int
    amount: Money
    status: InvoiceStatus

    @property
    def currency(self) -> Currency:
        return self.amount.currency


@dataclass(frozen=True)
class FailedBilling:
    """One append-only record of a failed payment attempt."""

    id: int
    invoice_id: int
    reason: FailureReason
    message: str
    timestamp: datetime
