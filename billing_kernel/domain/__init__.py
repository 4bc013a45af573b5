"""
Pure domain layer.

This module contains value objects, DTOs and the invoice status graph
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.invoice import (
    ALLOWED_TRANSITIONS,
    REQUEUE_SOURCES,
    Customer,
    FailedBilling,
    FailureReason,
    Invoice,
    InvoiceStatus,
    is_allowed_transition,
)
from billing_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Currency",
    "Money",
    "InvoiceStatus",
    "ALLOWED_TRANSITIONS",
    "REQUEUE_SOURCES",
    "is_allowed_transition",
    "FailureReason",
    "Customer",
    "Invoice",
    "FailedBilling",
]
