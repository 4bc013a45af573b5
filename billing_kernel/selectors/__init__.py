"""Selectors for the billing kernel (read side)."""

from billing_kernel.selectors.base import BaseSelector
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.pending_cursor import PendingInvoiceCursor, PendingScan

__all__ = [
    "BaseSelector",
    "InvoiceSelector",
    "PendingInvoiceCursor",
    "PendingScan",
]
