"""Services for the billing kernel (write side)."""

from billing_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
)
from billing_kernel.services.invoice_store import InvoiceStateStore, RequeueResult
from billing_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AuditorService",
    "AuditTrace",
    "AuditTraceEntry",
    "InvoiceStateStore",
    "RequeueResult",
    "SequenceCounter",
    "SequenceService",
]
