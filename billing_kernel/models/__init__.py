"""ORM models for the billing kernel."""

from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.models.failed_billing import FailedBillingModel
from billing_kernel.models.invoice import CustomerModel, InvoiceModel

__all__ = [
    "AuditAction",
    "AuditEvent",
    "CustomerModel",
    "InvoiceModel",
    "FailedBillingModel",
]
