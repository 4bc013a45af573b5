"""
Billing Kernel

The state-bearing core of the recurring billing system:
- Invoice state machine guarded by atomic conditional transitions
- Bounded-memory cursor scan over pending invoices
- Append-only failure history
- Full auditability via hash chain
"""

__version__ = "0.1.0"
