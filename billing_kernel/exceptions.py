"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing has to tell apart failures that look alike in a log line but demand
different handling:

  - A StateConflictError means another pass already owns the invoice.  The
    invoice is skipped, nothing is charged, nothing is audited.
  - A NetworkError from the gateway means the charge outcome is a failure
    that MUST be recorded as FAILED_PAYMENT with a reason.
  - An ImmutabilityViolationError means somebody tried to rewrite history.

Callers catch by type, never by message:

    try:
        store.transition(invoice_id, InvoiceStatus.PENDING, InvoiceStatus.STARTED_PAYMENT)
    except StateConflictError as e:
        log.info("skipped", extra={"actual": e.actual_status})

Every exception carries a ``code`` class attribute (machine-readable) and
structured attributes (never just a message string).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- InvoiceError
    |   +-- InvoiceNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- InvoiceCurrencyMismatchError
    |
    +-- TransitionError
    |   +-- StateConflictError
    |   +-- InvalidTransitionError
    |
    +-- PaymentGatewayError
    |   +-- NetworkError
    |   +-- UnknownCustomerError
    |   +-- CurrencyMismatchError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ScheduleError
    |   +-- InvalidBatchSizeError
    |   +-- InvalidCadenceError
    |
    +-- ConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Invoice         | INVOICE_NOT_FOUND           | Invoice ID doesn't exist
                | CUSTOMER_NOT_FOUND          | Customer ID doesn't exist
                | INVOICE_CURRENCY_MISMATCH   | Invoice currency != customer currency
----------------|-----------------------------|-----------------------------------------
Transition      | STATE_CONFLICT              | Row status != expected status (CAS lost)
                | INVALID_TRANSITION          | Edge not in the status graph
----------------|-----------------------------|-----------------------------------------
Gateway         | GATEWAY_NETWORK_ERROR       | Gateway unreachable / timed out
                | GATEWAY_UNKNOWN_CUSTOMER    | Gateway does not know the customer
                | GATEWAY_CURRENCY_MISMATCH   | Gateway rejected the invoice currency
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an append-only row
----------------|-----------------------------|-----------------------------------------
Schedule        | INVALID_BATCH_SIZE          | Cursor page size <= 0
                | INVALID_CADENCE             | Unknown recurrence cadence
----------------|-----------------------------|-----------------------------------------
Config          | CONFIG_ERROR                | Missing or invalid configuration value
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Invoice-related exceptions


class InvoiceError(BillingKernelError):
    """Base exception for invoice and customer errors."""

    code: str = "INVOICE_ERROR"


class InvoiceNotFoundError(InvoiceError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class CustomerNotFoundError(InvoiceError):
    """Customer with given ID was not found."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class InvoiceCurrencyMismatchError(InvoiceError):
    """Invoice amount is not denominated in the customer's currency."""

    code: str = "INVOICE_CURRENCY_MISMATCH"

    def __init__(self, customer_id: int, customer_currency: str, invoice_currency: str):
        self.customer_id = customer_id
        self.customer_currency = customer_currency
        self.invoice_currency = invoice_currency
        super().__init__(
            f"Customer {customer_id} bills in {customer_currency}, "
            f"invoice is in {invoice_currency}"
        )


# Transition-related exceptions


class TransitionError(BillingKernelError):
    """Base exception for invoice status transition errors."""

    code: str = "TRANSITION_ERROR"


class StateConflictError(TransitionError):
    """
    Conditional status transition lost: the row's status did not match.

    Raised when a racing pass already moved the invoice, an operator
    requeued it, or the caller passed the wrong expected status.  The row
    is left unchanged.  ``actual_status`` is None when the database
    reported a serialization failure instead of a mismatched row.
    """

    code: str = "STATE_CONFLICT"

    def __init__(
        self,
        invoice_id: int,
        expected_status: str,
        target_status: str,
        actual_status: str | None = None,
    ):
        self.invoice_id = invoice_id
        self.expected_status = expected_status
        self.target_status = target_status
        self.actual_status = actual_status
        super().__init__(
            f"Invoice {invoice_id} not moved {expected_status} -> {target_status}: "
            f"current status is {actual_status or 'unknown'}"
        )


class InvalidTransitionError(TransitionError):
    """Requested status change is not an edge of the invoice status graph."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, invoice_id: int | None, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid invoice transition {from_status} -> {to_status}"
            + (f" for invoice {invoice_id}" if invoice_id is not None else "")
        )


# Payment gateway exceptions


class PaymentGatewayError(BillingKernelError):
    """Base exception for categorised payment gateway failures."""

    code: str = "GATEWAY_ERROR"


class NetworkError(PaymentGatewayError):
    """The gateway could not be reached or did not answer."""

    code: str = "GATEWAY_NETWORK_ERROR"

    def __init__(self, detail: str = "Network error"):
        self.detail = detail
        super().__init__(detail)


class UnknownCustomerError(PaymentGatewayError):
    """The gateway does not know the invoice's customer."""

    code: str = "GATEWAY_UNKNOWN_CUSTOMER"

    def __init__(self, customer_id: int):
        self.customer_id = customer_id
        super().__init__(f"Customer '{customer_id}' was not found")


class CurrencyMismatchError(PaymentGatewayError):
    """The gateway rejected the charge: invoice and account currency differ."""

    code: str = "GATEWAY_CURRENCY_MISMATCH"

    def __init__(self, invoice_id: int, customer_id: int):
        self.invoice_id = invoice_id
        self.customer_id = customer_id
        super().__init__(
            f"Currency of invoice '{invoice_id}' does not match "
            f"currency of customer '{customer_id}'"
        )


# Audit-related exceptions


class AuditError(BillingKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability-related exceptions


class ImmutabilityError(BillingKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    FailedBilling and AuditEvent rows are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Schedule-related exceptions


class ScheduleError(BillingKernelError):
    """Base exception for scheduling and scanning errors."""

    code: str = "SCHEDULE_ERROR"


class InvalidBatchSizeError(ScheduleError):
    """Cursor page size must be a positive integer."""

    code: str = "INVALID_BATCH_SIZE"

    def __init__(self, batch_size: int):
        self.batch_size = batch_size
        super().__init__(f"Batch size must be > 0, got {batch_size}")


class InvalidCadenceError(ScheduleError):
    """Unknown recurrence cadence."""

    code: str = "INVALID_CADENCE"

    def __init__(self, cadence: str):
        self.cadence = cadence
        super().__init__(f"Unknown billing cadence: '{cadence}'")


# Configuration


class ConfigError(BillingKernelError):
    """Missing or invalid configuration value."""

    code: str = "CONFIG_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
