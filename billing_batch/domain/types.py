"""
billing_batch.domain.types -- Pure frozen dataclasses for the billing batch.

ZERO I/O.  Frozen dataclasses with enum status fields.

Invariants enforced:
    - Every charge attempt classifies into exactly one ChargeOutcomeKind.
    - A non-success outcome always maps to a FailureReason and a message.
    - All DTOs are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from billing_kernel.domain.invoice import FailureReason
from billing_kernel.exceptions import (
    CurrencyMismatchError,
    CustomerNotFoundError,
    NetworkError,
    UnknownCustomerError,
)

INSUFFICIENT_BALANCE_MESSAGE = "Insufficient Balance"


# =============================================================================
# Enums
# =============================================================================


class Cadence(str, Enum):
    """Recurrence rule for billing passes."""

    MONTHLY = "monthly"  # 1st of each month, 00:00
    WEEKLY = "weekly"  # Each Monday, 00:00
    DAILY = "daily"  # Each day, 00:00


class PassTrigger(str, Enum):
    """What started a billing pass."""

    SCHEDULED = "scheduled"  # Fired by the timer loop
    MANUAL = "manual"  # Operator force-run


class ChargeOutcomeKind(str, Enum):
    """Classification of one gateway charge."""

    SUCCESS = "success"
    DECLINED = "declined"  # Gateway answered False
    NETWORK_FAILURE = "network_failure"
    UNKNOWN_CUSTOMER = "unknown_customer"
    CURRENCY_MISMATCH = "currency_mismatch"
    UNKNOWN_FAILURE = "unknown_failure"  # Anything else the gateway raised


_REASONS: dict[ChargeOutcomeKind, FailureReason] = {
    ChargeOutcomeKind.DECLINED: FailureReason.INSUFFICIENT_BALANCE,
    ChargeOutcomeKind.NETWORK_FAILURE: FailureReason.NETWORK_ERROR,
    ChargeOutcomeKind.UNKNOWN_CUSTOMER: FailureReason.UNKNOWN_CUSTOMER,
    ChargeOutcomeKind.CURRENCY_MISMATCH: FailureReason.CURRENCY_MISMATCH,
    ChargeOutcomeKind.UNKNOWN_FAILURE: FailureReason.UNKNOWN_ERROR,
}


class AttemptStatus(str, Enum):
    """Result of one coordinator attempt."""

    SUCCEEDED = "succeeded"  # Invoice is PAID
    FAILED = "failed"  # Invoice is FAILED_PAYMENT with a FailedBilling row
    SKIPPED = "skipped"  # Lost the PENDING -> STARTED_PAYMENT race; no side effects


# =============================================================================
# Charge outcome
# =============================================================================


@dataclass(frozen=True)
class ChargeOutcome:
    """Tagged result of a gateway charge.

    ``message`` is empty for SUCCESS, "Insufficient Balance" for DECLINED,
    and the exception text for the error kinds.
    """

    kind: ChargeOutcomeKind
    message: str = ""

    @classmethod
    def success(cls) -> ChargeOutcome:
        return cls(ChargeOutcomeKind.SUCCESS)

    @classmethod
    def declined(cls) -> ChargeOutcome:
        return cls(ChargeOutcomeKind.DECLINED, INSUFFICIENT_BALANCE_MESSAGE)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ChargeOutcome:
        """Classify an exception raised by the gateway."""
        message = str(exc) or type(exc).__name__
        if isinstance(exc, NetworkError):
            return cls(ChargeOutcomeKind.NETWORK_FAILURE, message)
        if isinstance(exc, (UnknownCustomerError, CustomerNotFoundError)):
            return cls(ChargeOutcomeKind.UNKNOWN_CUSTOMER, message)
        if isinstance(exc, CurrencyMismatchError):
            return cls(ChargeOutcomeKind.CURRENCY_MISMATCH, message)
        return cls(ChargeOutcomeKind.UNKNOWN_FAILURE, message)

    @property
    def succeeded(self) -> bool:
        return self.kind == ChargeOutcomeKind.SUCCESS

    @property
    def reason(self) -> FailureReason | None:
        """FailedBilling reason for this outcome (None on success)."""
        return _REASONS.get(self.kind)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class AttemptResult:
    """Immutable result of one ``PaymentAttemptCoordinator.execute()``."""

    invoice_id: int
    status: AttemptStatus
    outcome: ChargeOutcome | None = None  # None when SKIPPED

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.SUCCEEDED


@dataclass(frozen=True)
class BillingPassSummary:
    """Immutable result of one billing pass.

    Returned by ``BillingRunner.run_pass()``.
    """

    pass_id: UUID
    trigger: PassTrigger
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errored: int = 0  # Unexpected exceptions caught per invoice
    pages_fetched: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped + self.errored
