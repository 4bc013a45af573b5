"""
billing_batch.domain -- Pure types and recurrence rules for billing passes.

ZERO I/O.  All types are frozen dataclasses.
"""

from billing_batch.domain.schedule import (
    Recurrence,
    add_months,
    monthly_from,
    parse_cadence,
    recurrence_from,
)
from billing_batch.domain.types import (
    AttemptResult,
    AttemptStatus,
    BillingPassSummary,
    Cadence,
    ChargeOutcome,
    ChargeOutcomeKind,
    PassTrigger,
)

__all__ = [
    "AttemptResult",
    "AttemptStatus",
    "BillingPassSummary",
    "Cadence",
    "ChargeOutcome",
    "ChargeOutcomeKind",
    "PassTrigger",
    "Recurrence",
    "add_months",
    "monthly_from",
    "parse_cadence",
    "recurrence_from",
]
