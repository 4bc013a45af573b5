"""
DBBackedAuditLog -- AuditLog backed by the kernel's hash-chained audit trail.

Contract:
    Each call opens its own short-lived session, appends one AuditEvent via
    ``AuditorService`` and commits.  The event is therefore durable before
    the coordinator moves on (in particular, ``payment_started`` is
    committed before the gateway is contacted).

Architecture: billing_batch/services.  Adapts billing_kernel.services to the
    ``AuditLog`` protocol.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from billing_kernel.db.engine import session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.invoice import Invoice, InvoiceStatus
from billing_kernel.exceptions import BillingKernelError
from billing_kernel.services.auditor_service import AuditorService, AuditTrace, INVOICE_ENTITY

from billing_batch.domain.types import ChargeOutcome


class DBBackedAuditLog:
    """AuditLog writing hash-chained AuditEvent rows."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()

    @property
    def actor_id(self) -> UUID:
        return self._actor_id

    def _auditor(self, session: Session) -> AuditorService:
        return AuditorService(session=session, clock=self._clock)

    # AuditLog protocol

    def payment_started(self, invoice: Invoice) -> None:
        with session_scope(self._session_factory) as session:
            self._auditor(session).record_payment_started(invoice, self._actor_id)

    def payment_completed(self, invoice: Invoice) -> None:
        with session_scope(self._session_factory) as session:
            self._auditor(session).record_payment_completed(invoice, self._actor_id)

    def payment_failed(self, invoice: Invoice, outcome: ChargeOutcome) -> None:
        if outcome.reason is None:
            raise BillingKernelError(
                f"Cannot record a failed payment for a {outcome.kind.value} outcome"
            )
        with session_scope(self._session_factory) as session:
            self._auditor(session).record_payment_failed(
                invoice, outcome.reason, outcome.message, self._actor_id
            )

    def invoice_requeued(self, invoice: Invoice, previous_status: InvoiceStatus) -> None:
        with session_scope(self._session_factory) as session:
            self._auditor(session).record_invoice_requeued(
                invoice, previous_status, self._actor_id
            )

    # Verification

    def validate_chain(self) -> bool:
        """Validate the whole hash chain; raises AuditChainBrokenError."""
        with self._session_factory() as session:
            return self._auditor(session).validate_chain()

    def trace(self, invoice_id: int) -> AuditTrace:
        """Audit trace of one invoice, in sequence order."""
        with self._session_factory() as session:
            return self._auditor(session).get_trace(INVOICE_ENTITY, invoice_id)
