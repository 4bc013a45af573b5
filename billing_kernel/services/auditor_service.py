"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every invoice payment
    milestone.  Provides chain validation for tamper detection and trace
    queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by the DB-backed audit log
    of the billing batch and by the operator requeue path.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never MAX(seq) + 1).
    - Audit chain integrity: every audit event carries a cryptographic link
      to its predecessor.
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).

Failure modes:
    - AuditChainBrokenError: Recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.  All audit events flow through
    ``_create_audit_event()`` which enforces hash chain linkage before
    persisting.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.invoice import FailureReason, Invoice, InvoiceStatus
from billing_kernel.exceptions import AuditChainBrokenError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.services.sequence_service import SequenceService
from billing_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
)

logger = get_logger("services.auditor")

INVOICE_ENTITY = "Invoice"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, in sequence order."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


def _invoice_payload(invoice: Invoice) -> dict[str, Any]:
    return {
        "invoice_id": invoice.id,
        "customer_id": invoice.customer_id,
        "amount": str(invoice.amount.amount),
        "currency": invoice.currency.value,
    }


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
          Tampering with any field is detectable by ``validate_chain()``.
        - The sequence counter is incremented BEFORE the chain tip is read,
          so the tip read happens while this transaction holds the
          counter's write lock.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        """Get the hash of the most recent audit event."""
        return self._session.execute(
            select(AuditEvent.hash)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: str,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new ``AuditEvent`` row is flushed to the session with a
              monotonically increasing ``seq`` and a valid hash chain link.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            # Stored in the same canonical form that was hashed
            payload=_jsonable(payload_data),
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Domain-specific recording methods

    def record_payment_started(self, invoice: Invoice, actor_id: UUID) -> AuditEvent:
        """Record that the invoice entered STARTED_PAYMENT and the gateway is about to be called."""
        return self._create_audit_event(
            entity_type=INVOICE_ENTITY,
            entity_id=str(invoice.id),
            action=AuditAction.PAYMENT_STARTED,
            actor_id=actor_id,
            payload=_invoice_payload(invoice),
        )

    def record_payment_completed(self, invoice: Invoice, actor_id: UUID) -> AuditEvent:
        return self._create_audit_event(
            entity_type=INVOICE_ENTITY,
            entity_id=str(invoice.id),
            action=AuditAction.PAYMENT_COMPLETED,
            actor_id=actor_id,
            payload=_invoice_payload(invoice),
        )

    def record_payment_failed(
        self,
        invoice: Invoice,
        reason: FailureReason,
        message: str,
        actor_id: UUID,
    ) -> AuditEvent:
        """Record a failed attempt with its categorical reason and message."""
        payload = _invoice_payload(invoice)
        payload["reason"] = reason.value
        payload["message"] = message
        return self._create_audit_event(
            entity_type=INVOICE_ENTITY,
            entity_id=str(invoice.id),
            action=AuditAction.PAYMENT_FAILED,
            actor_id=actor_id,
            payload=payload,
        )

    def record_invoice_requeued(
        self,
        invoice: Invoice,
        previous_status: InvoiceStatus,
        actor_id: UUID,
    ) -> AuditEvent:
        """Record an operator moving the invoice back to PENDING."""
        payload = _invoice_payload(invoice)
        payload["previous_status"] = previous_status.value
        return self._create_audit_event(
            entity_type=INVOICE_ENTITY,
            entity_id=str(invoice.id),
            action=AuditAction.INVOICE_REQUEUED,
            actor_id=actor_id,
            payload=payload,
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            self._chain_broken(events[0], "None", events[0].prev_hash)

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                self._chain_broken(event, expected_hash, event.hash)

            if hash_payload(event.payload or {}) != event.payload_hash:
                self._chain_broken(
                    event, hash_payload(event.payload or {}), event.payload_hash
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    self._chain_broken(event, expected_prev, event.prev_hash or "None")

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    def _chain_broken(self, event: AuditEvent, expected: str, actual: str) -> None:
        logger.critical(
            "audit_chain_broken",
            extra={
                "audit_event_id": str(event.id),
                "seq": event.seq,
                "expected_hash": expected,
                "actual_hash": actual,
            },
        )
        raise AuditChainBrokenError(str(event.id), expected, actual)

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: str | int) -> AuditTrace:
        """Complete audit trace for an entity, in sequence order."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=entries,
        )


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    """Round-trip through canonical JSON so the stored payload re-hashes identically."""
    return json.loads(canonicalize_json(payload))
