"""
BillingOrchestrator -- DI container for the recurring billing system.

Contract:
    Wires the state store, pending cursor, payment coordinator, billing
    runner, audit log and timer loop around one session factory and one
    payment gateway.  Single place where all billing dependencies are
    composed, and home of the operator entry points.

Architecture: billing_batch (top-level).  This is the canonical entry point
    for running billing passes, either on the configured cadence or on demand.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Audit trail: the coordinator and the operator requeue write through
      the same DBBackedAuditLog and actor id.
    - No kernel imports of billing_batch (orchestrator lives here).
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from billing_kernel.db.immutability import register_immutability_listeners
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.invoice import Invoice
from billing_kernel.exceptions import InvalidBatchSizeError
from billing_kernel.logging_config import LogContext, configure_logging, get_logger
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.pending_cursor import PendingInvoiceCursor
from billing_kernel.services.invoice_store import InvoiceStateStore

from billing_batch.domain.schedule import parse_cadence, recurrence_from
from billing_batch.domain.types import BillingPassSummary, Cadence, PassTrigger
from billing_batch.services.audit_log import DBBackedAuditLog
from billing_batch.services.contracts import PaymentGateway
from billing_batch.services.coordinator import PaymentAttemptCoordinator
from billing_batch.services.runner import DEFAULT_BATCH_SIZE, BillingRunner
from billing_batch.services.timer_loop import Sleeper, TimerLoop

if TYPE_CHECKING:
    from billing_config.schema import BillingConfig

logger = get_logger("batch.orchestrator")


class BillingOrchestrator:
    """DI container for the billing system.

    Contract:
        - ``from_config()`` initialises the engine and returns a fully wired
          orchestrator.
        - ``start()`` arms the timer loop; ``stop()`` disarms it.
        - ``force_run_now()`` and ``force_requeue()`` are the operator
          entry points.

    Non-goals:
        - Does NOT serialise a forced pass against a timer-driven pass; the
          conditional transition makes overlap safe.
        - Does NOT retry failed invoices on its own.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        gateway: PaymentGateway,
        clock: Clock | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cadence: Cadence | str = Cadence.MONTHLY,
        schedule_enabled: bool = True,
        actor_id: UUID | None = None,
        sleep: Sleeper | None = None,
    ) -> None:
        if batch_size <= 0:
            raise InvalidBatchSizeError(batch_size)

        self._session_factory = session_factory
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._batch_size = batch_size
        self._cadence = parse_cadence(cadence)
        self._schedule_enabled = schedule_enabled

        self._store = InvoiceStateStore(session_factory, clock=self._clock)
        self._cursor = PendingInvoiceCursor(session_factory)
        self._audit_log = DBBackedAuditLog(
            session_factory, clock=self._clock, actor_id=actor_id,
        )
        self._coordinator = PaymentAttemptCoordinator(
            store=self._store,
            gateway=gateway,
            audit_log=self._audit_log,
            clock=self._clock,
        )
        self._runner = BillingRunner(self._cursor, self._coordinator, clock=self._clock)
        self._timer = TimerLoop(clock=self._clock, sleep=sleep)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: BillingConfig,
        gateway: PaymentGateway,
        clock: Clock | None = None,
        create_schema: bool = False,
        actor_id: UUID | None = None,
    ) -> BillingOrchestrator:
        """Bootstrap the process from a loaded configuration.

        Args:
            config: Result of ``billing_config.get_active_config()``.
            gateway: Payment gateway implementation.
            clock: Optional clock for deterministic testing.
            create_schema: Create tables and sequence counters first.
            actor_id: Optional actor UUID for audit attribution.
        """
        configure_logging(level=config.logging.level)
        init_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
        )
        if create_schema:
            create_tables()
        register_immutability_listeners()

        return cls(
            session_factory=get_session_factory(),
            gateway=gateway,
            clock=clock,
            batch_size=config.schedule.batch_size,
            cadence=config.schedule.cadence,
            schedule_enabled=config.schedule.enabled,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Operator entry points
    # -------------------------------------------------------------------------

    def force_run_now(self, batch_size: int | None = None) -> BillingPassSummary:
        """Run one pass synchronously on the calling thread."""
        with LogContext.bind(actor_id=self._audit_log.actor_id):
            logger.info("forced_billing_pass_requested")
            return self._runner.run_pass(
                batch_size=self._batch_size if batch_size is None else batch_size,
                trigger=PassTrigger.MANUAL,
            )

    def force_requeue(self, invoice_id: int) -> Invoice:
        """Put a FAILED_PAYMENT or stranded STARTED_PAYMENT invoice back to PENDING.

        A PENDING invoice is returned unchanged and nothing is audited.

        Raises:
            InvoiceNotFoundError: No invoice with this id.
            InvalidTransitionError: Invoice is PAID.
            StateConflictError: Status changed concurrently.
        """
        with LogContext.bind(actor_id=self._audit_log.actor_id, invoice_id=invoice_id):
            result = self._store.force_requeue(invoice_id)
            if result.requeued:
                self._audit_log.invoice_requeued(result.invoice, result.previous_status)
            return result.invoice

    @contextmanager
    def open_selector(self) -> Iterator[InvoiceSelector]:
        """InvoiceSelector over a session that closes when the block exits."""
        with self._session_factory() as session:
            yield InvoiceSelector(session)

    def validate_audit_chain(self) -> bool:
        return self._audit_log.validate_chain()

    # -------------------------------------------------------------------------
    # Timer
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """Arm the timer loop with the configured cadence.

        Returns False (and does nothing) when scheduling is disabled.
        """
        if not self._schedule_enabled:
            logger.info("billing_schedule_disabled")
            return False

        recurrence = recurrence_from(self._clock, self._cadence)
        self._timer.schedule(recurrence, self._scheduled_pass)
        logger.info(
            "billing_schedule_started",
            extra={
                "cadence": self._cadence.value,
                "first_instant": recurrence.first,
                "batch_size": self._batch_size,
            },
        )
        return True

    def stop(self, timeout: float = 30.0) -> None:
        self._timer.stop(timeout=timeout)

    def _scheduled_pass(self) -> BillingPassSummary:
        return self._runner.run_pass(
            batch_size=self._batch_size,
            trigger=PassTrigger.SCHEDULED,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def store(self) -> InvoiceStateStore:
        return self._store

    @property
    def cursor(self) -> PendingInvoiceCursor:
        return self._cursor

    @property
    def audit_log(self) -> DBBackedAuditLog:
        return self._audit_log

    @property
    def coordinator(self) -> PaymentAttemptCoordinator:
        return self._coordinator

    @property
    def runner(self) -> BillingRunner:
        return self._runner

    @property
    def timer(self) -> TimerLoop:
        return self._timer
