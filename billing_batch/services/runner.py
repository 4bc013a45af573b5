"""
BillingRunner -- one end-to-end billing pass.

Contract:
    ``run_pass(batch_size)`` scans every PENDING invoice through the pending
    cursor, hands each one to the coordinator in ascending identity order,
    and returns a ``BillingPassSummary``.

Architecture: billing_batch/services.  Uses
    billing_kernel.selectors.PendingInvoiceCursor and
    billing_batch.services.coordinator.

Invariants enforced:
    - Per-invoice isolation: an unexpected exception while attempting one
      invoice is logged with traceback, counted as ``errored``, and the
      pass continues with the next invoice.
    - All timestamps from the injected Clock; duration from a monotonic
      timer.
"""

from __future__ import annotations

import time
from uuid import uuid4

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.selectors.pending_cursor import PendingInvoiceCursor

from billing_batch.domain.types import AttemptStatus, BillingPassSummary, PassTrigger
from billing_batch.services.coordinator import PaymentAttemptCoordinator

logger = get_logger("batch.runner")

DEFAULT_BATCH_SIZE = 100


class BillingRunner:
    """Drives the pending cursor through the coordinator.

    Non-goals:
        - Does NOT prevent two passes from running at once; the store's
          conditional transition makes overlapping passes safe.
        - Does NOT catch cursor (database) failures; a pass whose scan
          fails raises to its caller (timer loop or operator).
    """

    def __init__(
        self,
        cursor: PendingInvoiceCursor,
        coordinator: PaymentAttemptCoordinator,
        clock: Clock | None = None,
    ):
        self._cursor = cursor
        self._coordinator = coordinator
        self._clock = clock or SystemClock()

    def run_pass(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        trigger: PassTrigger = PassTrigger.SCHEDULED,
    ) -> BillingPassSummary:
        pass_id = uuid4()
        started_at = self._clock.now()
        start_time = time.monotonic()
        counts = {status: 0 for status in AttemptStatus}
        errored = 0

        with LogContext.bind(pass_id=pass_id, trigger=trigger.value):
            logger.info("billing_pass_started", extra={"batch_size": batch_size})

            scan = self._cursor.scan(batch_size)
            for invoice in scan:
                try:
                    result = self._coordinator.execute(invoice)
                except Exception:
                    errored += 1
                    logger.exception(
                        "payment_attempt_errored",
                        extra={"invoice_id": invoice.id},
                    )
                    continue
                counts[result.status] += 1

            summary = BillingPassSummary(
                pass_id=pass_id,
                trigger=trigger,
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
                succeeded=counts[AttemptStatus.SUCCEEDED],
                failed=counts[AttemptStatus.FAILED],
                skipped=counts[AttemptStatus.SKIPPED],
                errored=errored,
                pages_fetched=scan.pages_fetched,
            )

            logger.info(
                "billing_pass_completed",
                extra={
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                    "skipped": summary.skipped,
                    "errored": summary.errored,
                    "total": summary.total,
                    "pages": summary.pages_fetched,
                    "duration_ms": summary.duration_ms,
                },
            )

        return summary
