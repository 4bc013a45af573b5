"""
Module: billing_kernel.selectors.pending_cursor
Responsibility: Lazy, bounded-memory scan over PENDING invoices, keyed on
    the monotonically increasing invoice identity.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  Consumed by BillingRunner.

Invariants enforced:
    - Read-only.
    - At most ``batch_size`` invoices are held in memory at a time.
    - Invoices are yielded in ascending identity order, each at most once
      per scan (``id > last_seen_id`` paging, never OFFSET).

Failure modes:
    - InvalidBatchSizeError when ``batch_size <= 0``, raised by ``scan()``
      itself rather than on first iteration.
    - Database errors propagate to the caller mid-iteration.

Not a snapshot: each page is its own short read transaction, so an invoice
that becomes PENDING behind the cursor waits for the next pass, and one that
leaves PENDING ahead of the cursor is simply not yielded.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.invoice import Invoice, InvoiceStatus
from billing_kernel.exceptions import InvalidBatchSizeError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel

logger = get_logger("selectors.pending_cursor")


class PendingInvoiceCursor:
    """
    Page-at-a-time scan of PENDING invoices.

    Usage:
        cursor = PendingInvoiceCursor(session_factory)
        scan = cursor.scan(batch_size=100)
        for invoice in scan:
            ...
        scan.pages_fetched
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def fetch_page(self, after_id: int, limit: int) -> list[Invoice]:
        """Up to ``limit`` PENDING invoices with id > after_id, ascending."""
        with self._session_factory() as session:
            rows = session.execute(
                select(InvoiceModel)
                .where(
                    InvoiceModel.status == InvoiceStatus.PENDING.value,
                    InvoiceModel.id > after_id,
                )
                .order_by(InvoiceModel.id)
                .limit(limit)
            ).scalars().all()
            return [row.to_dto() for row in rows]

    def scan(self, batch_size: int) -> PendingScan:
        """
        Lazily yield every PENDING invoice, ``batch_size`` rows per query.

        Each call starts a fresh scan from the lowest identity and returns
        its own ``PendingScan``, so concurrent scans keep separate page
        counts.
        """
        if batch_size <= 0:
            raise InvalidBatchSizeError(batch_size)
        return PendingScan(self, batch_size)


class PendingScan(Iterator[Invoice]):
    """One pass of a PendingInvoiceCursor; iterate it for invoices."""

    def __init__(self, cursor: PendingInvoiceCursor, batch_size: int):
        self.batch_size = batch_size
        self.pages_fetched = 0
        self._pages = self._iterate(cursor)

    def __next__(self) -> Invoice:
        return next(self._pages)

    def _iterate(self, cursor: PendingInvoiceCursor) -> Iterator[Invoice]:
        last_seen_id = 0
        while True:
            page = cursor.fetch_page(last_seen_id, self.batch_size)
            self.pages_fetched += 1
            logger.debug(
                "pending_page_fetched",
                extra={
                    "after_id": last_seen_id,
                    "page_size": len(page),
                    "page_number": self.pages_fetched,
                },
            )

            yield from page

            if len(page) < self.batch_size:
                return
            last_seen_id = page[-1].id
