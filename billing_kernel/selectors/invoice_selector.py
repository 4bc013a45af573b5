"""
Module: billing_kernel.selectors.invoice_selector
Responsibility: Read-only query access to invoices, customers and the
    failed-billing history.  Converts ORM models to frozen DTOs.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - DTO convention: public methods return domain DTOs, never ORM models.
    - Deterministic ordering: invoices and customers by id, failure history
      by timestamp (ties broken by id).

Session ownership: the caller supplies the Session (see BaseSelector) and
    decides when it ends; results are DTOs, so they stay usable afterwards.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
    - ValueError for page < 1 or page_size < 1.
"""

from sqlalchemy import func, select

from billing_kernel.domain.invoice import (
    Customer,
    FailedBilling,
    Invoice,
    InvoiceStatus,
)
from billing_kernel.models.failed_billing import FailedBillingModel
from billing_kernel.models.invoice import CustomerModel, InvoiceModel
from billing_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 10


class InvoiceSelector(BaseSelector[InvoiceModel]):
    """Selector for invoice and customer queries."""

    # Invoices

    def get_invoice(self, invoice_id: int) -> Invoice | None:
        model = self.session.get(InvoiceModel, invoice_id)
        return model.to_dto() if model is not None else None

    def list_invoices(self) -> list[Invoice]:
        rows = self.session.execute(
            select(InvoiceModel).order_by(InvoiceModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def fetch_by_status(
        self,
        status: InvoiceStatus | str,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[Invoice]:
        """
        One page of invoices in ``status``, ascending by id.

        Pages are 1-based.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")

        status = InvoiceStatus.parse(status)
        rows = self.session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.status == status.value)
            .order_by(InvoiceModel.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def count_by_status(self) -> dict[InvoiceStatus, int]:
        """Number of invoices in each status (zero for absent statuses)."""
        counts = {status: 0 for status in InvoiceStatus}
        for status, count in self.session.execute(
            select(InvoiceModel.status, func.count())
            .group_by(InvoiceModel.status)
        ):
            counts[InvoiceStatus(status)] = count
        return counts

    def failed_billing_history(self, invoice_id: int) -> list[FailedBilling]:
        """Every failed attempt for an invoice, oldest first."""
        rows = self.session.execute(
            select(FailedBillingModel)
            .where(FailedBillingModel.invoice_id == invoice_id)
            .order_by(FailedBillingModel.timestamp, FailedBillingModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # Customers

    def get_customer(self, customer_id: int) -> Customer | None:
        model = self.session.get(CustomerModel, customer_id)
        return model.to_dto() if model is not None else None

    def list_customers(self) -> list[Customer]:
        rows = self.session.execute(
            select(CustomerModel).order_by(CustomerModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]
