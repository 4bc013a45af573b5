"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for customers and their invoices.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Invoice identity is a database-generated, monotonically increasing
      integer; the pending cursor pages on it.
    - status holds one InvoiceStatus value.  Status changes are made ONLY
      through InvoiceStateStore's conditional UPDATE, never by mutating a
      loaded model.
    - amount_value is Numeric(38, 9), never float.

Failure modes:
    - IntegrityError when customer_id does not reference a customer row.
"""

from decimal import Decimal

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import IdentityInteger, TrackedBase
from billing_kernel.domain.invoice import Customer, Invoice, InvoiceStatus
from billing_kernel.domain.values import Currency, Money


class CustomerModel(TrackedBase):
    """A billable customer; every invoice of theirs uses ``currency``."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(
        IdentityInteger,
        primary_key=True,
        autoincrement=True,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    invoices: Mapped[list["InvoiceModel"]] = relationship(
        back_populates="customer",
        lazy="raise",
    )

    def to_dto(self) -> Customer:
        return Customer(id=self.id, currency=Currency(self.currency))

    def __repr__(self) -> str:
        return f"<Customer {self.id} {self.currency}>"


class InvoiceModel(TrackedBase):
    """
    Invoice row.

    Contract:
        Created PENDING by the invoicing side (``InvoiceStateStore.create_invoice``).
        Read through selectors and the pending cursor, which hand out
        immutable ``Invoice`` DTOs.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        # Cursor scan: status = PENDING AND id > :last ORDER BY id
        Index("idx_invoice_status_id", "status", "id"),
        Index("idx_invoice_customer", "customer_id"),
    )

    id: Mapped[int] = mapped_column(
        IdentityInteger,
        primary_key=True,
        autoincrement=True,
    )

    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.id"),
        nullable=False,
    )

    amount_value: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InvoiceStatus.PENDING.value,
    )

    customer: Mapped[CustomerModel] = relationship(
        back_populates="invoices",
        lazy="raise",
    )

    def to_dto(self) -> Invoice:
        return Invoice(
            id=self.id,
            customer_id=self.customer_id,
            amount=Money.of(self.amount_value, self.currency),
            status=InvoiceStatus(self.status),
        )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.status}>"
