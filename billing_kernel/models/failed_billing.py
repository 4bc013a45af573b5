"""
Module: billing_kernel.models.failed_billing
Responsibility: ORM persistence for the append-only history of failed
    payment attempts.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Rows are written only alongside the STARTED_PAYMENT -> FAILED_PAYMENT
      transition, in the same transaction (InvoiceStateStore.fail_payment).
    - Append-only: any ORM UPDATE or DELETE raises ImmutabilityViolationError
      (see db/immutability.py).

Audit relevance:
    Together with the ``payment_failed`` audit event, this table is the
    operator's answer to "why is this invoice not paid?".
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, IdentityInteger
from billing_kernel.domain.invoice import FailedBilling, FailureReason


class FailedBillingModel(Base):
    """One failed attempt to charge an invoice."""

    __tablename__ = "failed_billings"

    __table_args__ = (
        Index("idx_failed_billing_invoice_ts", "invoice_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(
        IdentityInteger,
        primary_key=True,
        autoincrement=True,
    )

    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id"),
        nullable=False,
    )

    # FailureReason value
    reason: Mapped[str] = mapped_column(String(32), nullable=False)

    message: Mapped[str] = mapped_column(Text, nullable=False)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def to_dto(self) -> FailedBilling:
        return FailedBilling(
            id=self.id,
            invoice_id=self.invoice_id,
            reason=FailureReason(self.reason),
            message=self.message,
            timestamp=self.timestamp,
        )

    def __repr__(self) -> str:
        return f"<FailedBilling {self.id} invoice={self.invoice_id} {self.reason}>"
