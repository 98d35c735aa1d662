"""
Invoice ORM Models (``ledger_kernel.models.invoice``).

Responsibility
--------------
SQLAlchemy persistence for invoices and their line items.  Maps the frozen
``Invoice`` / ``InvoiceLine`` dataclasses in ``domain/dtos.py`` to tables.

Architecture position
---------------------
**Kernel > Models** -- persistence.  Imports from ``ledger_kernel.db.base``.
Only the services write these rows; selectors read them and return DTOs.

Invariants enforced
-------------------
- invoice_number is unique per business (uq_invoices_business_number).
- ``version`` is the SQLAlchemy ``version_id_col``: every UPDATE is guarded
  by ``WHERE version = :expected`` and a lost update raises StaleDataError.
- Lines are owned by their invoice (cascade delete-orphan) and ordered by
  line_number.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase

_ZERO = Decimal("0")


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Guarantees:
        - Monetary fields use Decimal (ExactDecimal via type_annotation_map).
        - status stored as string enum value.
        - amount_paid / amount_due / overpaid_amount / amount_refunded are
          written only by the reconciliation engine.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint(
            "business_id", "invoice_number", name="uq_invoices_business_number"
        ),
        Index("idx_invoices_business_status", "business_id", "status"),
        Index("idx_invoices_due_date", "due_date"),
        Index("idx_invoices_customer_id", "customer_id"),
    )

    business_id: Mapped[UUID] = mapped_column(nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    amount_due: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    overpaid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    amount_refunded: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)

    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    order_id: Mapped[UUID | None] = mapped_column(nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineModel.line_number",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from ledger_kernel.domain.dtos import Invoice, InvoiceStatus

        return Invoice(
            id=self.id,
            business_id=self.business_id,
            invoice_number=self.invoice_number,
            currency=self.currency,
            issue_date=self.issue_date,
            due_date=self.due_date,
            status=InvoiceStatus(self.status),
            lines=tuple(line.to_dto() for line in self.lines),
            subtotal=self.subtotal,
            discount_amount=self.discount_amount,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            amount_paid=self.amount_paid,
            amount_due=self.amount_due,
            overpaid_amount=self.overpaid_amount,
            amount_refunded=self.amount_refunded,
            customer_id=self.customer_id,
            order_id=self.order_id,
            sent_at=self.sent_at,
            viewed_at=self.viewed_at,
            paid_date=self.paid_date,
            cancelled_at=self.cancelled_at,
            notes=self.notes,
            terms=self.terms,
            payment_instructions=self.payment_instructions,
            document_url=self.document_url,
            metadata=dict(self.metadata_ or {}),
            version=self.version,
        )

    def __repr__(self) -> str:
        return (
            f"<InvoiceModel {self.invoice_number} "
            f"status={self.status} due={self.amount_due}>"
        )


class InvoiceLineModel(TrackedBase):
    """
    ORM model for invoice line items.

    Guarantees:
        - invoice_id FK to invoices.id.
        - Derived amounts are stored exactly as computed by compute_line.
    """

    __tablename__ = "invoice_lines"

    __table_args__ = (
        Index("idx_invoice_lines_invoice_id", "invoice_id"),
        Index("idx_invoice_lines_product_id", "product_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    discount_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)
    tax_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=_ZERO)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)

    product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    invoice: Mapped["InvoiceModel"] = relationship(
        back_populates="lines",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from ledger_kernel.domain.dtos import InvoiceLine

        return InvoiceLine(
            id=self.id,
            invoice_id=self.invoice_id,
            line_number=self.line_number,
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            discount_percentage=self.discount_percentage,
            tax_percentage=self.tax_percentage,
            subtotal=self.subtotal,
            discount_amount=self.discount_amount,
            taxable_amount=self.taxable_amount,
            tax_amount=self.tax_amount,
            total=self.total,
            product_id=self.product_id,
            metadata=dict(self.metadata_ or {}),
        )

    def __repr__(self) -> str:
        return (
            f"<InvoiceLineModel line={self.line_number} "
            f"total={self.total}>"
        )
