"""
Payment ORM Model (``ledger_kernel.models.payment``).

Responsibility
--------------
SQLAlchemy persistence for payments and their cumulative refunds.

Invariants enforced
-------------------
- payment_number is unique per business (uq_payments_business_number).
- settlement_key is unique: a provider notification is applied once.
- 0 <= refund_amount <= amount (enforced by the payment ledger).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class PaymentModel(TrackedBase):
    """
    ORM model for payments.

    Guarantees:
        - invoice_id FK to invoices.id (nullable: a payment may stand alone).
        - status stored as string enum value.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint(
            "business_id", "payment_number", name="uq_payments_business_number"
        ),
        UniqueConstraint("settlement_key", name="uq_payments_settlement_key"),
        Index("idx_payments_business_status", "business_id", "status"),
        Index("idx_payments_invoice_id", "invoice_id"),
        Index("idx_payments_provider", "provider"),
    )

    business_id: Mapped[UUID] = mapped_column(nullable=False)
    payment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"), nullable=True
    )
    order_id: Mapped[UUID | None] = mapped_column(nullable=True)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    settlement_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from ledger_kernel.domain.dtos import Payment, PaymentStatus

        return Payment(
            id=self.id,
            business_id=self.business_id,
            payment_number=self.payment_number,
            amount=self.amount,
            currency=self.currency,
            status=PaymentStatus(self.status),
            provider=self.provider,
            invoice_id=self.invoice_id,
            order_id=self.order_id,
            refund_amount=self.refund_amount,
            provider_payment_id=self.provider_payment_id,
            description=self.description,
            failure_reason=self.failure_reason,
            paid_at=self.paid_at,
            refunded_at=self.refunded_at,
            cancelled_at=self.cancelled_at,
            metadata=dict(self.metadata_ or {}),
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentModel {self.payment_number} "
            f"status={self.status} amount={self.amount}>"
        )
