"""
Ledger DTOs -- frozen value objects crossing the kernel boundary.

Responsibility:
    Typed, immutable representations of invoices, invoice lines, payments,
    settlement notifications and the read-side statistics.  Services and
    selectors return these; ORM models never leak to callers.

Architecture position:
    Kernel > Domain -- pure data definitions with ZERO I/O.

Invariants enforced:
    - All models are ``frozen=True``.
    - All monetary fields are ``Decimal`` -- NEVER ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.exceptions import ValidationError

_ZERO = Decimal("0")


class InvoiceStatus(Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(Enum):
    """Payment lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class SettlementOutcome(Enum):
    """Result reported by the payment provider."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class InvoiceLineInput:
    """Caller-supplied fields of one invoice line; amounts are derived."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percentage: Decimal = _ZERO
    tax_percentage: Decimal = _ZERO
    product_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.description or not self.description.strip():
            raise ValidationError("description", "cannot be empty")


@dataclass(frozen=True)
class InvoiceLine:
    """A single priced line item on an invoice."""
    id: UUID
    invoice_id: UUID
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percentage: Decimal
    tax_percentage: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    product_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Invoice:
    """An invoice with its lines and derived aggregates."""
    id: UUID
    business_id: UUID
    invoice_number: str
    currency: str
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)
    subtotal: Decimal = _ZERO
    discount_amount: Decimal = _ZERO
    tax_amount: Decimal = _ZERO
    total_amount: Decimal = _ZERO
    amount_paid: Decimal = _ZERO
    amount_due: Decimal = _ZERO
    overpaid_amount: Decimal = _ZERO
    amount_refunded: Decimal = _ZERO
    customer_id: UUID | None = None
    order_id: UUID | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    paid_date: date | None = None
    cancelled_at: datetime | None = None
    notes: str | None = None
    terms: str | None = None
    payment_instructions: str | None = None
    document_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    version: int = 1

    @property
    def is_overpaid(self) -> bool:
        return self.overpaid_amount > _ZERO


@dataclass(frozen=True)
class Payment:
    """A payment (and its refunds) optionally linked to one invoice."""
    id: UUID
    business_id: UUID
    payment_number: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    provider: str
    invoice_id: UUID | None = None
    order_id: UUID | None = None
    refund_amount: Decimal = _ZERO
    provider_payment_id: str | None = None
    description: str | None = None
    failure_reason: str | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None
    cancelled_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def net_amount(self) -> Decimal:
        """Contribution towards an invoice once settled."""
        return self.amount - self.refund_amount

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refund_amount


@dataclass(frozen=True)
class SettlementNotice:
    """Settlement notification delivered by the payment provider integration."""
    payment_id: UUID
    outcome: SettlementOutcome
    paid_at: datetime | None = None
    failure_reason: str | None = None
    provider_payment_id: str | None = None

    def __post_init__(self):
        if not isinstance(self.outcome, SettlementOutcome):
            object.__setattr__(self, "outcome", SettlementOutcome(self.outcome))
        if self.paid_at is not None and self.paid_at.tzinfo is None:
            raise ValidationError("paid_at", "must be timezone-aware")


@dataclass(frozen=True)
class InvoiceFilter:
    """Listing filter for invoices; every criterion is optional."""
    statuses: tuple[InvoiceStatus, ...] = ()
    customer_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None
    overdue_only: bool = False
    limit: int | None = None


@dataclass(frozen=True)
class PaymentFilter:
    """Listing filter for payments; every criterion is optional."""
    statuses: tuple[PaymentStatus, ...] = ()
    providers: tuple[str, ...] = ()
    invoice_id: UUID | None = None
    date_from: date | None = None
    date_to: date | None = None
    limit: int | None = None


@dataclass(frozen=True)
class InvoiceStats:
    """Summary of a business's invoices."""
    total_invoices: int
    paid_invoices: int
    unpaid_invoices: int
    overdue_invoices: int
    total_billed: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    average_invoice_value: Decimal


@dataclass(frozen=True)
class PaymentStats:
    """Summary of a business's payments."""
    total_revenue: Decimal
    total_payments: int
    successful_payments: int
    failed_payments: int
    refunded_amount: Decimal
    pending_amount: Decimal
    average_transaction: Decimal
