"""
InvoiceSelector -- read accessors and statistics for invoices.

Returns frozen ``Invoice`` / ``InvoiceStats`` DTOs.  Aggregates are read as
stored: the reconciliation engine keeps them current, selectors never
recompute them.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import round_money
from ledger_kernel.domain.dtos import Invoice, InvoiceFilter, InvoiceStats, InvoiceStatus
from ledger_kernel.exceptions import InvoiceNotFoundError
from ledger_kernel.models.invoice import InvoiceModel
from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.utils.scope import ensure_business

_ZERO = Decimal("0")

_UNPAID = (InvoiceStatus.SENT.value, InvoiceStatus.VIEWED.value, InvoiceStatus.OVERDUE.value)
_NOT_BILLED = (InvoiceStatus.DRAFT.value, InvoiceStatus.CANCELLED.value)


class InvoiceSelector(BaseSelector[InvoiceModel]):
    """
    Selector for invoice queries.

    Guarantees:
        - Read-only.
        - Lines are loaded with their invoice (selectin) and ordered by
          line_number.
        - Listings are ordered newest issue_date first, then by number.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, business_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = self.session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        ensure_business("invoice", invoice_id, invoice.business_id, business_id)
        return invoice.to_dto()

    def get_by_number(self, business_id: UUID, invoice_number: str) -> Invoice | None:
        invoice = self.session.execute(
            select(InvoiceModel).where(
                InvoiceModel.business_id == business_id,
                InvoiceModel.invoice_number == invoice_number,
            )
        ).scalar_one_or_none()
        return invoice.to_dto() if invoice else None

    def list(self, business_id: UUID, filters: InvoiceFilter | None = None) -> list[Invoice]:
        filters = filters or InvoiceFilter()
        stmt = select(InvoiceModel).where(InvoiceModel.business_id == business_id)
        if filters.statuses:
            stmt = stmt.where(InvoiceModel.status.in_([s.value for s in filters.statuses]))
        if filters.overdue_only:
            stmt = stmt.where(InvoiceModel.status == InvoiceStatus.OVERDUE.value)
        if filters.customer_id is not None:
            stmt = stmt.where(InvoiceModel.customer_id == filters.customer_id)
        if filters.date_from is not None:
            stmt = stmt.where(InvoiceModel.issue_date >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(InvoiceModel.issue_date <= filters.date_to)
        stmt = stmt.order_by(InvoiceModel.issue_date.desc(), InvoiceModel.invoice_number.desc())
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return [invoice.to_dto() for invoice in self.session.execute(stmt).scalars()]

    def stats(
        self,
        business_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> InvoiceStats:
        """
        Counts and totals over the business's invoices by issue_date.

        Drafts and cancelled invoices are counted but never billed; only
        sent, viewed and overdue invoices are outstanding.
        """
        stmt = select(
            InvoiceModel.status,
            InvoiceModel.total_amount,
            InvoiceModel.amount_paid,
            InvoiceModel.amount_due,
        ).where(InvoiceModel.business_id == business_id)
        if date_from is not None:
            stmt = stmt.where(InvoiceModel.issue_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(InvoiceModel.issue_date <= date_to)
        rows = self.session.execute(stmt).all()

        billed = [row for row in rows if row.status not in _NOT_BILLED]
        total_billed = sum((row.total_amount for row in billed), _ZERO)
        return InvoiceStats(
            total_invoices=len(rows),
            paid_invoices=sum(1 for row in rows if row.status == InvoiceStatus.PAID.value),
            unpaid_invoices=sum(1 for row in rows if row.status in _UNPAID),
            overdue_invoices=sum(1 for row in rows if row.status == InvoiceStatus.OVERDUE.value),
            total_billed=total_billed,
            total_paid=sum((row.amount_paid for row in rows), _ZERO),
            total_outstanding=sum(
                (row.amount_due for row in rows if row.status in _UNPAID), _ZERO
            ),
            average_invoice_value=(
                round_money(total_billed / len(billed)) if billed else _ZERO
            ),
        )
