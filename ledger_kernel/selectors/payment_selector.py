"""
PaymentSelector -- read accessors and statistics for payments.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import round_money
from ledger_kernel.domain.dtos import Payment, PaymentFilter, PaymentStats, PaymentStatus
from ledger_kernel.exceptions import PaymentNotFoundError
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.utils.scope import ensure_business

_ZERO = Decimal("0")

_OPEN = (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value)


class PaymentSelector(BaseSelector[PaymentModel]):
    """
    Selector for payment queries.

    Guarantees:
        - Read-only.
        - Listings are ordered newest first.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, business_id: UUID, payment_id: UUID) -> Payment:
        payment = self.session.get(PaymentModel, payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        ensure_business("payment", payment_id, payment.business_id, business_id)
        return payment.to_dto()

    def list(self, business_id: UUID, filters: PaymentFilter | None = None) -> list[Payment]:
        filters = filters or PaymentFilter()
        stmt = select(PaymentModel).where(PaymentModel.business_id == business_id)
        if filters.statuses:
            stmt = stmt.where(PaymentModel.status.in_([s.value for s in filters.statuses]))
        if filters.providers:
            stmt = stmt.where(PaymentModel.provider.in_(filters.providers))
        if filters.invoice_id is not None:
            stmt = stmt.where(PaymentModel.invoice_id == filters.invoice_id)
        if filters.date_from is not None:
            start = datetime.combine(filters.date_from, time.min, tzinfo=timezone.utc)
            stmt = stmt.where(PaymentModel.created_at >= start)
        if filters.date_to is not None:
            end = datetime.combine(filters.date_to, time.max, tzinfo=timezone.utc)
            stmt = stmt.where(PaymentModel.created_at <= end)
        stmt = stmt.order_by(PaymentModel.created_at.desc(), PaymentModel.payment_number.desc())
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return [payment.to_dto() for payment in self.session.execute(stmt).scalars()]

    def for_invoice(self, business_id: UUID, invoice_id: UUID) -> list[Payment]:
        return self.list(business_id, PaymentFilter(invoice_id=invoice_id))

    def stats(self, business_id: UUID) -> PaymentStats:
        """Revenue net of refunds, counts, refunds and open amounts."""
        rows = self.session.execute(
            select(
                PaymentModel.status,
                PaymentModel.amount,
                PaymentModel.refund_amount,
            ).where(PaymentModel.business_id == business_id)
        ).all()

        succeeded = [row for row in rows if row.status == PaymentStatus.SUCCEEDED.value]
        revenue = sum((row.amount - row.refund_amount for row in succeeded), _ZERO)
        return PaymentStats(
            total_revenue=revenue,
            total_payments=len(rows),
            successful_payments=len(succeeded),
            failed_payments=sum(1 for row in rows if row.status == PaymentStatus.FAILED.value),
            refunded_amount=sum((row.refund_amount for row in rows), _ZERO),
            pending_amount=sum((row.amount for row in rows if row.status in _OPEN), _ZERO),
            average_transaction=round_money(revenue / len(succeeded)) if succeeded else _ZERO,
        )
