"""
PaymentLedger -- records payments, settlements, refunds and cancellations.

Responsibility:
    Creates payments (optionally linked to one invoice), applies the
    provider's settlement notification exactly once, records partial and
    full refunds, and cancels open payments.  Every change that affects a
    linked invoice triggers reconciliation in the same transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Status changes go through the
    PaymentStateMachine; invoice balances are written only by the
    ReconciliationEngine.

Invariants enforced:
    - amount > 0, valid currency, at most the currency's minor unit.
    - A linked invoice belongs to the caller's business, is payable
      (sent, viewed or overdue), uses the same currency, and the amount
      does not exceed amount_due minus payments still open against it.
    - 0 <= refund_amount <= amount, and refund_amount only increases.
    - A settlement notification is applied at most once (settlement_key).

Failure modes:
    - ValidationError / CurrencyMismatchError / PaymentExceedsInvoiceError
      on record, before any write.
    - InvalidTransitionError for settle/refund/cancel from the wrong status.
    - RefundExceedsPaymentError with no mutation.
    - PaymentNotFoundError / CrossBusinessAccessError.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import decimal_places_of
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    InvoiceStatus,
    PaymentStatus,
    SettlementNotice,
    SettlementOutcome,
)
from ledger_kernel.domain.values import Currency, to_decimal
from ledger_kernel.domain.workflow import PaymentStateMachine
from ledger_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    PaymentExceedsInvoiceError,
    PaymentNotFoundError,
    RefundExceedsPaymentError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.invoice import InvoiceModel
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.reconciliation_service import ReconciliationEngine
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.idempotency import make_settlement_key

if TYPE_CHECKING:
    from ledger_config import LedgerConfig

logger = get_logger("services.payment_ledger")

_ZERO = Decimal("0")

_PAYABLE_STATUSES = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.VIEWED.value,
    InvoiceStatus.OVERDUE.value,
)
_OPEN_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value)


class PaymentLedger(BaseService):
    """
    Payment and refund recorder.

    Contract:
        Methods take the caller's ``business_id`` first, flush, and return
        the PaymentModel.  Reconciliation runs through the injected
        ReconciliationEngine on the same session.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        reconciler: ReconciliationEngine | None = None,
    ):
        super().__init__(session)
        self._config = config
        self._clock = clock or SystemClock()
        self._state_machine = PaymentStateMachine(self._clock)
        self._reconciler = reconciler or ReconciliationEngine(session, self._clock)
        self._sequences = SequenceService(session)

    def get_payment_model(
        self,
        business_id: UUID,
        payment_id: UUID,
        for_update: bool = False,
    ) -> PaymentModel:
        """Load a payment owned by ``business_id`` (optionally row-locked)."""
        payment = self.session.get(
            PaymentModel,
            payment_id,
            with_for_update=for_update or None,
            populate_existing=for_update,
        )
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        self._ensure_business("payment", payment_id, payment.business_id, business_id)
        return payment

    def _open_amount(self, invoice_id: UUID) -> Decimal:
        amounts = self.session.execute(
            select(PaymentModel.amount).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.status.in_(_OPEN_STATUSES),
            )
        ).scalars().all()
        return sum(amounts, _ZERO)

    def _check_invoice(
        self,
        business_id: UUID,
        invoice_id: UUID,
        amount: Decimal,
        currency: str,
    ) -> None:
        invoice = self.session.get(
            InvoiceModel, invoice_id, with_for_update=True, populate_existing=True
        )
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        self._ensure_business("invoice", invoice_id, invoice.business_id, business_id)

        if invoice.status not in _PAYABLE_STATUSES:
            raise InvalidTransitionError(
                "invoice", str(invoice_id), invoice.status, "payment",
                "invoice does not accept payments",
            )
        if invoice.currency != currency:
            raise CurrencyMismatchError(invoice.currency, currency)

        available = invoice.amount_due - self._open_amount(invoice_id)
        if amount > available:
            raise PaymentExceedsInvoiceError(str(invoice_id), amount, max(available, _ZERO))

    def record_payment(
        self,
        business_id: UUID,
        amount: Decimal | str | int,
        currency: str | None = None,
        provider: str = "manual",
        *,
        invoice_id: UUID | None = None,
        order_id: UUID | None = None,
        provider_payment_id: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        actor_id: UUID | None = None,
    ) -> PaymentModel:
        """
        Record a payment in ``pending`` (or ``processing`` for asynchronous
        gateways).  All checks run before anything is written.
        """
        value = to_decimal(amount, "amount")
        if value <= _ZERO:
            raise ValidationError("amount", f"must be > 0, got {value}")

        if currency is None and invoice_id is not None:
            linked = self.session.get(InvoiceModel, invoice_id)
            currency = linked.currency if linked is not None else None
        ccy = Currency(currency or self._config.default_currency)
        if decimal_places_of(value) > ccy.decimal_places:
            raise ValidationError(
                "amount", f"{value} is finer than the {ccy.code} minor unit"
            )

        if provider not in self._config.providers:
            raise ValidationError("provider", f"unknown provider '{provider}'")

        if invoice_id is not None:
            self._check_invoice(business_id, invoice_id, value, ccy.code)

        status = (
            PaymentStatus.PROCESSING
            if self._config.is_async_provider(provider)
            else PaymentStatus.PENDING
        )
        seq = self._sequences.next_value(
            SequenceService.sequence_name(SequenceService.PAYMENT, business_id)
        )
        payment = PaymentModel(
            business_id=business_id,
            payment_number=self._config.format_number(self._config.payment_number_prefix, seq),
            invoice_id=invoice_id,
            order_id=order_id,
            amount=value,
            currency=ccy.code,
            status=status.value,
            provider=provider,
            provider_payment_id=provider_payment_id,
            description=description,
            refund_amount=_ZERO,
            metadata_=dict(metadata or {}),
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self.session.flush()
        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "payment_number": payment.payment_number,
                "invoice_id": str(invoice_id) if invoice_id else None,
                "amount": value,
                "currency": ccy.code,
                "provider": provider,
                "status": payment.status,
            },
        )
        return payment

    def begin_processing(self, business_id: UUID, payment_id: UUID) -> PaymentModel:
        payment = self.get_payment_model(business_id, payment_id, for_update=True)
        self._state_machine.transition(payment, PaymentStatus.PROCESSING, "begin_processing")
        self.session.flush()
        return payment

    def settle_payment(self, business_id: UUID, notice: SettlementNotice) -> PaymentModel:
        """
        Apply a provider settlement notification.

        A redelivered notification (same payment and outcome) is ignored;
        a success reconciles the linked invoice in the same transaction.
        """
        payment = self.get_payment_model(business_id, notice.payment_id, for_update=True)
        key = make_settlement_key(payment.id, notice.outcome.value)
        if payment.settlement_key == key:
            logger.info(
                "settlement_duplicate_ignored",
                extra={"payment_id": str(payment.id), "outcome": notice.outcome.value},
            )
            return payment

        if notice.outcome is SettlementOutcome.SUCCEEDED:
            target = PaymentStatus.SUCCEEDED
            if payment.status in _OPEN_STATUSES:
                payment.paid_at = notice.paid_at
        else:
            target = PaymentStatus.FAILED

        self._state_machine.transition(payment, target, "settle")
        payment.settlement_key = key
        if notice.provider_payment_id:
            payment.provider_payment_id = notice.provider_payment_id
        if target is PaymentStatus.FAILED:
            payment.failure_reason = notice.failure_reason
        self.session.flush()

        logger.info(
            "payment_settled",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(payment.invoice_id) if payment.invoice_id else None,
                "outcome": notice.outcome.value,
                "amount": payment.amount,
                "failure_reason": payment.failure_reason,
            },
        )

        if target is PaymentStatus.SUCCEEDED and payment.invoice_id is not None:
            self._reconciler.reconcile(payment.invoice_id)
        return payment

    def refund_payment(
        self,
        business_id: UUID,
        payment_id: UUID,
        refund_amount: Decimal | str | int | None = None,
        reason: str | None = None,
    ) -> PaymentModel:
        """
        Refund part or all of a succeeded payment.

        Defaults to the full remaining amount.  The payment moves to
        ``refunded`` only once refund_amount reaches amount.
        """
        payment = self.get_payment_model(business_id, payment_id, for_update=True)
        if payment.status != PaymentStatus.SUCCEEDED.value:
            raise InvalidTransitionError(
                "payment", str(payment_id), payment.status, PaymentStatus.REFUNDED.value,
                "only succeeded payments can be refunded",
            )

        remaining = payment.amount - payment.refund_amount
        requested = remaining if refund_amount is None else to_decimal(refund_amount, "refund_amount")
        if requested <= _ZERO:
            raise ValidationError("refund_amount", f"must be > 0, got {requested}")
        ccy = Currency(payment.currency)
        if decimal_places_of(requested) > ccy.decimal_places:
            raise ValidationError(
                "refund_amount", f"{requested} is finer than the {ccy.code} minor unit"
            )
        if requested > remaining:
            logger.warning(
                "refund_rejected",
                extra={
                    "payment_id": str(payment_id),
                    "requested": requested,
                    "remaining": remaining,
                },
            )
            raise RefundExceedsPaymentError(str(payment_id), requested, remaining)

        payment.refund_amount = payment.refund_amount + requested
        payment.refunded_at = self._clock.now()
        if payment.refund_amount == payment.amount:
            self._state_machine.transition(payment, PaymentStatus.REFUNDED, "refund")
        if reason:
            payment.metadata_ = {**(payment.metadata_ or {}), "refund_reason": reason}
        self.session.flush()

        logger.info(
            "payment_refunded",
            extra={
                "payment_id": str(payment_id),
                "invoice_id": str(payment.invoice_id) if payment.invoice_id else None,
                "refunded": requested,
                "refund_amount": payment.refund_amount,
                "status": payment.status,
                "reason": reason,
            },
        )

        if payment.invoice_id is not None:
            self._reconciler.reconcile(payment.invoice_id)
        return payment

    def cancel_payment(
        self,
        business_id: UUID,
        payment_id: UUID,
        reason: str | None = None,
    ) -> PaymentModel:
        payment = self.get_payment_model(business_id, payment_id, for_update=True)
        self._state_machine.transition(payment, PaymentStatus.CANCELLED, "cancel")
        if reason:
            payment.failure_reason = reason
        self.session.flush()
        logger.info(
            "payment_cancelled",
            extra={"payment_id": str(payment_id), "reason": reason},
        )
        return payment
