"""
Payment recording, settlement, refunds and cancellation through LedgerService.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import (
    InvoiceStatus,
    PaymentStatus,
    SettlementNotice,
    SettlementOutcome,
)
from ledger_kernel.exceptions import (
    CrossBusinessAccessError,
    CurrencyMismatchError,
    InvalidTransitionError,
    PaymentExceedsInvoiceError,
    PaymentNotFoundError,
    RefundExceedsPaymentError,
    ValidationError,
)

PROVIDER_TIME = datetime(2024, 3, 1, 8, 55, tzinfo=timezone.utc)


def _notice(payment_id, outcome=SettlementOutcome.SUCCEEDED, **kwargs):
    return SettlementNotice(payment_id=payment_id, outcome=outcome, **kwargs)


class TestRecordPayment:

    def test_manual_payment_is_pending(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)

        assert payment.status == PaymentStatus.PENDING
        assert payment.currency == "ZAR"
        assert payment.payment_number == "PAY-000001"
        assert payment.refund_amount == Decimal("0")

    def test_gateway_payment_is_processing(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(
            business_id, Decimal("100"), provider="payfast", invoice_id=sent_invoice.id
        )
        assert payment.status == PaymentStatus.PROCESSING

    def test_recording_does_not_touch_invoice(self, ledger, business_id, sent_invoice):
        ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        invoice = ledger.get_invoice(business_id, sent_invoice.id)
        assert invoice.amount_paid == Decimal("0")
        assert invoice.amount_due == Decimal("207.00")

    def test_unlinked_payment(self, ledger, business_id):
        payment = ledger.record_payment(business_id, "99.99", provider="cash")
        assert payment.invoice_id is None
        assert payment.amount == Decimal("99.99")

    @pytest.mark.parametrize("amount", ["0", "-5", "10.005"])
    def test_invalid_amount(self, ledger, business_id, sent_invoice, amount):
        with pytest.raises(ValidationError) as exc_info:
            ledger.record_payment(business_id, amount, invoice_id=sent_invoice.id)
        assert exc_info.value.field == "amount"

    def test_unknown_provider(self, ledger, business_id, sent_invoice):
        with pytest.raises(ValidationError) as exc_info:
            ledger.record_payment(
                business_id, Decimal("10"), provider="barter", invoice_id=sent_invoice.id
            )
        assert exc_info.value.field == "provider"

    def test_currency_mismatch(self, ledger, business_id, sent_invoice):
        with pytest.raises(CurrencyMismatchError):
            ledger.record_payment(business_id, Decimal("10"), "USD", invoice_id=sent_invoice.id)

    def test_exceeding_amount_due(self, ledger, business_id, sent_invoice):
        with pytest.raises(PaymentExceedsInvoiceError) as exc_info:
            ledger.record_payment(business_id, Decimal("207.01"), invoice_id=sent_invoice.id)
        assert exc_info.value.available == Decimal("207.00")
        assert ledger.list_payments(business_id) == []

    def test_open_payments_reduce_available(self, ledger, business_id, sent_invoice):
        ledger.record_payment(business_id, Decimal("200"), invoice_id=sent_invoice.id)
        with pytest.raises(PaymentExceedsInvoiceError):
            ledger.record_payment(business_id, Decimal("10"), invoice_id=sent_invoice.id)
        ledger.record_payment(business_id, Decimal("7"), invoice_id=sent_invoice.id)

    def test_draft_invoice_not_payable(self, ledger, business_id, consulting_line):
        invoice = ledger.create_invoice(business_id, [consulting_line])
        with pytest.raises(InvalidTransitionError):
            ledger.record_payment(business_id, Decimal("10"), invoice_id=invoice.id)

    def test_cancelled_invoice_not_payable(self, ledger, business_id, sent_invoice):
        ledger.cancel_invoice(business_id, sent_invoice.id)
        with pytest.raises(InvalidTransitionError):
            ledger.record_payment(business_id, Decimal("10"), invoice_id=sent_invoice.id)

    def test_foreign_invoice(self, ledger, other_business_id, sent_invoice):
        with pytest.raises(CrossBusinessAccessError):
            ledger.record_payment(other_business_id, Decimal("10"), invoice_id=sent_invoice.id)


class TestSettlement:

    def test_success_reconciles_invoice(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        settled = ledger.settle_payment(business_id, _notice(payment.id, paid_at=PROVIDER_TIME))

        assert settled.status == PaymentStatus.SUCCEEDED
        assert settled.paid_at == PROVIDER_TIME
        invoice = ledger.get_invoice(business_id, sent_invoice.id)
        assert invoice.amount_paid == Decimal("100")
        assert invoice.amount_due == Decimal("107.00")
        assert invoice.status == InvoiceStatus.SENT

    def test_duplicate_notification_ignored(self, ledger, business_id, sent_invoice, captured_logs):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        ledger.settle_payment(business_id, _notice(payment.id))
        again = ledger.settle_payment(business_id, _notice(payment.id))

        assert again.status == PaymentStatus.SUCCEEDED
        assert ledger.get_invoice(business_id, sent_invoice.id).amount_paid == Decimal("100")
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("payment_settled") == 1
        assert "settlement_duplicate_ignored" in messages

    def test_conflicting_outcome_rejected(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        ledger.settle_payment(business_id, _notice(payment.id))
        with pytest.raises(InvalidTransitionError):
            ledger.settle_payment(business_id, _notice(payment.id, SettlementOutcome.FAILED))

    def test_failure_leaves_invoice_untouched(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("207"), invoice_id=sent_invoice.id)
        failed = ledger.settle_payment(
            business_id,
            _notice(payment.id, SettlementOutcome.FAILED, failure_reason="card declined"),
        )

        assert failed.status == PaymentStatus.FAILED
        assert failed.failure_reason == "card declined"
        assert failed.paid_at is None
        invoice = ledger.get_invoice(business_id, sent_invoice.id)
        assert invoice.amount_paid == Decimal("0")
        assert invoice.status == InvoiceStatus.SENT

        # The failed attempt no longer reserves the balance
        retry = ledger.record_payment(business_id, Decimal("207"), invoice_id=sent_invoice.id)
        assert retry.status == PaymentStatus.PENDING

    def test_gateway_reference_recorded(self, ledger, business_id, sent_invoice):
        payment = ledger.begin_processing(
            business_id,
            ledger.record_payment(business_id, Decimal("50"), invoice_id=sent_invoice.id).id,
        )
        assert payment.status == PaymentStatus.PROCESSING
        settled = ledger.settle_payment(
            business_id, _notice(payment.id, provider_payment_id="pf_123")
        )
        assert settled.provider_payment_id == "pf_123"

    def test_unknown_payment(self, ledger, business_id):
        with pytest.raises(PaymentNotFoundError):
            ledger.settle_payment(business_id, _notice(uuid4()))

    def test_foreign_business_cannot_settle(
        self, ledger, business_id, other_business_id, sent_invoice, captured_logs
    ):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        with pytest.raises(CrossBusinessAccessError):
            ledger.settle_payment(other_business_id, _notice(payment.id))

        assert ledger.get_payment(business_id, payment.id).status == PaymentStatus.PENDING
        denied = [r for r in captured_logs() if r["message"] == "cross_business_access_denied"]
        assert denied[0]["logger"] == "ledger_kernel.security"
        assert denied[0]["entity_type"] == "payment"


class TestRefunds:

    def test_partial_refund(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        refunded = ledger.refund_payment(business_id, payment.id, Decimal("50"), reason="goodwill")

        assert refunded.status == PaymentStatus.SUCCEEDED
        assert refunded.refund_amount == Decimal("50")
        assert refunded.refunded_at is not None
        assert refunded.metadata["refund_reason"] == "goodwill"

    def test_refunds_accumulate_to_full(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        ledger.refund_payment(business_id, payment.id, Decimal("7"))
        final = ledger.refund_payment(business_id, payment.id, Decimal("200"))

        assert final.refund_amount == Decimal("207")
        assert final.status == PaymentStatus.REFUNDED

        invoice = ledger.get_invoice(business_id, sent_invoice.id)
        assert invoice.status == InvoiceStatus.REFUNDED
        assert invoice.amount_paid == Decimal("0")
        assert invoice.amount_refunded == Decimal("207")

    def test_split_refund_ends_like_single_refund(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        ledger.refund_payment(business_id, payment.id, Decimal("50"))
        assert ledger.get_invoice(business_id, sent_invoice.id).status == InvoiceStatus.SENT

        ledger.refund_payment(business_id, payment.id, Decimal("157"))

        invoice = ledger.get_invoice(business_id, sent_invoice.id)
        assert invoice.status == InvoiceStatus.REFUNDED
        assert invoice.amount_due == Decimal("207.00")
        with pytest.raises(InvalidTransitionError):
            ledger.record_payment(business_id, Decimal("10"), invoice_id=sent_invoice.id)

    def test_refunding_every_partial_payment(self, ledger, business_id, sent_invoice, pay):
        first = pay(sent_invoice.id, "100")
        second = pay(sent_invoice.id, "50")
        ledger.refund_payment(business_id, first.id)
        assert ledger.get_invoice(business_id, sent_invoice.id).status == InvoiceStatus.SENT

        ledger.refund_payment(business_id, second.id)
        assert ledger.get_invoice(business_id, sent_invoice.id).status == InvoiceStatus.REFUNDED

    def test_default_refunds_remaining(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        ledger.refund_payment(business_id, payment.id, Decimal("7"))
        final = ledger.refund_payment(business_id, payment.id)
        assert final.refund_amount == Decimal("207")

    def test_over_refund_rejected_without_mutation(
        self, ledger, business_id, sent_invoice, pay, captured_logs
    ):
        payment = pay(sent_invoice.id, "207")
        ledger.refund_payment(business_id, payment.id, Decimal("200"))

        with pytest.raises(RefundExceedsPaymentError) as exc_info:
            ledger.refund_payment(business_id, payment.id, Decimal("8"))

        assert exc_info.value.remaining == Decimal("7")
        assert ledger.get_payment(business_id, payment.id).refund_amount == Decimal("200")
        assert ledger.get_invoice(business_id, sent_invoice.id).amount_paid == Decimal("7")
        assert any(
            r["message"] == "refund_rejected" and r["level"] == "WARNING"
            for r in captured_logs()
        )

    def test_zero_refund_rejected(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        with pytest.raises(ValidationError):
            ledger.refund_payment(business_id, payment.id, Decimal("0"))

    def test_sub_cent_refund_rejected_without_mutation(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        with pytest.raises(ValidationError) as exc_info:
            ledger.refund_payment(business_id, payment.id, Decimal("0.001"))

        assert exc_info.value.field == "refund_amount"
        assert ledger.get_payment(business_id, payment.id).refund_amount == Decimal("0")
        invoice = ledger.get_invoice(business_id, sent_invoice.id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal("207")

    def test_pending_payment_cannot_be_refunded(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        with pytest.raises(InvalidTransitionError):
            ledger.refund_payment(business_id, payment.id, Decimal("10"))

    def test_refunded_payment_is_terminal(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "207")
        ledger.refund_payment(business_id, payment.id)
        with pytest.raises(InvalidTransitionError):
            ledger.refund_payment(business_id, payment.id, Decimal("1"))


class TestCancelPayment:

    def test_cancel_pending(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        cancelled = ledger.cancel_payment(business_id, payment.id, reason="customer abandoned")

        assert cancelled.status == PaymentStatus.CANCELLED
        assert cancelled.cancelled_at is not None

    def test_cancelled_payment_cannot_settle(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("100"), invoice_id=sent_invoice.id)
        ledger.cancel_payment(business_id, payment.id)
        with pytest.raises(InvalidTransitionError):
            ledger.settle_payment(business_id, _notice(payment.id))

    def test_succeeded_payment_cannot_be_cancelled(self, ledger, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "100")
        with pytest.raises(InvalidTransitionError):
            ledger.cancel_payment(business_id, payment.id)

    def test_cancelling_releases_reservation(self, ledger, business_id, sent_invoice):
        payment = ledger.record_payment(business_id, Decimal("207"), invoice_id=sent_invoice.id)
        ledger.cancel_payment(business_id, payment.id)
        ledger.cancel_invoice(business_id, sent_invoice.id)
        assert ledger.get_invoice(business_id, sent_invoice.id).status == InvoiceStatus.CANCELLED
