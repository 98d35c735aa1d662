"""
Reconciliation engine: idempotence, overpayment, invariant checks and
lost-update detection and the per-invoice lock registry.
"""

import threading
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import InvoiceStatus, PaymentStatus
from ledger_kernel.exceptions import (
    ReconciliationConflictError,
    ReconciliationInvariantError,
)
from ledger_kernel.models.invoice import InvoiceModel
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.reconciliation_service import InvoiceLockRegistry, ReconciliationEngine


class TestReconcile:

    def test_idempotent(self, ledger, business_id, sent_invoice, pay, captured_logs):
        pay(sent_invoice.id, "100")
        before = ledger.get_invoice(business_id, sent_invoice.id)

        after = ledger.reconcile_invoice(business_id, sent_invoice.id)

        assert after == before
        assert "reconciliation_noop" in [r["message"] for r in captured_logs()]

    def test_settled_amount_nets_refunds(self, ledger, session, business_id, sent_invoice, pay):
        payment = pay(sent_invoice.id, "150")
        pay(sent_invoice.id, "57")
        ledger.refund_payment(business_id, payment.id, Decimal("20"))

        engine = ReconciliationEngine(session)
        assert engine.settled_amount(sent_invoice.id) == Decimal("187")
        session.rollback()

    def test_overpayment_clamped_and_flagged(
        self, ledger, session, business_id, sent_invoice, captured_logs
    ):
        # A settlement that bypassed the amount check
        session.add(
            PaymentModel(
                business_id=business_id,
                payment_number="PAY-EXTERNAL",
                invoice_id=sent_invoice.id,
                amount=Decimal("300"),
                currency="ZAR",
                status=PaymentStatus.SUCCEEDED.value,
                provider="eft",
                refund_amount=Decimal("0"),
            )
        )
        session.commit()

        invoice = ledger.reconcile_invoice(business_id, sent_invoice.id)

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal("300")
        assert invoice.amount_due == Decimal("0")
        assert invoice.overpaid_amount == Decimal("93.00")
        flagged = [r for r in captured_logs() if r["message"] == "overpayment_flagged"]
        assert flagged and flagged[0]["level"] == "WARNING"

    def test_invariant_violation_raises(
        self, ledger, session, business_id, sent_invoice, pay, captured_logs
    ):
        pay(sent_invoice.id, "207")
        model = session.get(InvoiceModel, sent_invoice.id)
        model.status = InvoiceStatus.REFUNDED.value
        session.commit()

        with pytest.raises(ReconciliationInvariantError):
            ledger.reconcile_invoice(business_id, sent_invoice.id)

        errors = [r for r in captured_logs() if r["message"] == "reconciliation_invariant_violated"]
        assert errors and errors[0]["level"] == "ERROR"

    def test_lost_update_detected(
        self,
        ledger,
        session_factory,
        business_id,
        sent_invoice,
        ledger_config,
        deterministic_clock,
        lock_registry,
        pay,
    ):
        other = session_factory()
        try:
            ledger_a = LedgerService(other, ledger_config, deterministic_clock, lock_registry)
            stale = other.get(InvoiceModel, sent_invoice.id)
            other.commit()

            # Another writer moves the invoice on
            pay(sent_invoice.id, "100")

            with pytest.raises(ReconciliationConflictError):
                with ledger_a._unit_of_work("annotate", business_id, sent_invoice.id):
                    stale.notes = "written from a stale copy"

            invoice = ledger.get_invoice(business_id, sent_invoice.id)
            assert invoice.amount_paid == Decimal("100")
            assert invoice.notes is None
        finally:
            other.close()

    def test_business_wide_conflict_names_business(
        self,
        session_factory,
        business_id,
        sent_invoice,
        ledger_config,
        deterministic_clock,
        lock_registry,
        pay,
        captured_logs,
    ):
        other = session_factory()
        try:
            sweeper = LedgerService(other, ledger_config, deterministic_clock, lock_registry)
            stale = other.get(InvoiceModel, sent_invoice.id)
            other.commit()

            pay(sent_invoice.id, "100")

            with pytest.raises(ReconciliationConflictError) as exc_info:
                with sweeper._unit_of_work("update_overdue_invoices", business_id):
                    stale.notes = "written from a stale copy"

            assert exc_info.value.invoice_id is None
            assert exc_info.value.business_id == str(business_id)
            assert "None" not in str(exc_info.value)
            conflict = [r for r in captured_logs() if r["message"] == "reconciliation_conflict"]
            assert conflict[0]["business_id"] == str(business_id)
        finally:
            other.close()


class TestInvoiceLockRegistry:

    def test_entry_released_after_hold(self):
        registry = InvoiceLockRegistry()
        invoice_id = uuid4()
        with registry.hold(invoice_id):
            assert registry.active_count() == 1
        assert registry.active_count() == 0

    def test_entry_released_when_body_raises(self):
        registry = InvoiceLockRegistry()
        with pytest.raises(RuntimeError):
            with registry.hold(uuid4()):
                raise RuntimeError("boom")
        assert registry.active_count() == 0

    def test_waiter_keeps_entry_until_done(self):
        registry = InvoiceLockRegistry()
        invoice_id = uuid4()
        entered = threading.Event()
        order = []

        def waiter():
            entered.set()
            with registry.hold(invoice_id):
                order.append("waiter")

        with registry.hold(invoice_id):
            thread = threading.Thread(target=waiter)
            thread.start()
            entered.wait(timeout=5)
            order.append("holder")
        thread.join(timeout=5)

        assert order == ["holder", "waiter"]
        assert registry.active_count() == 0

    def test_ledger_operations_leave_no_entries(
        self, ledger, business_id, sent_invoice, lock_registry, pay
    ):
        payment = pay(sent_invoice.id, "207")
        ledger.refund_payment(business_id, payment.id, Decimal("50"))
        assert lock_registry.active_count() == 0
