"""
LedgerService -- transaction boundary and public facade of the ledger.

Responsibility:
    Exposes every ledger operation to callers (API handlers, provider
    webhooks, the overdue sweep) and owns the unit of work: each call is
    one atomic transaction that commits on success and rolls back on any
    failure.  Returns frozen DTOs, never ORM rows.

Architecture position:
    Kernel > Services -- outermost kernel service.  Composes InvoiceService,
    PaymentLedger, ReconciliationEngine and the selectors on one session.

Invariants enforced:
    - Kernel services only flush; this class alone commits or rolls back.
    - Units of work touching one invoice are serialised in-process by the
      InvoiceLockRegistry; the row lock and the version check cover the
      rest.  A lost update surfaces as ReconciliationConflictError and is
      never retried here.
    - No error is swallowed: the transaction is rolled back and the error
      re-raised.

Failure modes:
    - Any LedgerError raised by the composed services (after rollback).
    - ReconciliationConflictError when the invoice version check fails.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager, nullcontext
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    Invoice,
    InvoiceFilter,
    InvoiceLineInput,
    InvoiceStats,
    Payment,
    PaymentFilter,
    PaymentStats,
    SettlementNotice,
)
from ledger_kernel.exceptions import ReconciliationConflictError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.invoice_selector import InvoiceSelector
from ledger_kernel.selectors.payment_selector import PaymentSelector
from ledger_kernel.services.invoice_service import InvoiceService
from ledger_kernel.services.payment_ledger import PaymentLedger
from ledger_kernel.services.reconciliation_service import (
    InvoiceLockRegistry,
    ReconciliationEngine,
)

logger = get_logger("services.ledger")

# Shared by every LedgerService in the process unless one is injected
_DEFAULT_LOCKS = InvoiceLockRegistry()


class LedgerService:
    """
    The ledger's public entry point.

    Usage:
        ledger = LedgerService(session, clock=DeterministicClock())
        invoice = ledger.create_invoice(business_id, [line])
        ledger.send_invoice(business_id, invoice.id)
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        locks: InvoiceLockRegistry | None = None,
    ):
        self.session = session
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._locks = locks if locks is not None else _DEFAULT_LOCKS

        self._reconciler = ReconciliationEngine(session, self._clock)
        self._invoices = InvoiceService(session, self._config, self._clock)
        self._payments = PaymentLedger(session, self._config, self._clock, self._reconciler)
        self._invoice_reader = InvoiceSelector(session)
        self._payment_reader = PaymentSelector(session)

    # -------------------------------------------------------------------------
    # Transaction boundary
    # -------------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        business_id: UUID,
        invoice_id: UUID | None = None,
        payment_id: UUID | None = None,
    ) -> Iterator[None]:
        guard = self._locks.hold(invoice_id) if invoice_id is not None else nullcontext()
        with guard, LogContext.bind(
            business_id=business_id, invoice_id=invoice_id, payment_id=payment_id
        ):
            try:
                yield
                self.session.commit()
            except StaleDataError as exc:
                self.session.rollback()
                subject = str(invoice_id) if invoice_id is not None else None
                logger.warning(
                    "reconciliation_conflict",
                    extra={
                        "operation": operation,
                        "invoice_id": subject,
                        "business_id": str(business_id),
                    },
                )
                raise ReconciliationConflictError(subject, str(business_id)) from exc
            except Exception:
                self.session.rollback()
                logger.warning("unit_of_work_rolled_back", extra={"operation": operation})
                raise

    @contextmanager
    def _read(self) -> Iterator[None]:
        # Other sessions may have committed since this one last loaded a row
        self.session.expire_all()
        try:
            yield
        finally:
            # Release the read transaction
            self.session.rollback()

    def _invoice_of_payment(self, business_id: UUID, payment_id: UUID) -> UUID | None:
        with self._read():
            return self._payments.get_payment_model(business_id, payment_id).invoice_id

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def create_invoice(
        self,
        business_id: UUID,
        lines: Iterable[InvoiceLineInput] = (),
        **fields: Any,
    ) -> Invoice:
        with self._unit_of_work("create_invoice", business_id):
            result = self._invoices.create_invoice(business_id, lines, **fields).to_dto()
        return result

    def add_line(self, business_id: UUID, invoice_id: UUID, line: InvoiceLineInput) -> Invoice:
        with self._unit_of_work("add_line", business_id, invoice_id):
            result = self._invoices.add_line(business_id, invoice_id, line).to_dto()
        return result

    def update_line(
        self,
        business_id: UUID,
        invoice_id: UUID,
        line_id: UUID,
        line: InvoiceLineInput,
    ) -> Invoice:
        with self._unit_of_work("update_line", business_id, invoice_id):
            result = self._invoices.update_line(business_id, invoice_id, line_id, line).to_dto()
        return result

    def remove_line(self, business_id: UUID, invoice_id: UUID, line_id: UUID) -> Invoice:
        with self._unit_of_work("remove_line", business_id, invoice_id):
            result = self._invoices.remove_line(business_id, invoice_id, line_id).to_dto()
        return result

    def update_invoice(self, business_id: UUID, invoice_id: UUID, **changes: Any) -> Invoice:
        with self._unit_of_work("update_invoice", business_id, invoice_id):
            result = self._invoices.update_details(business_id, invoice_id, **changes).to_dto()
        return result

    def delete_invoice(self, business_id: UUID, invoice_id: UUID) -> None:
        with self._unit_of_work("delete_invoice", business_id, invoice_id):
            self._invoices.delete_invoice(business_id, invoice_id)

    def send_invoice(self, business_id: UUID, invoice_id: UUID) -> Invoice:
        with self._unit_of_work("send_invoice", business_id, invoice_id):
            result = self._invoices.send_invoice(business_id, invoice_id).to_dto()
        return result

    def mark_invoice_viewed(self, business_id: UUID, invoice_id: UUID) -> Invoice:
        with self._unit_of_work("mark_invoice_viewed", business_id, invoice_id):
            result = self._invoices.mark_invoice_viewed(business_id, invoice_id).to_dto()
        return result

    def cancel_invoice(
        self,
        business_id: UUID,
        invoice_id: UUID,
        reason: str | None = None,
    ) -> Invoice:
        with self._unit_of_work("cancel_invoice", business_id, invoice_id):
            result = self._invoices.cancel_invoice(business_id, invoice_id, reason).to_dto()
        return result

    def record_invoice_document(
        self,
        business_id: UUID,
        invoice_id: UUID,
        document_url: str,
    ) -> Invoice:
        with self._unit_of_work("record_invoice_document", business_id, invoice_id):
            result = self._invoices.record_invoice_document(
                business_id, invoice_id, document_url
            ).to_dto()
        return result

    def reconcile_invoice(self, business_id: UUID, invoice_id: UUID) -> Invoice:
        """Explicitly re-run reconciliation; a no-op when nothing changed."""
        with self._unit_of_work("reconcile_invoice", business_id, invoice_id):
            self._invoices.get_invoice_model(business_id, invoice_id)
            self._reconciler.reconcile(invoice_id)
            result = self._invoices.get_invoice_model(business_id, invoice_id).to_dto()
        return result

    def update_overdue_invoices(self, business_id: UUID, as_of_date: date | None = None) -> int:
        with self._unit_of_work("update_overdue_invoices", business_id):
            count = self._invoices.update_overdue_invoices(business_id, as_of_date)
        return count

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def record_payment(
        self,
        business_id: UUID,
        amount: Decimal | str | int,
        currency: str | None = None,
        provider: str = "manual",
        **fields: Any,
    ) -> Payment:
        invoice_id = fields.get("invoice_id")
        with self._unit_of_work("record_payment", business_id, invoice_id):
            result = self._payments.record_payment(
                business_id, amount, currency, provider, **fields
            ).to_dto()
        return result

    def begin_processing(self, business_id: UUID, payment_id: UUID) -> Payment:
        with self._unit_of_work("begin_processing", business_id, payment_id=payment_id):
            result = self._payments.begin_processing(business_id, payment_id).to_dto()
        return result

    def settle_payment(self, business_id: UUID, notice: SettlementNotice) -> Payment:
        """Apply a settlement notification and reconcile its invoice atomically."""
        invoice_id = self._invoice_of_payment(business_id, notice.payment_id)
        with self._unit_of_work("settle_payment", business_id, invoice_id, notice.payment_id):
            result = self._payments.settle_payment(business_id, notice).to_dto()
        return result

    def refund_payment(
        self,
        business_id: UUID,
        payment_id: UUID,
        refund_amount: Decimal | str | int | None = None,
        reason: str | None = None,
    ) -> Payment:
        invoice_id = self._invoice_of_payment(business_id, payment_id)
        with self._unit_of_work("refund_payment", business_id, invoice_id, payment_id):
            result = self._payments.refund_payment(
                business_id, payment_id, refund_amount, reason
            ).to_dto()
        return result

    def cancel_payment(
        self,
        business_id: UUID,
        payment_id: UUID,
        reason: str | None = None,
    ) -> Payment:
        invoice_id = self._invoice_of_payment(business_id, payment_id)
        with self._unit_of_work("cancel_payment", business_id, invoice_id, payment_id):
            result = self._payments.cancel_payment(business_id, payment_id, reason).to_dto()
        return result

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_invoice(self, business_id: UUID, invoice_id: UUID) -> Invoice:
        with self._read():
            return self._invoice_reader.get(business_id, invoice_id)

    def get_invoice_by_number(self, business_id: UUID, invoice_number: str) -> Invoice | None:
        with self._read():
            return self._invoice_reader.get_by_number(business_id, invoice_number)

    def list_invoices(self, business_id: UUID, filters: InvoiceFilter | None = None) -> list[Invoice]:
        with self._read():
            return self._invoice_reader.list(business_id, filters)

    def invoice_stats(
        self,
        business_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> InvoiceStats:
        with self._read():
            return self._invoice_reader.stats(business_id, date_from, date_to)

    def get_payment(self, business_id: UUID, payment_id: UUID) -> Payment:
        with self._read():
            return self._payment_reader.get(business_id, payment_id)

    def list_payments(self, business_id: UUID, filters: PaymentFilter | None = None) -> list[Payment]:
        with self._read():
            return self._payment_reader.list(business_id, filters)

    def list_invoice_payments(self, business_id: UUID, invoice_id: UUID) -> list[Payment]:
        """Every payment recorded against an invoice, newest first."""
        with self._read():
            self._invoice_reader.get(business_id, invoice_id)
            return self._payment_reader.for_invoice(business_id, invoice_id)

    def payment_stats(self, business_id: UUID) -> PaymentStats:
        with self._read():
            return self._payment_reader.stats(business_id)
