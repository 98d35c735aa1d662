"""
ReconciliationEngine -- the single writer of an invoice's paid/due amounts.

Responsibility:
    On every settlement or refund touching a linked invoice: lock the
    invoice row, recompute amount_paid from its succeeded payments, refresh
    the aggregates, apply the status transition implied by the new balance,
    and verify the status/amount invariant table.

Architecture position:
    Kernel > Services -- imperative shell.  Called by PaymentLedger within
    the caller's transaction and by LedgerService for explicit reconciles.
    Never commits.

Invariants enforced:
    - amount_paid == sum(amount - refund_amount) over succeeded payments.
    - amount_due == max(0, total_amount - amount_paid); any excess is kept in
      overpaid_amount and logged as ``overpayment_flagged``.
    - amount_refunded == sum(refund_amount) over settled payments; an open
      invoice whose payments are all refunded in full becomes refunded.
    - Status agrees with the balance, or ReconciliationInvariantError is
      raised (loud failure, never a silent clamp).
    - Idempotent: a re-run over the same payment set writes nothing, so the
      invoice version does not move.

Failure modes:
    - InvoiceNotFoundError if the invoice does not exist.
    - ReconciliationInvariantError if the invariant table does not hold.
    - StaleDataError (mapped to ReconciliationConflictError by
      LedgerService) if another writer updated the invoice concurrently.

Audit relevance:
    Every run that changes an invoice logs ``reconciliation_completed`` with
    the before/after amounts and status.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.aggregator import compute_totals
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import PaymentStatus
from ledger_kernel.domain.workflow import InvoiceStateMachine, check_invoice_invariants
from ledger_kernel.exceptions import InvoiceNotFoundError, ReconciliationInvariantError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.invoice import InvoiceModel
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")

_ZERO = Decimal("0")

_BALANCE_FIELDS = ("subtotal", "discount_amount", "tax_amount", "total_amount",
                   "amount_paid", "amount_due", "overpaid_amount")
_SETTLED_STATUSES = (PaymentStatus.SUCCEEDED.value, PaymentStatus.REFUNDED.value)


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one reconciliation run."""
    invoice_id: UUID
    changed: bool
    from_status: str
    to_status: str
    amount_paid: Decimal
    amount_due: Decimal
    overpaid_amount: Decimal


class InvoiceLockRegistry:
    """
    Process-local mutual exclusion per invoice.

    Serialises units of work on the same invoice inside one process; the
    database row lock covers other processes.  An invoice's entry lives only
    while some thread holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[UUID, threading.Lock] = {}
        self._holders: dict[UUID, int] = {}

    def _acquire_entry(self, invoice_id: UUID) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(invoice_id)
            if lock is None:
                lock = self._locks[invoice_id] = threading.Lock()
            self._holders[invoice_id] = self._holders.get(invoice_id, 0) + 1
            return lock

    def _release_entry(self, invoice_id: UUID) -> None:
        with self._guard:
            remaining = self._holders[invoice_id] - 1
            if remaining:
                self._holders[invoice_id] = remaining
            else:
                del self._holders[invoice_id]
                del self._locks[invoice_id]

    def active_count(self) -> int:
        """Invoices currently held or waited on."""
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, invoice_id: UUID) -> Iterator[None]:
        lock = self._acquire_entry(invoice_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(invoice_id)


class ReconciliationEngine(BaseService):
    """
    Recomputes one invoice's balance from its payments.

    Guarantees:
        - The invoice row is locked (SELECT ... FOR UPDATE) before payments
          are summed.
        - Only changed fields are written.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._state_machine = InvoiceStateMachine(self._clock)

    def settled_amount(self, invoice_id: UUID) -> Decimal:
        """sum(amount - refund_amount) over succeeded payments of the invoice."""
        rows = self.session.execute(
            select(PaymentModel.amount, PaymentModel.refund_amount).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.status == PaymentStatus.SUCCEEDED.value,
            )
        ).all()
        return sum((amount - refunded for amount, refunded in rows), _ZERO)

    def refunded_amount(self, invoice_id: UUID) -> Decimal:
        """sum(refund_amount) over the invoice's settled payments, refunded or not."""
        rows = self.session.execute(
            select(PaymentModel.refund_amount).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.status.in_(_SETTLED_STATUSES),
            )
        ).scalars()
        return sum(rows, _ZERO)

    def reconcile(self, invoice_id: UUID, as_of: date | None = None) -> ReconciliationResult:
        """
        Bring the invoice's amounts and status in line with its payments.

        Raises:
            InvoiceNotFoundError: No such invoice.
            ReconciliationInvariantError: Status/amount invariant violated.
        """
        as_of = as_of or self._clock.today()
        invoice = self.session.get(
            InvoiceModel,
            invoice_id,
            with_for_update=True,
            populate_existing=True,
        )
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))

        from_status = invoice.status
        before = {name: getattr(invoice, name) for name in _BALANCE_FIELDS}

        totals = compute_totals(invoice.lines, self.settled_amount(invoice_id))
        changed = False
        for name in _BALANCE_FIELDS:
            value = getattr(totals, name)
            if getattr(invoice, name) != value:
                setattr(invoice, name, value)
                changed = True

        refunded = self.refunded_amount(invoice_id)
        if invoice.amount_refunded != refunded:
            invoice.amount_refunded = refunded
            changed = True

        if totals.is_overpaid:
            logger.warning(
                "overpayment_flagged",
                extra={
                    "invoice_id": str(invoice_id),
                    "total_amount": totals.total_amount,
                    "amount_paid": totals.amount_paid,
                    "overpaid_amount": totals.overpaid_amount,
                },
            )

        implied = self._state_machine.implied_transition(invoice, as_of)
        if implied is not None:
            target, action = implied
            self._state_machine.transition(invoice, target, action, as_of)
            changed = True

        reason = check_invoice_invariants(invoice)
        if reason is not None:
            logger.error(
                "reconciliation_invariant_violated",
                extra={
                    "invoice_id": str(invoice_id),
                    "status": invoice.status,
                    "reason": reason,
                },
            )
            raise ReconciliationInvariantError(str(invoice_id), invoice.status, reason)

        if changed:
            self.session.flush()
            logger.info(
                "reconciliation_completed",
                extra={
                    "invoice_id": str(invoice_id),
                    "from_status": from_status,
                    "to_status": invoice.status,
                    "amount_paid_before": before["amount_paid"],
                    "amount_paid": invoice.amount_paid,
                    "amount_due": invoice.amount_due,
                },
            )
        else:
            logger.debug(
                "reconciliation_noop",
                extra={"invoice_id": str(invoice_id), "status": invoice.status},
            )

        return ReconciliationResult(
            invoice_id=invoice_id,
            changed=changed,
            from_status=from_status,
            to_status=invoice.status,
            amount_paid=invoice.amount_paid,
            amount_due=invoice.amount_due,
            overpaid_amount=invoice.overpaid_amount,
        )
