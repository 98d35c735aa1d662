"""
InvoiceService -- invoice creation, draft editing and lifecycle actions.

Responsibility:
    Creates invoices with sequential numbers, edits lines and details while
    the invoice is a draft (recomputing every derived amount on each
    mutation), and applies the explicit lifecycle actions: send, mark
    viewed, cancel, delete, record document, overdue sweep.

Architecture position:
    Kernel > Services -- imperative shell.  Pricing comes from the pure
    line calculator and aggregator; status changes go through the
    InvoiceStateMachine.  Never writes amount_paid.

Invariants enforced:
    - Lines and details are mutable only in ``draft``.
    - Line totals are always the pure function of the line inputs.
    - due_date >= issue_date.
    - Every read or write is scoped to the caller's business.

Failure modes:
    - ValidationError before any mutation for malformed input.
    - InvoiceNotEditableError for edits outside ``draft``.
    - InvalidTransitionError for illegal lifecycle actions.
    - InvoiceNotFoundError / InvoiceLineNotFoundError / CrossBusinessAccessError.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.aggregator import compute_totals
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import InvoiceLineInput, InvoiceStatus, PaymentStatus
from ledger_kernel.domain.line_calculator import LineAmounts, compute_line
from ledger_kernel.domain.values import Currency
from ledger_kernel.domain.workflow import InvoiceStateMachine
from ledger_kernel.exceptions import (
    InvalidTransitionError,
    InvoiceLineNotFoundError,
    InvoiceNotEditableError,
    InvoiceNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.invoice import InvoiceLineModel, InvoiceModel
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import SequenceService

if TYPE_CHECKING:
    from ledger_config import LedgerConfig

logger = get_logger("services.invoice")

_OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value)

_EDITABLE_DETAILS = frozenset({
    "customer_id",
    "order_id",
    "issue_date",
    "due_date",
    "notes",
    "terms",
    "payment_instructions",
    "metadata",
})


def _check_date(name: str, value: Any) -> date:
    # datetime is a date subclass but does not belong in a Date column
    if not isinstance(value, date) or isinstance(value, datetime):
        raise ValidationError(name, f"must be a date, got {value!r}")
    return value


class InvoiceService(BaseService):
    """
    Invoice lifecycle service.

    Contract:
        Every public method takes the caller's ``business_id`` first and
        returns the flushed InvoiceModel (or a count for the sweep).
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._config = config
        self._clock = clock or SystemClock()
        self._state_machine = InvoiceStateMachine(self._clock)
        self._sequences = SequenceService(session)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def get_invoice_model(
        self,
        business_id: UUID,
        invoice_id: UUID,
        for_update: bool = False,
    ) -> InvoiceModel:
        """Load an invoice owned by ``business_id`` (optionally row-locked)."""
        invoice = self.session.get(
            InvoiceModel,
            invoice_id,
            with_for_update=for_update or None,
            populate_existing=for_update,
        )
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        self._ensure_business("invoice", invoice_id, invoice.business_id, business_id)
        return invoice

    def _get_editable(self, business_id: UUID, invoice_id: UUID) -> InvoiceModel:
        invoice = self.get_invoice_model(business_id, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvoiceNotEditableError(str(invoice_id), invoice.status)
        return invoice

    # -------------------------------------------------------------------------
    # Pricing
    # -------------------------------------------------------------------------

    def _price(self, line: InvoiceLineInput, currency: str) -> LineAmounts:
        return compute_line(
            line.quantity,
            line.unit_price,
            line.discount_percentage,
            line.tax_percentage,
            currency,
        )

    @staticmethod
    def _write_line(model: InvoiceLineModel, line: InvoiceLineInput, amounts: LineAmounts) -> None:
        model.description = line.description.strip()
        model.quantity = Decimal(line.quantity)
        model.unit_price = Decimal(line.unit_price)
        model.discount_percentage = Decimal(line.discount_percentage)
        model.tax_percentage = Decimal(line.tax_percentage)
        model.subtotal = amounts.subtotal
        model.discount_amount = amounts.discount_amount
        model.taxable_amount = amounts.taxable_amount
        model.tax_amount = amounts.tax_amount
        model.total = amounts.total
        model.product_id = line.product_id
        model.metadata_ = dict(line.metadata)

    @staticmethod
    def _refresh_totals(invoice: InvoiceModel) -> None:
        totals = compute_totals(invoice.lines, invoice.amount_paid)
        invoice.subtotal = totals.subtotal
        invoice.discount_amount = totals.discount_amount
        invoice.tax_amount = totals.tax_amount
        invoice.total_amount = totals.total_amount
        invoice.amount_due = totals.amount_due
        invoice.overpaid_amount = totals.overpaid_amount

    # -------------------------------------------------------------------------
    # Creation and draft editing
    # -------------------------------------------------------------------------

    def create_invoice(
        self,
        business_id: UUID,
        lines: Iterable[InvoiceLineInput] = (),
        *,
        currency: str | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
        customer_id: UUID | None = None,
        order_id: UUID | None = None,
        notes: str | None = None,
        terms: str | None = None,
        payment_instructions: str | None = None,
        metadata: dict[str, Any] | None = None,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        """
        Create a draft invoice with its priced lines.

        All lines are priced before anything is written, so a bad line
        rejects the whole invoice.
        """
        ccy = Currency(currency or self._config.default_currency).code
        if issue_date is not None:
            issue = _check_date("issue_date", issue_date)
        else:
            issue = self._clock.today()
        if due_date is not None:
            due = _check_date("due_date", due_date)
        else:
            due = issue + timedelta(days=self._config.payment_terms_days)
        if due < issue:
            raise ValidationError("due_date", f"{due} is before issue_date {issue}")

        line_inputs = list(lines)
        priced = [(line, self._price(line, ccy)) for line in line_inputs]

        seq = self._sequences.next_value(
            SequenceService.sequence_name(SequenceService.INVOICE, business_id)
        )
        invoice = InvoiceModel(
            business_id=business_id,
            invoice_number=self._config.format_number(self._config.invoice_number_prefix, seq),
            currency=ccy,
            status=InvoiceStatus.DRAFT.value,
            issue_date=issue,
            due_date=due,
            amount_paid=Decimal("0"),
            amount_refunded=Decimal("0"),
            customer_id=customer_id,
            order_id=order_id,
            notes=notes,
            terms=terms,
            payment_instructions=payment_instructions,
            metadata_=dict(metadata or {}),
            created_by_id=actor_id,
        )
        for number, (line, amounts) in enumerate(priced, start=1):
            model = InvoiceLineModel(line_number=number, created_by_id=actor_id)
            self._write_line(model, line, amounts)
            invoice.lines.append(model)
        self._refresh_totals(invoice)

        self.session.add(invoice)
        self.session.flush()
        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "business_id": str(business_id),
                "line_count": len(priced),
                "total_amount": invoice.total_amount,
                "currency": ccy,
            },
        )
        return invoice

    def add_line(
        self,
        business_id: UUID,
        invoice_id: UUID,
        line: InvoiceLineInput,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        invoice = self._get_editable(business_id, invoice_id)
        amounts = self._price(line, invoice.currency)
        model = InvoiceLineModel(
            line_number=max((ln.line_number for ln in invoice.lines), default=0) + 1,
            created_by_id=actor_id,
        )
        self._write_line(model, line, amounts)
        invoice.lines.append(model)
        self._refresh_totals(invoice)
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_line_added",
            extra={
                "invoice_id": str(invoice_id),
                "line_number": model.line_number,
                "line_total": amounts.total,
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    def _find_line(self, invoice: InvoiceModel, line_id: UUID) -> InvoiceLineModel:
        for line in invoice.lines:
            if line.id == line_id:
                return line
        raise InvoiceLineNotFoundError(str(invoice.id), str(line_id))

    def update_line(
        self,
        business_id: UUID,
        invoice_id: UUID,
        line_id: UUID,
        line: InvoiceLineInput,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        invoice = self._get_editable(business_id, invoice_id)
        model = self._find_line(invoice, line_id)
        amounts = self._price(line, invoice.currency)
        self._write_line(model, line, amounts)
        model.updated_by_id = actor_id
        self._refresh_totals(invoice)
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_line_updated",
            extra={
                "invoice_id": str(invoice_id),
                "line_number": model.line_number,
                "line_total": amounts.total,
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    def remove_line(
        self,
        business_id: UUID,
        invoice_id: UUID,
        line_id: UUID,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        invoice = self._get_editable(business_id, invoice_id)
        model = self._find_line(invoice, line_id)
        invoice.lines.remove(model)
        # Delete before renumbering the survivors
        self.session.flush()
        for number, remaining in enumerate(invoice.lines, start=1):
            if remaining.line_number != number:
                remaining.line_number = number
        self._refresh_totals(invoice)
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_line_removed",
            extra={
                "invoice_id": str(invoice_id),
                "line_id": str(line_id),
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    def update_details(
        self,
        business_id: UUID,
        invoice_id: UUID,
        actor_id: UUID | None = None,
        **changes: Any,
    ) -> InvoiceModel:
        """Edit header fields of a draft invoice (dates, notes, terms, ...)."""
        unknown = set(changes) - _EDITABLE_DETAILS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "field cannot be edited")
        invoice = self._get_editable(business_id, invoice_id)

        issue = _check_date("issue_date", changes.get("issue_date", invoice.issue_date))
        due = _check_date("due_date", changes.get("due_date", invoice.due_date))
        if due < issue:
            raise ValidationError("due_date", f"{due} is before issue_date {issue}")

        for name, value in changes.items():
            if name == "metadata":
                invoice.metadata_ = dict(value or {})
            else:
                setattr(invoice, name, value)
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_details_updated",
            extra={"invoice_id": str(invoice_id), "fields": sorted(changes)},
        )
        return invoice

    def delete_invoice(self, business_id: UUID, invoice_id: UUID) -> None:
        """Hard-delete a draft invoice; every other status is retained."""
        invoice = self.get_invoice_model(business_id, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvalidTransitionError(
                "invoice", str(invoice_id), invoice.status, "deleted",
                "only draft invoices can be deleted",
            )
        self.session.delete(invoice)
        self.session.flush()
        logger.info(
            "invoice_deleted",
            extra={"invoice_id": str(invoice_id), "invoice_number": invoice.invoice_number},
        )

    # -------------------------------------------------------------------------
    # Lifecycle actions
    # -------------------------------------------------------------------------

    def send_invoice(
        self,
        business_id: UUID,
        invoice_id: UUID,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        invoice = self.get_invoice_model(business_id, invoice_id, for_update=True)
        self._state_machine.transition(invoice, InvoiceStatus.SENT, "send")
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_sent",
            extra={
                "invoice_id": str(invoice_id),
                "invoice_number": invoice.invoice_number,
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    def mark_invoice_viewed(self, business_id: UUID, invoice_id: UUID) -> InvoiceModel:
        """
        Record that the customer opened the invoice.

        View notifications are replayed freely by the delivery channel; only
        the first one for a ``sent`` invoice changes anything.
        """
        invoice = self.get_invoice_model(business_id, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.SENT.value:
            logger.debug(
                "invoice_view_ignored",
                extra={"invoice_id": str(invoice_id), "status": invoice.status},
            )
            return invoice
        self._state_machine.transition(invoice, InvoiceStatus.VIEWED, "mark_viewed")
        self.session.flush()
        logger.info("invoice_viewed", extra={"invoice_id": str(invoice_id)})
        return invoice

    def _open_payment_count(self, invoice_id: UUID) -> int:
        return self.session.execute(
            select(func.count(PaymentModel.id)).where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.status.in_(_OPEN_PAYMENT_STATUSES),
            )
        ).scalar_one()

    def cancel_invoice(
        self,
        business_id: UUID,
        invoice_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
    ) -> InvoiceModel:
        invoice = self.get_invoice_model(business_id, invoice_id, for_update=True)
        open_payments = self._open_payment_count(invoice_id)
        if open_payments:
            raise InvalidTransitionError(
                "invoice", str(invoice_id), invoice.status, InvoiceStatus.CANCELLED.value,
                f"{open_payments} payment(s) still pending",
            )
        self._state_machine.transition(invoice, InvoiceStatus.CANCELLED, "cancel")
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_cancelled",
            extra={"invoice_id": str(invoice_id), "reason": reason},
        )
        return invoice

    def record_invoice_document(
        self,
        business_id: UUID,
        invoice_id: UUID,
        document_url: str,
    ) -> InvoiceModel:
        """Store the URL of the document generated for a finalized invoice."""
        if not document_url or not document_url.strip():
            raise ValidationError("document_url", "cannot be empty")
        invoice = self.get_invoice_model(business_id, invoice_id, for_update=True)
        if invoice.status == InvoiceStatus.DRAFT.value:
            raise ValidationError("status", "documents are generated for finalized invoices only")
        invoice.document_url = document_url.strip()
        self.session.flush()
        logger.info(
            "invoice_document_recorded",
            extra={"invoice_id": str(invoice_id), "document_url": invoice.document_url},
        )
        return invoice

    def update_overdue_invoices(self, business_id: UUID, as_of_date: date | None = None) -> int:
        """
        Mark every sent/viewed invoice past its due date with a balance as
        overdue.  Returns the number of invoices transitioned.
        """
        as_of = as_of_date or self._clock.today()
        candidates = self.session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.business_id == business_id,
                InvoiceModel.status.in_(
                    (InvoiceStatus.SENT.value, InvoiceStatus.VIEWED.value)
                ),
                InvoiceModel.due_date < as_of,
            )
            .order_by(InvoiceModel.due_date, InvoiceModel.invoice_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        count = 0
        for invoice in candidates:
            if invoice.amount_due <= Decimal("0"):
                continue
            self._state_machine.transition(invoice, InvoiceStatus.OVERDUE, "mark_overdue", as_of)
            count += 1
        self.session.flush()
        logger.info(
            "overdue_sweep_completed",
            extra={
                "business_id": str(business_id),
                "as_of_date": as_of,
                "candidates": len(candidates),
                "transitioned": count,
            },
        )
        return count
