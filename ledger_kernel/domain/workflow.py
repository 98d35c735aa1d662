"""
Ledger Workflows -- state machines for invoices and payments.

Responsibility:
    Holds the transition tables (as data) and the single authority that
    applies them.  Every status change of an invoice or a payment goes
    through ``InvoiceStateMachine.transition`` or
    ``PaymentStateMachine.transition``; no caller writes ``status`` directly.

Architecture position:
    Kernel > Domain -- pure logic over any object exposing the status and
    timestamp attributes (ORM rows in practice).  Time comes from an
    injected Clock.

Invariants enforced:
    - Only edges listed in the workflow table are legal; anything else raises
      InvalidTransitionError WITHOUT touching the subject.
    - Guards are evaluated before any mutation.
    - Each edge owns its side effect (sent_at, viewed_at, paid_date, ...).
    - ``check_invoice_invariants`` is the status/amount invariant table used
      by reconciliation to fail loudly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import InvoiceStatus, PaymentStatus
from ledger_kernel.exceptions import InvalidTransitionError
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.workflow")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str
    predicate: Callable[[Any, date], bool]

    def check(self, subject: Any, as_of: date) -> bool:
        return self.predicate(subject, as_of)


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    effect: str | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def find(self, from_state: str, to_state: str, action: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state and t.action == action:
                return t
        return None

    def actions_from(self, from_state: str) -> tuple[str, ...]:
        return tuple(sorted({t.action for t in self.transitions if t.from_state == from_state}))


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an applied transition."""
    from_state: str
    to_state: str
    action: str
    at: datetime


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_TOTAL = Guard(
    name="has_total",
    description="Invoice total must be greater than zero",
    predicate=lambda inv, as_of: inv.total_amount > _ZERO,
)

BALANCE_ZERO = Guard(
    name="balance_zero",
    description="Invoice balance is zero",
    predicate=lambda inv, as_of: inv.amount_due == _ZERO,
)

BALANCE_OUTSTANDING = Guard(
    name="balance_outstanding",
    description="Invoice is partly paid with a balance outstanding",
    predicate=lambda inv, as_of: inv.amount_due > _ZERO and inv.amount_paid > _ZERO,
)

PAST_DUE_WITH_BALANCE = Guard(
    name="past_due_with_balance",
    description="Due date has passed and a balance is outstanding",
    predicate=lambda inv, as_of: inv.due_date < as_of and inv.amount_due > _ZERO,
)

NOTHING_PAID = Guard(
    name="nothing_paid",
    description="No settled payment remains applied to the invoice",
    predicate=lambda inv, as_of: inv.amount_paid == _ZERO,
)

PAYMENTS_REFUNDED = Guard(
    name="payments_refunded",
    description="Every settled payment has been refunded in full",
    predicate=lambda inv, as_of: inv.amount_paid == _ZERO and inv.amount_refunded > _ZERO,
)

FULLY_REFUNDED = Guard(
    name="fully_refunded",
    description="Refunded amount equals the payment amount",
    predicate=lambda pay, as_of: pay.refund_amount == pay.amount,
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

_I = InvoiceStatus

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Customer invoice lifecycle",
    initial_state=_I.DRAFT.value,
    states=tuple(s.value for s in InvoiceStatus),
    transitions=(
        Transition(_I.DRAFT.value, _I.SENT.value, action="send", guard=HAS_TOTAL, effect="sent_at"),
        Transition(_I.SENT.value, _I.VIEWED.value, action="mark_viewed", effect="viewed_at"),
        Transition(_I.SENT.value, _I.PAID.value, action="reconcile", guard=BALANCE_ZERO, effect="paid_date"),
        Transition(_I.VIEWED.value, _I.PAID.value, action="reconcile", guard=BALANCE_ZERO, effect="paid_date"),
        Transition(_I.OVERDUE.value, _I.PAID.value, action="reconcile", guard=BALANCE_ZERO, effect="paid_date"),
        Transition(_I.SENT.value, _I.OVERDUE.value, action="mark_overdue", guard=PAST_DUE_WITH_BALANCE),
        Transition(_I.VIEWED.value, _I.OVERDUE.value, action="mark_overdue", guard=PAST_DUE_WITH_BALANCE),
        Transition(_I.DRAFT.value, _I.CANCELLED.value, action="cancel", guard=NOTHING_PAID, effect="cancelled_at"),
        Transition(_I.SENT.value, _I.CANCELLED.value, action="cancel", guard=NOTHING_PAID, effect="cancelled_at"),
        Transition(_I.VIEWED.value, _I.CANCELLED.value, action="cancel", guard=NOTHING_PAID, effect="cancelled_at"),
        Transition(_I.PAID.value, _I.REFUNDED.value, action="reconcile", guard=PAYMENTS_REFUNDED),
        Transition(_I.SENT.value, _I.REFUNDED.value, action="reconcile", guard=PAYMENTS_REFUNDED),
        Transition(_I.VIEWED.value, _I.REFUNDED.value, action="reconcile", guard=PAYMENTS_REFUNDED),
        Transition(_I.OVERDUE.value, _I.REFUNDED.value, action="reconcile", guard=PAYMENTS_REFUNDED),
        # Partial refund of a paid invoice reopens it.
        Transition(_I.PAID.value, _I.SENT.value, action="reconcile", guard=BALANCE_OUTSTANDING, effect="clear_paid_date"),
        Transition(_I.PAID.value, _I.VIEWED.value, action="reconcile", guard=BALANCE_OUTSTANDING, effect="clear_paid_date"),
        Transition(_I.PAID.value, _I.OVERDUE.value, action="reconcile", guard=PAST_DUE_WITH_BALANCE, effect="clear_paid_date"),
    ),
    terminal_states=(_I.CANCELLED.value, _I.REFUNDED.value),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# Payment Workflow
# -----------------------------------------------------------------------------

_P = PaymentStatus

PAYMENT_WORKFLOW = Workflow(
    name="payment",
    description="Payment settlement and refund lifecycle",
    initial_state=_P.PENDING.value,
    states=tuple(s.value for s in PaymentStatus),
    transitions=(
        Transition(_P.PENDING.value, _P.PROCESSING.value, action="begin_processing"),
        Transition(_P.PENDING.value, _P.SUCCEEDED.value, action="settle", effect="paid_at"),
        Transition(_P.PROCESSING.value, _P.SUCCEEDED.value, action="settle", effect="paid_at"),
        Transition(_P.PENDING.value, _P.FAILED.value, action="settle"),
        Transition(_P.PROCESSING.value, _P.FAILED.value, action="settle"),
        Transition(_P.PENDING.value, _P.CANCELLED.value, action="cancel", effect="cancelled_at"),
        Transition(_P.PROCESSING.value, _P.CANCELLED.value, action="cancel", effect="cancelled_at"),
        Transition(_P.SUCCEEDED.value, _P.REFUNDED.value, action="refund", guard=FULLY_REFUNDED),
    ),
    terminal_states=(_P.FAILED.value, _P.REFUNDED.value, _P.CANCELLED.value),
)

logger.info(
    "payment_workflow_registered",
    extra={
        "workflow_name": PAYMENT_WORKFLOW.name,
        "state_count": len(PAYMENT_WORKFLOW.states),
        "transition_count": len(PAYMENT_WORKFLOW.transitions),
        "initial_state": PAYMENT_WORKFLOW.initial_state,
    },
)


# -----------------------------------------------------------------------------
# State machines
# -----------------------------------------------------------------------------


class StateMachine:
    """
    Applies a Workflow to a subject with a ``status`` attribute.

    Contract:
        ``transition`` validates the edge and its guard first, and only then
        writes status and the edge's side effect.  A rejected transition
        leaves the subject untouched.
    """

    entity_type = "entity"

    def __init__(self, workflow: Workflow, clock: Clock | None = None):
        self.workflow = workflow
        self._clock = clock or SystemClock()

    def can_transition(
        self,
        subject: Any,
        to_state: str,
        action: str,
        as_of: date | None = None,
    ) -> bool:
        edge = self.workflow.find(subject.status, to_state, action)
        if edge is None:
            return False
        if edge.guard is not None:
            return edge.guard.check(subject, as_of or self._clock.today())
        return True

    def transition(
        self,
        subject: Any,
        to_state: Any,
        action: str,
        as_of: date | None = None,
    ) -> TransitionResult:
        """
        Move ``subject`` to ``to_state`` via ``action``.

        Raises:
            InvalidTransitionError: edge missing from the table or guard failed.
        """
        target = to_state.value if hasattr(to_state, "value") else str(to_state)
        from_state = subject.status
        entity_id = str(getattr(subject, "id", ""))
        edge = self.workflow.find(from_state, target, action)
        if edge is None:
            logger.warning(
                "transition_rejected",
                extra={
                    "workflow": self.workflow.name,
                    "entity_id": entity_id,
                    "from_state": from_state,
                    "to_state": target,
                    "action": action,
                },
            )
            raise InvalidTransitionError(self.entity_type, entity_id, from_state, target)

        as_of = as_of or self._clock.today()
        if edge.guard is not None and not edge.guard.check(subject, as_of):
            logger.warning(
                "transition_guard_failed",
                extra={
                    "workflow": self.workflow.name,
                    "entity_id": entity_id,
                    "guard": edge.guard.name,
                    "from_state": from_state,
                    "to_state": target,
                },
            )
            raise InvalidTransitionError(
                self.entity_type, entity_id, from_state, target, edge.guard.description
            )

        now = self._clock.now()
        subject.status = target
        if edge.effect is not None:
            self._apply_effect(subject, edge.effect, now)

        logger.info(
            f"{self.entity_type}_transitioned",
            extra={
                "entity_id": entity_id,
                "from_state": from_state,
                "to_state": target,
                "action": action,
            },
        )
        return TransitionResult(from_state=from_state, to_state=target, action=action, at=now)

    def _apply_effect(self, subject: Any, effect: str, now: datetime) -> None:
        setattr(subject, effect, now)


class InvoiceStateMachine(StateMachine):
    """The single authority over invoice status."""

    entity_type = "invoice"

    def __init__(self, clock: Clock | None = None):
        super().__init__(INVOICE_WORKFLOW, clock)

    def _apply_effect(self, subject: Any, effect: str, now: datetime) -> None:
        if effect == "paid_date":
            subject.paid_date = now.date()
        elif effect == "clear_paid_date":
            subject.paid_date = None
        else:
            setattr(subject, effect, now)

    def implied_transition(self, invoice: Any, as_of: date) -> tuple[InvoiceStatus, str] | None:
        """
        The status change implied by the invoice's current balance.

        Returns ``(target, action)`` or None when the status already agrees
        with amount_due / due_date.  An open invoice whose every settled
        payment has been refunded in full is refunded, however the refunds
        were split.
        """
        status = InvoiceStatus(invoice.status)
        due = invoice.amount_due
        past_due = invoice.due_date < as_of

        if status in (InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE):
            if PAYMENTS_REFUNDED.check(invoice, as_of):
                return InvoiceStatus.REFUNDED, "reconcile"
            if due == _ZERO:
                return InvoiceStatus.PAID, "reconcile"
            if status != InvoiceStatus.OVERDUE and past_due:
                return InvoiceStatus.OVERDUE, "mark_overdue"
            return None

        if status == InvoiceStatus.PAID and due > _ZERO:
            if invoice.amount_paid == _ZERO:
                return InvoiceStatus.REFUNDED, "reconcile"
            if past_due:
                return InvoiceStatus.OVERDUE, "reconcile"
            if invoice.viewed_at is not None:
                return InvoiceStatus.VIEWED, "reconcile"
            return InvoiceStatus.SENT, "reconcile"

        return None

    def implied_status(self, invoice: Any, as_of: date) -> InvoiceStatus | None:
        implied = self.implied_transition(invoice, as_of)
        return implied[0] if implied else None


class PaymentStateMachine(StateMachine):
    """The single authority over payment status."""

    entity_type = "payment"

    def __init__(self, clock: Clock | None = None):
        super().__init__(PAYMENT_WORKFLOW, clock)

    def _apply_effect(self, subject: Any, effect: str, now: datetime) -> None:
        # Provider-reported settlement time wins over the local clock.
        if effect == "paid_at" and subject.paid_at is not None:
            return
        setattr(subject, effect, now)


def check_invoice_invariants(invoice: Any) -> str | None:
    """
    Check the status/amount invariant table.

    Returns a reason string when violated, None when the invoice is consistent.
    """
    status = InvoiceStatus(invoice.status)
    expected_due = max(_ZERO, invoice.total_amount - invoice.amount_paid)

    if invoice.amount_due < _ZERO:
        return f"amount_due {invoice.amount_due} is negative"
    if invoice.amount_due != expected_due:
        return f"amount_due {invoice.amount_due} != max(0, {invoice.total_amount} - {invoice.amount_paid})"
    if status == InvoiceStatus.PAID and invoice.amount_due != _ZERO:
        return f"paid with amount_due {invoice.amount_due}"
    if status in (InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE) and invoice.amount_due == _ZERO:
        return f"{status.value} while fully paid"
    if status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED) and invoice.amount_paid != _ZERO:
        return f"{status.value} with amount_paid {invoice.amount_paid}"
    return None
