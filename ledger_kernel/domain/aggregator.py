"""
Invoice Aggregator -- invoice-level totals from line amounts.

Responsibility:
    Sums line subtotal / discount_amount / tax_amount / total into the
    invoice aggregates and derives amount_due from an externally supplied
    amount_paid.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The aggregator NEVER
    reads payments: amount_paid is an input owned by the reconciliation
    engine.

Invariants enforced:
    - total_amount == sum(line.total) exactly.
    - amount_due == max(0, total_amount - amount_paid); any excess is
      reported as overpaid_amount instead of a negative balance.
    - Recomputing twice yields the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Protocol

from ledger_kernel.domain.dtos import Invoice
from ledger_kernel.domain.line_calculator import compute_line
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.aggregator")

_ZERO = Decimal("0")


class PricedLine(Protocol):
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    """Invoice-level aggregates."""
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    overpaid_amount: Decimal

    @property
    def is_overpaid(self) -> bool:
        return self.overpaid_amount > _ZERO


def compute_totals(lines: Iterable[PricedLine], amount_paid: Decimal) -> InvoiceTotals:
    """
    Aggregate priced lines and derive the balance.

    Postconditions:
        - amount_due >= 0
        - amount_due + amount_paid == total_amount + overpaid_amount
    """
    subtotal = discount = tax = total = _ZERO
    for line in lines:
        subtotal += line.subtotal
        discount += line.discount_amount
        tax += line.tax_amount
        total += line.total

    balance = total - amount_paid
    amount_due = max(_ZERO, balance)
    overpaid = max(_ZERO, -balance)

    return InvoiceTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total_amount=total,
        amount_paid=amount_paid,
        amount_due=amount_due,
        overpaid_amount=overpaid,
    )


def recompute_invoice(invoice: Invoice) -> Invoice:
    """
    Return a copy of ``invoice`` with every line re-priced and the
    aggregates recomputed.

    Line amounts are derived again from the line inputs, so a DTO carrying
    stale line totals is corrected rather than trusted.
    """
    lines = tuple(
        replace(
            line,
            **vars(
                compute_line(
                    line.quantity,
                    line.unit_price,
                    line.discount_percentage,
                    line.tax_percentage,
                    invoice.currency,
                )
            ),
        )
        for line in invoice.lines
    )
    totals = compute_totals(lines, invoice.amount_paid)
    if totals.is_overpaid:
        logger.warning(
            "overpayment_flagged",
            extra={
                "invoice_id": str(invoice.id),
                "total_amount": totals.total_amount,
                "amount_paid": totals.amount_paid,
                "overpaid_amount": totals.overpaid_amount,
            },
        )
    return replace(invoice, lines=lines, **vars(totals))
