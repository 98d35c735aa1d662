"""
Tests for the invoice aggregator.

Verifies:
- total_amount is the exact sum of line totals
- amount_due = max(0, total - paid) with overpayment reported, never negative
- recompute_invoice re-prices lines and is idempotent
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger_kernel.domain.aggregator import compute_totals, recompute_invoice
from ledger_kernel.domain.dtos import Invoice, InvoiceLine
from ledger_kernel.domain.line_calculator import compute_line


def _line(invoice_id, number, qty, price, discount="0", tax="0", stale_total=None):
    amounts = compute_line(qty, price, discount, tax)
    line = InvoiceLine(
        id=uuid4(),
        invoice_id=invoice_id,
        line_number=number,
        description=f"Line {number}",
        quantity=Decimal(qty),
        unit_price=Decimal(price),
        discount_percentage=Decimal(discount),
        tax_percentage=Decimal(tax),
        **vars(amounts),
    )
    if stale_total is not None:
        line = replace(line, total=Decimal(stale_total))
    return line


def _invoice(lines, amount_paid="0"):
    invoice_id = lines[0].invoice_id if lines else uuid4()
    return Invoice(
        id=invoice_id,
        business_id=uuid4(),
        invoice_number="INV-000001",
        currency="ZAR",
        issue_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
        lines=tuple(lines),
        amount_paid=Decimal(amount_paid),
    )


class TestComputeTotals:

    def test_sums_line_fields(self):
        invoice_id = uuid4()
        lines = [
            _line(invoice_id, 1, "2", "100", "10", "15"),
            _line(invoice_id, 2, "1", "50", "0", "15"),
        ]
        totals = compute_totals(lines, Decimal("0"))

        assert totals.subtotal == Decimal("250")
        assert totals.discount_amount == Decimal("20")
        assert totals.tax_amount == Decimal("34.5")
        assert totals.total_amount == Decimal("264.50")
        assert totals.amount_due == Decimal("264.50")

    def test_partial_payment(self):
        lines = [_line(uuid4(), 1, "2", "100", "10", "15")]
        totals = compute_totals(lines, Decimal("100"))
        assert totals.amount_due == Decimal("107.00")
        assert not totals.is_overpaid

    def test_overpayment_clamped_and_reported(self):
        lines = [_line(uuid4(), 1, "2", "100", "10", "15")]
        totals = compute_totals(lines, Decimal("250"))

        assert totals.amount_due == Decimal("0")
        assert totals.overpaid_amount == Decimal("43.00")
        assert totals.is_overpaid
        assert totals.amount_due + totals.amount_paid == totals.total_amount + totals.overpaid_amount

    def test_no_lines(self):
        totals = compute_totals([], Decimal("0"))
        assert totals.total_amount == Decimal("0")
        assert totals.amount_due == Decimal("0")


class TestRecomputeInvoice:

    def test_stale_line_totals_are_corrected(self):
        invoice_id = uuid4()
        invoice = _invoice([_line(invoice_id, 1, "2", "100", "10", "15", stale_total="999")])

        result = recompute_invoice(invoice)

        assert result.lines[0].total == Decimal("207.00")
        assert result.total_amount == Decimal("207.00")
        assert result.amount_due == Decimal("207.00")

    def test_total_equals_sum_of_line_totals(self):
        invoice_id = uuid4()
        invoice = _invoice([
            _line(invoice_id, 1, "3", "33.3333", "0", "15"),
            _line(invoice_id, 2, "1", "0.125"),
            _line(invoice_id, 3, "7", "13.3337", "12.5", "15"),
        ])
        result = recompute_invoice(invoice)
        assert result.total_amount == sum((line.total for line in result.lines), Decimal("0"))

    def test_idempotent(self):
        invoice_id = uuid4()
        invoice = _invoice([_line(invoice_id, 1, "2", "100", "10", "15")], amount_paid="57")
        once = recompute_invoice(invoice)
        assert recompute_invoice(once) == once

    def test_input_untouched(self):
        invoice_id = uuid4()
        invoice = _invoice([_line(invoice_id, 1, "2", "100", "10", "15", stale_total="1")])
        recompute_invoice(invoice)
        assert invoice.lines[0].total == Decimal("1")

    def test_overpayment_logged(self, captured_logs):
        invoice_id = uuid4()
        invoice = _invoice([_line(invoice_id, 1, "2", "100", "10", "15")], amount_paid="300")

        result = recompute_invoice(invoice)

        assert result.amount_due == Decimal("0")
        assert result.is_overpaid
        flagged = [r for r in captured_logs() if r["message"] == "overpayment_flagged"]
        assert len(flagged) == 1
        assert flagged[0]["level"] == "WARNING"
        assert flagged[0]["overpaid_amount"] == "93.00"
