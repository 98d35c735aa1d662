"""
Overdue sweep through the service and the scheduled-job script.
"""

import importlib.util
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from ledger_kernel.domain.dtos import InvoiceLineInput, InvoiceStatus

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "sweep_overdue.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("sweep_overdue", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def issue(ledger, business_id):
    def _issue(due, amount="100", send=True, business=None):
        owner = business or business_id
        invoice = ledger.create_invoice(
            owner,
            [InvoiceLineInput(description="Work", quantity=Decimal("1"), unit_price=Decimal(amount))],
            issue_date=date(2024, 1, 1),
            due_date=due,
        )
        if send:
            invoice = ledger.send_invoice(owner, invoice.id)
        return invoice

    return _issue


class TestUpdateOverdueInvoices:

    def test_only_past_due_with_balance(self, ledger, business_id, issue, pay):
        late = issue(date(2024, 2, 28))
        due_today = issue(date(2024, 3, 1))
        draft = issue(date(2024, 2, 1), send=False)
        settled = issue(date(2024, 2, 1))
        pay(settled.id, "100")

        assert ledger.update_overdue_invoices(business_id) == 1

        statuses = {
            i.id: i.status for i in ledger.list_invoices(business_id)
        }
        assert statuses[late.id] == InvoiceStatus.OVERDUE
        assert statuses[due_today.id] == InvoiceStatus.SENT
        assert statuses[draft.id] == InvoiceStatus.DRAFT
        assert statuses[settled.id] == InvoiceStatus.PAID

    def test_viewed_invoices_included(self, ledger, business_id, issue):
        invoice = issue(date(2024, 2, 1))
        ledger.mark_invoice_viewed(business_id, invoice.id)
        assert ledger.update_overdue_invoices(business_id) == 1

    def test_second_sweep_is_noop(self, ledger, business_id, issue):
        issue(date(2024, 2, 1))
        assert ledger.update_overdue_invoices(business_id) == 1
        assert ledger.update_overdue_invoices(business_id) == 0

    def test_explicit_as_of(self, ledger, business_id, issue):
        invoice = issue(date(2024, 3, 15))
        assert ledger.update_overdue_invoices(business_id, date(2024, 3, 15)) == 0
        assert ledger.update_overdue_invoices(business_id, date(2024, 3, 16)) == 1
        assert ledger.get_invoice(business_id, invoice.id).status == InvoiceStatus.OVERDUE

    def test_scoped_to_business(self, ledger, business_id, other_business_id, issue):
        issue(date(2024, 2, 1), business=other_business_id)
        assert ledger.update_overdue_invoices(business_id) == 0
        assert ledger.update_overdue_invoices(other_business_id) == 1

    def test_sweep_logged(self, ledger, business_id, issue, captured_logs):
        issue(date(2024, 2, 1))
        ledger.update_overdue_invoices(business_id)
        done = [r for r in captured_logs() if r["message"] == "overdue_sweep_completed"]
        assert done[0]["transitioned"] == 1


class TestSweepScript:

    def test_sweeps_every_business(
        self, ledger, business_id, other_business_id, issue, database_url, capsys
    ):
        first = issue(date(2024, 2, 1))
        issue(date(2024, 2, 1), business=other_business_id)

        code = _load_script().main(["--database-url", database_url, "--as-of", "2024-03-01"])

        out = capsys.readouterr().out
        assert code == 0
        assert "Total: 2" in out
        assert f"{business_id}: 1 invoice(s) marked overdue" in out
        assert ledger.get_invoice(business_id, first.id).status == InvoiceStatus.OVERDUE

    def test_single_business(self, ledger, business_id, other_business_id, issue, database_url, capsys):
        issue(date(2024, 2, 1))
        other = issue(date(2024, 2, 1), business=other_business_id)

        _load_script().main(
            ["--database-url", database_url, "--business-id", str(business_id), "--as-of", "2024-03-01"]
        )

        assert "Total: 1" in capsys.readouterr().out
        assert ledger.get_invoice(other_business_id, other.id).status == InvoiceStatus.SENT

    def test_missing_database_url(self, monkeypatch, capsys):
        monkeypatch.delenv("LEDGER_DATABASE_URL", raising=False)
        assert _load_script().main([]) == 2
        assert "no database URL" in capsys.readouterr().err
