"""
Pytest fixtures for the ledger test suite.

Provides:
- A fresh SQLite database per test (file-backed, so several sessions and
  threads can share it)
- A deterministic clock and default configuration
- A LedgerService wired to both
- Scenario builders for the common invoice shapes
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_config import LedgerConfig
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import InvoiceLineInput, SettlementNotice, SettlementOutcome
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.reconciliation_service import InvoiceLockRegistry

# 2024-03-01 09:00 UTC; invoices issued "today" fall due on 2024-03-31
CLOCK_START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.send_invoice(...)
            logs = captured_logs()
            assert any(r["message"] == "invoice_sent" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def db_engine(database_url):
    engine = init_engine_from_url(database_url)
    create_tables()
    yield engine
    drop_tables(engine)
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


# =============================================================================
# Ledger fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(CLOCK_START)


@pytest.fixture
def ledger_config():
    return LedgerConfig()


@pytest.fixture
def lock_registry():
    return InvoiceLockRegistry()


@pytest.fixture
def ledger(session, ledger_config, deterministic_clock, lock_registry):
    return LedgerService(session, ledger_config, deterministic_clock, lock_registry)


@pytest.fixture
def business_id():
    return uuid4()


@pytest.fixture
def other_business_id():
    return uuid4()


@pytest.fixture
def consulting_line():
    """qty 2 @ 100, 10% discount, 15% tax -> total 207.00."""
    return InvoiceLineInput(
        description="Consulting",
        quantity=Decimal("2"),
        unit_price=Decimal("100"),
        discount_percentage=Decimal("10"),
        tax_percentage=Decimal("15"),
    )


@pytest.fixture
def sent_invoice(ledger, business_id, consulting_line):
    """A sent invoice for 207.00 ZAR, due 2024-03-31."""
    invoice = ledger.create_invoice(business_id, [consulting_line])
    return ledger.send_invoice(business_id, invoice.id)


@pytest.fixture
def pay(ledger, business_id, deterministic_clock):
    """Record and settle a successful manual payment against an invoice."""

    def _pay(invoice_id, amount):
        payment = ledger.record_payment(business_id, Decimal(amount), invoice_id=invoice_id)
        return ledger.settle_payment(
            business_id,
            SettlementNotice(
                payment_id=payment.id,
                outcome=SettlementOutcome.SUCCEEDED,
                paid_at=deterministic_clock.now(),
            ),
        )

    return _pay
