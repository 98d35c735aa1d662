"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through an injected Clock.
"""

from ledger_kernel.domain.aggregator import InvoiceTotals, compute_totals, recompute_invoice
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from ledger_kernel.domain.dtos import (
    Invoice,
    InvoiceFilter,
    InvoiceLine,
    InvoiceLineInput,
    InvoiceStats,
    InvoiceStatus,
    Payment,
    PaymentFilter,
    PaymentStats,
    PaymentStatus,
    SettlementNotice,
    SettlementOutcome,
)
from ledger_kernel.domain.line_calculator import LineAmounts, compute_line
from ledger_kernel.domain.values import Currency, to_decimal
from ledger_kernel.domain.workflow import (
    INVOICE_WORKFLOW,
    PAYMENT_WORKFLOW,
    InvoiceStateMachine,
    PaymentStateMachine,
    TransitionResult,
    check_invoice_invariants,
)

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Currency and amounts
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "to_decimal",
    # DTOs
    "Invoice",
    "InvoiceLine",
    "InvoiceLineInput",
    "InvoiceStatus",
    "InvoiceFilter",
    "InvoiceStats",
    "Payment",
    "PaymentStatus",
    "PaymentFilter",
    "PaymentStats",
    "SettlementNotice",
    "SettlementOutcome",
    # Pricing
    "LineAmounts",
    "compute_line",
    "InvoiceTotals",
    "compute_totals",
    "recompute_invoice",
    # Workflows
    "INVOICE_WORKFLOW",
    "PAYMENT_WORKFLOW",
    "InvoiceStateMachine",
    "PaymentStateMachine",
    "TransitionResult",
    "check_invoice_invariants",
]
