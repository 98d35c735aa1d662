"""
Ledger Kernel - Invoice & Payment Ledger

The money-owed core of the business-management product:
- Exact decimal line-item pricing (discount before tax)
- Invoice aggregates recomputed on every line mutation
- A single state machine for invoice and payment lifecycles
- Payment ledger with partial payments and partial refunds
- Reconciliation as the only writer of amount_paid / amount_due
"""

__version__ = "0.1.0"
