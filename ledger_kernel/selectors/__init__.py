"""Read-only selectors for invoices and payments."""

from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.invoice_selector import InvoiceSelector
from ledger_kernel.selectors.payment_selector import PaymentSelector

__all__ = ["BaseSelector", "InvoiceSelector", "PaymentSelector"]
