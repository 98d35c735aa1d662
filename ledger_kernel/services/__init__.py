"""Write services of the ledger kernel.  ``LedgerService`` is the entry point."""

from ledger_kernel.services.invoice_service import InvoiceService
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.payment_ledger import PaymentLedger
from ledger_kernel.services.reconciliation_service import (
    InvoiceLockRegistry,
    ReconciliationEngine,
    ReconciliationResult,
)
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "InvoiceLockRegistry",
    "InvoiceService",
    "LedgerService",
    "PaymentLedger",
    "ReconciliationEngine",
    "ReconciliationResult",
    "SequenceService",
]
