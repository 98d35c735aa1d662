"""Persistence models for the ledger kernel."""

from ledger_kernel.models.invoice import InvoiceLineModel, InvoiceModel
from ledger_kernel.models.payment import PaymentModel
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "InvoiceModel",
    "InvoiceLineModel",
    "PaymentModel",
    "SequenceCounter",
]
