"""Utility functions for the ledger kernel."""

from ledger_kernel.utils.idempotency import make_settlement_key, parse_settlement_key
from ledger_kernel.utils.scope import ensure_business

__all__ = ["ensure_business", "make_settlement_key", "parse_settlement_key"]
