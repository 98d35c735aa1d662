"""
Ledger Configuration Schema.

Defines the structure and sensible defaults for ledger settings.  Actual
values are loaded from YAML by ``ledger_config.loader``.
"""

from dataclasses import dataclass

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class LedgerConfig:
    """
    Configuration schema for the invoice and payment ledger.

    Field defaults represent the product's defaults.  Override at
    instantiation or through a YAML file:

        config = LedgerConfig(default_currency="USD", payment_terms_days=14)
    """

    # Invoices
    default_currency: str = "ZAR"
    payment_terms_days: int = 30

    # Document numbering
    invoice_number_prefix: str = "INV"
    payment_number_prefix: str = "PAY"
    number_padding: int = 6

    # Payment providers
    providers: tuple[str, ...] = (
        "manual",
        "cash",
        "eft",
        "payfast",
        "yoco",
        "ozow",
        "snapscan",
        "zapper",
        "stripe",
    )
    # Gateways that confirm asynchronously; their payments start "processing"
    async_providers: tuple[str, ...] = (
        "payfast",
        "yoco",
        "ozow",
        "snapscan",
        "zapper",
        "stripe",
    )

    def __post_init__(self):
        currency = self.default_currency.upper().strip() if self.default_currency else ""
        if not CurrencyRegistry.is_valid(currency):
            raise ValueError(f"default_currency must be an ISO 4217 code, got '{self.default_currency}'")
        object.__setattr__(self, "default_currency", currency)
        if self.payment_terms_days < 0:
            raise ValueError("payment_terms_days cannot be negative")
        for name in ("invoice_number_prefix", "payment_number_prefix"):
            if not getattr(self, name) or not getattr(self, name).strip():
                raise ValueError(f"{name} cannot be empty")
        if not 1 <= self.number_padding <= 12:
            raise ValueError("number_padding must be between 1 and 12")
        object.__setattr__(self, "providers", tuple(self.providers))
        object.__setattr__(self, "async_providers", tuple(self.async_providers))
        unknown = set(self.async_providers) - set(self.providers)
        if unknown:
            raise ValueError(f"async_providers not in providers: {sorted(unknown)}")
        logger.debug(
            "ledger_config_initialized",
            extra={
                "default_currency": self.default_currency,
                "payment_terms_days": self.payment_terms_days,
                "provider_count": len(self.providers),
            },
        )

    def is_async_provider(self, provider: str) -> bool:
        return provider in self.async_providers

    def format_number(self, prefix: str, value: int) -> str:
        """``INV`` + 7 -> ``INV-000007``."""
        return f"{prefix}-{value:0{self.number_padding}d}"
