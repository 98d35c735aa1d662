"""
Module: ledger_kernel.db.types
Responsibility: Column types and utility functions for financial-grade
    amounts.  Centralizes precision and rounding so that every model and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the ledger.  All amounts use Decimal.
    - round_money() is the ONLY sanctioned rounding function for ledger
      values (ROUND_HALF_UP).
    - Line components are stored exactly: ExactDecimal keeps 18 fractional
      digits on PostgreSQL and the canonical decimal string on SQLite, whose
      NUMERIC affinity would otherwise round-trip through float.

Failure modes:
    - ValueError when a float is bound to an ExactDecimal column.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

# Fractional digits kept in storage.  Line inputs are limited to
# INPUT_DECIMAL_PLACES so every derived component fits.
STORAGE_DECIMAL_PLACES = 18
INPUT_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP


class ExactDecimal(TypeDecorator):
    """
    Decimal column that never loses precision.

    Guarantees:
        - PostgreSQL: NUMERIC(38, 18).
        - SQLite: canonical decimal string, parsed back into Decimal.
        - Python side always sees Decimal (or None).
    """

    impl = Numeric(38, STORAGE_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(
            Numeric(38, STORAGE_DECIMAL_PLACES, asdecimal=True)
        )

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise ValueError(f"float is not allowed for monetary values: {value!r}")
        value = Decimal(value)
        if dialect.name == "sqlite":
            return format(value, "f")
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for ledger values.  All
    other code delegates rounding here so precision handling is uniform.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def decimal_places_of(value: Decimal) -> int:
    """Number of fractional digits in a Decimal (0 for integers)."""
    exponent = value.normalize().as_tuple().exponent
    if not isinstance(exponent, int):
        return 0
    return max(0, -exponent)
