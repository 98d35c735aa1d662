"""
Values -- input coercion and the Currency value object.

Responsibility:
    Turns caller-supplied amounts into finite Decimals and currency codes
    into validated Currency values before any ledger computation sees them.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Amounts are Decimal, never float (floats are rejected, not converted).
    - Currency codes are validated ISO 4217 at construction time.

Failure modes:
    - InvalidCurrencyError on an unknown currency code.
    - ValidationError on non-numeric or float amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.exceptions import InvalidCurrencyError, ValidationError


def to_decimal(value: Decimal | str | int, field: str = "amount") -> Decimal:
    """
    Coerce an input to a finite Decimal.

    Raises:
        ValidationError: on float, non-numeric, NaN or infinite input.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, f"must be Decimal, str or int, got {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(field, f"not a number: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(field, f"must be finite, got {value!r}")
    return result


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - code is always uppercase, stripped and a valid ISO 4217 code.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if isinstance(self.code, str) else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise InvalidCurrencyError(str(self.code))
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def minor_unit(self) -> Decimal:
        """Smallest denomination, used as the rounding quantum."""
        return Decimal(1).scaleb(-self.decimal_places)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"
