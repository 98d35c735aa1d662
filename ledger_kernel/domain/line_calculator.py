"""
Line-Item Calculator -- pure pricing of one invoice line.

Responsibility:
    Turns (quantity, unit_price, discount %, tax %) into the derived line
    amounts: subtotal, discount_amount, taxable_amount, tax_amount, total.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    invoice service on every line mutation; never reads persisted totals.

Invariants enforced:
    - Discount is applied BEFORE tax: tax is charged on the discounted base
      (VAT-on-net invoicing).  This ordering is fixed.
    - quantity >= 0, unit_price >= 0, 0 <= discount % <= 100,
      0 <= tax % <= 100; anything else is a ValidationError.
    - Exact Decimal arithmetic for every component.  The ONLY rounding step
      is the final total, to the currency's minor unit, ROUND_HALF_UP.
    - Inputs carry at most INPUT_DECIMAL_PLACES fractional digits so every
      exact component fits the storage precision.

Failure modes:
    - ValidationError for out-of-range, non-numeric, float or over-precise
      inputs.
    - InvalidCurrencyError for an unknown currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ledger_kernel.db.types import INPUT_DECIMAL_PLACES, decimal_places_of, round_money
from ledger_kernel.domain.values import Currency, to_decimal
from ledger_kernel.exceptions import ValidationError

_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts of one invoice line."""

    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total: Decimal


def _checked(
    value: Decimal | str | int,
    field: str,
    upper: Decimal | None = None,
) -> Decimal:
    result = to_decimal(value, field)
    if result < _ZERO:
        raise ValidationError(field, f"must be >= 0, got {result}")
    if upper is not None and result > upper:
        raise ValidationError(field, f"must be <= {upper}, got {result}")
    if decimal_places_of(result) > INPUT_DECIMAL_PLACES:
        raise ValidationError(
            field, f"at most {INPUT_DECIMAL_PLACES} decimal places allowed, got {result}"
        )
    return result


def compute_line(
    quantity: Decimal | str | int,
    unit_price: Decimal | str | int,
    discount_percentage: Decimal | str | int = _ZERO,
    tax_percentage: Decimal | str | int = _ZERO,
    currency: str | Currency = "ZAR",
) -> LineAmounts:
    """
    Compute the derived amounts for one line.

    Preconditions:
        - All inputs are Decimal/str/int (never float) within their ranges.

    Postconditions:
        - subtotal = quantity * unit_price (exact)
        - discount_amount = subtotal * discount% / 100 (exact)
        - taxable_amount = subtotal - discount_amount (exact)
        - tax_amount = taxable_amount * tax% / 100 (exact)
        - total = round_half_up(taxable_amount + tax_amount, minor unit)

    Raises:
        ValidationError: If any input violates its constraint.
    """
    qty = _checked(quantity, "quantity")
    price = _checked(unit_price, "unit_price")
    discount_pct = _checked(discount_percentage, "discount_percentage", _HUNDRED)
    tax_pct = _checked(tax_percentage, "tax_percentage", _HUNDRED)
    ccy = currency if isinstance(currency, Currency) else Currency(currency)

    subtotal = qty * price
    discount_amount = subtotal * discount_pct / _HUNDRED
    taxable_amount = subtotal - discount_amount
    tax_amount = taxable_amount * tax_pct / _HUNDRED
    total = round_money(taxable_amount + tax_amount, ccy.decimal_places)

    return LineAmounts(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_amount=taxable_amount,
        tax_amount=tax_amount,
        total=total,
    )
