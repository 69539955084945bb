"""
Checkout pricing

Pure arithmetic on Decimal amounts. Nothing here is rounded; use
``money()`` when an amount is about to be shown to a person.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import NamedTuple, Union

from errors import ValidationError

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
CENT = Decimal("0.01")
PAYMENT_TOLERANCE = CENT


class Totals(NamedTuple):
    taxable_amount: Decimal
    tax: Decimal
    total: Decimal


def to_decimal(value: Number) -> Decimal:
    # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return result


def compute_totals(subtotal: Number, discount: Number, tax_rate: Number) -> Totals:
    """Apply a flat discount, then tax the remainder.

    The discount can at most bring the taxable amount to zero.
    """
    subtotal = to_decimal(subtotal)
    discount = to_decimal(discount)
    tax_rate = to_decimal(tax_rate)
    if subtotal < ZERO:
        raise ValidationError("Subtotal cannot be negative")
    if discount < ZERO:
        raise ValidationError("Discount cannot be negative")
    if tax_rate < ZERO:
        raise ValidationError("Tax rate cannot be negative")

    taxable_amount = max(ZERO, subtotal - discount)
    tax = taxable_amount * (tax_rate / 100)
    return Totals(taxable_amount, tax, taxable_amount + tax)


def is_sufficient_payment(tendered: Number, total: Number) -> bool:
    return to_decimal(tendered) >= to_decimal(total) - PAYMENT_TOLERANCE


def money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
