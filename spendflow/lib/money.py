"""
Money helpers: Decimal coercion, rounding, and display formatting.

Amounts are currency units (not cents) held as Decimal with two places.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from spendflow.lib.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

CURRENCY_SYMBOLS: dict[str, str] = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
    "JPY": "¥",
    "INR": "₹",
    "CAD": "CA$",
    "AUD": "A$",
}


def to_decimal(value: object) -> Decimal:
    """Coerce int/float/str/Decimal to a 2-place Decimal."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        # go through str so 0.1 stays 0.1
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"Not a monetary amount: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"Not a monetary amount: {value!r}")
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal | float | int, currency: str = "GBP") -> str:
    """
    Format an amount for user-facing text, e.g. ``£1,234.50`` or ``-$20.00``.

    Unknown currency codes are rendered as a suffix: ``12.00 CHF``.
    """
    value = to_decimal(amount)
    sign = "-" if value < 0 else ""
    body = f"{abs(value):,.2f}"
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{sign}{body} {currency.upper()}"
    return f"{sign}{symbol}{body}"
