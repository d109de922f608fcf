"""
Money Utilities - Safe Decimal operations for monetary values.

Avoids float precision issues by using Decimal throughout. Rounding
happens only at the edges (display, persistence, tax), never in between.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

Number = Union[str, int, float, Decimal]

# Default precision for money operations (2 decimal places)
MONEY_PRECISION = Decimal("0.01")

# Precision for currencies without a minor unit in practice
INTEGER_PRECISION = Decimal("1")

# Currencies displayed and charged in whole units
INTEGER_CURRENCIES = frozenset({"VND", "JPY", "KRW", "RUB"})

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "VND": "đ",
    "JPY": "¥",
    "KRW": "₩",
    "RUB": "₽",
}


def parse_decimal(value: Number) -> Decimal:
    """
    Strict conversion used for inputs that must be validated.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"Not a monetary amount: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def to_decimal(value: Union[Number, None], default: Decimal = Decimal("0")) -> Decimal:
    """Lenient conversion for display and settings paths; unreadable input becomes default."""
    if value is None:
        return default
    try:
        return parse_decimal(value)
    except ValueError:
        return default


def minor_unit(currency: str) -> Decimal:
    """Smallest charged unit for a currency (0.01, or 1 for integer currencies)."""
    return INTEGER_PRECISION if currency.upper() in INTEGER_CURRENCIES else MONEY_PRECISION


def round_money(value: Number, currency: str = "USD") -> Decimal:
    """
    Round monetary value to the currency's minor unit.

    Args:
        value: Value to round
        currency: Currency code deciding the precision

    Returns:
        Rounded Decimal value
    """
    return to_decimal(value).quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def to_minor_units(value: Number, currency: str = "USD") -> int:
    """
    Convert a decimal amount to integer minor units (cents, or whole dong).

    Used for payment payloads that expect integers.
    """
    rounded = round_money(value, currency)
    return int(rounded / minor_unit(currency))


def format_money(value: Number, currency: str = "USD") -> str:
    """
    Format monetary value with currency symbol.

    Examples:
        format_money("1234.5", "USD") -> "$1,234.50"
        format_money(226000, "VND") -> "226.000 đ"
    """
    currency = currency.upper()
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    rounded = round_money(value, currency)

    if currency in INTEGER_CURRENCIES:
        # Dot-grouped thousands, symbol after the amount
        formatted = f"{int(rounded):,}".replace(",", ".")
        return f"{formatted} {symbol}"

    formatted = f"{rounded:,.2f}"
    if currency in ("USD", "EUR", "GBP"):
        return f"{symbol}{formatted}"
    return f"{formatted} {symbol}"
