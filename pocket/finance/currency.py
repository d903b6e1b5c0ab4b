"""
Brazilian Real parsing and formatting.

Users type amounts the Brazilian way ("5.000,00"): dots group thousands,
the comma separates cents.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Union

from pocket.models.common import to_cents

_THOUSANDS_ONLY = re.compile(r"^-?\d{1,3}(\.\d{3})+$")

Number = Union[Decimal, int, float, str, None]


def parse_brl(value: Number) -> Decimal:
    """
    Parse a BRL amount into a Decimal.

    "5.000,00" -> 5000.00, "R$ 12,5" -> 12.50, "1.500" -> 1500.00.
    Anything that cannot be parsed, NaN and infinities included, becomes 0.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, (Decimal, int, float)):
        return _finite_cents(value if isinstance(value, Decimal) else Decimal(str(value)))

    text = value.strip().replace("R$", "").replace(" ", "").replace(" ", "")
    if not text:
        return Decimal("0.00")

    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif _THOUSANDS_ONLY.match(text):
        text = text.replace(".", "")

    try:
        return _finite_cents(Decimal(text))
    except InvalidOperation:
        return Decimal("0.00")


def _finite_cents(amount: Decimal) -> Decimal:
    if not amount.is_finite():
        return Decimal("0.00")
    try:
        return to_cents(amount)
    except InvalidOperation:
        return Decimal("0.00")


def format_brl(value: Number) -> str:
    """Format an amount as "R$ 1.234,56"."""
    amount = value if isinstance(value, Decimal) else parse_brl(value)
    amount = to_cents(amount)
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,.2f}"
    # 1,234.56 -> 1.234,56
    grouped = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {grouped}"
