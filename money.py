from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from models import CurrencyCode

CENT = Decimal("0.01")

# symbol, thousands separator, decimal separator
CURRENCY_FORMATS: dict[CurrencyCode, tuple[str, str, str]] = {
    CurrencyCode.brl: ("R$", ".", ","),
    CurrencyCode.usd: ("$", ",", "."),
    CurrencyCode.eur: ("€", ".", ","),
}


def to_cents(amount: Union[Decimal, int, str]) -> int:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def currency_symbol(currency: CurrencyCode) -> str:
    return CURRENCY_FORMATS[currency][0]


def format_amount(cents: int, currency: CurrencyCode) -> str:
    symbol, thousands, decimal_sep = CURRENCY_FORMATS[currency]
    sign = "-" if cents < 0 else ""
    text = f"{abs(cents) / 100:,.2f}"
    text = text.replace(",", "\x00").replace(".", decimal_sep).replace("\x00", thousands)
    return f"{sign}{symbol} {text}"
