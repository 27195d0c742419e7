"""Devises supportées et conversion montant <-> unités mineures.

Les montants sont stockés avec au plus deux décimales, même pour une devise
à trois décimales (TND) : 1 unité stockée = 1/100 de la devise.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, NamedTuple, Optional, Union


class CurrencyInfo(NamedTuple):
    code: str
    label: str
    symbol: str
    decimals: int


SUPPORTED_CURRENCIES = (
    CurrencyInfo("TND", "Dinar tunisien (TND)", "DT", 3),
    CurrencyInfo("EUR", "Euro (EUR)", "€", 2),
    CurrencyInfo("USD", "Dollar américain (USD)", "$", 2),
    CurrencyInfo("GBP", "Livre sterling (GBP)", "£", 2),
    CurrencyInfo("CAD", "Dollar canadien (CAD)", "$ CA", 2),
)

DEFAULT_CURRENCY_CODE = "TND"

_BY_CODE: Dict[str, CurrencyInfo] = {info.code: info for info in SUPPORTED_CURRENCIES}


def _normalize(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    upper = code.strip().upper()
    return upper if upper in _BY_CODE else None


def is_supported(code: Optional[str]) -> bool:
    return _normalize(code) is not None


def get_currency_info(code: Optional[str] = None) -> CurrencyInfo:
    return _BY_CODE[_normalize(code) or DEFAULT_CURRENCY_CODE]


def storage_decimals(code: Optional[str] = None) -> int:
    return min(max(get_currency_info(code).decimals, 0), 2)


def minor_unit_factor(code: Optional[str] = None) -> int:
    return 10 ** storage_decimals(code)


def _to_decimal(amount: Union[Decimal, int, str, float]) -> Decimal:
    try:
        return amount if isinstance(amount, Decimal) else Decimal(str(amount).replace(",", ".").strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {amount!r}") from exc


def to_cents(amount: Union[Decimal, int, str, float], currency: Optional[str] = None) -> int:
    """12.345 (TND) -> 1235 ; arrondi au plus proche, demi vers le haut."""
    value = _to_decimal(amount) * minor_unit_factor(currency)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_cents(amount_cents: int, currency: Optional[str] = None) -> Decimal:
    return Decimal(int(amount_cents)) / minor_unit_factor(currency)


def format_cents(amount_cents: int, currency: Optional[str] = None) -> str:
    info = get_currency_info(currency)
    value = from_cents(amount_cents, info.code)
    return f"{value:.{info.decimals}f} {info.symbol}"
