"""
Currency conversion utilities.

Exchange rates are never looked up here: every caller supplies the rate that
converts one unit of the foreign currency into the base currency. Same-currency
amounts convert 1:1 regardless of the supplied rate.

All monetary amounts are Decimal, quantized to 4 places to match Numeric(18, 4).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from trading_api.config import settings

# ISO 4217 three-letter codes accepted by the system
SUPPORTED_CURRENCIES = {
    "LYD", "USD", "EUR", "GBP", "TRY", "CNY", "AED", "EGP", "TND", "SAR",
}

MONEY_QUANT = Decimal("0.0001")


def is_supported(currency: str) -> bool:
    return currency in SUPPORTED_CURRENCIES


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def effective_rate(
    currency: str,
    exchange_rate: Optional[Decimal] = None,
    base_currency: Optional[str] = None,
) -> Decimal:
    """
    Rate actually applied to an amount in `currency`.

    Returns Decimal(1) for base-currency amounts or when no rate is supplied.
    """
    base = base_currency or settings.BASE_CURRENCY
    if currency == base or exchange_rate is None:
        return Decimal("1")
    return Decimal(str(exchange_rate))


def to_base_amount(
    amount: Decimal,
    currency: str,
    exchange_rate: Optional[Decimal] = None,
    base_currency: Optional[str] = None,
) -> Decimal:
    """Convert amount into the base currency using a caller-supplied rate."""
    rate = effective_rate(currency, exchange_rate, base_currency)
    return quantize_money(Decimal(str(amount)) * rate)
