# Overview: Exchange-rate collaborator used to cost invoice lines in invoice currency.

"""
Exchange Rate Service

WHY: Product cost is kept in the currency it was bought in (usually USD),
while invoices are raised in USD, GHS or GBP. Line cost is frozen in the
invoice currency when the item is added, so margin reports do not drift
when rates move.

DESIGN:
- Default provider is a static table (no live lookups)
- Provider is pluggable: set_rate_provider() or app config EXCHANGE_RATES
- Rates are Decimal; converted amounts are whole cents, rounded half-up
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

from flask import current_app, has_app_context

from .errors import InvalidAmountError


RATE_SOURCE_STATIC = "hardcoded"
RATE_SOURCE_CONFIG = "config"
RATE_SOURCE_PROVIDER = "provider"

_BASE_RATES = {
    "USD_GHS": Decimal("12.5"),
    "GBP_GHS": Decimal("16.0"),
    "USD_GBP": Decimal("0.79"),
}


def _with_inverses(rates: dict) -> dict:
    table = {}
    for pair, rate in rates.items():
        base, quote = pair.split("_", 1)
        rate = Decimal(str(rate))
        table[f"{base}_{quote}"] = rate
        inverse_key = f"{quote}_{base}"
        if inverse_key not in rates:
            table[inverse_key] = Decimal(1) / rate
    return table


STATIC_RATES = _with_inverses(_BASE_RATES)

_rate_provider: Callable[[str, str], Decimal] | None = None


def set_rate_provider(provider: Callable[[str, str], Decimal] | None) -> None:
    """
    Replace the rate lookup. provider(from_currency, to_currency) -> Decimal.

    Pass None to restore the static table.
    """
    global _rate_provider
    _rate_provider = provider


def _configured_rates() -> dict | None:
    if not has_app_context():
        return None
    overrides = current_app.config.get("EXCHANGE_RATES")
    if not overrides:
        return None
    return _with_inverses(overrides)


def get_rate_with_source(from_currency: str, to_currency: str) -> tuple[Decimal, str]:
    """Return (rate, source) for converting one unit of from_currency."""
    if from_currency == to_currency:
        return Decimal(1), RATE_SOURCE_STATIC

    if _rate_provider is not None:
        return Decimal(str(_rate_provider(from_currency, to_currency))), RATE_SOURCE_PROVIDER

    pair = f"{from_currency}_{to_currency}"
    configured = _configured_rates()
    if configured and pair in configured:
        return configured[pair], RATE_SOURCE_CONFIG

    rate = STATIC_RATES.get(pair)
    if rate is None:
        raise InvalidAmountError(
            f"Exchange rate not available for {from_currency}/{to_currency}",
            code="FX_RATE_UNAVAILABLE",
            details={"from_currency": from_currency, "to_currency": to_currency},
        )
    return rate, RATE_SOURCE_STATIC


def get_rate(from_currency: str, to_currency: str) -> Decimal:
    rate, _source = get_rate_with_source(from_currency, to_currency)
    return rate


def convert_cents(amount_cents: int, from_currency: str, to_currency: str) -> int:
    """Convert an integer cents amount, rounding half-up to a whole cent."""
    if amount_cents is None:
        return 0
    if from_currency == to_currency:
        return int(amount_cents)
    rate = get_rate(from_currency, to_currency)
    converted = (Decimal(int(amount_cents)) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(converted)
