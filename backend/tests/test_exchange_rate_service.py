# Overview: Pytest coverage for exchange-rate lookups and cents conversion.

from decimal import Decimal

import pytest

from stockledger.services import exchange_rate_service as fx
from stockledger.services.errors import InvalidAmountError


@pytest.fixture(autouse=True)
def reset_provider():
    yield
    fx.set_rate_provider(None)


class TestRates:

    def test_same_currency_is_one(self):
        assert fx.get_rate("GHS", "GHS") == Decimal(1)

    def test_static_rate_and_inverse(self):
        assert fx.get_rate_with_source("USD", "GHS") == (Decimal("12.5"), "hardcoded")
        assert fx.get_rate("GHS", "USD") == Decimal("0.08")

    def test_unknown_pair(self):
        with pytest.raises(InvalidAmountError) as exc:
            fx.get_rate("EUR", "GHS")
        assert exc.value.code == "FX_RATE_UNAVAILABLE"
        assert exc.value.details == {"from_currency": "EUR", "to_currency": "GHS"}

    def test_config_overrides_static(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EXCHANGE_RATES", {"USD_GHS": "15"})
        assert fx.get_rate_with_source("USD", "GHS") == (Decimal("15"), "config")
        # Pairs missing from config fall back to the static table
        assert fx.get_rate_with_source("GBP", "GHS") == (Decimal("16.0"), "hardcoded")

    def test_provider_wins(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EXCHANGE_RATES", {"USD_GHS": "15"})
        fx.set_rate_provider(lambda src, dst: "11.25")
        assert fx.get_rate_with_source("USD", "GHS") == (Decimal("11.25"), "provider")


class TestConvertCents:

    def test_same_currency_passthrough(self):
        assert fx.convert_cents(1234, "GHS", "GHS") == 1234

    def test_none_is_zero(self):
        assert fx.convert_cents(None, "USD", "GHS") == 0

    def test_rounds_half_up(self):
        # 1 cent * 12.5 = 12.5 -> 13
        assert fx.convert_cents(1, "USD", "GHS") == 13
        # 3 cents * 0.79 = 2.37 -> 2
        assert fx.convert_cents(3, "USD", "GBP") == 2

    def test_whole_amounts(self):
        assert fx.convert_cents(1000, "USD", "GHS") == 12500
        assert fx.convert_cents(12500, "GHS", "USD") == 1000
