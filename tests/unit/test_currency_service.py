from decimal import Decimal

import pytest

from trading_api.services.currency_service import (
    effective_rate,
    is_supported,
    quantize_money,
    to_base_amount,
)


def test_base_currency_ignores_supplied_rate():
    assert to_base_amount(Decimal("20"), "LYD", Decimal("7")) == Decimal("20")
    assert effective_rate("LYD", Decimal("7")) == Decimal("1")


def test_foreign_amount_uses_caller_rate():
    assert to_base_amount(Decimal("10"), "EUR", Decimal("5")) == Decimal("50")


def test_foreign_amount_without_rate_converts_one_to_one():
    assert to_base_amount(Decimal("10"), "USD") == Decimal("10")


def test_explicit_base_currency():
    assert to_base_amount(Decimal("10"), "USD", Decimal("4.8"), base_currency="USD") == Decimal("10")
    assert to_base_amount(Decimal("10"), "LYD", Decimal("0.2"), base_currency="USD") == Decimal("2")


def test_amounts_are_quantized_to_four_places():
    assert to_base_amount(Decimal("1"), "USD", Decimal("4.855555")) == Decimal("4.8556")
    assert quantize_money(Decimal("0.00005")) == Decimal("0.0001")


@pytest.mark.parametrize("code,ok", [("LYD", True), ("EUR", True), ("usd", False), ("XYZ", False)])
def test_supported_currencies(code, ok):
    assert is_supported(code) is ok
