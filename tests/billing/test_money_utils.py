"""Tests for token amount and money utilities."""

from decimal import Decimal

import pytest
from moneyed import Money

from wablast.metering.billing.exceptions import InvalidAmountError
from wablast.metering.billing.money_utils import (
    TOKEN_QUANTUM,
    ZERO_TOKENS,
    MoneyHandler,
    create_money,
    format_money,
    require_token_amount,
    round_tokens,
    to_decimal,
    tokens_from_minor,
    tokens_to_minor,
)


@pytest.mark.unit
class TestTokenAmounts:
    """Exact decimal handling of token amounts."""

    def test_constants(self):
        assert TOKEN_QUANTUM == Decimal("0.01")
        assert ZERO_TOKENS == Decimal("0.00")

    def test_to_decimal_avoids_binary_float_drift(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("2.50") == Decimal("2.50")
        assert to_decimal(3) == Decimal(3)

    def test_to_decimal_rejects_garbage(self):
        with pytest.raises(InvalidAmountError):
            to_decimal("ten")

    def test_to_decimal_rejects_bool(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(True)

    def test_round_tokens_is_half_up(self):
        assert round_tokens(Decimal("0.005")) == Decimal("0.01")
        assert round_tokens(Decimal("0.0049")) == Decimal("0.00")
        assert round_tokens(Decimal("7.125")) == Decimal("7.13")

    def test_require_token_amount_accepts_two_decimals(self):
        assert require_token_amount("12.34") == Decimal("12.34")
        assert require_token_amount(5) == Decimal("5.00")
        assert require_token_amount(0) == Decimal("0.00")

    def test_require_token_amount_rejects_negative(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            require_token_amount(Decimal("-0.01"))
        assert exc_info.value.error_code == "INVALID_AMOUNT"

    def test_require_token_amount_rejects_extra_precision(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            require_token_amount(Decimal("0.001"))
        assert "fractional digits" in exc_info.value.message

    def test_require_token_amount_rejects_non_finite(self):
        with pytest.raises(InvalidAmountError):
            require_token_amount(Decimal("NaN"))
        with pytest.raises(InvalidAmountError):
            require_token_amount(Decimal("Infinity"))

    def test_minor_unit_conversion(self):
        assert tokens_to_minor(Decimal("7.50")) == 750
        assert tokens_to_minor(Decimal("0.01")) == 1
        assert tokens_from_minor(750) == Decimal("7.50")
        assert tokens_from_minor(1) == Decimal("0.01")
        assert tokens_from_minor(0) == ZERO_TOKENS

    def test_many_small_charges_do_not_drift(self):
        total_minor = sum(tokens_to_minor(Decimal("0.01")) for _ in range(100_000))
        assert tokens_from_minor(total_minor) == Decimal("1000.00")


@pytest.mark.unit
class TestMoneyHandler:
    """Package price handling with py-moneyed and Babel."""

    def test_default_currency(self):
        handler = MoneyHandler()
        assert handler.default_currency.code == "IDR"

    def test_invalid_currency(self):
        with pytest.raises(ValueError) as exc_info:
            MoneyHandler(default_currency="NOPE")
        assert "Invalid currency code" in str(exc_info.value)

    def test_invalid_locale_falls_back(self):
        handler = MoneyHandler(default_locale="xx_INVALID")
        assert handler.default_locale == "en_US"

    def test_create_money(self):
        money = create_money("25000", "IDR")
        assert isinstance(money, Money)
        assert money.amount == Decimal("25000")
        assert money.currency.code == "IDR"

    def test_minor_units_round_trip(self):
        handler = MoneyHandler("USD", "en_US")
        money = handler.create_money("12.34")
        minor = handler.money_to_minor_units(money)
        assert minor == 1234
        assert handler.money_from_minor_units(minor, "USD").amount == Decimal("12.34")

    def test_format_money(self):
        formatted = format_money(create_money("25000", "IDR"), locale="id_ID")
        assert "25.000" in formatted

    def test_to_dict(self):
        handler = MoneyHandler("USD", "en_US")
        data = handler.to_dict(handler.create_money("1.50"))
        assert data == {"amount": "1.50", "currency": "USD", "minor_units": 150}
