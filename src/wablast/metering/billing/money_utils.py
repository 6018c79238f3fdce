"""
Token amount and money utilities.

Token balances and charges are exact decimals with two fractional digits and are
persisted as integer hundredths. Package prices are real currency handled with
py-moneyed and formatted with Babel.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

from wablast.metering.billing.exceptions import InvalidAmountError
from wablast.metering.settings import settings

TOKEN_SCALE = settings.metering.token_scale
TOKEN_QUANTUM = Decimal(1).scaleb(-TOKEN_SCALE)
ZERO_TOKENS = Decimal(0).quantize(TOKEN_QUANTUM)

DEFAULT_LOCALE = "en_US"


# ============================================================================
# Token amounts
# ============================================================================


def to_decimal(value: int | float | Decimal | str) -> Decimal:
    """Convert a numeric input to Decimal without passing through binary floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidAmountError("Boolean is not an amount", value)
    try:
        return Decimal(value) if isinstance(value, int | str) else Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidAmountError(f"Not a decimal amount: {value!r}", value) from exc


def round_tokens(value: int | float | Decimal | str) -> Decimal:
    """Round to token precision using round-half-up."""
    return to_decimal(value).quantize(TOKEN_QUANTUM, rounding=ROUND_HALF_UP)


def require_token_amount(value: int | float | Decimal | str) -> Decimal:
    """Validate a ledger amount: finite, non-negative, at most ``TOKEN_SCALE`` fractional digits."""
    amount = to_decimal(value)
    if not amount.is_finite():
        raise InvalidAmountError("Token amount must be finite", value)
    if amount < 0:
        raise InvalidAmountError("Token amount must not be negative", value)
    quantized = amount.quantize(TOKEN_QUANTUM, rounding=ROUND_HALF_UP)
    if quantized != amount:
        raise InvalidAmountError(
            f"Token amount may have at most {TOKEN_SCALE} fractional digits", value
        )
    return quantized


def tokens_to_minor(amount: Decimal) -> int:
    """Convert a validated token amount to integer hundredths."""
    return int(require_token_amount(amount).scaleb(TOKEN_SCALE))


def tokens_from_minor(minor_units: int) -> Decimal:
    """Convert integer hundredths back to a token amount."""
    return Decimal(int(minor_units)).scaleb(-TOKEN_SCALE).quantize(TOKEN_QUANTUM)


# ============================================================================
# Currency (package prices)
# ============================================================================


class MoneyHandler:
    """Central handler for money operations with proper error handling."""

    def __init__(self, default_currency: str = "IDR", default_locale: str = DEFAULT_LOCALE) -> None:
        self.default_currency = self._validate_currency(default_currency)
        self.default_locale = self._validate_locale(default_locale)

    def _validate_currency(self, currency_code: str) -> Currency:
        """Validate and return Currency object."""
        try:
            return get_currency(currency_code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {currency_code}")

    def _validate_locale(self, locale_code: str) -> str:
        """Validate locale code."""
        try:
            Locale.parse(locale_code)
            return locale_code
        except (UnknownLocaleError, ValueError):
            return DEFAULT_LOCALE

    def create_money(
        self, amount: int | float | Decimal | str, currency: str | None = None
    ) -> Money:
        """Create Money object with proper validation."""
        currency = currency or self.default_currency.code
        validated_currency = self._validate_currency(currency)
        return Money(amount=to_decimal(amount), currency=validated_currency)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Format Money object with locale-aware formatting."""
        validated_locale = self._validate_locale(locale or self.default_locale)

        try:
            return format_currency(
                number=money.amount, currency=money.currency.code, locale=validated_locale, **kwargs
            )
        except (TypeError, ValueError):
            # Fallback to simple formatting if locale issues
            return f"{money.currency.code} {money.amount}"

    def get_currency_precision(self, currency_code: str) -> int:
        """Get decimal precision for a currency."""
        return get_currency_precision(currency_code.upper())

    def money_to_minor_units(self, money: Money) -> int:
        """Convert Money to minor units (e.g., cents for USD)."""
        precision = self.get_currency_precision(money.currency.code)
        return int(money.amount.scaleb(precision).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    def money_from_minor_units(self, minor_units: int, currency: str) -> Money:
        """Create Money from minor units (e.g., cents)."""
        validated_currency = self._validate_currency(currency)
        precision = self.get_currency_precision(currency)
        amount = Decimal(int(minor_units)).scaleb(-precision)
        return Money(amount=amount, currency=validated_currency)

    def to_dict(self, money: Money) -> dict[str, Any]:
        """Convert Money to dictionary for serialization."""
        return {
            "amount": str(money.amount),
            "currency": money.currency.code,
            "minor_units": self.money_to_minor_units(money),
        }


# Global instance for convenience
money_handler = MoneyHandler(settings.metering.currency, settings.metering.locale)


def create_money(amount: int | float | Decimal | str, currency: str | None = None) -> Money:
    """Create Money object with default handler."""
    return money_handler.create_money(amount, currency)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    """Format Money with default handler."""
    return money_handler.format_money(money, locale, **kwargs)


__all__ = [
    "TOKEN_SCALE",
    "TOKEN_QUANTUM",
    "ZERO_TOKENS",
    "to_decimal",
    "round_tokens",
    "require_token_amount",
    "tokens_to_minor",
    "tokens_from_minor",
    "MoneyHandler",
    "money_handler",
    "create_money",
    "format_money",
]
