"""Price formatting, minor-unit conversion and quantity clamping."""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from babel import Locale, UnknownLocaleError
from babel.numbers import format_currency, is_currency

from .errors import UnsupportedCurrencyError

Amount = Decimal | int | float | str

# Currencies whose gateway amounts are already expressed in whole units.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)


def to_decimal(amount: Amount) -> Decimal:
    """Coerce an amount to Decimal without binary float artefacts."""

    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, bool):
        msg = "amount must be numeric"
        raise TypeError(msg)
    if isinstance(amount, float):
        return Decimal(str(amount))
    try:
        return Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        msg = f"amount {amount!r} is not numeric"
        raise TypeError(msg) from exc


def _normalize_currency(currency_code: str) -> str:
    code = (currency_code or "").strip().upper()
    if not is_currency(code):
        raise UnsupportedCurrencyError(currency_code)
    return code


def _parse_locale(locale: str) -> Locale:
    separator = "-" if "-" in locale else "_"
    try:
        return Locale.parse(locale, sep=separator)
    except (UnknownLocaleError, ValueError) as exc:
        msg = f"unknown locale: {locale!r}"
        raise ValueError(msg) from exc


def format_price(amount: Amount, currency_code: str = "USD", locale: str = "en-US") -> str:
    """Render ``amount`` using the currency conventions of ``locale``.

    >>> format_price(9.5, "USD", "en-US")
    '$9.50'
    """

    code = _normalize_currency(currency_code)
    return format_currency(to_decimal(amount), code, locale=_parse_locale(locale))


def format_price_range(
    minimum: Amount,
    maximum: Amount,
    currency_code: str = "USD",
    locale: str = "en-US",
) -> str:
    """Render a price range, collapsing equal bounds to a single price."""

    low = format_price(minimum, currency_code, locale)
    if to_decimal(minimum) == to_decimal(maximum):
        return low
    return f"{low} - {format_price(maximum, currency_code, locale)}"


def parse_quantity(value: Any) -> int | None:
    """Return ``value`` as an int, or ``None`` when it is not a whole number."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        return int(value)
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            return None
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def clamp_quantity(value: Any, minimum: int, maximum: int) -> int | None:
    """Clamp ``value`` into ``[minimum, maximum]``.

    Returns ``None`` when ``value`` is not a number so callers can reject the
    input instead of acting on a guessed quantity.
    """

    if minimum > maximum:
        msg = "minimum must not exceed maximum"
        raise ValueError(msg)
    quantity = parse_quantity(value)
    if quantity is None:
        return None
    return max(minimum, min(maximum, quantity))


def to_minor_units(amount: Amount, currency: str) -> int:
    """Convert a decimal amount to the integer unit a payment gateway expects."""

    code = _normalize_currency(currency)
    value = to_decimal(amount)
    if code not in ZERO_DECIMAL_CURRENCIES:
        value = value * 100
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    code = _normalize_currency(currency)
    if code in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / Decimal("100")).quantize(Decimal("0.01"))
