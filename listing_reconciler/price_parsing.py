"""
Price and amount parsing for listing text.

Listings write the same money value in several surface forms:

    "85000"     → 85,000
    "85,000"    → 85,000
    "$85k"      → 85,000
    "39.9k"     → 39,900
    "$85"       → 85,000   (prices below 1,000 are read as thousands)

Arithmetic goes through Decimal so "39.9k" is exactly 39,900, never 39,899.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

# Prices below this are assumed to be written in thousands.
THOUSANDS_CUTOFF = Decimal(1000)

_K_SUFFIX = re.compile(r"k\s*$", re.IGNORECASE)

_WORD_NUMBERS: dict[str, int] = {
    "zero": 0,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}


def _to_decimal(value: str) -> Decimal | None:
    cleaned = re.sub(r"[$,\s]", "", value)
    cleaned = _K_SUFFIX.sub("", cleaned)
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def has_k_suffix(value: str) -> bool:
    return bool(_K_SUFFIX.search(value.strip()))


def parse_price(value: str, has_k: bool = False) -> int | None:
    """Parse a purchase-scale money value ("$85k", "85,000", "39.9k").

    Any value below 1,000 is treated as thousands even without a "k".
    """
    number = _to_decimal(value)
    if number is None:
        return None
    if has_k or has_k_suffix(value) or number < THOUSANDS_CUTOFF:
        number *= 1000
    return int(number.quantize(Decimal(1)))


def parse_amount(value: str, has_k: bool = False) -> int | None:
    """Parse a monthly-scale money value ("$1,400"); only an explicit "k" scales."""
    number = _to_decimal(value)
    if number is None:
        return None
    if has_k or has_k_suffix(value):
        number *= 1000
    return int(number.quantize(Decimal(1)))


def parse_range(
    low: str, high: str | None, price_scale: bool = True
) -> tuple[int | None, int | None]:
    """Parse a single value or a dash-separated range into (min, max).

    A "k" on the upper bound applies to a bare lower bound too ("135-145k").
    """
    parse = parse_price if price_scale else parse_amount
    if high is None:
        value = parse(low)
        return value, value
    shared_k = has_k_suffix(high) and not has_k_suffix(low)
    return parse(low, has_k=shared_k), parse(high)


def price_surface_forms(value: int) -> list[str]:
    """Every textual form a listing might use for `value`."""
    forms = [str(value), f"{value:,}"]
    if value >= 1000:
        thousands = Decimal(value) / 1000
        if thousands == thousands.to_integral_value():
            forms.append(f"{int(thousands)}k")
        else:
            rounded = thousands.quantize(Decimal("0.1")).normalize()
            forms.append(f"{rounded:f}k")
    forms.extend([f"${form}" for form in list(forms)])
    return forms


def value_appears_in(value: int | None, text: str) -> bool:
    """True if any surface form of `value` occurs in `text` (case-insensitive)."""
    if not value:
        return False
    lowered = text.lower()
    return any(form.lower() in lowered for form in price_surface_forms(value))


def word_to_int(word: str) -> int | None:
    """Small spelled-out counts ("FOUR" → 4) used for bedroom/bathroom phrases."""
    word = word.strip().lower()
    if word.isdigit():
        return int(word)
    return _WORD_NUMBERS.get(word)
