"""
Keyword status classifier shared by every availability method.

Priority (first match wins):
    sold  >  pending / under contract  >  active / for sale  >  off-market

Sold is checked first because a sold page still shows its old list price,
and "for sale" text survives on pages long after the sale.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .models import MarketStatus

SOLD_DATE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"sold\s+(?:on\s+)?([a-z]+\s+\d{1,2},?\s+\d{4})", re.IGNORECASE),
    re.compile(r"sold\s+(?:on\s+)?(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE),
    re.compile(r"sold\s+-\s+([a-z]+\s+\d{4})", re.IGNORECASE),
)
SOLD_PRICE_PATTERN = re.compile(r"sold\s+for\s+(\$[\d,]+(?:\.\d+)?[km]?)", re.IGNORECASE)
SOLD_PHRASES = ("was sold", "sold for", "sold price", "recently sold", "status: sold")
PENDING_PHRASES = ("sale pending", "pending", "under contract", "contingent")
ACTIVE_PHRASES = ("for sale", "active listing", "list price", "asking price", "listed for")
OFF_MARKET_PHRASES = (
    "off market",
    "off-market",
    "not currently listed",
    "no longer listed",
    "no longer available",
)

BLOCK_MARKERS = (
    "captcha",
    "unusual traffic",
    "verify you are human",
    "access denied",
    "are you a robot",
    "press & hold",
)


@dataclass(frozen=True)
class Classification:
    status: MarketStatus
    details: Optional[str] = None


def classify_status(content: str) -> Classification:
    """Map free text (a listing page, a search snippet) to a market status."""
    for pattern in SOLD_DATE_PATTERNS:
        match = pattern.search(content)
        if match:
            return Classification(MarketStatus.SOLD, f"Sold on {match.group(1)}")

    lowered = content.lower()

    if any(phrase in lowered for phrase in SOLD_PHRASES):
        price = SOLD_PRICE_PATTERN.search(content)
        details = f"Sold for {price.group(1)}" if price else "Recently sold"
        return Classification(MarketStatus.SOLD, details)

    if any(phrase in lowered for phrase in PENDING_PHRASES):
        return Classification(MarketStatus.PENDING, "Under contract")

    if any(phrase in lowered for phrase in ACTIVE_PHRASES):
        return Classification(MarketStatus.ACTIVE)

    if any(phrase in lowered for phrase in OFF_MARKET_PHRASES):
        return Classification(MarketStatus.OFF_MARKET, "Not currently listed")

    return Classification(MarketStatus.UNKNOWN)


def is_blocked(content: str) -> bool:
    """True if the text looks like a bot-block or CAPTCHA interstitial."""
    lowered = content.lower()
    return any(marker in lowered for marker in BLOCK_MARKERS)
