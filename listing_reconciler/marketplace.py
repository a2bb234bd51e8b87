"""
Marketplace listing page: fetch, classify, extract backfill details.

HTTP outcomes:
    404 / 410        → off-market (listing removed)
    403 / 429        → blocked (inconclusive; the resolver moves on)
    CAPTCHA page     → blocked
    other non-2xx    → AvailabilityCheckError

Blocked answers, network failures and other non-2xx statuses are retried up
to `attempts` times with `retry_delay` seconds between tries. The last
outcome is what the caller sees.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from .classifier import classify_status, is_blocked
from .exceptions import AvailabilityCheckError
from .models import ListingDetails, MarketStatus

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

MAX_ATTEMPTS = 3
RETRY_DELAY_SEC = 5.0

CAPTCHA_SELECTORS = ("#px-captcha", ".captcha-container", 'iframe[src*="captcha"]')
STATUS_SELECTORS = ('[data-testid="home-details-chip-status"]', ".ds-status-details")
ZESTIMATE_SELECTORS = ('[data-testid="zestimate-value"]',)
SUMMARY_SELECTORS = ('[data-testid="bed-bath-beyond"]', ".ds-bed-bath-living-area")

_MONEY = re.compile(r"\$([\d,]+)")
_ZESTIMATE_TEXT = re.compile(r"Zestimate[^$]{0,40}\$([\d,]+)", re.IGNORECASE)
_BEDS = re.compile(r"(\d+)\s*(?:bd|bed|bedroom)", re.IGNORECASE)
_BATHS = re.compile(r"(\d+(?:\.\d+)?)\s*(?:ba|bath)", re.IGNORECASE)
_SQFT = re.compile(r"([\d,]+)\s*(?:sqft|sq\.?\s*ft)", re.IGNORECASE)
_YEAR_BUILT = re.compile(r"(?:year\s+built|built\s+in)\D{0,10}((?:19|20)\d{2})", re.IGNORECASE)


@dataclass
class MarketplaceCheck:
    status: MarketStatus
    blocked: bool = False
    details: Optional[str] = None
    data: Optional[ListingDetails] = None

    @property
    def is_definitive(self) -> bool:
        return not self.blocked and self.status.is_definitive


async def check_listing(
    client: httpx.AsyncClient,
    url: str,
    attempts: int = MAX_ATTEMPTS,
    retry_delay: float = RETRY_DELAY_SEC,
) -> MarketplaceCheck:
    """Fetch one listing page and classify it, retrying inconclusive answers.

    Raises:
        AvailabilityCheckError: network failure or unexpected HTTP status on
            the final attempt.
    """
    for attempt in range(1, attempts):
        try:
            check = await _fetch_listing(client, url)
        except AvailabilityCheckError as e:
            logger.info("Marketplace attempt %d/%d failed for %s: %s", attempt, attempts, url, e)
        else:
            if not check.blocked:
                return check
            logger.info("Marketplace attempt %d/%d blocked for %s", attempt, attempts, url)
        if retry_delay > 0:
            await asyncio.sleep(retry_delay)
    return await _fetch_listing(client, url)


async def _fetch_listing(client: httpx.AsyncClient, url: str) -> MarketplaceCheck:
    try:
        response = await client.get(url, headers=REQUEST_HEADERS, follow_redirects=True)
    except httpx.HTTPError as e:
        raise AvailabilityCheckError(f"Marketplace request failed: {e}", {"url": url}) from e

    if response.status_code in (404, 410):
        return MarketplaceCheck(
            MarketStatus.OFF_MARKET, details=f"Listing removed ({response.status_code})"
        )
    if response.status_code in (403, 429):
        logger.info("Marketplace blocked request (%d) for %s", response.status_code, url)
        return MarketplaceCheck(
            MarketStatus.NEEDS_REVIEW, blocked=True, details=f"Blocked ({response.status_code})"
        )
    if response.status_code >= 400:
        raise AvailabilityCheckError(
            f"Marketplace returned HTTP {response.status_code}",
            {"url": url, "status_code": response.status_code},
        )

    return parse_listing_page(response.text)


def parse_listing_page(html: str) -> MarketplaceCheck:
    """Classify a listing page's HTML and pull out backfill details."""
    soup = BeautifulSoup(html, "html.parser")
    text = soup.get_text(" ", strip=True)

    if any(soup.select_one(sel) for sel in CAPTCHA_SELECTORS) or is_blocked(text):
        return MarketplaceCheck(MarketStatus.NEEDS_REVIEW, blocked=True, details="CAPTCHA detected")

    classification = classify_status(text)
    status, details = classification.status, classification.details

    if status == MarketStatus.UNKNOWN:
        chip = _first_text(soup, STATUS_SELECTORS)
        if chip:
            status = _status_from_chip(chip)

    return MarketplaceCheck(status, details=details, data=extract_listing_details(soup, text))


def extract_listing_details(soup: BeautifulSoup, text: str) -> ListingDetails:
    details = ListingDetails()

    zestimate = _first_text(soup, ZESTIMATE_SELECTORS)
    money = _MONEY.search(zestimate) if zestimate else _ZESTIMATE_TEXT.search(text)
    if money:
        details.valuation_estimate = int(money.group(1).replace(",", ""))

    summary = _first_text(soup, SUMMARY_SELECTORS) or text
    beds = _BEDS.search(summary)
    if beds:
        details.bedrooms = int(beds.group(1))
    baths = _BATHS.search(summary)
    if baths:
        details.bathrooms = float(baths.group(1))
    sqft = _SQFT.search(summary)
    if sqft:
        details.sqft = int(sqft.group(1).replace(",", ""))
    year = _YEAR_BUILT.search(text)
    if year:
        details.year_built = int(year.group(1))

    return details


def _first_text(soup: BeautifulSoup, selectors: tuple[str, ...]) -> str | None:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is not None:
            return element.get_text(" ", strip=True)
    return None


def _status_from_chip(chip: str) -> MarketStatus:
    chip = chip.lower()
    if "sold" in chip:
        return MarketStatus.SOLD
    if "pending" in chip:
        return MarketStatus.PENDING
    if "sale" in chip:
        return MarketStatus.ACTIVE
    if "off" in chip:
        return MarketStatus.OFF_MARKET
    return MarketStatus.UNKNOWN
