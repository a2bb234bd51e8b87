"""
Availability resolver — is this listing still for sale?

Fallback chain per record (each step only if the previous was inconclusive):
  1. Marketplace URL from the listing → fetch + classify (retried when blocked)
  2. Canonical marketplace URL built from the address → fetch + classify
  3. Structured search API abstract → classify
  4. Headless browser over several search engines → classify
  5. status "unknown", source "none"

The whole chain for one record runs under a hard timeout; a timeout or any
failure inside a step degrades to the next step (or to "unknown"), never to
an exception out of the batch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from .classifier import Classification
from .config import PipelineSettings
from .exceptions import AvailabilityCheckError
from .marketplace import MarketplaceCheck, check_listing
from .models import AvailabilityResult, AvailabilitySource, MarketStatus, PropertyRecord
from .normalization import construct_marketplace_url, normalize_url
from .web_search import BrowserSearch, SearchApi, is_conclusive

logger = logging.getLogger(__name__)

TIMEOUT_DETAILS = "Check timed out"

ProgressCallback = Callable[[int, int, PropertyRecord, AvailabilityResult], None]


class AvailabilityResolver:
    """Owns the HTTP client and browser used by the fallback chain.

    Usage:
        async with AvailabilityResolver(settings) as resolver:
            results = await resolver.check_batch(records)
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        search_api: Optional[SearchApi] = None,
        browser: Optional[BrowserSearch] = None,
    ):
        self.settings = settings or PipelineSettings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.settings.http_timeout_sec)
        self.search_api = search_api or SearchApi(self.client)
        self._owns_browser = browser is None
        self.browser = browser or BrowserSearch(
            headless=self.settings.browser_headless,
            timeout_sec=self.settings.browser_timeout_sec,
        )

    @property
    def _retry(self) -> dict:
        return {
            "attempts": self.settings.marketplace_attempts,
            "retry_delay": self.settings.marketplace_retry_delay_sec,
        }

    async def __aenter__(self) -> AvailabilityResolver:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_browser:
            await self.browser.aclose()
        if self._owns_client:
            await self.client.aclose()

    # ─── Per Record ──────────────────────────────────────────────────

    async def check(self, record: PropertyRecord) -> AvailabilityResult:
        """Resolve one record's status within the configured hard timeout."""
        try:
            return await asyncio.wait_for(
                self._resolve(record), timeout=self.settings.availability_timeout_sec
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Availability check timed out after %ss for %s",
                self.settings.availability_timeout_sec,
                record.address or record.marketplace_url,
            )
            return AvailabilityResult(
                status=MarketStatus.UNKNOWN,
                source=AvailabilitySource.NONE,
                details=TIMEOUT_DETAILS,
            )

    async def _resolve(self, record: PropertyRecord) -> AvailabilityResult:
        url = record.marketplace_url

        if url:
            check = await self._attempt(
                "marketplace URL", check_listing(self.client, url, **self._retry)
            )
            if check is not None and check.is_definitive:
                return _from_marketplace(check)

        has_locality = bool(record.address and record.city and record.state)

        if has_locality:
            constructed = construct_marketplace_url(
                record.address, record.city, record.state, record.zip
            )
            if normalize_url(constructed) != normalize_url(url):
                logger.info("Trying constructed marketplace URL %s", constructed)
                check = await self._attempt(
                    "constructed URL", check_listing(self.client, constructed, **self._retry)
                )
                if check is not None and check.is_definitive:
                    return _from_marketplace(check)

            classification = await self._attempt(
                "search API", self.search_api.lookup(record.address, record.city, record.state)
            )
            if is_conclusive(classification):
                return _from_search(classification)

            classification = await self._attempt(
                "browser search", self.browser.search(record.address, record.city, record.state)
            )
            if is_conclusive(classification):
                return _from_search(classification)

        return AvailabilityResult(
            status=MarketStatus.UNKNOWN,
            source=AvailabilitySource.NONE,
            details=None if has_locality or url else "Insufficient data to check",
        )

    async def _attempt(self, label: str, step: Awaitable):
        try:
            return await step
        except AvailabilityCheckError as e:
            logger.info("Availability %s failed: %s", label, e)
            return None
        except Exception as e:
            logger.error("Availability %s raised unexpectedly: %s", label, e)
            return None

    # ─── Batch ───────────────────────────────────────────────────────

    async def check_batch(
        self,
        records: list[PropertyRecord],
        on_progress: Optional[ProgressCallback] = None,
    ) -> dict[str, AvailabilityResult]:
        """Check records one at a time with a fixed delay between them.

        Each result is written onto its record via `set_availability`.
        """
        results: dict[str, AvailabilityResult] = {}
        for index, record in enumerate(records):
            if index > 0 and self.settings.record_delay_sec > 0:
                await asyncio.sleep(self.settings.record_delay_sec)

            result = await self.check(record)
            record.set_availability(result)
            results[record.id] = result

            if on_progress is not None:
                on_progress(index + 1, len(records), record, result)
        return results


def _from_marketplace(check: MarketplaceCheck) -> AvailabilityResult:
    return AvailabilityResult(
        status=check.status,
        source=AvailabilitySource.MARKETPLACE,
        details=check.details,
        data=check.data,
    )


def _from_search(classification: Classification) -> AvailabilityResult:
    return AvailabilityResult(
        status=classification.status,
        source=AvailabilitySource.WEB_SEARCH,
        details=classification.details,
    )

