"""
Web search fallbacks for listings the marketplace could not resolve.

Two tiers:
  - SearchApi: DuckDuckGo instant-answer JSON (one cheap HTTP call)
  - BrowserSearch: headless Chromium over Bing, then DuckDuckGo HTML

BrowserSearch owns its Playwright driver and browser. Both are started on
first use and released by `aclose()` (or `async with`); every page and
context is closed on both the success and failure paths.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote_plus

import httpx
from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from .classifier import Classification, classify_status, is_blocked
from .exceptions import AvailabilityCheckError
from .models import MarketStatus

logger = logging.getLogger(__name__)

SEARCH_API_URL = "https://api.duckduckgo.com/"
MIN_ABSTRACT_CHARS = 50
MIN_PAGE_CHARS = 300
SETTLE_MS = 1500

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class SearchEngine:
    name: str
    url_template: str

    def url(self, query: str) -> str:
        return self.url_template.format(query=quote_plus(query))


SEARCH_ENGINES: tuple[SearchEngine, ...] = (
    SearchEngine("Bing", "https://www.bing.com/search?q={query}"),
    SearchEngine("DuckDuckGo", "https://html.duckduckgo.com/html/?q={query}"),
)


def api_query(address: str, city: str, state: str) -> str:
    return f"{address} {city} {state} zillow"


def browser_query(address: str, city: str, state: str) -> str:
    return f"{address} {city} {state} property sold"


# ─── Structured Search API ───────────────────────────────────────────


class SearchApi:
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def lookup(self, address: str, city: str, state: str) -> Optional[Classification]:
        """Classify the instant-answer abstract; None if too thin to judge.

        Raises:
            AvailabilityCheckError: network failure or non-2xx response.
        """
        params = {"q": api_query(address, city, state), "format": "json", "no_html": "1"}
        try:
            response = await self.client.get(SEARCH_API_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AvailabilityCheckError(f"Search API failed: {e}") from e

        abstract = f"{data.get('Abstract') or ''} {data.get('AbstractText') or ''}".strip()
        if len(abstract) <= MIN_ABSTRACT_CHARS:
            return None
        return classify_status(abstract)


# ─── Headless Browser Search ─────────────────────────────────────────


class BrowserSearch:
    """Multi-engine search through one lazily launched headless browser."""

    def __init__(self, headless: bool = True, timeout_sec: float = 15):
        self.headless = headless
        self.timeout_ms = int(timeout_sec * 1000)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> BrowserSearch:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def _get_browser(self) -> Browser:
        if self._browser is None:
            try:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=["--disable-blink-features=AutomationControlled", "--no-sandbox"],
                )
            except PlaywrightError as e:
                await self.aclose()
                raise AvailabilityCheckError(f"Browser unavailable: {e}") from e
        return self._browser

    async def aclose(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def search(self, address: str, city: str, state: str) -> Optional[Classification]:
        """Classify the first engine that returns substantial, unblocked content.

        Returns None when every engine is blocked, thin, or failing.
        """
        browser = await self._get_browser()
        query = browser_query(address, city, state)
        context = await browser.new_context(
            user_agent=BROWSER_USER_AGENT, viewport={"width": 1280, "height": 800}
        )
        try:
            page = await context.new_page()
            try:
                for engine in SEARCH_ENGINES:
                    text = await self._fetch_text(page, engine, query)
                    if text is None:
                        continue
                    if is_blocked(text):
                        logger.info("%s appears blocked, trying next engine", engine.name)
                        continue
                    if len(text) < MIN_PAGE_CHARS:
                        logger.info("%s returned too little content, trying next engine", engine.name)
                        continue
                    classification = classify_status(text)
                    logger.info("%s classified %s as %s", engine.name, address, classification.status.value)
                    return classification
            finally:
                await page.close()
        finally:
            await context.close()
        return None

    async def _fetch_text(self, page, engine: SearchEngine, query: str) -> Optional[str]:
        try:
            await page.goto(engine.url(query), wait_until="domcontentloaded", timeout=self.timeout_ms)
            await page.wait_for_timeout(SETTLE_MS)
            return await page.inner_text("body")
        except PlaywrightError as e:
            logger.info("%s search failed: %s", engine.name, e)
            return None


def is_conclusive(classification: Optional[Classification]) -> bool:
    return classification is not None and classification.status != MarketStatus.UNKNOWN
