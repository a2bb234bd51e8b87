"""
Tests for the availability chain: classifier, marketplace page, web search,
and the resolver's fallback order and hard timeout.

No real network: HTTP goes through httpx.MockTransport, the browser and
search API are replaced with stubs.

Run: pytest tests/ -v
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional
from unittest.mock import AsyncMock, call, patch

import httpx
import pytest

from listing_reconciler.availability import AvailabilityResolver
from listing_reconciler.classifier import Classification, classify_status, is_blocked
from listing_reconciler.config import PipelineSettings
from listing_reconciler.exceptions import AvailabilityCheckError
from listing_reconciler.marketplace import check_listing, parse_listing_page
from listing_reconciler.models import AvailabilitySource, MarketStatus, PropertyRecord
from listing_reconciler.web_search import BrowserSearch, SearchApi

LISTING_URL = "https://www.zillow.com/homedetails/5-Ash-Ct-Memphis-TN-38111/9_zpid/"

SOLD_PAGE = """\
<html><body>
<h1>5 Ash Ct, Memphis, TN 38111</h1>
<p>Sold on Jan 5, 2024</p>
<span data-testid="bed-bath-beyond">3 bd 2 ba 1,100 sqft</span>
<span data-testid="zestimate-value">$118,300</span>
<p>Year built: 1958</p>
</body></html>
"""

ACTIVE_PAGE = "<html><body><p>For sale. List price $89,900</p></body></html>"


def _settings(**overrides: Any) -> PipelineSettings:
    values: dict[str, Any] = {
        "availability_timeout_sec": 2,
        "record_delay_sec": 0,
        "marketplace_retry_delay_sec": 0,
    }
    values.update(overrides)
    return PipelineSettings(**values)


def _record(**overrides: Any) -> PropertyRecord:
    defaults: dict[str, Any] = {
        "run_id": "run-1",
        "address": "5 Ash Ct",
        "city": "Memphis",
        "state": "TN",
        "zip": "38111",
        "marketplace_url": LISTING_URL,
    }
    defaults.update(overrides)
    return PropertyRecord(**defaults)


class _StubSearchApi:
    def __init__(self, result: Optional[Classification] = None, delay: float = 0):
        self.result = result
        self.delay = delay
        self.calls = 0

    async def lookup(self, address: str, city: str, state: str) -> Optional[Classification]:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.result


class _StubBrowser:
    def __init__(self, result: Optional[Classification] = None, delay: float = 0):
        self.result = result
        self.delay = delay
        self.calls = 0

    async def search(self, address: str, city: str, state: str) -> Optional[Classification]:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.result

    async def aclose(self) -> None:
        pass


def _resolve(handler, record: PropertyRecord, search_api=None, browser=None, **settings: Any):
    """Run one resolver check against a mocked HTTP transport."""

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            async with AvailabilityResolver(
                _settings(**settings),
                client=client,
                search_api=search_api or _StubSearchApi(),
                browser=browser or _StubBrowser(),
            ) as resolver:
                return await resolver.check(record)

    return asyncio.run(_run())


# ═══════════════════════════════════════════════════════════════════
# CLASSIFIER
# ═══════════════════════════════════════════════════════════════════


class TestClassifier:
    def test_sold_with_date(self) -> None:
        result = classify_status("Sold on Jan 5, 2024. Still listed for sale elsewhere.")
        assert result == Classification(MarketStatus.SOLD, "Sold on Jan 5, 2024")

    def test_sold_with_price(self) -> None:
        result = classify_status("This home was sold for $120,000")
        assert result.status == MarketStatus.SOLD
        assert result.details == "Sold for $120,000"

    def test_sold_beats_pending(self) -> None:
        assert classify_status("Recently sold. Previously pending.").status == MarketStatus.SOLD

    def test_pending_beats_active(self) -> None:
        result = classify_status("Under contract - list price $89,900")
        assert result.status == MarketStatus.PENDING

    def test_active_beats_off_market(self) -> None:
        result = classify_status("For sale now, was off market last year")
        assert result.status == MarketStatus.ACTIVE

    def test_off_market(self) -> None:
        result = classify_status("This home is not currently listed")
        assert result == Classification(MarketStatus.OFF_MARKET, "Not currently listed")

    def test_unknown(self) -> None:
        assert classify_status("Nice neighbourhood").status == MarketStatus.UNKNOWN

    def test_block_markers(self) -> None:
        assert is_blocked("Please verify you are human")
        assert not is_blocked("3 bd 2 ba")


# ═══════════════════════════════════════════════════════════════════
# MARKETPLACE PAGE
# ═══════════════════════════════════════════════════════════════════


class TestListingPage:
    def test_sold_page_with_details(self) -> None:
        check = parse_listing_page(SOLD_PAGE)
        assert check.status == MarketStatus.SOLD
        assert check.is_definitive
        assert check.data.bedrooms == 3
        assert check.data.bathrooms == 2.0
        assert check.data.sqft == 1100
        assert check.data.valuation_estimate == 118300
        assert check.data.year_built == 1958

    def test_captcha(self) -> None:
        check = parse_listing_page('<html><body><div id="px-captcha"></div></body></html>')
        assert check.blocked
        assert not check.is_definitive

    def test_status_chip_fallback(self) -> None:
        html = '<span data-testid="home-details-chip-status">Sold</span>'
        assert parse_listing_page(html).status == MarketStatus.SOLD


class TestCheckListing:
    def _check(self, handler) -> Any:
        async def _run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await check_listing(client, LISTING_URL, retry_delay=0)

        return asyncio.run(_run())

    def test_removed_listing(self) -> None:
        check = self._check(lambda request: httpx.Response(404))
        assert check.status == MarketStatus.OFF_MARKET
        assert check.details == "Listing removed (404)"

    def test_rate_limited(self) -> None:
        check = self._check(lambda request: httpx.Response(429))
        assert check.blocked

    def test_server_error_raises(self) -> None:
        with pytest.raises(AvailabilityCheckError):
            self._check(lambda request: httpx.Response(500))

    def test_network_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AvailabilityCheckError):
            self._check(handler)

    def test_blocked_then_answered_is_retried(self) -> None:
        responses = [httpx.Response(403), httpx.Response(200, text=SOLD_PAGE)]
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return responses.pop(0)

        check = self._check(handler)
        assert check.status == MarketStatus.SOLD
        assert not check.blocked
        assert len(requested) == 2

    def test_server_error_then_answered_is_retried(self) -> None:
        responses = [httpx.Response(503), httpx.Response(404)]
        check = self._check(lambda request: responses.pop(0))
        assert check.status == MarketStatus.OFF_MARKET

    def test_captcha_every_time_stays_blocked(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, text='<html><div id="px-captcha"></div></html>')

        check = self._check(handler)
        assert check.blocked
        assert check.details == "CAPTCHA detected"
        assert len(requested) == 3

    def test_removed_listing_is_not_retried(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(410)

        self._check(handler)
        assert len(requested) == 1

    def test_waits_between_attempts(self) -> None:
        async def _run(sleep: AsyncMock):
            transport = httpx.MockTransport(lambda request: httpx.Response(429))
            async with httpx.AsyncClient(transport=transport) as client:
                with patch("listing_reconciler.marketplace.asyncio.sleep", new=sleep):
                    return await check_listing(client, LISTING_URL, attempts=3, retry_delay=1.5)

        sleep = AsyncMock()
        check = asyncio.run(_run(sleep))
        assert check.blocked
        assert sleep.await_args_list == [call(1.5), call(1.5)]


# ═══════════════════════════════════════════════════════════════════
# WEB SEARCH
# ═══════════════════════════════════════════════════════════════════


class TestSearchApi:
    def _lookup(self, handler) -> Optional[Classification]:
        async def _run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await SearchApi(client).lookup("5 Ash Ct", "Memphis", "TN")

        return asyncio.run(_run())

    def test_abstract_is_classified(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["q"] == "5 Ash Ct Memphis TN zillow"
            return httpx.Response(
                200,
                json={"AbstractText": "5 Ash Ct in Memphis TN was sold for $120,000 last winter."},
            )

        result = self._lookup(handler)
        assert result.status == MarketStatus.SOLD

    def test_thin_abstract_is_none(self) -> None:
        assert self._lookup(lambda request: httpx.Response(200, json={"AbstractText": "Memphis"})) is None

    def test_http_error(self) -> None:
        with pytest.raises(AvailabilityCheckError):
            self._lookup(lambda request: httpx.Response(503))


class _FakePage:
    def __init__(self, bodies: dict[str, str]):
        self.bodies = bodies
        self.url = ""
        self.closed = False

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.url = url

    async def wait_for_timeout(self, ms: int) -> None:
        pass

    async def inner_text(self, selector: str) -> str:
        for host, body in self.bodies.items():
            if host in self.url:
                return body
        return ""

    async def close(self) -> None:
        self.closed = True


class _FakeContext:
    def __init__(self, page: _FakePage):
        self.page = page
        self.closed = False

    async def new_page(self) -> _FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class _FakeBrowser:
    def __init__(self, page: _FakePage):
        self.context = _FakeContext(page)

    async def new_context(self, **kwargs: Any) -> _FakeContext:
        return self.context


class TestBrowserSearch:
    def _search(self, bodies: dict[str, str]):
        page = _FakePage(bodies)
        search = BrowserSearch()
        search._browser = _FakeBrowser(page)
        result = asyncio.run(search.search("5 Ash Ct", "Memphis", "TN"))
        return result, page, search._browser.context

    def test_blocked_engine_is_skipped(self) -> None:
        result, page, context = self._search(
            {
                "bing.com": "Please verify you are human",
                "duckduckgo.com": "5 Ash Ct Memphis TN is under contract. " * 20,
            }
        )
        assert result.status == MarketStatus.PENDING
        assert "duckduckgo" in page.url

    def test_thin_content_everywhere(self) -> None:
        result, page, context = self._search({"bing.com": "No results", "duckduckgo.com": ""})
        assert result is None

    def test_page_and_context_always_closed(self) -> None:
        result, page, context = self._search({"bing.com": "For sale. " * 50})
        assert result.status == MarketStatus.ACTIVE
        assert page.closed
        assert context.closed


# ═══════════════════════════════════════════════════════════════════
# RESOLVER CHAIN
# ═══════════════════════════════════════════════════════════════════


class TestResolverChain:
    def test_listing_url_is_definitive(self) -> None:
        search_api = _StubSearchApi()
        result = _resolve(lambda request: httpx.Response(200, text=SOLD_PAGE), _record(), search_api)

        assert result.status == MarketStatus.SOLD
        assert result.source == AvailabilitySource.MARKETPLACE
        assert result.data.bedrooms == 3
        assert search_api.calls == 0

    def test_constructed_url_when_record_has_none(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, text=ACTIVE_PAGE)

        result = _resolve(handler, _record(marketplace_url=None))
        assert result.status == MarketStatus.ACTIVE
        assert requested == ["https://www.zillow.com/homedetails/5-ash-ct-memphis-tn-38111/"]

    def test_blocked_url_falls_through_to_search_api(self) -> None:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(403)

        search_api = _StubSearchApi(Classification(MarketStatus.SOLD, "Sold for $120,000"))
        result = _resolve(handler, _record(), search_api)

        assert result.status == MarketStatus.SOLD
        assert result.source == AvailabilitySource.WEB_SEARCH
        # The constructed URL normalizes to the listing URL, so only the listing URL is fetched.
        assert set(requested) == {LISTING_URL}
        assert len(requested) == 3

    def test_failing_step_falls_through_to_browser(self) -> None:
        browser = _StubBrowser(Classification(MarketStatus.PENDING, "Under contract"))
        result = _resolve(lambda request: httpx.Response(500), _record(), _StubSearchApi(), browser)

        assert result.status == MarketStatus.PENDING
        assert result.source == AvailabilitySource.WEB_SEARCH
        assert browser.calls == 1

    def test_chain_exhausted(self) -> None:
        result = _resolve(lambda request: httpx.Response(403), _record())
        assert result.status == MarketStatus.UNKNOWN
        assert result.source == AvailabilitySource.NONE

    def test_insufficient_data(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = _resolve(handler, _record(marketplace_url=None, city=None))
        assert result.status == MarketStatus.UNKNOWN
        assert result.details == "Insufficient data to check"


class TestResolverTimeout:
    def test_stalled_chain_returns_unknown(self) -> None:
        """Every method stalls; the check still returns within the limit."""

        async def stall(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            return httpx.Response(200)

        started = time.monotonic()
        result = _resolve(
            stall,
            _record(marketplace_url=None),
            _StubSearchApi(delay=30),
            _StubBrowser(delay=30),
            availability_timeout_sec=0.3,
        )
        elapsed = time.monotonic() - started

        assert result.status == MarketStatus.UNKNOWN
        assert result.source == AvailabilitySource.NONE
        assert result.details == "Check timed out"
        assert elapsed < 3


class TestCheckBatch:
    def test_results_written_to_records(self) -> None:
        records = [_record(), _record(address="9 Elm St", marketplace_url=None, city=None)]
        progress: list[tuple[int, int]] = []

        async def _run():
            transport = httpx.MockTransport(lambda request: httpx.Response(404))
            async with httpx.AsyncClient(transport=transport) as client:
                async with AvailabilityResolver(
                    _settings(), client=client, search_api=_StubSearchApi(), browser=_StubBrowser()
                ) as resolver:
                    return await resolver.check_batch(
                        records, lambda done, total, record, result: progress.append((done, total))
                    )

        results = asyncio.run(_run())

        assert len(results) == 2
        assert records[0].marketplace_status == MarketStatus.OFF_MARKET
        assert records[0].availability_source == AvailabilitySource.MARKETPLACE
        assert records[0].status_checked_at is not None
        assert records[1].marketplace_status == MarketStatus.UNKNOWN
        assert progress == [(1, 2), (2, 2)]

    def test_fixed_delay_between_records(self) -> None:
        # no URL and no city: every check ends at "insufficient data" without HTTP
        records = [_record(address=f"{n} Elm St", marketplace_url=None, city=None) for n in range(3)]
        sleep = AsyncMock()

        async def _run():
            async with AvailabilityResolver(
                _settings(record_delay_sec=0.25), search_api=_StubSearchApi(), browser=_StubBrowser()
            ) as resolver:
                with patch("listing_reconciler.availability.asyncio.sleep", new=sleep):
                    return await resolver.check_batch(records)

        results = asyncio.run(_run())

        assert len(results) == 3
        # between records only, never before the first
        assert sleep.await_args_list == [call(0.25), call(0.25)]

    def test_no_sleep_when_delay_is_zero(self) -> None:
        records = [_record(marketplace_url=None, city=None), _record(marketplace_url=None, city=None)]
        sleep = AsyncMock()

        async def _run():
            async with AvailabilityResolver(
                _settings(), search_api=_StubSearchApi(), browser=_StubBrowser()
            ) as resolver:
                with patch("listing_reconciler.availability.asyncio.sleep", new=sleep):
                    return await resolver.check_batch(records)

        asyncio.run(_run())
        sleep.assert_not_awaited()
