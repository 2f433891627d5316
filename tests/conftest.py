"""Pytest configuration and shared fixtures."""

import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from harvester.core.exceptions import NavigationError, NavigationTimeoutError
from harvester.models.item import RawItem
from harvester.models.outcome import ErrorKind, StrategyOutcome
from harvester.schemas.target import RateProfile, Target
from harvester.scrapers.browser import BrowserProvider, BrowserSession, ExtractedElement, PageResponse
from harvester.scrapers.utils.extraction import snapshot_elements
from harvester.scrapers.utils.fingerprint import Fingerprint, FingerprintProvider
from harvester.scrapers.utils.rate_limiter import AdaptiveRateLimiter

# A page is (status, html); these sentinels make navigation itself fail
TIMEOUT = "timeout"
UNREACHABLE = "unreachable"

Page = Union[Tuple[int, str], str]


# ============================================================================
# FAKE BROWSER
# ============================================================================


class FakeSession(BrowserSession):
    """Serves canned pages and runs the real extraction helpers on them."""

    def __init__(self, browser: "FakeBrowser", fingerprint: Fingerprint):
        self._browser = browser
        self.fingerprint = fingerprint
        self._current: Optional[PageResponse] = None

    async def navigate(self, url: str, timeout_ms: int) -> PageResponse:
        self._browser.navigations.append(url)
        page = self._browser.pages.get(url)
        if page is None:
            page = (404, "<html><body>Not found</body></html>")
        if page == TIMEOUT:
            raise NavigationTimeoutError("fake", f"timed out after {timeout_ms}ms", url=url)
        if page == UNREACHABLE:
            raise NavigationError("fake", "net::ERR_NAME_NOT_RESOLVED", url=url)
        status, content = page
        self._current = PageResponse(url=url, status=status, content=content)
        return self._current

    async def extract_by_hints(self, hints: Sequence[str], limit: int = 200) -> List[ExtractedElement]:
        if self._current is None:
            return []
        return snapshot_elements(self._current.content, hints, base_url=self._current.url, limit=limit)

    async def trigger_lazy_load(self, cycles: int) -> None:
        self._browser.scrolls += cycles


class FakeBrowser(BrowserProvider):
    """BrowserProvider mapping URLs to canned pages, recording every navigation."""

    def __init__(self, pages: Optional[Dict[str, Page]] = None):
        self.pages: Dict[str, Page] = dict(pages or {})
        self.navigations: List[str] = []
        self.fingerprints: List[Fingerprint] = []
        self.scrolls = 0
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    @asynccontextmanager
    async def session(self, fingerprint: Fingerprint):
        self.fingerprints.append(fingerprint)
        yield FakeSession(self, fingerprint)


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(seconds: float) -> None:
    return None


# ============================================================================
# PAGE BUILDERS
# ============================================================================


def product_card(name: str, price: str, image: Optional[str] = None, brand: Optional[str] = None,
                 href: Optional[str] = None, css_class: str = "product-card") -> str:
    parts = [f'<div class="{css_class}">']
    if href:
        parts.append(f'<a href="{href}">')
    parts.append(f'<h3 class="product-name">{name}</h3>')
    parts.append(f'<span class="price">{price}</span>')
    if brand:
        parts.append(f'<span class="brand">{brand}</span>')
    if image:
        parts.append(f'<img src="{image}" alt="{name}">')
    if href:
        parts.append("</a>")
    parts.append("</div>")
    return "".join(parts)


def listing_page(*cards: str) -> Tuple[int, str]:
    return 200, "<html><body><main>" + "".join(cards) + "</main></body></html>"


def blocked_page() -> Tuple[int, str]:
    return 403, "<html><body>Access denied</body></html>"


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def make_target():
    """Factory for small test targets on https://www.shop.test."""

    def _make(target_id: str = "shop", **overrides) -> Target:
        values = {
            "id": target_id,
            "display_name": target_id.title(),
            "base_urls": [f"https://www.{target_id}.test"],
            "rate_profile": RateProfile(min_delay_ms=1000, max_delay_ms=10000, initial_delay_ms=2000),
            "selector_hints": [".product-card"],
            "api_paths": ["/api/products"],
            "sitemap_paths": ["/sitemap.xml"],
        }
        values.update(overrides)
        return Target(**values)

    return _make


@pytest.fixture
def target(make_target) -> Target:
    return make_target()


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def rate_limiter(rng) -> AdaptiveRateLimiter:
    return AdaptiveRateLimiter(sleep=no_sleep, rng=rng)


@pytest.fixture
def fingerprints(rng) -> FingerprintProvider:
    return FingerprintProvider(rng=rng)


@pytest.fixture
def strategy_kwargs(fake_browser, rate_limiter, fingerprints, rng):
    """Constructor arguments shared by every strategy under test."""
    return {
        "browser": fake_browser,
        "rate_limiter": rate_limiter,
        "fingerprints": fingerprints,
        "navigation_timeout_ms": 1000,
        "item_cap": 100,
        "scroll_cycles": 1,
        "human_delay": (0.0, 0.0),
        "sleep": no_sleep,
        "rng": rng,
    }


def make_outcome(
    strategy: str = "standard",
    target: str = "shop",
    success: bool = True,
    error_kind: Optional[ErrorKind] = None,
    duration_ms: float = 500.0,
    response_ms: Optional[float] = 500.0,
    item_count: int = 10,
) -> StrategyOutcome:
    if not success and error_kind is None:
        error_kind = ErrorKind.NAVIGATION
    return StrategyOutcome(
        target=target,
        strategy=strategy,
        started_at=datetime.now(timezone.utc),
        duration_ms=duration_ms,
        success=success,
        item_count=item_count if success else 0,
        error_kind=error_kind if not success else None,
        response_ms=response_ms,
    )


def make_raw(
    name: str = "Leche Entera Colun 1L",
    price_text: Optional[str] = "$1.090",
    image_url: Optional[str] = "https://cdn.shop.test/leche.jpg",
    source_url: str = "https://www.shop.test/p/leche",
    extracted_by: str = "standard",
    confidence: float = 3.0,
    **kwargs,
) -> RawItem:
    return RawItem(
        name=name,
        source_url=source_url,
        extracted_by=extracted_by,
        price_text=price_text,
        image_url=image_url,
        confidence=confidence,
        **kwargs,
    )
