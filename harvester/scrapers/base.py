"""Base extraction strategy interface.

Every strategy inherits from BaseStrategy and implements _harvest().
attempt() wraps _harvest() so that no error escapes a strategy: failures
come back as a StrategyOutcome with an error kind.
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

import structlog

from harvester.core.exceptions import (
    BlockedError,
    ExtractionError,
    HarvesterError,
    NavigationError,
    NavigationTimeoutError,
)
from harvester.models.item import RawItem
from harvester.models.outcome import ErrorKind, StrategyOutcome
from harvester.schemas.target import Target
from harvester.scrapers.browser import BrowserProvider, BrowserSession, ExtractedElement, PageResponse, detect_block
from harvester.scrapers.utils.fingerprint import Fingerprint, FingerprintProvider
from harvester.scrapers.utils.normalizer import clean_text, extract_currency_token, normalize_url
from harvester.scrapers.utils.rate_limiter import AdaptiveRateLimiter

# progress(category, items) is awaited after every category unit that yielded items
ProgressCallback = Callable[[str, List[RawItem]], Awaitable[None]]

DEFAULT_CARD_HINTS = [
    '[data-testid*="product"]',
    'article[class*="product"]',
    ".product-card",
    ".product-item",
    '[class*="ProductCard"]',
    '[class*="product-tile"]',
    ".product",
]

# Most informative failure first, when an attempt collected several
_ERROR_PRIORITY = (BlockedError, NavigationTimeoutError, NavigationError, ExtractionError)


@dataclass
class AttemptContext:
    """Per-attempt state, so one strategy instance can serve many targets at once."""

    target: Target
    categories: List[str]
    fingerprint: Fingerprint
    progress: Optional[ProgressCallback] = None
    latencies_ms: List[float] = field(default_factory=list)
    errors: List[HarvesterError] = field(default_factory=list)
    pages_loaded: int = 0

    def most_relevant_error(self) -> Optional[HarvesterError]:
        for error_type in _ERROR_PRIORITY:
            for error in self.errors:
                if type(error) is error_type:
                    return error
        return self.errors[0] if self.errors else None


class BaseStrategy(ABC):
    """Abstract base class for extraction strategies.

    Subclasses set ``name`` (the registry key) and implement _harvest().
    Dependencies are injected by the StrategyFactory.
    """

    name: str = ""  # Must be overridden in subclass (e.g., "standard")
    description: str = ""
    intrusive: bool = False  # Penalised by the selector during business hours
    evasive_fingerprint: bool = False  # Ask the provider for an evasive fingerprint
    confidence: float = 3.0  # Contribution to quality scoring, 0-3

    def __init__(
        self,
        browser: BrowserProvider,
        rate_limiter: AdaptiveRateLimiter,
        fingerprints: FingerprintProvider,
        navigation_timeout_ms: int = 30000,
        item_cap: int = 100,
        scroll_cycles: int = 3,
        human_delay: Tuple[float, float] = (1.0, 4.0),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.browser = browser
        self.rate_limiter = rate_limiter
        self.fingerprints = fingerprints
        self.navigation_timeout_ms = navigation_timeout_ms
        self.item_cap = item_cap
        self.scroll_cycles = scroll_cycles
        self.human_delay = human_delay
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.logger = structlog.get_logger(strategy=self.name)

    async def attempt(
        self,
        target: Target,
        categories: Sequence[str],
        fingerprint: Fingerprint,
        progress: Optional[ProgressCallback] = None,
    ) -> Tuple[List[RawItem], StrategyOutcome]:
        """Run one extraction attempt against a target.

        Never raises (except on cancellation): failures are reported in
        the outcome's error_kind.

        Args:
            target: Target to extract from
            categories: Category units still to harvest
            fingerprint: Fingerprint for the browsing sessions
            progress: Optional checkpoint callback per category unit

        Returns:
            Tuple of (raw items, outcome)
        """
        ctx = AttemptContext(
            target=target,
            categories=list(categories),
            fingerprint=fingerprint,
            progress=progress,
        )
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        items: List[RawItem] = []
        error_kind: Optional[ErrorKind] = None
        error_message: Optional[str] = None

        self.logger.info("attempt_started", target=target.id, categories=ctx.categories)
        try:
            items = await self._harvest(ctx)
            if not items:
                raise ctx.most_relevant_error() or ExtractionError(target.id, self.name)
        except HarvesterError as exc:
            error_kind = ErrorKind(getattr(exc, "error_kind", ErrorKind.EXTRACTION.value))
            error_message = exc.message
            items = []
        except asyncio.TimeoutError:
            error_kind = ErrorKind.TIMEOUT
            error_message = "attempt timed out"
            items = []
        except Exception as exc:
            self.logger.error("strategy_crashed", target=target.id, error=str(exc), exc_info=True)
            error_kind = ErrorKind.EXTRACTION
            error_message = f"{type(exc).__name__}: {exc}"
            items = []

        items = items[: self.item_cap]
        outcome = StrategyOutcome(
            target=target.id,
            strategy=self.name,
            started_at=started_at,
            duration_ms=(time.monotonic() - start) * 1000,
            success=error_kind is None,
            item_count=len(items),
            error_kind=error_kind,
            error_message=error_message,
            response_ms=(sum(ctx.latencies_ms) / len(ctx.latencies_ms)) if ctx.latencies_ms else None,
        )
        self.logger.info(
            "attempt_finished",
            target=target.id,
            success=outcome.success,
            items=outcome.item_count,
            error_kind=error_kind.value if error_kind else None,
            duration_ms=round(outcome.duration_ms),
        )
        return items, outcome

    @abstractmethod
    async def _harvest(self, ctx: AttemptContext) -> List[RawItem]:
        """Extract raw items for the attempt.

        Args:
            ctx: Attempt context (target, categories, fingerprint, progress)

        Returns:
            Raw items found; an empty list is reported as an extraction failure

        Raises:
            BlockedError: If the target served a block page and the strategy gives up
            NavigationError: If the target could not be reached
            ExtractionError: If pages loaded but nothing plausible was found
        """

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    async def _navigate(self, ctx: AttemptContext, session: BrowserSession, url: str) -> PageResponse:
        """Pace, navigate and classify the response.

        Raises:
            BlockedError: On block statuses or anti-automation markers
            NavigationError: On unreachable URLs and non-block HTTP errors
            NavigationTimeoutError: On navigation timeout
        """
        await self.rate_limiter.wait(ctx.target)
        self.logger.debug("navigating", target=ctx.target.id, url=url)
        start = time.monotonic()
        response = await session.navigate(url, timeout_ms=self.navigation_timeout_ms)
        ctx.latencies_ms.append((time.monotonic() - start) * 1000)

        reason = detect_block(response)
        if reason:
            raise BlockedError(ctx.target.id, reason, url=url)
        if response.status >= 400:
            raise NavigationError(ctx.target.id, f"HTTP {response.status}", url=url)
        ctx.pages_loaded += 1
        return response

    def _make_item(
        self,
        name: Optional[str],
        source_url: str,
        price_text: Optional[str] = None,
        image_url: Optional[str] = None,
        brand_text: Optional[str] = None,
        category: Optional[str] = None,
        confidence: Optional[float] = None,
        price: Optional[Decimal] = None,
    ) -> Optional[RawItem]:
        """Build a RawItem if the fields look like a product, else None.

        A plausible item has a name of at least 3 characters and either a
        price (a numeric price, or price text containing a digit) or an
        image URL.
        """
        name = clean_text(name)
        if len(name) < 3:
            return None
        has_price = price is not None or (bool(price_text) and any(ch.isdigit() for ch in price_text))
        if not has_price and not image_url:
            return None
        return RawItem(
            name=name,
            source_url=normalize_url(source_url),
            extracted_by=self.name,
            price_text=clean_text(price_text) or None,
            price=price,
            image_url=image_url,
            brand_text=clean_text(brand_text) or None,
            category_hint=category,
            confidence=self.confidence if confidence is None else confidence,
        )

    def _items_from_elements(
        self,
        elements: Sequence[ExtractedElement],
        page_url: str,
        category: Optional[str],
        confidence: Optional[float] = None,
    ) -> List[RawItem]:
        """Turn structured element snapshots into plausible raw items."""
        items = []
        for element in elements:
            name = element.name_text or (element.text.splitlines()[0] if element.text else None)
            price_text = element.price_text or extract_currency_token(element.text)
            item = self._make_item(
                name=name,
                source_url=element.link_urls[0] if element.link_urls else page_url,
                price_text=price_text,
                image_url=element.image_urls[0] if element.image_urls else None,
                brand_text=element.brand_text,
                category=category,
                confidence=confidence,
            )
            if item is not None:
                items.append(item)
        return items

    async def _extract_ranked(
        self,
        session: BrowserSession,
        hints: Sequence[str],
        page_url: str,
        category: Optional[str],
        confidence: Optional[float] = None,
    ) -> List[RawItem]:
        """Try selector hints in rank order; the first hint yielding items wins."""
        for hint in hints:
            elements = await session.extract_by_hints([hint], limit=self.item_cap * 2)
            items = self._items_from_elements(elements, page_url, category, confidence)
            if items:
                self.logger.debug("selector_hint_matched", selector=hint, items=len(items))
                return items[: self.item_cap]
        return []

    async def _report_progress(self, ctx: AttemptContext, category: str, items: List[RawItem]) -> None:
        if ctx.progress is not None and items:
            await ctx.progress(category, items)

    def _units(self, ctx: AttemptContext) -> List[Tuple[Optional[str], List[str]]]:
        """Category units to visit as (category, entry URLs).

        Without categories the target's base URLs form a single unit.
        """
        if ctx.categories:
            return [(category, ctx.target.category_urls(category)) for category in ctx.categories]
        return [(None, list(ctx.target.base_urls))]
