"""Brute-force sweep strategy: broad selectors, currency-pattern acceptance."""

from typing import List, Optional, Set, Tuple

from harvester.core.exceptions import NavigationError
from harvester.models.item import RawItem
from harvester.scrapers.base import AttemptContext, BaseStrategy
from harvester.scrapers.browser import ExtractedElement
from harvester.scrapers.utils.normalizer import extract_currency_token

# Low-specificity selectors, roughly from card-like to generic
BROAD_SELECTORS = [
    '[class*="product"]',
    '[class*="Product"]',
    '[class*="item"]',
    '[class*="card"]',
    "article",
    "li",
    "div",
]

# Containers with more text than this are page sections, not cards
MAX_CARD_TEXT = 400


def _name_line(text: str, price_token: str) -> Optional[str]:
    """First text line that reads like a name rather than a price or label."""
    for line in text.splitlines():
        line = line.strip()
        if price_token in line or sum(ch.isalpha() for ch in line) < 3:
            continue
        return line
    return None


class BruteForceSweepStrategy(BaseStrategy):
    """Sweep every reachable listing with generic selectors.

    Accepts any small element whose text holds a currency-like token; the
    name is its first text line. Results are noisy, so the strategy's
    confidence is low.
    """

    name = "aggressive"
    description = "Broad selector sweep over category, search and base URLs"
    intrusive = True
    confidence = 1.0

    def _sweep_urls(self, ctx: AttemptContext) -> List[Tuple[Optional[str], str]]:
        urls: List[Tuple[Optional[str], str]] = []
        for category in ctx.categories:
            for url in ctx.target.category_urls(category):
                urls.append((category, url))
            urls.append((category, ctx.target.search_url(category)))
        for url in ctx.target.base_urls:
            urls.append((None, url))
        unique = []
        seen: Set[str] = set()
        for category, url in urls:
            if url not in seen:
                seen.add(url)
                unique.append((category, url))
        return unique

    async def _harvest(self, ctx: AttemptContext) -> List[RawItem]:
        items: List[RawItem] = []
        seen: Set[Tuple[str, str]] = set()
        swept_categories: Set[str] = set()

        async with self.browser.session(ctx.fingerprint) as session:
            for category, url in self._sweep_urls(ctx):
                if category is None and swept_categories:
                    # Base URLs only matter when no category produced anything
                    break
                try:
                    response = await self._navigate(ctx, session, url)
                except NavigationError as exc:
                    ctx.errors.append(exc)
                    continue

                await session.trigger_lazy_load(self.scroll_cycles)
                elements = await session.extract_by_hints(BROAD_SELECTORS, limit=self.item_cap * 5)
                page_items = []
                for element in elements:
                    item = self._item_from_element(element, response.url, category)
                    if item is None or (item.name, item.price_text or "") in seen:
                        continue
                    seen.add((item.name, item.price_text or ""))
                    page_items.append(item)

                if page_items:
                    items.extend(page_items)
                    if category is not None and category not in swept_categories:
                        swept_categories.add(category)
                        await self._report_progress(ctx, category, page_items)
                if len(items) >= self.item_cap:
                    break
        return items

    def _item_from_element(
        self,
        element: ExtractedElement,
        page_url: str,
        category: Optional[str],
    ) -> Optional[RawItem]:
        if not element.text or len(element.text) > MAX_CARD_TEXT:
            return None
        price_token = extract_currency_token(element.text)
        if price_token is None:
            return None
        return self._make_item(
            name=_name_line(element.text, price_token),
            source_url=element.link_urls[0] if element.link_urls else page_url,
            price_text=price_token,
            image_url=element.image_urls[0] if element.image_urls else None,
            category=category,
        )
