"""Standard stealth strategy: category pages, lazy-load scrolling, ranked selectors."""

from typing import List, Optional

from harvester.core.exceptions import ExtractionError, NavigationError
from harvester.models.item import RawItem
from harvester.scrapers.base import DEFAULT_CARD_HINTS, AttemptContext, BaseStrategy
from harvester.scrapers.browser import BrowserSession, PageResponse


class StandardStealthStrategy(BaseStrategy):
    """Visit each category entry point like a regular shopper.

    For every category unit the entry URLs are tried in order; the page is
    scrolled to trigger lazy loading and the target's selector hints are
    applied most specific first. A block page aborts the attempt.
    """

    name = "standard"
    description = "Category pages with stealth fingerprint and ranked selector hints"
    confidence = 3.0

    async def _harvest(self, ctx: AttemptContext) -> List[RawItem]:
        hints = ctx.target.selector_hints or DEFAULT_CARD_HINTS
        items: List[RawItem] = []

        async with self.browser.session(ctx.fingerprint) as session:
            for category, urls in self._units(ctx):
                unit_items = await self._harvest_unit(ctx, session, urls, hints, category)
                if not unit_items:
                    continue
                items.extend(unit_items)
                if category is not None:
                    await self._report_progress(ctx, category, unit_items)
                if len(items) >= self.item_cap:
                    break
        return items

    async def _harvest_unit(
        self,
        ctx: AttemptContext,
        session: BrowserSession,
        urls: List[str],
        hints: List[str],
        category: Optional[str],
    ) -> List[RawItem]:
        for url in urls:
            try:
                response = await self._visit(ctx, session, url)
            except NavigationError as exc:
                # Covers timeouts too; the next entry point may still work
                ctx.errors.append(exc)
                self.logger.info("entry_point_failed", target=ctx.target.id, url=url, error=exc.message)
                continue

            await session.trigger_lazy_load(self.scroll_cycles)
            unit_items = await self._extract_ranked(session, hints, response.url, category)
            if unit_items:
                return unit_items
            ctx.errors.append(ExtractionError(ctx.target.id, self.name, f"no items at {url}"))
        return []

    async def _visit(self, ctx: AttemptContext, session: BrowserSession, url: str) -> PageResponse:
        """Navigate to one entry point. Blocks propagate and end the attempt."""
        return await self._navigate(ctx, session, url)
