"""Multi-vector strategy: JSON endpoints, mobile pages and the sitemap."""

from typing import List, Optional
from urllib.parse import quote_plus

from harvester.core.exceptions import HarvesterError, NavigationError
from harvester.models.item import RawItem
from harvester.scrapers.base import DEFAULT_CARD_HINTS, AttemptContext, BaseStrategy
from harvester.scrapers.browser import BrowserSession
from harvester.scrapers.utils.extraction import (
    is_product_url,
    name_from_url,
    product_meta,
    products_from_json,
    sitemap_urls,
)

JSON_CONFIDENCE = 3.0
MOBILE_CONFIDENCE = 2.0
SITEMAP_CONFIDENCE = 1.0


class MultiVectorStrategy(BaseStrategy):
    """Attack structured surfaces independently and union the results.

    Vectors run one after the other so a target never sees concurrent
    traffic from one attempt. A failing vector is recorded and the next
    one still runs; the attempt only fails when every vector came back
    empty.
    """

    name = "multi-vector"
    description = "JSON data endpoints, mobile pages and sitemap product pages"
    confidence = JSON_CONFIDENCE

    def __init__(self, *args, sitemap_detail_pages: int = 5, **kwargs):
        super().__init__(*args, **kwargs)
        self.sitemap_detail_pages = sitemap_detail_pages

    async def _harvest(self, ctx: AttemptContext) -> List[RawItem]:
        items: List[RawItem] = []
        vectors = [
            ("json", self._json_vector),
            ("mobile", self._mobile_vector),
            ("sitemap", self._sitemap_vector),
        ]
        for vector_name, vector in vectors:
            if len(items) >= self.item_cap:
                break
            try:
                vector_items = await vector(ctx)
            except HarvesterError as exc:
                ctx.errors.append(exc)
                self.logger.info("vector_failed", target=ctx.target.id, vector=vector_name, error=exc.message)
                continue
            self.logger.info("vector_finished", target=ctx.target.id, vector=vector_name, items=len(vector_items))
            items.extend(vector_items)
        return items[: self.item_cap]

    # ------------------------------------------------------------------
    # Vectors
    # ------------------------------------------------------------------

    def _api_urls(self, ctx: AttemptContext, category: Optional[str]) -> List[str]:
        urls = []
        for path in ctx.target.api_paths:
            url = ctx.target.resolve(path)
            if category:
                separator = "&" if "?" in url else "?"
                url = f"{url}{separator}q={quote_plus(category)}"
            urls.append(url)
        return urls

    async def _json_vector(self, ctx: AttemptContext) -> List[RawItem]:
        items: List[RawItem] = []
        categories = ctx.categories or [None]
        async with self.browser.session(ctx.fingerprint) as session:
            for category in categories:
                for url in self._api_urls(ctx, category):
                    try:
                        response = await self._navigate(ctx, session, url)
                        products = products_from_json(response.text, response.url)
                    except NavigationError as exc:
                        ctx.errors.append(exc)
                        continue
                    except ValueError:
                        self.logger.debug("endpoint_not_json", target=ctx.target.id, url=url)
                        continue

                    endpoint_items = []
                    for product in products:
                        item = self._make_item(
                            name=product["name"],
                            source_url=product["url"] or response.url,
                            price_text=product["price_text"],
                            price=product["price"],
                            image_url=product["image_url"],
                            brand_text=product["brand_text"],
                            category=category,
                            confidence=JSON_CONFIDENCE,
                        )
                        if item is not None:
                            endpoint_items.append(item)
                    if endpoint_items:
                        items.extend(endpoint_items)
                        break
        return items

    async def _mobile_vector(self, ctx: AttemptContext) -> List[RawItem]:
        fingerprint = self.fingerprints.for_target(ctx.target, evasive=ctx.fingerprint.evasive, mobile=True)
        hints = ctx.target.selector_hints or DEFAULT_CARD_HINTS
        items: List[RawItem] = []
        async with self.browser.session(fingerprint) as session:
            for category, urls in self._units(ctx):
                for url in urls:
                    try:
                        response = await self._navigate(ctx, session, url)
                    except NavigationError as exc:
                        ctx.errors.append(exc)
                        continue
                    await session.trigger_lazy_load(self.scroll_cycles)
                    unit_items = await self._extract_ranked(
                        session, hints, response.url, category, confidence=MOBILE_CONFIDENCE
                    )
                    if unit_items:
                        items.extend(unit_items)
                        break
        return items

    async def _sitemap_vector(self, ctx: AttemptContext) -> List[RawItem]:
        items: List[RawItem] = []
        async with self.browser.session(ctx.fingerprint) as session:
            product_urls = await self._product_urls_from_sitemaps(ctx, session)
            for url in product_urls[: self.sitemap_detail_pages]:
                try:
                    response = await self._navigate(ctx, session, url)
                except NavigationError as exc:
                    ctx.errors.append(exc)
                    continue
                meta = product_meta(response.content)
                item = self._make_item(
                    name=meta["name"] or name_from_url(url),
                    source_url=url,
                    price_text=meta["price_text"],
                    image_url=meta["image_url"],
                    brand_text=meta["brand_text"],
                    confidence=SITEMAP_CONFIDENCE,
                )
                if item is not None:
                    items.append(item)
        return items

    async def _product_urls_from_sitemaps(self, ctx: AttemptContext, session: BrowserSession) -> List[str]:
        """Product URLs from the first sitemap that lists any, following one index level."""
        for path in ctx.target.sitemap_paths:
            try:
                response = await self._navigate(ctx, session, ctx.target.resolve(path))
            except NavigationError as exc:
                ctx.errors.append(exc)
                continue

            locations = sitemap_urls(response.text)
            product_urls = [url for url in locations if is_product_url(url)]
            if not product_urls:
                nested = [url for url in locations if url.lower().endswith(".xml")]
                if nested:
                    try:
                        child = await self._navigate(ctx, session, nested[0])
                    except NavigationError as exc:
                        ctx.errors.append(exc)
                        continue
                    product_urls = [url for url in sitemap_urls(child.text) if is_product_url(url)]
            if product_urls:
                return product_urls
        return []
