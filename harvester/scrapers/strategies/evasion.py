"""Evasion-first strategy: evasive fingerprint, human pacing, alternate entry points."""

from typing import List
from urllib.parse import urlparse, urlunparse

from harvester.core.exceptions import BlockedError, NavigationError
from harvester.schemas.target import Target
from harvester.scrapers.base import AttemptContext
from harvester.scrapers.browser import BrowserSession, PageResponse
from harvester.scrapers.strategies.standard import StandardStealthStrategy


def alternate_entry_points(url: str, target: Target) -> List[str]:
    """Fallback URLs to try when an entry point answers with a block page.

    The mobile subdomain of the same path comes first, then the root of
    every base URL.

    "https://www.shop.cl/leche" -> ["https://m.shop.cl/leche", "https://www.shop.cl"]
    """
    parsed = urlparse(url)
    host = parsed.netloc
    if host.startswith("www."):
        mobile_host = "m." + host[len("www."):]
    elif host.startswith("m."):
        mobile_host = None
    else:
        mobile_host = "m." + host

    candidates = []
    if mobile_host:
        candidates.append(urlunparse(parsed._replace(netloc=mobile_host)))
    candidates.extend(target.base_urls)
    return [candidate for candidate in dict.fromkeys(candidates) if candidate.rstrip("/") != url.rstrip("/")]


class EvasionFirstStrategy(StandardStealthStrategy):
    """Standard extraction behind an evasive fingerprint and human-like pauses.

    Before every navigation the strategy sleeps a random human-like delay.
    A block page does not end the attempt straight away: the mobile
    subdomain and the site roots are tried first.
    """

    name = "evasive"
    description = "Evasive fingerprint, human-like delays and alternate entry points"
    intrusive = True
    evasive_fingerprint = True
    confidence = 3.0

    async def _pause(self) -> None:
        low, high = self.human_delay
        await self._sleep(self._rng.uniform(low, high))

    async def _visit(self, ctx: AttemptContext, session: BrowserSession, url: str) -> PageResponse:
        await self._pause()
        try:
            return await self._navigate(ctx, session, url)
        except BlockedError as blocked:
            ctx.errors.append(blocked)
            self.logger.info("entry_point_blocked", target=ctx.target.id, url=url, reason=blocked.reason)
            for alternate in alternate_entry_points(url, ctx.target):
                await self._pause()
                try:
                    response = await self._navigate(ctx, session, alternate)
                except (BlockedError, NavigationError) as exc:
                    ctx.errors.append(exc)
                    continue
                self.logger.info("alternate_entry_point_used", target=ctx.target.id, url=alternate)
                return response
            raise blocked
