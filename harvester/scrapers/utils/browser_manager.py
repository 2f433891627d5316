"""Playwright implementation of the BrowserProvider.

Provides one shared browser with a fresh context per session, each
configured from a Fingerprint (user agent, viewport, locale, stealth
script).
"""

import asyncio
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Sequence
from urllib.parse import urlparse

import structlog
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from harvester.core.exceptions import NavigationError, NavigationTimeoutError
from harvester.scrapers.browser import BrowserProvider, BrowserSession, ExtractedElement, PageResponse
from harvester.scrapers.utils.extraction import snapshot_elements
from harvester.scrapers.utils.fingerprint import Fingerprint

logger = structlog.get_logger()


class PlaywrightSession(BrowserSession):
    """BrowserSession backed by one Playwright page."""

    def __init__(self, page: Page):
        self._page = page

    async def navigate(self, url: str, timeout_ms: int) -> PageResponse:
        host = self._host(url)
        try:
            response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeoutError(host, f"timed out after {timeout_ms}ms", url=url) from exc
        except PlaywrightError as exc:
            raise NavigationError(host, exc.message.splitlines()[0] if exc.message else str(exc), url=url) from exc

        content = await self._page.content()
        body = None
        status = 0
        if response is not None:
            status = response.status
            try:
                body = await response.text()
            except PlaywrightError:
                # Redirect chains and aborted bodies have no text
                body = None
        return PageResponse(url=self._page.url, status=status, content=content, body=body)

    async def extract_by_hints(self, hints: Sequence[str], limit: int = 200) -> List[ExtractedElement]:
        html = await self._page.content()
        return snapshot_elements(html, hints, base_url=self._page.url, limit=limit)

    async def trigger_lazy_load(self, cycles: int) -> None:
        for _ in range(cycles):
            await self._page.mouse.wheel(0, random.randint(1200, 2400))
            await self._page.wait_for_timeout(random.randint(400, 900))

    @staticmethod
    def _host(url: str) -> str:
        return urlparse(url).netloc or url


class BrowserManager(BrowserProvider):
    """Manages the Playwright browser lifecycle.

    Each session gets its own context so that fingerprints, cookies and
    storage never leak between attempts.
    """

    def __init__(self, headless: bool = True, block_resources: bool = True):
        self._headless = headless
        self._block_resources = block_resources
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Launch the browser. Call once before the first session."""
        async with self._lock:
            if self._browser:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                ],
            )
            logger.info("browser_started", headless=self._headless)

    async def stop(self) -> None:
        """Close the browser and the Playwright driver."""
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped")

    @asynccontextmanager
    async def session(self, fingerprint: Fingerprint) -> AsyncIterator[PlaywrightSession]:
        if not self._browser:
            await self.start()

        context = await self._browser.new_context(**fingerprint.context_options())
        await context.add_init_script(fingerprint.init_script())

        # Fonts and media are never needed for extraction
        if self._block_resources:
            await context.route(
                "**/*.{woff,woff2,ttf,eot,mp4,webm}",
                lambda route: route.abort(),
            )

        logger.debug(
            "browser_context_created",
            mobile=fingerprint.is_mobile,
            evasive=fingerprint.evasive,
            viewport=fingerprint.viewport,
        )
        try:
            page = await context.new_page()
            yield PlaywrightSession(page)
        finally:
            await context.close()
