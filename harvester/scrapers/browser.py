"""Browser collaborator interface.

Strategies never talk to Playwright directly. They open a session from a
BrowserProvider with a fingerprint, navigate, and pull element snapshots
by selector hints. The Playwright-backed implementation lives in
``harvester.scrapers.utils.browser_manager``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncContextManager, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from harvester.scrapers.utils.fingerprint import Fingerprint


BLOCK_STATUSES = frozenset({403, 429, 503})

# Lower-case phrases of anti-automation interstitials, matched on visible text
BLOCK_MARKERS = (
    "captcha",
    "are you a robot",
    "are you human",
    "verify you are human",
    "checking your browser",
    "unusual traffic",
    "access denied",
    "request blocked",
)

# Matched on the final URL and on iframe sources and titles
CHALLENGE_MARKERS = ("captcha", "cf-chl", "/cdn-cgi/challenge", "datadome")

# Pages with more visible text than this are storefronts with an embedded
# widget (a reCAPTCHA badge on a login form), not interstitials
INTERSTITIAL_TEXT_LIMIT = 2000

_INVISIBLE_TAGS = ["script", "style", "noscript", "template"]


@dataclass
class PageResponse:
    """Result of a navigation."""

    url: str
    status: int
    content: str  # Rendered DOM
    body: Optional[str] = None  # Raw response body when it differs from the DOM

    @property
    def text(self) -> str:
        return self.body if self.body is not None else self.content


@dataclass
class ExtractedElement:
    """Snapshot of one element matched by a selector hint."""

    selector: str
    text: str
    attributes: Dict[str, str] = field(default_factory=dict)
    name_text: Optional[str] = None
    price_text: Optional[str] = None
    brand_text: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    link_urls: List[str] = field(default_factory=list)


def detect_block(response: PageResponse) -> Optional[str]:
    """Return why a response looks like a block page, or None.

    Only what a visitor would see counts: script and style contents are
    dropped before matching, so a storefront that merely loads a captcha
    library for its login form is not mistaken for a block page.

    Args:
        response: Navigation result

    Returns:
        Short reason string ("HTTP 429", "marker: captcha"), or None
    """
    if response.status in BLOCK_STATUSES:
        return f"HTTP {response.status}"

    url = response.url.lower()
    for marker in CHALLENGE_MARKERS:
        if marker in url:
            return f"url: {marker}"

    soup = BeautifulSoup(response.content, "html.parser")
    frames = [f"{frame.get('src', '')} {frame.get('title', '')}".lower() for frame in soup.find_all("iframe")]
    for tag in soup.find_all(_INVISIBLE_TAGS):
        tag.decompose()
    root = soup.body or soup
    text = " ".join(root.get_text(" ", strip=True).lower().split())

    for marker in BLOCK_MARKERS:
        if marker in text:
            return f"marker: {marker}"

    if len(text) <= INTERSTITIAL_TEXT_LIMIT:
        for source in frames:
            for marker in CHALLENGE_MARKERS:
                if marker in source:
                    return f"iframe: {marker}"
    return None


class BrowserSession(ABC):
    """One isolated browsing context with a fixed fingerprint."""

    @abstractmethod
    async def navigate(self, url: str, timeout_ms: int) -> PageResponse:
        """Navigate to a URL.

        Args:
            url: Absolute URL
            timeout_ms: Navigation timeout in milliseconds

        Returns:
            PageResponse for the loaded document

        Raises:
            NavigationTimeoutError: If the navigation timed out
            NavigationError: If the URL could not be reached
        """

    @abstractmethod
    async def extract_by_hints(self, hints: Sequence[str], limit: int = 200) -> List[ExtractedElement]:
        """Snapshot the elements of the current page matching selector hints.

        Args:
            hints: CSS selectors, tried in order
            limit: Maximum number of elements returned

        Returns:
            Element snapshots in document order per hint
        """

    async def trigger_lazy_load(self, cycles: int) -> None:
        """Scroll or otherwise trigger lazily loaded content. No-op by default."""
        return None


class BrowserProvider(ABC):
    """Opens browser sessions for strategies."""

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    @abstractmethod
    def session(self, fingerprint: Fingerprint) -> AsyncContextManager[BrowserSession]:
        """Open a browsing session configured with a fingerprint.

        Usage::

            async with provider.session(fingerprint) as session:
                await session.navigate(url, timeout_ms=30000)
        """
