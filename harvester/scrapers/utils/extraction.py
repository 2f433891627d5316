"""HTML, JSON and sitemap parsing helpers shared by the strategies.

All functions work on already-fetched documents so that they can run on
any page snapshot, live or recorded.
"""

import json
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import unquote, urljoin, urlparse

import structlog
from bs4 import BeautifulSoup, Tag

from harvester.scrapers.browser import ExtractedElement

logger = structlog.get_logger(__name__)


NAME_SELECTORS = [
    '[data-testid*="name"]',
    '[data-testid*="title"]',
    '[class*="product-name"]',
    '[class*="ProductName"]',
    '[class*="product-title"]',
    ".product-name",
    ".product-title",
    '[class*="title"]',
    "h2",
    "h3",
    "h4",
]

PRICE_SELECTORS = [
    '[data-testid*="price"]',
    '[data-test*="price"]',
    '[class*="price"]',
    '[class*="Price"]',
    ".precio",
    '[data-cy*="price"]',
    ".value",
    ".cost",
]

BRAND_SELECTORS = [
    '[data-testid*="brand"]',
    ".brand",
    ".marca",
    '[class*="Brand"]',
    ".brand-name",
    ".manufacturer",
]

IMAGE_ATTRIBUTES = ("src", "data-src", "data-lazy-src", "data-original")

JSON_LIST_KEYS = ("products", "items", "results", "data", "hits")
JSON_NAME_KEYS = ("name", "title", "productName", "displayName")
JSON_PRICE_KEYS = ("price", "salePrice", "sale_price", "bestPrice", "offerPrice")
JSON_IMAGE_KEYS = ("image", "imageUrl", "image_url", "thumbnail", "images")
JSON_BRAND_KEYS = ("brand", "brandName", "manufacturer")
JSON_URL_KEYS = ("url", "link", "productUrl", "href")

PRODUCT_URL_MARKERS = ("product", "item", "/p/")


def _select_first_text(node: Tag, selectors: Sequence[str]) -> Optional[str]:
    for selector in selectors:
        found = node.select_one(selector)
        if found is not None:
            text = found.get_text(" ", strip=True)
            if text:
                return text
    return None


def _image_urls(node: Tag, base_url: str) -> List[str]:
    urls = []
    images = [node] if node.name == "img" else node.find_all("img")
    for img in images:
        for attr in IMAGE_ATTRIBUTES:
            value = img.get(attr)
            if value and not value.startswith("data:"):
                urls.append(urljoin(base_url, value.strip()))
                break
        else:
            srcset = img.get("srcset")
            if srcset:
                urls.append(urljoin(base_url, srcset.split(",")[0].split()[0]))
    return urls


def _attributes(node: Tag) -> Dict[str, str]:
    return {
        key: " ".join(value) if isinstance(value, list) else str(value)
        for key, value in node.attrs.items()
    }


def snapshot_element(node: Tag, selector: str, base_url: str) -> ExtractedElement:
    """Build an ExtractedElement from a matched node."""
    attributes = _attributes(node)
    name_text = _select_first_text(node, NAME_SELECTORS) or attributes.get("title") or attributes.get("aria-label")
    if not name_text:
        img = node.find("img")
        if img is not None and img.get("alt"):
            name_text = img.get("alt")

    links = [urljoin(base_url, a["href"]) for a in node.find_all("a", href=True)]
    if node.name == "a" and node.get("href"):
        links.insert(0, urljoin(base_url, node["href"]))

    return ExtractedElement(
        selector=selector,
        text=node.get_text("\n", strip=True),
        attributes=attributes,
        name_text=name_text,
        price_text=_select_first_text(node, PRICE_SELECTORS) or attributes.get("data-price"),
        brand_text=_select_first_text(node, BRAND_SELECTORS) or attributes.get("data-brand"),
        image_urls=_image_urls(node, base_url),
        link_urls=links,
    )


def snapshot_elements(html: str, hints: Sequence[str], base_url: str, limit: int = 200) -> List[ExtractedElement]:
    """Snapshot every element matching the selector hints.

    Args:
        html: Page HTML
        hints: CSS selectors, tried in order
        base_url: URL the HTML was loaded from, for resolving relative links
        limit: Maximum number of elements returned

    Returns:
        Element snapshots; an element matched by several hints appears once
    """
    soup = BeautifulSoup(html, "html.parser")
    seen = set()
    elements: List[ExtractedElement] = []
    for hint in hints:
        try:
            nodes = soup.select(hint)
        except Exception as exc:
            logger.warning("invalid_selector_hint", selector=hint, error=str(exc))
            continue
        for node in nodes:
            if id(node) in seen:
                continue
            seen.add(id(node))
            elements.append(snapshot_element(node, hint, base_url))
            if len(elements) >= limit:
                return elements
    return elements


# ---------------------------------------------------------------------------
# JSON data endpoints
# ---------------------------------------------------------------------------


def _first_value(data: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    """Flatten nested JSON values such as {"value": 1990} or ["a.jpg"]."""
    if value is None:
        return None
    if isinstance(value, list):
        return _as_text(value[0]) if value else None
    if isinstance(value, dict):
        return _as_text(_first_value(value, ("value", "amount", "url", "src", "name", "text")))
    return str(value)


def _as_decimal(value: Any) -> Optional[Decimal]:
    """Exact price for JSON numbers; strings are left to the price normalizer."""
    if isinstance(value, list):
        return _as_decimal(value[0]) if value else None
    if isinstance(value, dict):
        return _as_decimal(_first_value(value, ("value", "amount")))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    price = Decimal(str(value))
    return price if price.is_finite() and price >= 0 else None


def find_product_list(payload: Any, depth: int = 0) -> List[Dict[str, Any]]:
    """Locate the list of product-like objects in a JSON payload."""
    if isinstance(payload, list):
        return [entry for entry in payload if isinstance(entry, dict)]
    if not isinstance(payload, dict) or depth > 2:
        return []
    for key in JSON_LIST_KEYS:
        if key in payload:
            found = find_product_list(payload[key], depth + 1)
            if found:
                return found
    return []


def products_from_json(text: str, base_url: str) -> List[Dict[str, Any]]:
    """Parse a JSON data endpoint body into plain product dicts.

    Args:
        text: Response body
        base_url: URL of the endpoint, for resolving relative links

    Returns:
        Dicts with name, price_text, price, image_url, brand_text and url
        keys. price is a Decimal only when the endpoint sent a JSON number

    Raises:
        ValueError: If the body is not JSON
    """
    payload = json.loads(text)
    products = []
    for entry in find_product_list(payload):
        name = _as_text(_first_value(entry, JSON_NAME_KEYS))
        if not name:
            continue
        image = _as_text(_first_value(entry, JSON_IMAGE_KEYS))
        url = _as_text(_first_value(entry, JSON_URL_KEYS))
        price = _first_value(entry, JSON_PRICE_KEYS)
        products.append({
            "name": name,
            "price_text": _as_text(price),
            "price": _as_decimal(price),
            "image_url": urljoin(base_url, image) if image else None,
            "brand_text": _as_text(_first_value(entry, JSON_BRAND_KEYS)),
            "url": urljoin(base_url, url) if url else None,
        })
    return products


# ---------------------------------------------------------------------------
# Sitemaps and product page metadata
# ---------------------------------------------------------------------------


def sitemap_urls(xml: str) -> List[str]:
    """Return every <loc> URL of a sitemap or sitemap index."""
    soup = BeautifulSoup(xml, "xml")
    return [loc.get_text(strip=True) for loc in soup.find_all("loc") if loc.get_text(strip=True)]


def is_product_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    if path.endswith(".xml"):
        return False
    return any(marker in path for marker in PRODUCT_URL_MARKERS)


def name_from_url(url: str) -> Optional[str]:
    """Derive a readable name from a product URL slug.

    "https://shop.cl/product/agua-mineral-cachantun-1-6l" -> "Agua Mineral Cachantun 1 6l"
    """
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    while segments and (segments[-1].isdigit() or segments[-1] == "p"):
        segments.pop()
    if not segments:
        return None
    slug = unquote(segments[-1]).rsplit(".", 1)[0]
    words = [word for word in slug.replace("_", "-").split("-") if word]
    if not words:
        return None
    return " ".join(words).capitalize() if len(words) == 1 else " ".join(w.capitalize() for w in words)


def product_meta(html: str) -> Dict[str, Optional[str]]:
    """Read Open Graph and product meta tags of a product page.

    Returns:
        Dict with name, image_url, price_text and brand_text keys
    """
    soup = BeautifulSoup(html, "html.parser")

    def meta(*names: str) -> Optional[str]:
        for name in names:
            tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
            if tag is not None and tag.get("content"):
                return tag["content"].strip()
        return None

    price = meta("product:price:amount", "og:price:amount")
    if price is None:
        itemprop = soup.find(attrs={"itemprop": "price"})
        if itemprop is not None:
            price = itemprop.get("content") or itemprop.get_text(strip=True)

    title = meta("og:title")
    if title is None and soup.title is not None:
        title = soup.title.get_text(strip=True)

    return {
        "name": title,
        "image_url": meta("og:image"),
        "price_text": price,
        "brand_text": meta("product:brand", "og:brand"),
    }
