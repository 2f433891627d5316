"""Data normalization utilities for price parsing, text cleaning and classification."""

import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse


# Keyword-based category table. Dict order is the match order: the first
# category with a keyword contained in the name wins.
CATEGORY_KEYWORDS = {
    "bebidas": [
        "bebida", "gaseosa", "jugo", "néctar", "agua mineral", "agua con gas", "agua sin gas",
        "cerveza", "vino", "energética", "coca-cola", "pepsi", "sprite", "fanta",
    ],
    "lacteos": [
        "leche", "yogur", "yoghurt", "queso", "mantequilla", "crema de leche", "manjar", "lácteo",
    ],
    "snacks": [
        "papas fritas", "galleta", "chocolate", "dulce", "snack", "maní", "frutos secos", "caramelo",
    ],
    "panaderia": [
        "marraqueta", "hallulla", "pan de molde", "pan integral", "cereal", "avena", "harina", "queque",
    ],
    "carnes": [
        "carne", "pollo", "cerdo", "vacuno", "jamón", "salame", "vienesa", "longaniza", "pescado", "atún",
    ],
    "aseo": [
        "detergente", "jabón", "shampoo", "cloro", "lavaloza", "papel higiénico", "desodorante",
        "limpiador", "suavizante",
    ],
    "hogar": [
        "vaso", "plato", "olla", "sartén", "toalla", "organizador", "vela", "cubiertos",
    ],
    "herramientas": [
        "taladro", "martillo", "destornillador", "sierra", "alicate", "huincha", "esmeril", "atornillador",
    ],
    "ferreteria": [
        "tornillo", "tuerca", "clavo", "bisagra", "perno", "candado", "tarugo",
    ],
    "construccion": [
        "cemento", "ladrillo", "yeso", "volcanita", "hormigón", "arena", "tablero",
    ],
    "electricidad": [
        "cable", "enchufe", "ampolleta", "interruptor", "alargador", "fusible", "foco led",
    ],
    "jardineria": [
        "semilla", "fertilizante", "manguera", "maceta", "tierra de hoja", "pasto", "podadora",
    ],
    "pinturas": [
        "pintura", "látex", "esmalte", "brocha", "rodillo", "diluyente", "barniz",
    ],
    "plomeria": [
        "llave de paso", "grifería", "sifón", "flexible", "bomba de agua", "pvc", "cañería",
    ],
}

DEFAULT_CATEGORY = "general"

# Curated brand list, matched in order as a substring of the product name
KNOWN_BRANDS: List[str] = [
    "Coca-Cola", "Pepsi", "Sprite", "Fanta", "Nestlé", "Danone", "Soprole", "Colun",
    "Cachantún", "Benedictino", "Watt's", "Carozzi", "Lucchetti", "Costa", "McKay",
    "Great Value", "Líder", "Cuisine & Co",
    "Bosch", "Makita", "DeWalt", "Stanley", "Black+Decker", "Tricolor", "Sherwin-Williams",
]

# Prices without minor units; a single separator followed by three digits
# is always a thousands separator for these.
ZERO_DECIMAL_CURRENCIES = {"CLP", "KRW", "JPY", "COP", "PYG"}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f\u200b-\u200f\ufeff]")
_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_NUMBER_TOKEN = re.compile(r"\d(?:[\d.,]*\d)?")
_CURRENCY_PATTERN = re.compile(
    r"(?:US\$|CLP\s?\$?|\$|€|£|¥|₩)\s?\d[\d.,]*|\d[\d.,]*\s?(?:CLP|pesos|USD|EUR|원)",
    re.IGNORECASE,
)


def clean_text(text: Optional[str]) -> str:
    """Strip control characters and collapse whitespace.

    Args:
        text: Raw text as extracted from a page

    Returns:
        Cleaned text, empty string for None
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text)
    text = _CONTROL_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def fold(text: str) -> str:
    """Lower-case and strip accents, for keyword matching."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_key(text: Optional[str]) -> str:
    """Normalize text for deduplication keys.

    Lower-cases, strips punctuation and collapses whitespace, so that
    "Coca-Cola 1.5L" and "  coca-cola 1.5l " produce the same key.
    """
    if not text:
        return ""
    text = clean_text(text).lower()
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def extract_currency_token(text: Optional[str]) -> Optional[str]:
    """Return the first currency-looking token in a text, e.g. "$1.990"."""
    if not text:
        return None
    match = _CURRENCY_PATTERN.search(text)
    return match.group(0).strip() if match else None


def is_absolute_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class PriceNormalizer:
    """Price parsing with locale-aware thousands and decimal separators."""

    @staticmethod
    def clean_price_string(raw: Optional[str], currency: str = "CLP") -> Optional[Decimal]:
        """Parse a price string and extract its numeric value.

        Handles various formats:
        - "$1.990" (CLP) -> 1990
        - "$ 12.345.678" -> 12345678
        - "$12.99" (USD) -> 12.99
        - "1,234.56" -> 1234.56
        - "1.234,56" -> 1234.56

        Args:
            raw: Raw price string
            currency: ISO currency code of the target

        Returns:
            Decimal price value, or None if no number is present
        """
        if not raw:
            return None

        match = _NUMBER_TOKEN.search(raw)
        if not match:
            return None
        token = match.group(0)

        if "," in token and "." in token:
            decimal_sep = "," if token.rfind(",") > token.rfind(".") else "."
            thousands_sep = "." if decimal_sep == "," else ","
            token = token.replace(thousands_sep, "").replace(decimal_sep, ".")
        elif "," in token or "." in token:
            sep = "," if "," in token else "."
            parts = token.split(sep)
            is_thousands = len(parts) > 2 or len(parts[-1]) == 3
            if currency.upper() in ZERO_DECIMAL_CURRENCIES and len(parts[-1]) != 2:
                is_thousands = True
            if is_thousands:
                token = "".join(parts)
            else:
                token = parts[0] + "." + parts[1]

        try:
            return Decimal(token)
        except InvalidOperation:
            return None


# Keywords must start at a word boundary ("plato" must not match "platano")
_CATEGORY_PATTERNS = [
    (category, re.compile(r"(?<!\w)(?:" + "|".join(re.escape(fold(kw)) for kw in keywords) + ")"))
    for category, keywords in CATEGORY_KEYWORDS.items()
]


class CategoryClassifier:
    """Keyword category classification, first match wins."""

    @staticmethod
    def classify(name: str) -> Optional[str]:
        """Classify a product into a category based on its name.

        Args:
            name: Product name

        Returns:
            Category slug (e.g., "bebidas") or None when no keyword matches
        """
        if not name:
            return None
        folded = fold(name)
        for category, pattern in _CATEGORY_PATTERNS:
            if pattern.search(folded):
                return category
        return None


class BrandResolver:
    """Resolve a product's brand from explicit text, a curated list or its name."""

    def __init__(self, brands: Optional[List[str]] = None):
        self.brands = list(brands) if brands is not None else list(KNOWN_BRANDS)
        self._patterns = [(re.compile(r"(?<!\w)" + re.escape(fold(brand))), brand) for brand in self.brands]

    def resolve(self, name: str, brand_text: Optional[str] = None) -> Tuple[str, bool]:
        """Resolve a brand.

        Args:
            name: Cleaned product name
            brand_text: Brand as extracted from the page, if any

        Returns:
            Tuple of (brand, resolved). ``resolved`` is False when the brand
            is only the name's first token.
        """
        brand_text = clean_text(brand_text)
        if brand_text:
            return brand_text, True

        folded_name = fold(name)
        for pattern, brand in self._patterns:
            if pattern.search(folded_name):
                return brand, True

        tokens = name.split()
        return (tokens[0] if tokens else ""), False


def normalize_url(url: str) -> str:
    """Normalize a URL by removing tracking parameters.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL
    """
    if not url:
        return url

    tracking_params = {
        "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
        "fbclid", "gclid", "mc_cid", "mc_eid",
    }

    parsed = urlparse(url)
    query_params = parse_qs(parsed.query, keep_blank_values=True)
    filtered_params = {k: v for k, v in query_params.items() if k not in tracking_params}
    new_query = urlencode(filtered_params, doseq=True)
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, parsed.params, new_query, ""))
