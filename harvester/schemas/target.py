"""Pydantic schemas for curated harvest targets.

Targets are loaded once at run start from a JSON list and are immutable
for the duration of the run.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote_plus, urljoin, urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from harvester.core.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Defaults shared by every target
# ---------------------------------------------------------------------------

DEFAULT_API_PATHS = ["/api/products", "/api/search", "/api/catalog", "/rest/products"]
DEFAULT_SITEMAP_PATHS = ["/sitemap.xml", "/product-sitemap.xml", "/sitemap_products.xml"]


class RateProfile(BaseModel):
    """Pacing bounds for one target, in milliseconds."""

    model_config = ConfigDict(frozen=True)

    min_delay_ms: int = Field(1000, ge=0, description="Floor for the adaptive delay")
    max_delay_ms: int = Field(10000, gt=0, description="Ceiling for the adaptive delay")
    initial_delay_ms: int = Field(2000, ge=0, description="Delay used before any feedback")

    @model_validator(mode="after")
    def check_bounds(self) -> "RateProfile":
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError("min_delay_ms must not exceed max_delay_ms")
        if not self.min_delay_ms <= self.initial_delay_ms <= self.max_delay_ms:
            raise ValueError("initial_delay_ms must lie within [min_delay_ms, max_delay_ms]")
        return self


class Target(BaseModel):
    """An independently operated storefront the harvester extracts from."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, pattern=r"^[a-z0-9][a-z0-9_-]*$", examples=["lider"])
    display_name: str = Field(..., min_length=1, examples=["Líder"])
    base_urls: List[str] = Field(..., min_length=1, description="Entry URLs, most preferred first")
    category_hints: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Category slug -> entry paths or absolute URLs for that category",
    )
    rate_profile: RateProfile = Field(default_factory=RateProfile)
    strategy_bonuses: Dict[str, float] = Field(
        default_factory=dict,
        description="Per-strategy score bonus used by the strategy selector",
    )
    selector_hints: List[str] = Field(
        default_factory=list,
        description="Ranked product-card CSS selectors, most specific first",
    )
    search_path: str = Field("/search?q={query}", description="Search URL template relative to the primary URL")
    api_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_API_PATHS))
    sitemap_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_SITEMAP_PATHS))
    locale: str = "es-CL"
    timezone_id: str = "America/Santiago"
    currency: str = "CLP"

    @field_validator("base_urls")
    @classmethod
    def check_base_urls(cls, value: List[str]) -> List[str]:
        for url in value:
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"base URL must be absolute http(s): {url}")
        return [url.rstrip("/") for url in value]

    @field_validator("search_path")
    @classmethod
    def check_search_path(cls, value: str) -> str:
        if "{query}" not in value:
            raise ValueError("search_path must contain a {query} placeholder")
        return value

    @property
    def primary_url(self) -> str:
        return self.base_urls[0]

    def resolve(self, path_or_url: str) -> str:
        """Resolve a path against the primary URL; absolute URLs pass through."""
        if urlparse(path_or_url).scheme:
            return path_or_url
        return urljoin(self.primary_url + "/", path_or_url.lstrip("/"))

    def search_url(self, query: str) -> str:
        return self.resolve(self.search_path.format(query=quote_plus(query)))

    def category_urls(self, category: str) -> List[str]:
        """Entry URLs for one category unit, falling back to the search page."""
        hints = self.category_hints.get(category)
        if hints:
            return [self.resolve(hint) for hint in hints]
        return [self.search_url(category)]

    def known_categories(self) -> List[str]:
        return list(self.category_hints.keys())


_TARGET_LIST = TypeAdapter(List[Target])


def load_targets(path: Optional[Path] = None) -> List[Target]:
    """Load and validate targets from a JSON file.

    Args:
        path: JSON file holding a list of target objects. None loads the
            curated default set shipped with the package.

    Returns:
        List of validated Target objects, in file order

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid
    """
    try:
        if path is None:
            raw = resources.files("harvester").joinpath("data/targets.json").read_text(encoding="utf-8")
        else:
            raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read targets file {path}: {exc}") from exc

    try:
        targets = _TARGET_LIST.validate_python(json.loads(raw))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Targets file is not valid JSON: {exc}") from exc
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid target configuration: {exc}") from exc

    seen = set()
    for target in targets:
        if target.id in seen:
            raise ConfigurationError(f"Duplicate target id: {target.id}")
        seen.add(target.id)
    return targets
