"""Validation, enrichment, quality scoring and deduplication of raw items."""

import hashlib
import threading
from collections import Counter
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from harvester.core.exceptions import ItemRejected
from harvester.models.item import CanonicalItem, RawItem
from harvester.schemas.target import Target
from harvester.scrapers.utils.normalizer import (
    DEFAULT_CATEGORY,
    BrandResolver,
    CategoryClassifier,
    PriceNormalizer,
    clean_text,
    is_absolute_url,
    normalize_key,
)

logger = structlog.get_logger(__name__)

MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 200  # Names this long or longer are page text, not product names

# Quality contribution caps per strategy; structural strategies may add up to 3
CONFIDENCE_CAPS = {"aggressive": 1.0}
DEFAULT_CONFIDENCE_CAP = 3.0


def item_id(target_id: str, name: str, brand: str) -> str:
    """Stable canonical id: a pure function of target, normalized name and brand."""
    key = f"{target_id}|{normalize_key(name)}|{normalize_key(brand)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


@dataclass
class PipelineStats:
    processed: int = 0
    accepted: int = 0
    duplicates: int = 0
    seeded: int = 0
    global_duplicates: int = 0
    rejected: Counter = field(default_factory=Counter)

    def to_dict(self) -> Dict[str, object]:
        return {
            "processed": self.processed,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "seeded": self.seeded,
            "global_duplicates": self.global_duplicates,
            "rejected": dict(self.rejected),
        }


class DataPipeline:
    """Turns raw items into scored, deduplicated canonical items.

    The per-target dedup index is shared by every worker and guarded by
    one lock. Processing the same raw input twice yields the same ids and
    the same count.
    """

    def __init__(
        self,
        min_quality_score: int = 6,
        brand_resolver: Optional[BrandResolver] = None,
    ):
        self.min_quality_score = min_quality_score
        self.brand_resolver = brand_resolver or BrandResolver()
        self.stats = PipelineStats()
        self._index: Dict[Tuple[str, str], CanonicalItem] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def validate(self, raw: RawItem, target: Target) -> Tuple[str, Optional[Decimal]]:
        """Clean the name and parse the price, rejecting unusable items.

        Returns:
            Tuple of (cleaned name, parsed Decimal price or None)

        Raises:
            ItemRejected: If the name is missing, too short or too long, or
                the item has neither a price nor an image
        """
        name = clean_text(raw.name)
        if not name:
            raise ItemRejected("missing_name")
        if len(name) < MIN_NAME_LENGTH:
            raise ItemRejected("name_too_short", name)
        if len(name) >= MAX_NAME_LENGTH:
            raise ItemRejected("name_too_long", name[:50])

        price = raw.price
        if price is None:
            price = PriceNormalizer.clean_price_string(raw.price_text, target.currency)
        if price is None and not clean_text(raw.image_url):
            raise ItemRejected("no_price_or_image", name)
        return name, price

    def score(
        self,
        name: str,
        price: Optional[Decimal],
        image_url: Optional[str],
        brand_resolved: bool,
        source_url: Optional[str],
        extracted_by: str,
        confidence: float,
    ) -> int:
        """Quality score of an enriched item.

        2 for a valid name, 2 for a positive price, 2 for an absolute image
        URL, 1 for a brand resolved from text or the curated list, 1 for a
        source URL, plus the strategy confidence up to its cap.
        """
        value = 0.0
        if len(name) >= MIN_NAME_LENGTH:
            value += 2
        if price is not None and price > 0:
            value += 2
        if is_absolute_url(image_url):
            value += 2
        if brand_resolved:
            value += 1
        if source_url:
            value += 1
        value += min(confidence, CONFIDENCE_CAPS.get(extracted_by, DEFAULT_CONFIDENCE_CAP))
        return int(value)

    def build(self, raw: RawItem, target: Target) -> CanonicalItem:
        """Validate, enrich and score one raw item.

        Raises:
            ItemRejected: If the item fails validation or scores too low
        """
        name, price = self.validate(raw, target)
        category = CategoryClassifier.classify(name) or raw.category_hint or DEFAULT_CATEGORY
        brand, brand_resolved = self.brand_resolver.resolve(name, raw.brand_text)
        image_url = clean_text(raw.image_url) or None
        source_url = clean_text(raw.source_url) or None

        quality = self.score(name, price, image_url, brand_resolved, source_url, raw.extracted_by, raw.confidence)
        if quality < self.min_quality_score:
            raise ItemRejected("low_quality", name)

        return CanonicalItem(
            id=item_id(target.id, name, brand),
            name=name,
            brand=brand,
            category=category,
            currency=target.currency,
            quality_score=quality,
            source_target=target.id,
            first_seen_at=raw.captured_at,
            last_seen_at=raw.captured_at,
            price=price,
            image_url=image_url,
            source_url=source_url,
            extracted_by=raw.extracted_by,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def process(self, raw_items: Iterable[RawItem], target: Target) -> List[CanonicalItem]:
        """Run raw items of one target through the pipeline.

        Args:
            raw_items: Raw items as returned by a strategy
            target: Target the items were harvested from

        Returns:
            The canonical item of every accepted key, in first-seen order.
            Duplicates of already indexed items return the indexed item.
        """
        results: Dict[str, CanonicalItem] = {}
        for raw in raw_items:
            try:
                candidate = self.build(raw, target)
            except ItemRejected as exc:
                with self._lock:
                    self.stats.processed += 1
                    self.stats.rejected[exc.reason] += 1
                logger.debug("item_rejected", target=target.id, reason=exc.reason, name=exc.name)
                continue

            key = (target.id, normalize_key(candidate.name))
            with self._lock:
                self.stats.processed += 1
                existing = self._index.get(key)
                if existing is None:
                    self._index[key] = candidate
                    self.stats.accepted += 1
                    canonical = candidate
                else:
                    if candidate.last_seen_at > existing.last_seen_at:
                        existing.last_seen_at = candidate.last_seen_at
                    self.stats.duplicates += 1
                    canonical = existing
            results.setdefault(canonical.id, canonical)

        logger.debug("pipeline_processed", target=target.id, accepted=len(results))
        return list(results.values())

    def seed(self, items: Iterable[CanonicalItem]) -> int:
        """Load canonical items persisted by a previous run into the index.

        Returns:
            Number of items added
        """
        added = 0
        with self._lock:
            for item in items:
                key = (item.source_target, normalize_key(item.name))
                if key not in self._index:
                    self._index[key] = item
                    added += 1
            self.stats.seeded += added
        return added

    def items(self, target_id: Optional[str] = None) -> List[CanonicalItem]:
        """Indexed canonical items, optionally for one target."""
        with self._lock:
            return [item for item in self._index.values() if target_id is None or item.source_target == target_id]

    def finalize(self, items: Optional[Iterable[CanonicalItem]] = None) -> List[CanonicalItem]:
        """Deduplicate across targets by normalized name and brand.

        The earliest-seen item of each group wins; it takes the latest
        last_seen_at of its duplicates. Inputs are not mutated.

        Args:
            items: Canonical items to merge; defaults to the whole index

        Returns:
            Globally deduplicated items, ordered by first_seen_at
        """
        if items is None:
            items = self.items()
        ordered = sorted(items, key=lambda item: item.first_seen_at)

        merged: Dict[Tuple[str, str], CanonicalItem] = {}
        duplicates = 0
        for item in ordered:
            key = (normalize_key(item.name), normalize_key(item.brand))
            winner = merged.get(key)
            if winner is None:
                merged[key] = replace(item)
            else:
                duplicates += 1
                if item.last_seen_at > winner.last_seen_at:
                    merged[key] = replace(winner, last_seen_at=item.last_seen_at)

        with self._lock:
            self.stats.global_duplicates = duplicates
        logger.info("catalog_finalized", items=len(merged), global_duplicates=duplicates)
        return list(merged.values())
