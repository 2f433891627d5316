"""Item records produced by strategies and by the data pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RawItem:
    """Unvalidated record as extracted from a page by one strategy."""

    name: str
    source_url: str
    extracted_by: str  # Strategy name, e.g. "standard"
    price_text: Optional[str] = None
    price: Optional[Decimal] = None  # Already numeric at the source, e.g. a JSON number
    image_url: Optional[str] = None
    brand_text: Optional[str] = None
    category_hint: Optional[str] = None  # Category unit the item was harvested under
    confidence: float = 0.0  # Strategy's own confidence, 0-3
    captured_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.extracted_by:
            raise ValueError("extracted_by is required")
        if not 0 <= self.confidence <= 3:
            raise ValueError("confidence must be between 0 and 3")


@dataclass
class CanonicalItem:
    """Validated, enriched, scored and deduplicated catalog record."""

    id: str
    name: str
    brand: str
    category: str
    currency: str
    quality_score: int
    source_target: str
    first_seen_at: datetime
    last_seen_at: datetime
    price: Optional[Decimal] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    extracted_by: Optional[str] = None

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.id:
            raise ValueError("id is required")
        if not self.name:
            raise ValueError("name is required")
        if self.price is not None and self.price < 0:
            raise ValueError("price must be a non-negative Decimal")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price) if self.price is not None else None
        data["first_seen_at"] = self.first_seen_at.isoformat()
        data["last_seen_at"] = self.last_seen_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalItem":
        values = dict(data)
        if values.get("price") is not None:
            values["price"] = Decimal(str(values["price"]))
        values["first_seen_at"] = datetime.fromisoformat(values["first_seen_at"])
        values["last_seen_at"] = datetime.fromisoformat(values["last_seen_at"])
        return cls(**values)
