"""Pydantic schemas for the external catalog ingest endpoint.

These schemas define the contract between the harvester and a catalog
service that accepts canonical items over HTTP.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from harvester.models.item import CanonicalItem


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class IngestItem(BaseModel):
    """A single canonical item submitted to the catalog.

    Mirrors CanonicalItem field for field so the catalog can rebuild it
    without any loss of information.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Stable item id derived from target, name and brand",
        examples=["3f9a0c1d2e4b5a6c"],
    )
    name: str = Field(
        ...,
        min_length=3,
        max_length=199,
        description="Cleaned product name",
        examples=["Agua Mineral Cachantún 1.6L"],
    )
    brand: str = Field(..., description="Resolved brand", examples=["Cachantún"])
    category: str = Field(..., description="Category slug", examples=["bebidas"])
    price: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Price in the target's currency. None when only an image was found.",
        examples=[990],
    )
    currency: str = Field("CLP", min_length=3, max_length=3, examples=["CLP"])
    image_url: Optional[str] = Field(None, description="Absolute product image URL")
    source_url: Optional[str] = Field(None, description="Page the item was harvested from")
    source_target: str = Field(..., min_length=1, examples=["lider"])
    quality_score: int = Field(..., ge=0, le=11, description="Pipeline quality score")
    extracted_by: Optional[str] = Field(None, description="Strategy that produced the item", examples=["standard"])
    first_seen_at: datetime
    last_seen_at: datetime

    @classmethod
    def from_item(cls, item: CanonicalItem) -> "IngestItem":
        return cls(
            id=item.id,
            name=item.name,
            brand=item.brand,
            category=item.category,
            price=item.price,
            currency=item.currency,
            image_url=item.image_url,
            source_url=item.source_url,
            source_target=item.source_target,
            quality_score=item.quality_score,
            extracted_by=item.extracted_by,
            first_seen_at=item.first_seen_at,
            last_seen_at=item.last_seen_at,
        )


class IngestRequest(BaseModel):
    """Payload POSTed to CATALOG_INGEST_URL."""

    api_key: str = Field(
        ...,
        min_length=1,
        description="Shared secret that must match the catalog's ingest key",
    )
    items: List[IngestItem] = Field(
        ...,
        min_length=1,
        description="Canonical items to upsert. Minimum 1 item required.",
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class IngestResponse(BaseModel):
    """Response body of the catalog ingest endpoint."""

    status: str = Field("success", description="Always 'success' on HTTP 200")
    received: int = Field(0, description="Items received in the request")
    created: int = Field(0, description="Items inserted for the first time")
    updated: int = Field(0, description="Existing items refreshed")
    errors: int = Field(0, description="Per-item errors (other items in the batch still processed)")
