"""
Inbound observation records and the product catalog entry.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import InventorySourceKind


class PricePoint(BaseModel):
    """A competitor price observed on a channel. Immutable once stored."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    competitor_id: str
    channel_id: str
    price: float = Field(gt=0)
    currency: str = "USD"
    available: bool = True
    observed_at: datetime = Field(default_factory=datetime.now)


class SalesRecord(BaseModel):
    """A sale reported by an order / POS system."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    channel_id: str
    quantity: int = Field(ge=0)
    revenue: float = Field(ge=0)
    price: float = Field(gt=0)  # Price in effect at sale time
    sold_at: datetime = Field(default_factory=datetime.now)


class InventoryObservation(BaseModel):
    """An inventory count estimate from vision / sensor / manual sources."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    location_id: str
    quantity: float = Field(ge=0)
    confidence: float = Field(ge=0, le=100)
    source: InventorySourceKind
    observed_at: datetime = Field(default_factory=datetime.now)


class ProductRecord(BaseModel):
    """Catalog data the core reads but does not own."""

    product_id: str
    category_id: str
    cost: float = Field(ge=0)
    list_price: float | None = Field(default=None, gt=0)  # Regular (undiscounted) price
    currency: str = "USD"
    target_inventory: float | None = Field(default=None, gt=0)
    lead_time_days: float = Field(default=3.0, ge=0)
    promotion_uplift: float = Field(default=1.0, gt=0)  # Demand multiplier for active promotions
