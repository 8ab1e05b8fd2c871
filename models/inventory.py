"""
Inventory-related data models for the pricing decision core.
Includes stockout predictions, reorder recommendations and the
last-known inventory position per product/location.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from .enums import InventorySourceKind, ReorderUrgency, SalesTrend


class StockoutPrediction(BaseModel):
    """
    Forecast of when a product runs out at a location.
    hours_to_stockout is None when sales velocity is zero or negative
    (no stockout expected).
    """

    product_id: str
    location_id: str
    current_inventory: float = Field(ge=0)
    sales_velocity: float  # Adjusted units per day
    hours_to_stockout: float | None = Field(default=None, ge=0)
    predicted_stockout_at: datetime | None = None
    confidence: float = Field(ge=0, le=100)
    trend: SalesTrend = SalesTrend.STABLE
    predicted_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _undefined_without_velocity(self):
        if self.sales_velocity <= 0 and self.hours_to_stockout is not None:
            raise ValueError("Time-to-stockout is undefined when sales velocity is not positive")
        return self

    @property
    def days_to_stockout(self) -> float:
        if self.hours_to_stockout is None:
            return math.inf
        return self.hours_to_stockout / 24.0

    def is_below(self, threshold_hours: float) -> bool:
        return self.hours_to_stockout is not None and self.hours_to_stockout < threshold_hours


class ReorderRecommendation(BaseModel):
    """Suggested replenishment when a stockout is imminent."""

    product_id: str
    location_id: str
    quantity: int = Field(gt=0)
    urgency: ReorderUrgency
    lead_time_days: float = Field(ge=0)
    safety_stock: float = Field(ge=0)
    hours_to_stockout: float = Field(ge=0)
    created_at: datetime = Field(default_factory=datetime.now)


@dataclass
class InventoryPosition:
    """Last accepted inventory level for a product at a location."""

    product_id: str
    location_id: str
    quantity: float
    confidence: float
    source: InventorySourceKind
    observed_at: datetime
