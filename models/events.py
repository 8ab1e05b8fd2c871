"""
Data models for events flowing across the pricing core boundary.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ComponentType


class EventTypes:
    """Event type names used on the bus"""

    PRICE_OBSERVED = "price.observed"
    SALE_RECORDED = "sale.recorded"
    INVENTORY_OBSERVED = "inventory.observed"
    RECOMMENDATION_GENERATED = "recommendation.generated"
    PRICE_MUTATION = "price.mutation"
    AUDIT_APPENDED = "audit.appended"
    ALERT_RAISED = "alert.raised"
    REORDER_RECOMMENDED = "reorder.recommended"
    ELASTICITY_REFRESHED = "elasticity.refreshed"


class PricingEvent(BaseModel):
    """Base event for pricing core interactions."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    payload: dict[str, Any]
    source: ComponentType
    product_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)
