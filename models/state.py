"""
Data models for owned mutable state: the current price per product.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ProductPriceState(BaseModel):
    """Current price of a product, versioned for optimistic concurrency"""

    product_id: str
    price: float = Field(gt=0)
    version: int = 0  # Optimistic concurrency control
    updated_at: datetime = Field(default_factory=datetime.now)
    updated_by: str | None = None  # Actor of the last mutation


class PriceMutation(BaseModel):
    """Price-change command handed to the storage layer"""

    product_id: str
    before_price: float
    after_price: float
    version: int  # Version after the mutation
    actor_id: str
    reason: str = ""
    applied_at: datetime = Field(default_factory=datetime.now)
