"""
Pricing-related data models for the pricing decision core.
Covers constraints, elasticity estimates, forecasts, competitive position
and recommendations.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from .enums import StrategyTag


class PricingConstraints(BaseModel):
    """
    Hard business limits every accepted price must satisfy.
    All limits are in percent units.
    """

    min_margin_pct: float = Field(default=0.0, ge=0, lt=100)
    max_discount_pct: float = Field(default=100.0, ge=0, le=100)
    max_price_change_pct: float = Field(default=100.0, ge=0)
    competitor_weights: dict[str, float] = Field(default_factory=dict)

    def competitor_weight(self, competitor_id: str) -> float:
        return self.competitor_weights.get(competitor_id, 1.0)


class ConfidenceInterval(BaseModel):
    lower: float
    upper: float

    @model_validator(mode="after")
    def _ordered(self):
        if self.lower > self.upper:
            raise ValueError(f"Interval lower bound {self.lower} exceeds upper bound {self.upper}")
        return self

    def contains(self, value: float) -> bool:
        return self.lower <= value <= self.upper


class ElasticityResult(BaseModel):
    """Latest price-elasticity estimate for a product (or its category fallback)."""

    product_id: str
    category_id: str | None = None
    coefficient: float
    interval: ConfidenceInterval
    confidence_score: float = Field(ge=0, le=100)
    data_points: int = Field(ge=0)
    history_days: int = Field(default=0, ge=0)
    computed_at: datetime = Field(default_factory=datetime.now)
    fallback_used: bool = False
    fallback_source: str | None = None  # "category:<id>", "seed:<id>" or "seed:global"

    @model_validator(mode="after")
    def _fallback_is_low_confidence(self):
        if self.fallback_used and self.confidence_score >= 50:
            raise ValueError("Fallback elasticity results must carry a confidence score below 50")
        return self


class RevenueForecast(BaseModel):
    """Expected outcome of moving a product from its current price to a proposed price."""

    forecast_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product_id: str
    current_price: float = Field(gt=0)
    proposed_price: float = Field(gt=0)
    horizon_days: int = Field(gt=0)
    elasticity_coefficient: float
    seasonal_factor: float = 1.0
    baseline_volume: float = Field(ge=0)
    expected_volume: float = Field(ge=0)
    expected_revenue: float = Field(ge=0)
    expected_margin: float
    revenue_change_pct: float
    margin_change_pct: float
    volume_change_pct: float
    revenue_interval: ConfidenceInterval
    volume_interval: ConfidenceInterval
    confidence_score: float = Field(ge=0, le=100)
    generated_at: datetime = Field(default_factory=datetime.now)


class ForecastVariance(BaseModel):
    """Recorded when realized revenue drifts more than the tolerance from a forecast."""

    forecast_id: str
    product_id: str
    predicted_revenue: float
    realized_revenue: float
    variance_pct: float
    recorded_at: datetime = Field(default_factory=datetime.now)


class CompetitivePosition(BaseModel):
    """Where the user's price sits among current competitor prices."""

    product_id: str
    user_price: float
    rank: int = Field(ge=1)
    count: int = Field(ge=1)
    percentile: float = Field(gt=0, le=1)
    competitor_prices: dict[str, float] = Field(default_factory=dict)
    min_price: float | None = None
    max_price: float | None = None
    median_price: float | None = None
    q1_price: float | None = None
    q3_price: float | None = None
    lowest_competitor_id: str | None = None
    gap_pct: float | None = None
    price_gap_flagged: bool = False
    computed_at: datetime = Field(default_factory=datetime.now)


class ExpectedImpact(BaseModel):
    revenue_change_pct: float
    margin_change_pct: float
    volume_change_pct: float


class CandidatePrice(BaseModel):
    """A price proposed by one strategy, before forecasting and filtering."""

    strategy: StrategyTag
    price: float = Field(gt=0)
    rationale: str


class RecommendationAlternative(BaseModel):
    strategy: StrategyTag
    price: float
    confidence_score: float = Field(ge=0, le=100)
    expected_revenue: float
    expected_impact: ExpectedImpact
    forecast_id: str | None = None


class PricingRecommendation(BaseModel):
    """
    Ranked, constraint-compliant price recommendation for a product.
    The recommended price and every alternative satisfied the constraints
    supplied at generation time.
    """

    recommendation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product_id: str
    current_price: float
    recommended_price: float
    strategy: StrategyTag
    confidence_score: float = Field(ge=0, le=100)
    expected_revenue: float
    expected_impact: ExpectedImpact
    forecast_id: str | None = None  # Pass to RevenueForecaster.record_outcome
    reasoning: list[str] = Field(default_factory=list)
    alternatives: list[RecommendationAlternative] = Field(default_factory=list, max_length=3)
    constraints: PricingConstraints
    generated_at: datetime = Field(default_factory=datetime.now)

    compliant: bool = True


class NoCompliantRecommendation(BaseModel):
    """Explicit result when every candidate was discarded."""

    product_id: str
    current_price: float
    reasoning: list[str] = Field(default_factory=list)
    discarded: dict[str, list[str]] = Field(default_factory=dict)  # strategy -> reasons
    constraints: PricingConstraints
    generated_at: datetime = Field(default_factory=datetime.now)

    compliant: bool = False


RecommendationOutcome = PricingRecommendation | NoCompliantRecommendation
