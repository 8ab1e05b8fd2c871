"""
Automation rule definitions: conditions, actions and evaluation results.

Conditions and actions are closed sets: a condition is a (metric, comparison,
value) triple over the ConditionMetric enum, and an action is one of the four
action models in the PriceAction union, discriminated by ``kind``.
"""

import uuid
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator

from .enums import Combinator, Comparison, ConditionMetric, RuleEvaluationState
from .pricing import PricingConstraints


class RuleCondition(BaseModel):
    metric: ConditionMetric
    comparison: Comparison
    value: float
    competitor_id: str | None = None

    @model_validator(mode="after")
    def _competitor_required(self):
        if self.metric == ConditionMetric.COMPETITOR_PRICE and not self.competitor_id:
            raise ValueError("competitor_price conditions require a competitor_id")
        return self

    def describe(self) -> str:
        target = f"{self.metric.value}[{self.competitor_id}]" if self.competitor_id else self.metric.value
        return f"{target} {self.comparison.value} {self.value}"


class SetPriceAction(BaseModel):
    kind: Literal["set_price"] = "set_price"
    price: float = Field(gt=0)


class MatchCompetitorAction(BaseModel):
    """Match the lowest / average / a named competitor, then apply an offset."""

    kind: Literal["match_competitor"] = "match_competitor"
    target: Literal["lowest", "average", "competitor"] = "lowest"
    competitor_id: str | None = None
    offset_amount: float = 0.0
    offset_pct: float = 0.0

    @model_validator(mode="after")
    def _competitor_required(self):
        if self.target == "competitor" and not self.competitor_id:
            raise ValueError("Matching a named competitor requires competitor_id")
        return self


class ApplyDiscountAction(BaseModel):
    kind: Literal["apply_discount"] = "apply_discount"
    discount_pct: float = Field(gt=0, lt=100)


class UseRecommendationAction(BaseModel):
    """Defer to the recommendation engine's top strategy."""

    kind: Literal["use_recommendation"] = "use_recommendation"


PriceAction = Annotated[
    SetPriceAction | MatchCompetitorAction | ApplyDiscountAction | UseRecommendationAction,
    Field(discriminator="kind"),
]


class PricingRule(BaseModel):
    rule_id: str = Field(default_factory=lambda: f"rule-{uuid.uuid4().hex[:8]}")
    name: str = ""
    owner_id: str
    product_ids: list[str] = Field(min_length=1)
    conditions: list[RuleCondition] = Field(min_length=1)
    combinator: Combinator = Combinator.AND
    action: PriceAction
    constraints: PricingConstraints = Field(default_factory=PricingConstraints)
    enabled: bool = True
    priority: int = 0  # Higher runs first
    created_at: datetime = Field(default_factory=datetime.now)


class RuleEvaluation(BaseModel):
    """Outcome of one rule in one evaluation cycle for one product."""

    rule_id: str
    product_id: str
    state: RuleEvaluationState
    trail: list[RuleEvaluationState] = Field(default_factory=list)
    candidate_price: float | None = None
    previous_price: float | None = None
    violations: list[str] = Field(default_factory=list)
    message: str = ""
    evaluated_at: datetime = Field(default_factory=datetime.now)

    def advance(self, state: RuleEvaluationState) -> None:
        self.trail.append(state)
        self.state = state


class MarketSnapshot(BaseModel):
    """Live market / inventory state a rule is evaluated against."""

    product_id: str
    own_price: float
    cost: float
    reference_price: float
    competitor_prices: dict[str, float] = Field(default_factory=dict)
    inventory_level: float | None = None
    inventory_ratio: float | None = None
    hours_to_stockout: float | None = None
    taken_at: datetime = Field(default_factory=datetime.now)

    @property
    def lowest_competitor_price(self) -> float | None:
        return min(self.competitor_prices.values()) if self.competitor_prices else None

    @property
    def average_competitor_price(self) -> float | None:
        if not self.competitor_prices:
            return None
        return sum(self.competitor_prices.values()) / len(self.competitor_prices)
