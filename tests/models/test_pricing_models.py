import pydantic
import pytest

from models.enums import Comparison, ConditionMetric
from models.inventory import StockoutPrediction
from models.pricing import ConfidenceInterval, ElasticityResult, PricingConstraints
from models.rules import ApplyDiscountAction, MatchCompetitorAction, PricingRule, RuleCondition


def test_confidence_interval_must_be_ordered():
    """Test the lower bound cannot exceed the upper bound."""
    assert ConfidenceInterval(lower=-2.0, upper=-1.0).contains(-1.5)
    with pytest.raises(pydantic.ValidationError):
        ConfidenceInterval(lower=1.0, upper=0.5)


def test_fallback_elasticity_requires_low_confidence():
    """Test fallback estimates must carry low confidence."""
    interval = ConfidenceInterval(lower=-2.0, upper=-1.0)
    ElasticityResult(
        product_id="SKU-1", coefficient=-1.5, interval=interval, confidence_score=45, data_points=3, fallback_used=True
    )
    with pytest.raises(pydantic.ValidationError, match="below 50"):
        ElasticityResult(
            product_id="SKU-1",
            coefficient=-1.5,
            interval=interval,
            confidence_score=60,
            data_points=3,
            fallback_used=True,
        )


@pytest.mark.parametrize("velocity", [0.0, -1.0])
def test_stockout_hours_undefined_without_velocity(velocity):
    """Test hours to stockout is undefined at zero velocity."""
    prediction = StockoutPrediction(
        product_id="SKU-1", location_id="store-1", current_inventory=5, sales_velocity=velocity, confidence=50
    )
    assert prediction.hours_to_stockout is None
    assert not prediction.is_below(48)

    with pytest.raises(pydantic.ValidationError):
        StockoutPrediction(
            product_id="SKU-1",
            location_id="store-1",
            current_inventory=5,
            sales_velocity=velocity,
            hours_to_stockout=10.0,
            confidence=50,
        )


def test_competitor_condition_needs_competitor_id():
    """Test competitor-specific fields need a competitor id."""
    with pytest.raises(pydantic.ValidationError):
        RuleCondition(metric=ConditionMetric.COMPETITOR_PRICE, comparison=Comparison.LT, value=90)
    condition = RuleCondition(
        metric=ConditionMetric.COMPETITOR_PRICE, comparison=Comparison.LT, value=90, competitor_id="acme"
    )
    assert condition.describe() == "competitor_price[acme] < 90.0"


def test_rule_action_is_discriminated_by_kind():
    """Test rule actions are parsed by their kind."""
    rule = PricingRule.model_validate(
        {
            "owner_id": "user-1",
            "product_ids": ["SKU-1"],
            "conditions": [{"metric": "inventory_level", "comparison": ">", "value": 100}],
            "action": {"kind": "apply_discount", "discount_pct": 10},
        }
    )
    assert isinstance(rule.action, ApplyDiscountAction)
    assert rule.rule_id.startswith("rule-")

    with pytest.raises(pydantic.ValidationError):
        PricingRule.model_validate(
            {
                "owner_id": "user-1",
                "product_ids": ["SKU-1"],
                "conditions": [{"metric": "inventory_level", "comparison": ">", "value": 100}],
                "action": {"kind": "teleport"},
            }
        )


def test_match_named_competitor_requires_id():
    """Test matching a named competitor needs its id."""
    with pytest.raises(pydantic.ValidationError):
        MatchCompetitorAction(target="competitor")


def test_constraints_default_weight_is_one():
    """Test unknown competitors default to weight one."""
    constraints = PricingConstraints(competitor_weights={"acme": 2.0})
    assert constraints.competitor_weight("acme") == 2.0
    assert constraints.competitor_weight("other") == 1.0
    with pytest.raises(pydantic.ValidationError):
        PricingConstraints(min_margin_pct=100)
