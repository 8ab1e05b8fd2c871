"""
Constraint validation shared by the recommendation engine and the rules engine.

A price is compliant when all of the following hold:
- margin (price - cost) / price >= min_margin_pct
- discount (reference - price) / reference <= max_discount_pct
- |price - current| / current <= max_price_change_pct

Prices are never clamped into compliance; callers discard or reject.
"""

from models.pricing import PricingConstraints

# Tolerance for float comparisons on percent values
EPSILON = 1e-9


def margin_pct(price: float, cost: float) -> float:
    return (price - cost) / price * 100.0


def discount_pct(price: float, reference_price: float) -> float:
    return max(0.0, (reference_price - price) / reference_price * 100.0)


def change_pct(price: float, current_price: float) -> float:
    return abs(price - current_price) / current_price * 100.0


def check_price(
    price: float,
    current_price: float,
    reference_price: float,
    cost: float,
    constraints: PricingConstraints,
) -> list[str]:
    """Return a list of human-readable violations (empty when compliant)."""
    if price <= 0:
        return [f"price {price:.2f} is not positive"]
    violations = []
    margin = margin_pct(price, cost)
    if margin + EPSILON < constraints.min_margin_pct:
        violations.append(f"margin {margin:.1f}% below minimum {constraints.min_margin_pct:.1f}%")
    discount = discount_pct(price, reference_price)
    if discount - EPSILON > constraints.max_discount_pct:
        violations.append(f"discount {discount:.1f}% above maximum {constraints.max_discount_pct:.1f}%")
    change = change_pct(price, current_price)
    if change - EPSILON > constraints.max_price_change_pct:
        violations.append(f"price change {change:.1f}% above maximum {constraints.max_price_change_pct:.1f}%")
    return violations
