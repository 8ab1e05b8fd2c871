"""
Candidate price strategies for the recommendation engine.

Each strategy is a pure function ``(ProductState, PricingConstraints,
RecommendationConfig) -> CandidatePrice | None`` registered in STRATEGIES.
Registry order is the final, deterministic tie-break when ranking.
Strategies propose; they never check constraints or clamp.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np

from config.config import RecommendationConfig
from models.enums import StrategyTag
from models.pricing import CandidatePrice, PricingConstraints


@dataclass(frozen=True)
class ProductState:
    """Read-only snapshot gathered in stage 1 of recommendation generation."""

    product_id: str
    current_price: float
    reference_price: float
    cost: float
    elasticity: float
    elasticity_confidence: float
    competitor_prices: dict[str, float] = field(default_factory=dict)
    inventory_ratio: float | None = None
    hours_to_stockout: float | None = None


StrategyFn = Callable[[ProductState, PricingConstraints, RecommendationConfig], CandidatePrice | None]


class Strategy(NamedTuple):
    tag: StrategyTag
    fn: StrategyFn


def _price(value: float) -> float:
    return round(float(value), 2)


def _search_grid(state: ProductState, config: RecommendationConfig) -> np.ndarray:
    band = config.search_band_pct / 100.0
    return np.linspace(state.current_price * (1 - band), state.current_price * (1 + band), config.search_steps)


def _argmax_nearest(grid: np.ndarray, values: np.ndarray, current_price: float) -> float:
    """Grid price with the highest value; among equal values the one closest to current."""
    best = values.max()
    ties = grid[np.isclose(values, best, rtol=1e-12, atol=1e-12)]
    return float(ties[np.argmin(np.abs(ties - current_price))])


def competitor_match_lowest(state, constraints, config):
    if not state.competitor_prices:
        return None
    cid = min(state.competitor_prices, key=lambda c: (state.competitor_prices[c], c))
    return CandidatePrice(
        strategy=StrategyTag.COMPETITOR_MATCH_LOWEST,
        price=_price(state.competitor_prices[cid]),
        rationale=f"match lowest competitor {cid} at {state.competitor_prices[cid]:.2f}",
    )


def competitor_match_average(state, constraints, config):
    weighted = [
        (price, constraints.competitor_weight(cid))
        for cid, price in state.competitor_prices.items()
        if constraints.competitor_weight(cid) > 0
    ]
    total_weight = sum(w for _, w in weighted)
    if not weighted or total_weight <= 0:
        return None
    average = sum(p * w for p, w in weighted) / total_weight
    return CandidatePrice(
        strategy=StrategyTag.COMPETITOR_MATCH_AVERAGE,
        price=_price(average),
        rationale=f"match weighted competitor average {average:.2f} over {len(weighted)} competitors",
    )


def margin_maximization(state, constraints, config):
    grid = _search_grid(state, config)
    # Gross margin dollars up to a constant baseline-volume factor
    margin = (grid - state.cost) * (grid / state.current_price) ** state.elasticity
    best = _argmax_nearest(grid, margin, state.current_price)
    return CandidatePrice(
        strategy=StrategyTag.MARGIN_MAXIMIZATION,
        price=_price(best),
        rationale=f"maximizes gross margin within ±{config.search_band_pct:.0f}% (elasticity {state.elasticity:.2f})",
    )


def revenue_maximization(state, constraints, config):
    grid = _search_grid(state, config)
    revenue = grid * (grid / state.current_price) ** state.elasticity
    best = _argmax_nearest(grid, revenue, state.current_price)
    return CandidatePrice(
        strategy=StrategyTag.REVENUE_MAXIMIZATION,
        price=_price(best),
        rationale=f"maximizes forecast revenue within ±{config.search_band_pct:.0f}% (elasticity {state.elasticity:.2f})",
    )


def clearance(state, constraints, config):
    ratio = state.inventory_ratio
    if ratio is None or ratio <= config.clearance_ratio:
        return None
    discount = min(
        config.clearance_max_discount_pct,
        config.clearance_base_discount_pct + config.clearance_discount_per_excess_pct * (ratio - config.clearance_ratio),
    )
    return CandidatePrice(
        strategy=StrategyTag.CLEARANCE,
        price=_price(state.current_price * (1 - discount / 100.0)),
        rationale=f"inventory ratio {ratio:.2f} > {config.clearance_ratio}: clearance discount {discount:.1f}%",
    )


def premium(state, constraints, config):
    ratio = state.inventory_ratio
    if ratio is None or ratio >= config.premium_ratio:
        return None
    increase = min(
        config.premium_max_increase_pct,
        config.premium_base_increase_pct + config.premium_increase_per_shortfall_pct * (config.premium_ratio - ratio),
    )
    return CandidatePrice(
        strategy=StrategyTag.PREMIUM,
        price=_price(state.current_price * (1 + increase / 100.0)),
        rationale=f"inventory ratio {ratio:.2f} < {config.premium_ratio}: premium increase {increase:.1f}%",
    )


STRATEGIES: list[Strategy] = [
    Strategy(StrategyTag.COMPETITOR_MATCH_LOWEST, competitor_match_lowest),
    Strategy(StrategyTag.COMPETITOR_MATCH_AVERAGE, competitor_match_average),
    Strategy(StrategyTag.MARGIN_MAXIMIZATION, margin_maximization),
    Strategy(StrategyTag.REVENUE_MAXIMIZATION, revenue_maximization),
    Strategy(StrategyTag.CLEARANCE, clearance),
    Strategy(StrategyTag.PREMIUM, premium),
]


def generate_candidates(
    state: ProductState,
    constraints: PricingConstraints,
    config: RecommendationConfig,
    strategies: list[Strategy] | None = None,
) -> list[CandidatePrice]:
    candidates = []
    for strategy in strategies or STRATEGIES:
        candidate = strategy.fn(state, constraints, config)
        if candidate is not None:
            candidates.append(candidate)
    return candidates
