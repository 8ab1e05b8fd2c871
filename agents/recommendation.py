"""
Recommendation engine: turns elasticity, competitive position, stockout risk
and inventory levels into a ranked, constraint-compliant price recommendation.

Generation runs in four stages:
1. gather the product state,
2. propose candidates from the strategy table,
3. forecast each candidate and discard any that violates a constraint,
4. drop material price cuts while a stockout is imminent.
Survivors are ranked by forecast revenue (desc), then confidence (desc),
then absolute price change (asc). The engine never mutates prices.
"""

import logging
from datetime import datetime

from agents.competitive import CompetitiveAnalytics
from agents.constraints import check_price
from agents.elasticity import ElasticityStore
from agents.forecasting import RevenueForecaster
from agents.stockout import StockoutPredictor
from agents.strategies import STRATEGIES, ProductState, Strategy, generate_candidates
from config.config import RecommendationConfig
from connectors.history_store import InMemoryHistoryStore
from connectors.price_book import PriceBook
from models.enums import AlertSeverity, AlertType, ComponentType
from models.events import EventTypes, PricingEvent
from models.pricing import (
    CandidatePrice,
    ExpectedImpact,
    NoCompliantRecommendation,
    PricingConstraints,
    PricingRecommendation,
    RecommendationAlternative,
    RecommendationOutcome,
    RevenueForecast,
)
from utils.alerting import AlertManager
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


def _impact(forecast: RevenueForecast) -> ExpectedImpact:
    return ExpectedImpact(
        revenue_change_pct=forecast.revenue_change_pct,
        margin_change_pct=forecast.margin_change_pct,
        volume_change_pct=forecast.volume_change_pct,
    )


def rank_key(candidate: CandidatePrice, forecast: RevenueForecast, current_price: float) -> tuple:
    return (-forecast.expected_revenue, -forecast.confidence_score, abs(candidate.price - current_price))


class RecommendationEngine:
    def __init__(
        self,
        store: InMemoryHistoryStore,
        price_book: PriceBook,
        elasticity: ElasticityStore,
        forecaster: RevenueForecaster,
        competitive: CompetitiveAnalytics,
        stockout: StockoutPredictor,
        config: RecommendationConfig | None = None,
        alerts: AlertManager | None = None,
        event_bus: EventBus | None = None,
        strategies: list[Strategy] | None = None,
    ):
        self.store = store
        self.price_book = price_book
        self.elasticity = elasticity
        self.forecaster = forecaster
        self.competitive = competitive
        self.stockout = stockout
        self.config = config or RecommendationConfig()
        self.alerts = alerts
        self.event_bus = event_bus
        self.strategies = strategies or STRATEGIES
        self.constraints: dict[str, PricingConstraints] = {}

    def set_constraints(self, product_id: str, constraints: PricingConstraints) -> None:
        self.constraints[product_id] = constraints

    def constraints_for(self, product_id: str) -> PricingConstraints:
        return self.constraints.get(product_id, PricingConstraints())

    async def gather_state(self, product_id: str, now: datetime | None = None) -> ProductState:
        """Stage 1: read everything the strategies need. Read-only."""
        now = now or datetime.now()
        product = await self.store.get_product(product_id)
        current_price = self.price_book.current_price(product_id)
        elasticity = await self.elasticity.get_or_refresh(product_id, now=now)
        competitor_prices = await self.competitive.competitor_prices(product_id, now=now)
        risk = await self.stockout.active_risk(product_id, now=now)

        inventory_ratio = None
        positions = await self.store.inventory_positions(product_id)
        if positions and product.target_inventory:
            inventory_ratio = sum(p.quantity for p in positions) / product.target_inventory

        return ProductState(
            product_id=product_id,
            current_price=current_price,
            reference_price=product.list_price or current_price,
            cost=product.cost,
            elasticity=elasticity.coefficient,
            elasticity_confidence=elasticity.confidence_score,
            competitor_prices=competitor_prices,
            inventory_ratio=inventory_ratio,
            hours_to_stockout=risk.hours_to_stockout if risk else None,
        )

    async def generate(
        self,
        product_id: str,
        constraints: PricingConstraints | None = None,
        now: datetime | None = None,
    ) -> RecommendationOutcome:
        """
        Generate a recommendation for ``product_id``. Returns a
        NoCompliantRecommendation when every candidate was discarded.
        """
        now = now or datetime.now()
        constraints = constraints or self.constraints_for(product_id)
        state = await self.gather_state(product_id, now=now)
        current = state.current_price
        reasoning = [
            f"current price {current:.2f}, cost {state.cost:.2f}, elasticity {state.elasticity:.2f} "
            f"(confidence {state.elasticity_confidence:.0f})"
        ]
        if state.inventory_ratio is not None:
            reasoning.append(f"inventory ratio {state.inventory_ratio:.2f}")
        if state.hours_to_stockout is not None:
            reasoning.append(f"stockout expected in {state.hours_to_stockout:.1f}h: price cuts suppressed")

        candidates = generate_candidates(state, constraints, self.config, self.strategies)
        reasoning.append(f"{len(candidates)} candidates: " + ", ".join(f"{c.strategy.value}={c.price:.2f}" for c in candidates))

        survivors: list[tuple[CandidatePrice, RevenueForecast]] = []
        discarded: dict[str, list[str]] = {}
        floor = current * (1 - self.config.material_decrease_pct / 100.0)
        for candidate in candidates:
            violations = check_price(candidate.price, current, state.reference_price, state.cost, constraints)
            if violations:
                discarded[candidate.strategy.value] = violations
                reasoning.append(f"discard {candidate.strategy.value} {candidate.price:.2f}: {'; '.join(violations)}")
                continue
            if state.hours_to_stockout is not None and candidate.price < floor:
                discarded[candidate.strategy.value] = ["price cut while stockout is imminent"]
                reasoning.append(f"discard {candidate.strategy.value} {candidate.price:.2f}: stockout prevention")
                continue
            forecast = await self.forecaster.forecast(
                product_id,
                candidate.price,
                self.config.horizon_days,
                current_price=current,
                now=now,
                remember=False,
            )
            survivors.append((candidate, forecast))

        if not survivors:
            outcome: RecommendationOutcome = NoCompliantRecommendation(
                product_id=product_id,
                current_price=current,
                reasoning=reasoning + ["no candidate satisfies the constraints"],
                discarded=discarded,
                constraints=constraints,
                generated_at=now,
            )
            logger.warning(f"No compliant recommendation for {product_id}: {discarded}")
            await self._emit(outcome)
            return outcome

        survivors.sort(key=lambda pair: rank_key(pair[0], pair[1], current))
        best, best_forecast = survivors[0]
        await self.store.remember_forecast(best_forecast)
        reasoning.append(
            f"selected {best.strategy.value} at {best.price:.2f}: {best.rationale}; "
            f"forecast revenue {best_forecast.expected_revenue:.2f}"
        )

        alternatives = []
        surfaced = {best.price}
        for candidate, forecast in survivors[1:]:
            if len(alternatives) >= self.config.max_alternatives:
                break
            if candidate.price in surfaced:
                continue
            surfaced.add(candidate.price)
            alternatives.append(
                RecommendationAlternative(
                    strategy=candidate.strategy,
                    price=candidate.price,
                    confidence_score=forecast.confidence_score,
                    expected_revenue=forecast.expected_revenue,
                    expected_impact=_impact(forecast),
                    forecast_id=forecast.forecast_id,
                )
            )
            await self.store.remember_forecast(forecast)

        outcome = PricingRecommendation(
            product_id=product_id,
            current_price=current,
            recommended_price=best.price,
            strategy=best.strategy,
            confidence_score=best_forecast.confidence_score,
            expected_revenue=best_forecast.expected_revenue,
            expected_impact=_impact(best_forecast),
            forecast_id=best_forecast.forecast_id,
            reasoning=reasoning,
            alternatives=alternatives,
            constraints=constraints,
            generated_at=now,
        )
        logger.info(
            f"Recommendation {product_id}: {best.strategy.value} {current:.2f} -> {best.price:.2f} "
            f"(conf={outcome.confidence_score:.0f}, alternatives={len(alternatives)})"
        )
        await self._emit(outcome)

        if self.alerts is not None and outcome.confidence_score < self.config.low_confidence_threshold:
            await self.alerts.raise_alert(
                AlertType.LOW_CONFIDENCE,
                AlertSeverity.WARNING,
                f"Recommendation for {product_id} has low confidence ({outcome.confidence_score:.0f})",
                product_ids=[product_id],
                recommended_actions=["Review before applying", "Collect more price/sales history"],
                now=now,
            )
        return outcome

    async def history(self, product_id: str) -> list[RecommendationOutcome]:
        return await self.store.recommendation_history(product_id)

    async def _emit(self, outcome: RecommendationOutcome) -> None:
        await self.store.append_recommendation(outcome)
        if self.event_bus is not None:
            await self.event_bus.publish(
                PricingEvent(
                    event_type=EventTypes.RECOMMENDATION_GENERATED,
                    payload=outcome.model_dump(mode="json"),
                    source=ComponentType.RECOMMENDATION,
                    product_id=outcome.product_id,
                )
            )
