"""
Module: connectors.history_store

In-memory stand-in for the time-series / relational stores the pricing core
reads from and appends to. Every record set is keyed by product id (and
location id where applicable) and kept in timestamp order. Nothing is ever
deleted.
"""

import asyncio
import bisect
from collections import defaultdict
from datetime import datetime

from models.errors import NotFoundError
from models.inventory import InventoryPosition, ReorderRecommendation, StockoutPrediction
from models.observations import InventoryObservation, PricePoint, ProductRecord, SalesRecord
from models.pricing import ElasticityResult, ForecastVariance, RecommendationOutcome, RevenueForecast


class InMemoryHistoryStore:
    """
    Append/read access to the logical record sets of the pricing core.
    Methods are coroutines so callers treat them like the blocking stores
    they stand in for (and wrap them in timeouts).
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._products: dict[str, ProductRecord] = {}
        self._price_points: dict[str, list[PricePoint]] = defaultdict(list)
        self._sales: dict[str, list[SalesRecord]] = defaultdict(list)
        self._observations: dict[str, list[InventoryObservation]] = defaultdict(list)
        self._positions: dict[tuple[str, str], InventoryPosition] = {}
        self._elasticity: dict[str, list[ElasticityResult]] = defaultdict(list)
        self._stockouts: dict[tuple[str, str], list[StockoutPrediction]] = defaultdict(list)
        self._reorders: dict[str, list[ReorderRecommendation]] = defaultdict(list)
        self._recommendations: dict[str, list[RecommendationOutcome]] = defaultdict(list)
        self._forecasts: dict[str, RevenueForecast] = {}
        self._variances: dict[str, list[ForecastVariance]] = defaultdict(list)

    async def _io(self) -> None:
        await asyncio.sleep(self.latency)

    # --- Catalog ---
    def add_product(self, product: ProductRecord) -> None:
        self._products[product.product_id] = product

    async def get_product(self, product_id: str) -> ProductRecord:
        await self._io()
        try:
            return self._products[product_id]
        except KeyError:
            raise NotFoundError(f"Unknown product {product_id}") from None

    def product_ids(self) -> list[str]:
        return sorted(self._products)

    async def products_in_category(self, category_id: str) -> list[ProductRecord]:
        await self._io()
        return [p for p in self._products.values() if p.category_id == category_id]

    # --- Observations ---
    async def append_price_point(self, point: PricePoint) -> None:
        await self._io()
        bisect.insort(self._price_points[point.product_id], point, key=lambda p: p.observed_at)

    async def price_points(self, product_id: str, since: datetime | None = None) -> list[PricePoint]:
        await self._io()
        points = self._price_points.get(product_id, [])
        return [p for p in points if since is None or p.observed_at >= since]

    async def append_sale(self, sale: SalesRecord) -> None:
        await self._io()
        bisect.insort(self._sales[sale.product_id], sale, key=lambda s: s.sold_at)

    async def sales(
        self, product_id: str, since: datetime | None = None, until: datetime | None = None
    ) -> list[SalesRecord]:
        await self._io()
        return [
            s
            for s in self._sales.get(product_id, [])
            if (since is None or s.sold_at >= since) and (until is None or s.sold_at <= until)
        ]

    async def append_inventory_observation(self, observation: InventoryObservation) -> None:
        await self._io()
        bisect.insort(
            self._observations[observation.product_id], observation, key=lambda o: o.observed_at
        )

    async def inventory_observations(self, product_id: str) -> list[InventoryObservation]:
        await self._io()
        return list(self._observations.get(product_id, []))

    async def set_inventory_position(self, position: InventoryPosition) -> None:
        await self._io()
        self._positions[(position.product_id, position.location_id)] = position

    async def inventory_position(self, product_id: str, location_id: str) -> InventoryPosition | None:
        await self._io()
        return self._positions.get((product_id, location_id))

    async def inventory_positions(self, product_id: str) -> list[InventoryPosition]:
        await self._io()
        return [pos for (pid, _), pos in sorted(self._positions.items()) if pid == product_id]

    def all_inventory_positions(self) -> list[InventoryPosition]:
        return [pos for _, pos in sorted(self._positions.items())]

    # --- Derived records ---
    async def append_elasticity(self, result: ElasticityResult) -> None:
        await self._io()
        self._elasticity[result.product_id].append(result)

    async def elasticity_history(self, product_id: str) -> list[ElasticityResult]:
        await self._io()
        return list(self._elasticity.get(product_id, []))

    async def latest_elasticity(self, product_id: str) -> ElasticityResult | None:
        await self._io()
        history = self._elasticity.get(product_id)
        return history[-1] if history else None

    async def append_stockout_prediction(self, prediction: StockoutPrediction) -> None:
        await self._io()
        self._stockouts[(prediction.product_id, prediction.location_id)].append(prediction)

    async def latest_stockout_predictions(self, product_id: str) -> list[StockoutPrediction]:
        """Latest prediction per location for a product."""
        await self._io()
        return [history[-1] for (pid, _), history in sorted(self._stockouts.items()) if pid == product_id and history]

    async def append_reorder(self, reorder: ReorderRecommendation) -> None:
        await self._io()
        self._reorders[reorder.product_id].append(reorder)

    async def reorders(self, product_id: str) -> list[ReorderRecommendation]:
        await self._io()
        return list(self._reorders.get(product_id, []))

    async def append_recommendation(self, outcome: RecommendationOutcome) -> None:
        await self._io()
        self._recommendations[outcome.product_id].append(outcome)

    async def recommendation_history(self, product_id: str) -> list[RecommendationOutcome]:
        await self._io()
        return list(self._recommendations.get(product_id, []))

    async def remember_forecast(self, forecast: RevenueForecast) -> None:
        await self._io()
        self._forecasts[forecast.forecast_id] = forecast

    async def get_forecast(self, forecast_id: str) -> RevenueForecast:
        await self._io()
        try:
            return self._forecasts[forecast_id]
        except KeyError:
            raise NotFoundError(f"Unknown forecast {forecast_id}") from None

    async def append_variance(self, variance: ForecastVariance) -> None:
        await self._io()
        self._variances[variance.product_id].append(variance)

    async def variances(self, product_id: str) -> list[ForecastVariance]:
        await self._io()
        return list(self._variances.get(product_id, []))
