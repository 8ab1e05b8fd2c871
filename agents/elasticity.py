"""
Elasticity store: holds the latest price-elasticity estimate per product and
recomputes it from sales history.

Estimates come from a log-log OLS regression of daily units sold on the
daily average price in effect. Products with fewer than
``min_data_points`` usable days fall back to a category estimate (built only
from products that had enough data themselves) or to a seeded default, and
are marked as low confidence.
"""

import logging
from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import statsmodels.api as sm

from config.config import ElasticityConfig
from connectors.history_store import InMemoryHistoryStore
from models.enums import ComponentType
from models.errors import InsufficientDataError, NotFoundError
from models.events import EventTypes, PricingEvent
from models.observations import ProductRecord, SalesRecord
from models.pricing import ConfidenceInterval, ElasticityResult
from utils.concurrency import call_with_timeout
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


def daily_price_quantity(sales: list[SalesRecord]) -> pd.DataFrame:
    """
    Aggregate sales into one row per day: units sold and the
    quantity-weighted average price in effect. Days without units are dropped.
    """
    if not sales:
        return pd.DataFrame(columns=["price", "quantity"])
    df = pd.DataFrame(
        {
            "date": [s.sold_at.date() for s in sales],
            "quantity": [s.quantity for s in sales],
            "price_x_qty": [s.price * s.quantity for s in sales],
        }
    )
    daily = df.groupby("date").sum()
    daily = daily[daily["quantity"] > 0]
    daily["price"] = daily["price_x_qty"] / daily["quantity"]
    return daily[["price", "quantity"]].sort_index()


def fit_log_log(daily: pd.DataFrame, min_data_points: int) -> tuple[float, float, float, float]:
    """
    Fit log(quantity) = a + b * log(price).

    Returns:
        (coefficient, ci_lower, ci_upper, r_squared)

    Raises:
        InsufficientDataError: too few points, no price variation, or a
            non-negative slope.
    """
    n = len(daily)
    if n < min_data_points:
        raise InsufficientDataError(f"{n} data points, need {min_data_points}")
    log_p = np.log(daily["price"].to_numpy(dtype=float))
    log_q = np.log(daily["quantity"].to_numpy(dtype=float))
    if np.ptp(log_p) == 0:
        raise InsufficientDataError("no price variation in history")

    fit = sm.OLS(log_q, sm.add_constant(log_p)).fit()
    coefficient = float(fit.params[1])
    lower, upper = (float(v) for v in fit.conf_int(alpha=0.05)[1])
    if coefficient >= 0:
        raise InsufficientDataError(f"non-negative elasticity {coefficient:.3f}")
    return coefficient, lower, upper, float(fit.rsquared)


def fit_confidence(coefficient: float, lower: float, upper: float, r_squared: float, n: int) -> float:
    """0-100 score from goodness of fit, sample size and interval width."""
    fit_quality = min(1.0, max(0.0, r_squared))
    sample = min(1.0, n / 90.0)
    relative_width = (upper - lower) / abs(coefficient) if coefficient else float("inf")
    precision = max(0.0, 1.0 - relative_width / 2.0)
    return round(100.0 * (0.4 * fit_quality + 0.3 * sample + 0.3 * precision), 2)


class ElasticityStore:
    """Owns ElasticityResult state; everyone else reads it."""

    def __init__(
        self,
        store: InMemoryHistoryStore,
        config: ElasticityConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.config = config or ElasticityConfig()
        self.event_bus = event_bus

    def seed_category(self, category_id: str, coefficient: float) -> None:
        """Register an explicit default coefficient for a category."""
        if coefficient >= 0:
            raise ValueError("Seeded elasticity must be negative")
        self.config.category_defaults[category_id] = coefficient

    async def get(self, product_id: str) -> ElasticityResult:
        """Most recent result for a product.

        Raises:
            NotFoundError: never computed.
        """
        result = await self.store.latest_elasticity(product_id)
        if result is None:
            raise NotFoundError(f"No elasticity computed for {product_id}")
        return result

    async def get_or_refresh(self, product_id: str, now: datetime | None = None) -> ElasticityResult:
        try:
            return await self.get(product_id)
        except NotFoundError:
            return await self.refresh(product_id, now=now)

    async def refresh(self, product_id: str, now: datetime | None = None) -> ElasticityResult:
        """Recompute and persist the elasticity for ``product_id``."""
        now = now or datetime.now()
        timeout = self.config.store_timeout_seconds
        product = await call_with_timeout(self.store.get_product(product_id), timeout, "get_product")
        since = now - timedelta(days=self.config.lookback_days)
        sales = await call_with_timeout(
            self.store.sales(product_id, since=since, until=now), timeout, "sales_history"
        )
        daily = daily_price_quantity(sales)

        try:
            coefficient, lower, upper, r_squared = fit_log_log(daily, self.config.min_data_points)
            result = ElasticityResult(
                product_id=product_id,
                category_id=product.category_id,
                coefficient=round(coefficient, 4),
                interval=ConfidenceInterval(lower=min(lower, upper), upper=max(lower, upper)),
                confidence_score=fit_confidence(coefficient, lower, upper, r_squared, len(daily)),
                data_points=len(daily),
                history_days=_span_days(daily),
                computed_at=now,
            )
        except InsufficientDataError as e:
            logger.info(f"Elasticity for {product_id} falls back: {e}")
            result = await self._fallback(product, daily, now)

        await self.store.append_elasticity(result)
        logger.info(
            f"Elasticity {product_id}: {result.coefficient:.3f} "
            f"(conf={result.confidence_score:.0f}, n={result.data_points}, fallback={result.fallback_source})"
        )
        if self.event_bus is not None:
            await self.event_bus.publish(
                PricingEvent(
                    event_type=EventTypes.ELASTICITY_REFRESHED,
                    payload=result.model_dump(mode="json"),
                    source=ComponentType.ELASTICITY,
                    product_id=product_id,
                )
            )
        return result

    async def refresh_due(self, now: datetime | None = None) -> list[str]:
        """Product ids whose estimate is missing or older than the refresh interval."""
        now = now or datetime.now()
        due = []
        for product_id in self.store.product_ids():
            latest = await self.store.latest_elasticity(product_id)
            if latest is None or now - latest.computed_at >= self.config.refresh_interval:
                due.append(product_id)
        return due

    async def _fallback(self, product: ProductRecord, daily: pd.DataFrame, now: datetime) -> ElasticityResult:
        coefficient, lower, upper, source_confidence, source = await self._category_estimate(product)
        confidence = min(
            self.config.fallback_confidence_cap,
            source_confidence * self.config.fallback_confidence_factor,
        )
        return ElasticityResult(
            product_id=product.product_id,
            category_id=product.category_id,
            coefficient=round(coefficient, 4),
            interval=ConfidenceInterval(lower=lower, upper=upper),
            confidence_score=round(confidence, 2),
            data_points=len(daily),
            history_days=_span_days(daily),
            computed_at=now,
            fallback_used=True,
            fallback_source=source,
        )

    async def _category_estimate(self, product: ProductRecord) -> tuple[float, float, float, float, str]:
        peers = await self.store.products_in_category(product.category_id)
        estimates = []
        for peer in peers:
            if peer.product_id == product.product_id:
                continue
            latest = await self.store.latest_elasticity(peer.product_id)
            if (
                latest is not None
                and not latest.fallback_used
                and latest.data_points >= self.config.min_data_points
            ):
                estimates.append(latest)

        if estimates:
            coefficient = float(np.mean([e.coefficient for e in estimates]))
            lower = min(e.interval.lower for e in estimates)
            upper = max(e.interval.upper for e in estimates)
            confidence = float(np.mean([e.confidence_score for e in estimates]))
            return coefficient, lower, upper, confidence, f"category:{product.category_id}"

        if product.category_id in self.config.category_defaults:
            coefficient = self.config.category_defaults[product.category_id]
            source = f"seed:{product.category_id}"
        else:
            coefficient = self.config.global_default_coefficient
            source = "seed:global"
        spread = abs(coefficient) * 0.5
        return coefficient, coefficient - spread, coefficient + spread, self.config.global_default_confidence, source


def _span_days(daily: pd.DataFrame) -> int:
    if daily.empty:
        return 0
    return (daily.index.max() - daily.index.min()).days + 1
