"""
Revenue forecaster: expected revenue, margin and volume for a proposed price.

Demand follows a constant-elasticity law
    new_volume = baseline_volume * (proposed / current) ** coefficient
and every forecast carries intervals built from the elasticity confidence
interval plus the historical day-to-day variance of sales.
"""

import logging
import math
from datetime import datetime, timedelta

import numpy as np
import pandas as pd

from agents.elasticity import ElasticityStore
from config.config import ForecastConfig
from connectors.history_store import InMemoryHistoryStore
from connectors.price_book import PriceBook
from models.enums import AlertSeverity, AlertType
from models.observations import SalesRecord
from models.pricing import ConfidenceInterval, ElasticityResult, ForecastVariance, RevenueForecast
from utils.alerting import AlertManager
from utils.concurrency import call_with_timeout

logger = logging.getLogger(__name__)


def constant_elasticity_volume(
    baseline_volume: float, current_price: float, proposed_price: float, coefficient: float
) -> float:
    return baseline_volume * (proposed_price / current_price) ** coefficient


def pct_change(new: float, old: float) -> float:
    if old == 0:
        return 0.0
    return (new - old) / abs(old) * 100.0


def trailing_days(now: datetime, days: int) -> tuple[datetime, datetime]:
    """[start, end) covering the ``days`` complete calendar days before ``now``."""
    end = datetime.combine(now.date(), datetime.min.time())
    return end - timedelta(days=days), end


def daily_units(sales: list[SalesRecord], start: datetime, end: datetime) -> pd.Series:
    """Units sold per calendar day over [start, end), zero-filled."""
    days = pd.date_range(start.date(), (end - timedelta(days=1)).date(), freq="D")
    if not sales:
        return pd.Series(0.0, index=days)
    df = pd.DataFrame(
        {"day": pd.to_datetime([s.sold_at.date() for s in sales]), "quantity": [s.quantity for s in sales]}
    )
    return df.groupby("day")["quantity"].sum().reindex(days, fill_value=0).astype(float)


class RevenueForecaster:
    """Stateless apart from the forecasts it remembers for variance tracking."""

    def __init__(
        self,
        store: InMemoryHistoryStore,
        elasticity: ElasticityStore,
        price_book: PriceBook,
        config: ForecastConfig | None = None,
        alerts: AlertManager | None = None,
    ):
        self.store = store
        self.elasticity = elasticity
        self.price_book = price_book
        self.config = config or ForecastConfig()
        self.alerts = alerts

    async def forecast(
        self,
        product_id: str,
        proposed_price: float,
        horizon_days: int | None = None,
        current_price: float | None = None,
        now: datetime | None = None,
        remember: bool = True,
    ) -> RevenueForecast:
        """
        Forecast the effect of ``proposed_price`` over ``horizon_days``.
        Remembered forecasts can later be checked with ``record_outcome``;
        callers scoring throwaway candidates pass ``remember=False``.

        Raises:
            UpstreamTimeoutError: the forecast did not finish within the
                configured timeout.
        """
        return await call_with_timeout(
            self._forecast(product_id, proposed_price, horizon_days, current_price, now, remember),
            self.config.timeout_seconds,
            f"revenue_forecast[{product_id}]",
        )

    async def _forecast(
        self,
        product_id: str,
        proposed_price: float,
        horizon_days: int | None,
        current_price: float | None,
        now: datetime | None,
        remember: bool,
    ) -> RevenueForecast:
        if proposed_price <= 0:
            raise ValueError(f"Proposed price must be positive, got {proposed_price}")
        now = now or datetime.now()
        horizon = horizon_days or self.config.default_horizon_days
        product = await self.store.get_product(product_id)
        current = current_price if current_price is not None else self.price_book.current_price(product_id)
        elasticity = await self.elasticity.get_or_refresh(product_id, now=now)

        start, end = trailing_days(now, self.config.sales_window_days)
        sales = await self.store.sales(product_id, since=start, until=end)
        units = daily_units(sales, start, end)
        mean_daily = float(units.mean()) if len(units) else 0.0
        std_daily = float(units.std(ddof=1)) if len(units) > 1 else 0.0

        forecast = self.project(
            product_id=product_id,
            current_price=current,
            proposed_price=proposed_price,
            cost=product.cost,
            horizon_days=horizon,
            mean_daily_units=mean_daily,
            std_daily_units=std_daily,
            elasticity=elasticity,
            seasonal_factor=self.seasonal_factor(now),
            now=now,
        )
        if remember:
            await self.store.remember_forecast(forecast)
        return forecast

    def seasonal_factor(self, when: datetime) -> float:
        return self.config.seasonal_factors.get(when.month, 1.0)

    def project(
        self,
        product_id: str,
        current_price: float,
        proposed_price: float,
        cost: float,
        horizon_days: int,
        mean_daily_units: float,
        std_daily_units: float,
        elasticity: ElasticityResult,
        seasonal_factor: float = 1.0,
        now: datetime | None = None,
    ) -> RevenueForecast:
        """Pure projection from already-gathered inputs."""
        coefficient = elasticity.coefficient
        baseline_volume = mean_daily_units * horizon_days * seasonal_factor
        expected_volume = constant_elasticity_volume(baseline_volume, current_price, proposed_price, coefficient)

        bound_volumes = [
            constant_elasticity_volume(baseline_volume, current_price, proposed_price, c)
            for c in (elasticity.interval.lower, elasticity.interval.upper, coefficient)
        ]
        noise = (
            self.config.interval_z
            * std_daily_units
            * math.sqrt(horizon_days)
            * seasonal_factor
            * (proposed_price / current_price) ** coefficient
        )
        volume_low = max(0.0, min(bound_volumes) - noise)
        volume_high = max(bound_volumes) + noise

        expected_revenue = expected_volume * proposed_price
        baseline_revenue = baseline_volume * current_price
        expected_margin = expected_volume * (proposed_price - cost)
        baseline_margin = baseline_volume * (current_price - cost)

        return RevenueForecast(
            product_id=product_id,
            current_price=current_price,
            proposed_price=proposed_price,
            horizon_days=horizon_days,
            elasticity_coefficient=coefficient,
            seasonal_factor=seasonal_factor,
            baseline_volume=round(baseline_volume, 4),
            expected_volume=round(expected_volume, 4),
            expected_revenue=round(expected_revenue, 2),
            expected_margin=round(expected_margin, 2),
            revenue_change_pct=round(pct_change(expected_revenue, baseline_revenue), 4),
            margin_change_pct=round(pct_change(expected_margin, baseline_margin), 4),
            volume_change_pct=round(pct_change(expected_volume, baseline_volume), 4),
            revenue_interval=ConfidenceInterval(
                lower=round(volume_low * proposed_price, 2), upper=round(volume_high * proposed_price, 2)
            ),
            volume_interval=ConfidenceInterval(lower=round(volume_low, 4), upper=round(volume_high, 4)),
            confidence_score=self._confidence(elasticity, mean_daily_units, std_daily_units, current_price, proposed_price),
            generated_at=now or datetime.now(),
        )

    def _confidence(
        self,
        elasticity: ElasticityResult,
        mean_daily: float,
        std_daily: float,
        current_price: float,
        proposed_price: float,
    ) -> float:
        if mean_daily > 0:
            cv = std_daily / mean_daily
            data_factor = 1.0 - min(0.5, cv / 2.0)
        else:
            data_factor = 0.5
        # Confidence decays the further the price moves from where demand was observed
        extrapolation = max(0.5, 1.0 - abs(np.log(proposed_price / current_price)))
        return round(float(np.clip(elasticity.confidence_score * data_factor * extrapolation, 0, 100)), 2)

    async def record_outcome(
        self, forecast_id: str, realized_revenue: float, now: datetime | None = None
    ) -> ForecastVariance | None:
        """
        Compare realized revenue to an issued forecast. Returns the appended
        variance record when the deviation exceeds the tolerance, else None.
        """
        forecast = await self.store.get_forecast(forecast_id)
        predicted = forecast.expected_revenue
        if realized_revenue > 0:
            variance_pct = abs(predicted - realized_revenue) / realized_revenue * 100.0
        else:
            variance_pct = math.inf if predicted > 0 else 0.0
        if variance_pct <= self.config.variance_tolerance_pct:
            return None

        variance = ForecastVariance(
            forecast_id=forecast_id,
            product_id=forecast.product_id,
            predicted_revenue=predicted,
            realized_revenue=realized_revenue,
            variance_pct=round(variance_pct, 2) if math.isfinite(variance_pct) else 1e9,
            recorded_at=now or datetime.now(),
        )
        await self.store.append_variance(variance)
        logger.warning(
            f"Forecast {forecast_id} for {forecast.product_id} off by {variance.variance_pct:.1f}% "
            f"(predicted {predicted:.2f}, realized {realized_revenue:.2f})"
        )
        if self.alerts is not None:
            await self.alerts.raise_alert(
                AlertType.FORECAST_VARIANCE,
                AlertSeverity.WARNING,
                f"Revenue forecast for {forecast.product_id} missed by {variance.variance_pct:.1f}%",
                product_ids=[forecast.product_id],
                recommended_actions=["Refresh elasticity estimate", "Review seasonal factors"],
                now=now,
            )
        return variance
