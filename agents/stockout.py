"""
Stockout predictor: time-to-stockout per product/location from the last known
inventory level and a trend-smoothed, seasonally adjusted sales velocity.
Generates reorder recommendations and stockout alerts when the horizon
drops under the alert threshold.
"""

import logging
import math
from datetime import datetime, timedelta

import numpy as np
import pandas as pd

from agents.forecasting import daily_units, trailing_days
from config.config import StockoutConfig
from connectors.history_store import InMemoryHistoryStore
from models.enums import AlertSeverity, AlertType, ComponentType, ReorderUrgency, SalesTrend
from models.errors import NotFoundError
from models.events import EventTypes, PricingEvent
from models.inventory import ReorderRecommendation, StockoutPrediction
from utils.alerting import AlertManager
from utils.concurrency import call_with_timeout
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


def smoothed_velocity(units: pd.Series, alpha: float) -> float:
    """Exponentially smoothed units/day, weighted toward the most recent days."""
    if units.empty:
        return 0.0
    return float(units.ewm(alpha=alpha, adjust=False).mean().iloc[-1])


def classify_trend(units: pd.Series, band_pct: float) -> SalesTrend:
    """Compare the last 7 days with the 7 before them."""
    if len(units) < 14:
        return SalesTrend.STABLE
    recent = float(units.iloc[-7:].sum())
    previous = float(units.iloc[-14:-7].sum())
    if previous == 0:
        return SalesTrend.INCREASING if recent > 0 else SalesTrend.STABLE
    change = (recent - previous) / previous * 100.0
    if change > band_pct:
        return SalesTrend.INCREASING
    if change < -band_pct:
        return SalesTrend.DECREASING
    return SalesTrend.STABLE


def classify_urgency(hours_to_stockout: float, config: StockoutConfig) -> ReorderUrgency:
    """Monotone in time-to-stockout: shorter horizon, higher urgency."""
    if hours_to_stockout < config.critical_hours:
        return ReorderUrgency.CRITICAL
    if hours_to_stockout < config.high_hours:
        return ReorderUrgency.HIGH
    if hours_to_stockout < config.medium_hours:
        return ReorderUrgency.MEDIUM
    return ReorderUrgency.LOW


_URGENCY_SEVERITY = {
    ReorderUrgency.CRITICAL: AlertSeverity.CRITICAL,
    ReorderUrgency.HIGH: AlertSeverity.HIGH,
    ReorderUrgency.MEDIUM: AlertSeverity.WARNING,
    ReorderUrgency.LOW: AlertSeverity.INFO,
}


class StockoutPredictor:
    def __init__(
        self,
        store: InMemoryHistoryStore,
        config: StockoutConfig | None = None,
        alerts: AlertManager | None = None,
        event_bus: EventBus | None = None,
        seasonal_factors: dict[int, float] | None = None,
    ):
        self.store = store
        self.config = config or StockoutConfig()
        self.alerts = alerts
        self.event_bus = event_bus
        self.seasonal_factors = seasonal_factors or {}

    async def predict(self, product_id: str, location_id: str, now: datetime | None = None) -> StockoutPrediction:
        """
        Predict time-to-stockout for a product at a location.

        Raises:
            NotFoundError: unknown product, or no inventory level has ever
                been accepted for this location.
        """
        now = now or datetime.now()
        timeout = self.config.store_timeout_seconds
        product = await call_with_timeout(self.store.get_product(product_id), timeout, "get_product")
        position = await call_with_timeout(
            self.store.inventory_position(product_id, location_id), timeout, "inventory_position"
        )
        if position is None:
            raise NotFoundError(f"No known inventory for {product_id} at {location_id}")

        start, end = trailing_days(now, self.config.velocity_window_days)
        sales = await call_with_timeout(self.store.sales(product_id, since=start, until=end), timeout, "sales_history")
        units = daily_units(sales, start, end)

        adjustment = self.seasonal_factors.get(now.month, 1.0) * product.promotion_uplift
        velocity = round(smoothed_velocity(units, self.config.smoothing_alpha) * adjustment, 4)
        trend = classify_trend(units, self.config.trend_band_pct)

        hours = None
        stockout_at = None
        if velocity > 0:
            hours = max(0.0, position.quantity / velocity * 24.0)
            stockout_at = now + timedelta(hours=hours)

        prediction = StockoutPrediction(
            product_id=product_id,
            location_id=location_id,
            current_inventory=position.quantity,
            sales_velocity=velocity,
            hours_to_stockout=round(hours, 2) if hours is not None else None,
            predicted_stockout_at=stockout_at,
            confidence=self._confidence(units, sales, start, position.confidence),
            trend=trend,
            predicted_at=now,
        )
        await self.store.append_stockout_prediction(prediction)
        logger.info(
            f"Stockout {product_id}@{location_id}: velocity={velocity:.2f}/day, "
            f"hours={prediction.hours_to_stockout}, conf={prediction.confidence:.0f}, trend={trend.value}"
        )

        if prediction.is_below(self.config.alert_threshold_hours):
            reorder = self._reorder(prediction, units, product.lead_time_days, now)
            await self.store.append_reorder(reorder)
            if self.event_bus is not None:
                await self.event_bus.publish(
                    PricingEvent(
                        event_type=EventTypes.REORDER_RECOMMENDED,
                        payload=reorder.model_dump(mode="json"),
                        source=ComponentType.STOCKOUT,
                        product_id=product_id,
                    )
                )
            if prediction.confidence > self.config.notify_confidence and self.alerts is not None:
                await self.alerts.raise_alert(
                    AlertType.STOCKOUT_RISK,
                    _URGENCY_SEVERITY[reorder.urgency],
                    f"{product_id} at {location_id} runs out in {prediction.hours_to_stockout:.1f}h "
                    f"(confidence {prediction.confidence:.0f})",
                    product_ids=[product_id],
                    location_id=location_id,
                    recommended_actions=[f"Reorder {reorder.quantity} units ({reorder.urgency.value})"],
                    notify_by=now + self.config.notify_within,
                    now=now,
                )
        return prediction

    def _reorder(
        self, prediction: StockoutPrediction, units: pd.Series, lead_time_days: float, now: datetime
    ) -> ReorderRecommendation:
        std_daily = float(units.std(ddof=1)) if len(units) > 1 else 0.0
        safety_stock = self.config.safety_z * std_daily * math.sqrt(lead_time_days)
        lead_time_demand = prediction.sales_velocity * lead_time_days
        quantity = max(1, math.ceil(lead_time_demand + safety_stock))
        return ReorderRecommendation(
            product_id=prediction.product_id,
            location_id=prediction.location_id,
            quantity=quantity,
            urgency=classify_urgency(prediction.hours_to_stockout, self.config),
            lead_time_days=lead_time_days,
            safety_stock=round(safety_stock, 2),
            hours_to_stockout=prediction.hours_to_stockout,
            created_at=now,
        )

    def _confidence(self, units: pd.Series, sales: list, start: datetime, observation_confidence: float) -> float:
        """Data coverage x demand stability x inventory observation quality."""
        if not sales or units.empty:
            return round(0.25 * observation_confidence, 2)
        first_day = min(s.sold_at for s in sales).date()
        covered_days = (units.index[-1].date() - max(first_day, start.date())).days + 1
        coverage = min(1.0, covered_days / self.config.velocity_window_days)
        mean = float(units.mean())
        cv = float(units.std(ddof=1)) / mean if mean > 0 and len(units) > 1 else 1.0
        stability = 1.0 - min(0.6, cv / 2.0)
        observation = 0.5 + 0.5 * observation_confidence / 100.0
        return round(float(np.clip(100.0 * coverage * stability * observation, 0, 100)), 2)

    async def active_risk(self, product_id: str, now: datetime | None = None) -> StockoutPrediction | None:
        """Most urgent still-valid prediction under the alert threshold, if any."""
        now = now or datetime.now()
        at_risk = [
            p
            for p in await self.store.latest_stockout_predictions(product_id)
            if p.is_below(self.config.alert_threshold_hours) and now - p.predicted_at <= self.config.prediction_ttl
        ]
        return min(at_risk, key=lambda p: p.hours_to_stockout) if at_risk else None
