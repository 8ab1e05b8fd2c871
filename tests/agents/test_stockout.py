from datetime import timedelta
from unittest.mock import AsyncMock

import pandas as pd
import pytest

from agents.stockout import StockoutPredictor, classify_trend, classify_urgency, smoothed_velocity
from config.config import StockoutConfig
from connectors.history_store import InMemoryHistoryStore
from models.enums import AlertSeverity, AlertType, ReorderUrgency, SalesTrend
from models.errors import NotFoundError
from models.events import EventTypes
from utils.alerting import AlertManager
from utils.event_bus import EventBus


@pytest.fixture
def store(product):
    store = InMemoryHistoryStore()
    store.add_product(product)
    return store


@pytest.fixture
def alerts():
    return AlertManager()


@pytest.fixture
def predictor(store, alerts):
    return StockoutPredictor(store, StockoutConfig(), alerts)


@pytest.mark.parametrize(
    "hours,expected",
    [
        (2.0, ReorderUrgency.CRITICAL),
        (12.0, ReorderUrgency.HIGH),
        (23.9, ReorderUrgency.HIGH),
        (30.0, ReorderUrgency.MEDIUM),
        (40.0, ReorderUrgency.LOW),
    ],
)
def test_classify_urgency(hours, expected):
    """Test urgency thresholds."""
    assert classify_urgency(hours, StockoutConfig()) == expected


def test_classify_trend_compares_last_two_weeks():
    """Test trend compares the last week with the one before."""
    rising = pd.Series([10.0] * 7 + [12.0] * 7)
    falling = pd.Series([10.0] * 7 + [8.0] * 7)
    flat = pd.Series([10.0] * 7 + [10.5] * 7)
    assert classify_trend(rising, 10.0) == SalesTrend.INCREASING
    assert classify_trend(falling, 10.0) == SalesTrend.DECREASING
    assert classify_trend(flat, 10.0) == SalesTrend.STABLE


def test_smoothed_velocity_weights_recent_days():
    """Test recent days weigh more in the smoothed velocity."""
    units = pd.Series([0.0] * 20 + [20.0] * 8)
    assert 10.0 < smoothed_velocity(units, alpha=0.3) < 20.0


@pytest.mark.asyncio
async def test_predict_requires_known_inventory(predictor, now):
    """Test prediction without an inventory level."""
    with pytest.raises(NotFoundError):
        await predictor.predict("SKU-1", "store-1", now=now)


@pytest.mark.asyncio
async def test_imminent_stockout_produces_reorder_and_alert(store, predictor, alerts, now, seed_sales, set_inventory):
    """Test an imminent stockout yields a reorder and an alert."""
    await seed_sales(store, "SKU-1", now, 40, lambda d: 100.0, lambda d: 12)
    await set_inventory(store, "SKU-1", 10, now, confidence=95.0)

    prediction = await predictor.predict("SKU-1", "store-1", now=now)

    assert prediction.sales_velocity == pytest.approx(12.0)
    assert prediction.hours_to_stockout == pytest.approx(20.0)
    assert prediction.predicted_stockout_at == now + timedelta(hours=20)
    assert prediction.confidence > 80
    assert prediction.trend == SalesTrend.STABLE

    reorders = await store.reorders("SKU-1")
    assert len(reorders) == 1
    assert reorders[0].urgency == ReorderUrgency.HIGH
    assert reorders[0].quantity == 36

    [alert] = alerts.for_product("SKU-1", AlertType.STOCKOUT_RISK)
    assert alert.severity == AlertSeverity.HIGH
    assert alert.location_id == "store-1"
    assert alert.notify_by == now + timedelta(minutes=15)


@pytest.mark.asyncio
async def test_low_confidence_prediction_does_not_alert(store, predictor, alerts, now, seed_sales, set_inventory):
    """Test low-confidence predictions stay quiet."""
    await seed_sales(store, "SKU-1", now, 40, lambda d: 100.0, lambda d: 12)
    await set_inventory(store, "SKU-1", 10, now, confidence=10.0)

    prediction = await predictor.predict("SKU-1", "store-1", now=now)

    assert prediction.confidence <= 80
    assert len(await store.reorders("SKU-1")) == 1
    assert alerts.alerts == []


@pytest.mark.asyncio
async def test_no_sales_means_no_stockout(store, predictor, now, set_inventory):
    """Test zero velocity gives no stockout time."""
    await set_inventory(store, "SKU-1", 10, now)

    prediction = await predictor.predict("SKU-1", "store-1", now=now)

    assert prediction.sales_velocity == 0
    assert prediction.hours_to_stockout is None
    assert prediction.days_to_stockout == float("inf")
    assert await store.reorders("SKU-1") == []


@pytest.mark.asyncio
async def test_promotion_uplift_shortens_horizon(product, now, seed_sales, set_inventory):
    """Test a promotion uplift brings the stockout closer."""
    store = InMemoryHistoryStore()
    store.add_product(product.model_copy(update={"promotion_uplift": 2.0}))
    await seed_sales(store, "SKU-1", now, 40, lambda d: 100.0, lambda d: 12)
    await set_inventory(store, "SKU-1", 10, now)

    prediction = await StockoutPredictor(store).predict("SKU-1", "store-1", now=now)

    assert prediction.hours_to_stockout == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_healthy_inventory_has_no_reorder(store, predictor, now, seed_sales, set_inventory):
    """Test healthy stock produces no reorder."""
    await seed_sales(store, "SKU-1", now, 40, lambda d: 100.0, lambda d: 12)
    await set_inventory(store, "SKU-1", 240, now)

    prediction = await predictor.predict("SKU-1", "store-1", now=now)

    assert prediction.hours_to_stockout == pytest.approx(480.0)
    assert await store.reorders("SKU-1") == []
    assert await predictor.active_risk("SKU-1", now=now) is None


@pytest.mark.asyncio
async def test_reorder_published_on_bus(store, now, seed_sales, set_inventory):
    """Test reorder recommendations are published."""
    bus = EventBus()
    handler = AsyncMock()
    bus.subscribe(EventTypes.REORDER_RECOMMENDED, handler)
    predictor = StockoutPredictor(store, event_bus=bus)
    await seed_sales(store, "SKU-1", now, 40, lambda d: 100.0, lambda d: 12)
    await set_inventory(store, "SKU-1", 10, now)

    await predictor.predict("SKU-1", "store-1", now=now)

    handler.assert_called_once()
    assert handler.call_args.args[0].payload["quantity"] == 36


@pytest.mark.asyncio
async def test_active_risk_picks_most_urgent_location(store, predictor, now, seed_sales, set_inventory):
    """Test the most urgent location is reported for a product."""
    await seed_sales(store, "SKU-1", now, 40, lambda d: 100.0, lambda d: 12)
    await set_inventory(store, "SKU-1", 10, now, location_id="store-1")
    await set_inventory(store, "SKU-1", 5, now, location_id="store-2")
    await predictor.predict("SKU-1", "store-1", now=now)
    await predictor.predict("SKU-1", "store-2", now=now)

    risk = await predictor.active_risk("SKU-1", now=now)

    assert risk.location_id == "store-2"
    assert risk.hours_to_stockout == pytest.approx(10.0)
    assert await predictor.active_risk("SKU-1", now=now + timedelta(days=2)) is None
