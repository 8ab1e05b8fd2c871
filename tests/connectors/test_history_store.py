from datetime import timedelta

import pytest

from connectors.history_store import InMemoryHistoryStore
from models.errors import NotFoundError
from models.inventory import StockoutPrediction
from models.observations import PricePoint, SalesRecord


@pytest.fixture
def store(product):
    store = InMemoryHistoryStore()
    store.add_product(product)
    return store


@pytest.mark.asyncio
async def test_get_product(store, product):
    """Test product lookup."""
    assert await store.get_product("SKU-1") == product
    with pytest.raises(NotFoundError):
        await store.get_product("SKU-404")


@pytest.mark.asyncio
async def test_price_points_kept_in_timestamp_order(store, now):
    """Test price points are kept sorted by timestamp."""
    for hours in (1, 5, 3):
        await store.append_price_point(
            PricePoint(
                product_id="SKU-1",
                competitor_id="a",
                channel_id="web",
                price=100.0 + hours,
                observed_at=now - timedelta(hours=hours),
            )
        )

    points = await store.price_points("SKU-1")
    assert [p.price for p in points] == [105.0, 103.0, 101.0]
    recent = await store.price_points("SKU-1", since=now - timedelta(hours=4))
    assert [p.price for p in recent] == [103.0, 101.0]


@pytest.mark.asyncio
async def test_sales_window_is_inclusive(store, now):
    """Test the sales window includes both ends."""
    sale = SalesRecord(product_id="SKU-1", channel_id="web", quantity=1, revenue=10.0, price=10.0, sold_at=now)
    await store.append_sale(sale)

    assert await store.sales("SKU-1", since=now, until=now) == [sale]
    assert await store.sales("SKU-1", until=now - timedelta(seconds=1)) == []


@pytest.mark.asyncio
async def test_products_in_category(store, product):
    """Test listing products by category."""
    assert await store.products_in_category("snacks") == [product]
    assert await store.products_in_category("drinks") == []


@pytest.mark.asyncio
async def test_unknown_forecast_raises(store):
    """Test reading a forecast that was never stored."""
    with pytest.raises(NotFoundError):
        await store.get_forecast("missing")


@pytest.mark.asyncio
async def test_latest_stockout_prediction_per_location(store, now):
    """Test the latest prediction is kept per location."""
    for location, hours in (("store-1", 30.0), ("store-1", 20.0), ("store-2", 50.0)):
        await store.append_stockout_prediction(
            StockoutPrediction(
                product_id="SKU-1",
                location_id=location,
                current_inventory=10,
                sales_velocity=12.0,
                hours_to_stockout=hours,
                confidence=90.0,
                predicted_at=now,
            )
        )

    latest = await store.latest_stockout_predictions("SKU-1")
    assert [(p.location_id, p.hours_to_stockout) for p in latest] == [("store-1", 20.0), ("store-2", 50.0)]
