from datetime import timedelta
from unittest.mock import AsyncMock

import pandas as pd
import pytest

from agents.elasticity import ElasticityStore, daily_price_quantity, fit_log_log
from config.config import ElasticityConfig
from connectors.history_store import InMemoryHistoryStore
from models.errors import InsufficientDataError, NotFoundError
from models.events import EventTypes
from models.observations import ProductRecord, SalesRecord
from utils.event_bus import EventBus


@pytest.fixture
def store(product):
    store = InMemoryHistoryStore()
    store.add_product(product)
    store.add_product(ProductRecord(product_id="SKU-2", category_id="snacks", cost=20.0, list_price=40.0))
    return store


@pytest.fixture
def elasticity(store):
    return ElasticityStore(store, ElasticityConfig())


def test_daily_price_quantity_weights_price_by_units(now):
    """Test daily aggregation weights price by units sold."""
    sales = [
        SalesRecord(product_id="SKU-1", channel_id="web", quantity=1, revenue=10.0, price=10.0, sold_at=now),
        SalesRecord(product_id="SKU-1", channel_id="pos", quantity=3, revenue=36.0, price=12.0, sold_at=now),
    ]
    daily = daily_price_quantity(sales)
    assert len(daily) == 1
    assert daily["quantity"].iloc[0] == 4
    assert daily["price"].iloc[0] == pytest.approx(11.5)


def test_fit_log_log_requires_minimum_points():
    """Test fitting raises when there are too few daily points."""
    daily = pd.DataFrame({"price": [10.0, 11.0], "quantity": [5, 4]})
    with pytest.raises(InsufficientDataError, match="need 30"):
        fit_log_log(daily, min_data_points=30)


def test_elasticity_config_rejects_short_lookback():
    """Test the lookback window cannot be shorter than 90 days."""
    with pytest.raises(ValueError, match="90 days"):
        ElasticityConfig(lookback_days=30)


@pytest.mark.asyncio
async def test_get_before_refresh_raises_not_found(elasticity):
    """Test reading an elasticity that was never computed."""
    with pytest.raises(NotFoundError):
        await elasticity.get("SKU-1")


@pytest.mark.asyncio
async def test_refresh_fits_log_log_elasticity(store, elasticity, now, seed_elastic_sales):
    """Test refresh recovers the elasticity of synthetic constant-elasticity sales."""
    await seed_elastic_sales(store, "SKU-1", now, days=60, elasticity=-1.5)

    result = await elasticity.refresh("SKU-1", now=now)

    assert not result.fallback_used
    assert result.coefficient == pytest.approx(-1.5, abs=0.1)
    assert result.interval.lower <= result.coefficient <= result.interval.upper
    assert result.data_points == 60
    assert result.history_days == 60
    assert (await elasticity.get("SKU-1")) == result


@pytest.mark.asyncio
async def test_long_history_uses_at_least_90_days(store, elasticity, now, seed_elastic_sales):
    """A product with four months of sales is fit on the whole quarter, not a recent slice."""
    await seed_elastic_sales(store, "SKU-1", now, days=120, elasticity=-1.5)

    result = await elasticity.refresh("SKU-1", now=now)

    assert not result.fallback_used
    assert result.history_days >= 90
    assert result.data_points == 120


@pytest.mark.asyncio
async def test_sparse_history_falls_back_to_global_default(store, elasticity, now, seed_elastic_sales):
    """Test sparse history falls back to the global default with low confidence."""
    await seed_elastic_sales(store, "SKU-1", now, days=10)

    result = await elasticity.refresh("SKU-1", now=now)

    assert result.fallback_used
    assert result.fallback_source == "seed:global"
    assert result.coefficient == -1.5
    assert result.confidence_score < 50
    assert result.data_points == 10


@pytest.mark.asyncio
async def test_fallback_prefers_seeded_category_default(store, elasticity, now):
    """Test a seeded category default wins over the global default."""
    elasticity.seed_category("snacks", -2.2)

    result = await elasticity.refresh("SKU-1", now=now)

    assert result.fallback_source == "seed:snacks"
    assert result.coefficient == -2.2
    assert result.confidence_score < 50


@pytest.mark.asyncio
async def test_fallback_uses_category_peers_with_enough_data(store, elasticity, now, seed_elastic_sales):
    """Test fallback averages fitted peers from the same category."""
    await seed_elastic_sales(store, "SKU-2", now, days=60, elasticity=-1.8, base_price=40.0)
    peer = await elasticity.refresh("SKU-2", now=now)

    result = await elasticity.refresh("SKU-1", now=now)

    assert result.fallback_used
    assert result.fallback_source == "category:snacks"
    assert result.coefficient == pytest.approx(peer.coefficient, abs=1e-4)
    assert result.confidence_score == pytest.approx(min(45.0, peer.confidence_score * 0.6), abs=0.01)


@pytest.mark.asyncio
async def test_fallback_peers_are_not_reused_as_sources(store, elasticity, now, seed_elastic_sales):
    """Test fallback estimates are never used as sources for other products."""
    # SKU-2 itself only has a fallback estimate, so SKU-1 must not average it
    await seed_elastic_sales(store, "SKU-2", now, days=5, base_price=40.0)
    await elasticity.refresh("SKU-2", now=now)

    result = await elasticity.refresh("SKU-1", now=now)

    assert result.fallback_source == "seed:global"


@pytest.mark.asyncio
async def test_no_price_variation_falls_back(store, elasticity, now, seed_sales):
    """Test a flat price history cannot be fit."""
    await seed_sales(store, "SKU-1", now, 45, lambda d: 100.0, lambda d: 10 + d % 3)

    result = await elasticity.refresh("SKU-1", now=now)

    assert result.fallback_used


@pytest.mark.asyncio
async def test_positive_slope_falls_back(store, elasticity, now, seed_sales):
    """Test a positive fitted slope is replaced by a fallback."""
    await seed_sales(store, "SKU-1", now, 45, lambda d: 80.0 + 4 * (d % 10), lambda d: int(40 + 4 * (d % 10)))

    result = await elasticity.refresh("SKU-1", now=now)

    assert result.fallback_used
    assert result.coefficient < 0


@pytest.mark.asyncio
async def test_refresh_due_after_interval(store, elasticity, now):
    """Test which products are due for a refresh."""
    assert set(await elasticity.refresh_due(now=now)) == {"SKU-1", "SKU-2"}

    await elasticity.refresh("SKU-1", now=now)

    assert await elasticity.refresh_due(now=now + timedelta(days=1)) == ["SKU-2"]
    assert "SKU-1" in await elasticity.refresh_due(now=now + timedelta(days=7))


@pytest.mark.asyncio
async def test_refresh_publishes_event(store, now):
    """Test refresh publishes an elasticity event."""
    bus = EventBus()
    handler = AsyncMock()
    bus.subscribe(EventTypes.ELASTICITY_REFRESHED, handler)
    elasticity = ElasticityStore(store, ElasticityConfig(), bus)

    await elasticity.refresh("SKU-1", now=now)

    handler.assert_called_once()
    event = handler.call_args.args[0]
    assert event.product_id == "SKU-1"
    assert event.payload["fallback_used"] is True


def test_seed_category_rejects_non_negative(elasticity):
    """Test category seeds must be negative."""
    with pytest.raises(ValueError):
        elasticity.seed_category("snacks", 0.5)
