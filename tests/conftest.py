import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure project root is on sys.path to allow `import agents`, `import utils`, etc.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from agents.pricing_core import build_pricing_core  # noqa: E402
from config.config import PricingCoreConfig  # noqa: E402
from models.enums import InventorySourceKind  # noqa: E402
from models.inventory import InventoryPosition  # noqa: E402
from models.observations import PricePoint, ProductRecord, SalesRecord  # noqa: E402

FIXED_NOW = datetime(2026, 3, 16, 12, 0)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def core():
    """Fully wired in-memory pricing core with default configuration."""
    return build_pricing_core(PricingCoreConfig())


@pytest.fixture
def product() -> ProductRecord:
    return ProductRecord(
        product_id="SKU-1",
        category_id="snacks",
        cost=70.0,
        list_price=100.0,
        target_inventory=100.0,
        lead_time_days=3.0,
    )


async def _seed_sales(store, product_id, now, days, price_fn, quantity_fn, channel_id="web"):
    """One sale per day for the ``days`` complete days before ``now``."""
    for d in range(days, 0, -1):
        sold_at = (now - timedelta(days=d)).replace(hour=10, minute=0)
        price = price_fn(d)
        quantity = quantity_fn(d)
        await store.append_sale(
            SalesRecord(
                product_id=product_id,
                channel_id=channel_id,
                quantity=quantity,
                revenue=round(price * quantity, 2),
                price=price,
                sold_at=sold_at,
            )
        )


async def _seed_elastic_sales(store, product_id, now, days=60, elasticity=-1.5, base_price=100.0, base_qty=50.0):
    """Sales whose daily units follow a constant elasticity around ``base_price``."""

    def price_fn(d):
        return base_price * (0.8 + 0.04 * (d % 10))

    def quantity_fn(d):
        return int(round(base_qty * (price_fn(d) / base_price) ** elasticity))

    await _seed_sales(store, product_id, now, days, price_fn, quantity_fn)


async def _seed_competitors(store, product_id, prices, now, channel_id="web"):
    for competitor_id, price in prices.items():
        await store.append_price_point(
            PricePoint(
                product_id=product_id,
                competitor_id=competitor_id,
                channel_id=channel_id,
                price=price,
                observed_at=now - timedelta(hours=1),
            )
        )


async def _set_inventory(store, product_id, quantity, now, location_id="store-1", confidence=95.0):
    await store.set_inventory_position(
        InventoryPosition(
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            confidence=confidence,
            source=InventorySourceKind.VISION,
            observed_at=now - timedelta(minutes=30),
        )
    )


@pytest.fixture
def seed_sales():
    return _seed_sales


@pytest.fixture
def seed_elastic_sales():
    return _seed_elastic_sales


@pytest.fixture
def seed_competitors():
    return _seed_competitors


@pytest.fixture
def set_inventory():
    return _set_inventory
