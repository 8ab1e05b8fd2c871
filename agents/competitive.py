"""
Competitive analytics: rank, percentile and distribution of current
competitor prices around the user's own price.
"""

import logging
from datetime import datetime

import numpy as np

from config.config import CompetitiveConfig
from connectors.history_store import InMemoryHistoryStore
from connectors.price_book import PriceBook
from models.observations import PricePoint
from models.pricing import CompetitivePosition

logger = logging.getLogger(__name__)


def compute_position(
    product_id: str,
    user_price: float,
    competitor_prices: dict[str, float],
    gap_threshold_pct: float = 20.0,
    now: datetime | None = None,
) -> CompetitivePosition:
    """
    Rank the user's price among competitor prices (ascending, 1-based).
    Ties with competitors rank the user first among the equal prices.
    Quartiles use linear interpolation between order statistics, so the
    median of an even-sized set is the mean of the two middle values.
    """
    prices = list(competitor_prices.values())
    count = len(prices) + 1
    rank = 1 + sum(1 for p in prices if p < user_price)
    position = CompetitivePosition(
        product_id=product_id,
        user_price=user_price,
        rank=rank,
        count=count,
        percentile=rank / count,
        competitor_prices=dict(competitor_prices),
        computed_at=now or datetime.now(),
    )
    if not prices:
        return position

    values = np.asarray(prices, dtype=float)
    q1, median, q3 = (float(v) for v in np.percentile(values, [25, 50, 75]))
    gap_pct = (user_price - median) / median * 100.0
    position.min_price = float(values.min())
    position.max_price = float(values.max())
    position.median_price = median
    position.q1_price = q1
    position.q3_price = q3
    position.lowest_competitor_id = min(competitor_prices, key=lambda cid: (competitor_prices[cid], cid))
    position.gap_pct = round(gap_pct, 4)
    position.price_gap_flagged = abs(gap_pct) > gap_threshold_pct
    return position


def current_competitor_prices(
    points: list[PricePoint], now: datetime, max_age, currency: str | None = None
) -> dict[str, float]:
    """
    Latest available price per competitor (any channel), ignoring stale
    observations and other currencies. ``points`` must be timestamp-ordered.
    """
    latest: dict[str, PricePoint] = {}
    for point in points:
        if now - point.observed_at > max_age:
            continue
        if currency is not None and point.currency != currency:
            continue
        latest[point.competitor_id] = point
    return {cid: p.price for cid, p in sorted(latest.items()) if p.available}


class CompetitiveAnalytics:
    def __init__(
        self,
        store: InMemoryHistoryStore,
        price_book: PriceBook,
        config: CompetitiveConfig | None = None,
    ):
        self.store = store
        self.price_book = price_book
        self.config = config or CompetitiveConfig()

    async def competitor_prices(self, product_id: str, now: datetime | None = None) -> dict[str, float]:
        now = now or datetime.now()
        product = await self.store.get_product(product_id)
        points = await self.store.price_points(product_id, since=now - self.config.max_price_age)
        return current_competitor_prices(points, now, self.config.max_price_age, product.currency)

    async def position(self, product_id: str, now: datetime | None = None) -> CompetitivePosition:
        now = now or datetime.now()
        prices = await self.competitor_prices(product_id, now=now)
        user_price = self.price_book.current_price(product_id)
        result = compute_position(product_id, user_price, prices, self.config.gap_threshold_pct, now=now)
        logger.debug(
            f"Position {product_id}: rank {result.rank}/{result.count}, gap={result.gap_pct}, "
            f"flagged={result.price_gap_flagged}"
        )
        return result
