"""
Walkthrough of the pricing decision core on a small synthetic catalog:
seed history, recommend prices, automate with a rule, then stream
inventory and competitor observations through the event processor.
"""

import asyncio
from datetime import datetime, timedelta

import numpy as np

from agents.pricing_core import build_pricing_core
from config.config import PricingCoreConfig
from models.enums import Combinator, Comparison, ConditionMetric, InventorySourceKind
from models.observations import InventoryObservation, PricePoint, ProductRecord, SalesRecord
from models.pricing import PricingConstraints
from models.rules import MatchCompetitorAction, PricingRule, RuleCondition
from utils.logger import get_logger

logger = get_logger("demos.pricing_core")

CATALOG = [
    ProductRecord(product_id="SKU-CHIPS", category_id="snacks", cost=1.40, list_price=2.49, target_inventory=400),
    ProductRecord(product_id="SKU-SODA", category_id="drinks", cost=0.55, list_price=1.29, target_inventory=600),
]


async def seed_history(core, product: ProductRecord, now: datetime, elasticity: float, rng) -> None:
    """Ninety days of daily sales drawn from a constant-elasticity demand curve."""
    base_qty = 40.0
    for day in range(90, 0, -1):
        price = round(product.list_price * rng.uniform(0.8, 1.1), 2)
        expected = base_qty * (price / product.list_price) ** elasticity
        quantity = int(max(0, rng.normal(expected, expected * 0.05)))
        await core.store.append_sale(
            SalesRecord(
                product_id=product.product_id,
                channel_id="web",
                quantity=quantity,
                revenue=round(quantity * price, 2),
                price=price,
                sold_at=now - timedelta(days=day),
            )
        )


async def main():
    core = build_pricing_core(PricingCoreConfig.from_env())
    rng = np.random.default_rng(7)
    now = datetime.now()

    for product, elasticity in zip(CATALOG, (-1.8, -0.9)):
        core.add_product(product, product.list_price)
        await seed_history(core, product, now, elasticity, rng)
        core.recommendations.set_constraints(
            product.product_id, PricingConstraints(min_margin_pct=15, max_discount_pct=25, max_price_change_pct=10)
        )

    for competitor, price in (("megamart", 2.29), ("quickshop", 2.59)):
        await core.processor.process(
            PricePoint(product_id="SKU-CHIPS", competitor_id=competitor, channel_id="web", price=price, observed_at=now),
            now=now,
        )

    print("\n--- Recommendations ---")
    for product in CATALOG:
        estimate = await core.elasticity.refresh(product.product_id, now=now)
        outcome = await core.recommendations.generate(product.product_id, now=now)
        print(f"{product.product_id}: elasticity {estimate.coefficient:.2f} (confidence {estimate.confidence_score:.0f})")
        for line in outcome.reasoning:
            print(f"    {line}")

    rule = PricingRule(
        name="Follow megamart on chips",
        owner_id="pricing-manager",
        product_ids=["SKU-CHIPS"],
        conditions=[
            RuleCondition(metric=ConditionMetric.PRICE_GAP_PCT, comparison=Comparison.GT, value=5),
            RuleCondition(metric=ConditionMetric.INVENTORY_RATIO, comparison=Comparison.GE, value=0.5),
        ],
        combinator=Combinator.AND,
        action=MatchCompetitorAction(target="lowest", offset_amount=-0.02),
        constraints=PricingConstraints(min_margin_pct=15, max_discount_pct=25, max_price_change_pct=10),
        priority=10,
    )
    await core.rules.create_rule(rule, actor_id="pricing-manager")

    print("\n--- Streaming observations ---")
    await core.processor.start()
    await core.processor.submit(
        InventoryObservation(
            product_id="SKU-CHIPS",
            location_id="store-1",
            quantity=380,
            confidence=92,
            source=InventorySourceKind.VISION,
            observed_at=datetime.now(),
        )
    )
    await core.processor.submit(
        InventoryObservation(
            product_id="SKU-SODA",
            location_id="store-1",
            quantity=25,
            confidence=88,
            source=InventorySourceKind.WEIGHT_SENSOR,
            observed_at=datetime.now(),
        )
    )
    await core.processor.drain()
    await core.processor.stop()
    logger.info(f"Processed {core.processor.processed_count} observations")

    for product in CATALOG:
        state = core.price_book.get(product.product_id)
        print(f"{product.product_id}: price {state.price:.2f} (version {state.version}, by {state.updated_by})")

    report = await core.processor.run_scheduled_cycle()
    print(f"\nScheduled cycle: refreshed={report.refreshed} evaluated={report.evaluated} deferred={report.deferred}")

    print("\n--- Alerts ---")
    for alert in core.alerts.alerts:
        print(f"[{alert.severity.value}] {alert.alert_type.value}: {alert.message}")

    print("\n--- Audit trail (SKU-CHIPS) ---")
    for entry in await core.rules.audit_trail("SKU-CHIPS", actor_id="auditor"):
        print(f"{entry.timestamp:%H:%M:%S} {entry.actor_id} {entry.action.value} {entry.before} -> {entry.after}")


if __name__ == "__main__":
    asyncio.run(main())
