"""
Wires the pricing core components around one history store, price book,
event bus, audit log and alert manager.
"""

import logging
from dataclasses import dataclass

from agents.competitive import CompetitiveAnalytics
from agents.elasticity import ElasticityStore
from agents.forecasting import RevenueForecaster
from agents.ingestion import PricingEventProcessor
from agents.recommendation import RecommendationEngine
from agents.rules import RulesEngine
from agents.stockout import StockoutPredictor
from config.config import PricingCoreConfig
from connectors.history_store import InMemoryHistoryStore
from connectors.price_book import PriceBook
from models.observations import ProductRecord
from utils.alerting import AlertManager
from utils.audit_log import AuditLog
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class PricingCore:
    config: PricingCoreConfig
    store: InMemoryHistoryStore
    price_book: PriceBook
    event_bus: EventBus
    audit_log: AuditLog
    alerts: AlertManager
    elasticity: ElasticityStore
    forecaster: RevenueForecaster
    stockout: StockoutPredictor
    competitive: CompetitiveAnalytics
    recommendations: RecommendationEngine
    rules: RulesEngine
    processor: PricingEventProcessor

    def add_product(self, product: ProductRecord, price: float) -> None:
        """Register a catalog entry and seed its current price."""
        self.store.add_product(product)
        self.price_book.set_initial(product.product_id, price)


def build_pricing_core(
    config: PricingCoreConfig | None = None,
    store: InMemoryHistoryStore | None = None,
) -> PricingCore:
    config = config or PricingCoreConfig()
    store = store or InMemoryHistoryStore()
    price_book = PriceBook()
    event_bus = EventBus(handler_timeout=config.ingestion.handler_timeout_seconds)
    audit_log = AuditLog(event_bus)
    alerts = AlertManager(event_bus, config.alerts)

    elasticity = ElasticityStore(store, config.elasticity, event_bus)
    forecaster = RevenueForecaster(store, elasticity, price_book, config.forecast, alerts)
    stockout = StockoutPredictor(
        store, config.stockout, alerts, event_bus, seasonal_factors=config.forecast.seasonal_factors
    )
    competitive = CompetitiveAnalytics(store, price_book, config.competitive)
    recommendations = RecommendationEngine(
        store,
        price_book,
        elasticity,
        forecaster,
        competitive,
        stockout,
        config=config.recommendation,
        alerts=alerts,
        event_bus=event_bus,
    )
    rules = RulesEngine(
        store,
        price_book,
        competitive,
        recommendations,
        audit_log,
        alerts,
        config=config.rules,
        stockout_config=config.stockout,
        event_bus=event_bus,
    )
    processor = PricingEventProcessor(
        store, elasticity, competitive, stockout, rules, alerts, event_bus=event_bus, config=config.ingestion
    )
    logger.debug("Pricing core assembled")
    return PricingCore(
        config=config,
        store=store,
        price_book=price_book,
        event_bus=event_bus,
        audit_log=audit_log,
        alerts=alerts,
        elasticity=elasticity,
        forecaster=forecaster,
        stockout=stockout,
        competitive=competitive,
        recommendations=recommendations,
        rules=rules,
        processor=processor,
    )
