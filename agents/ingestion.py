"""
Event-driven ingestion boundary of the pricing core.

Inbound observations (competitor prices, sales, inventory counts) are sharded
by product id onto a fixed set of worker queues, so events for one product
are handled in arrival order while different products proceed in parallel.
Each observation is stored, then triggers the downstream work it affects:

    PricePoint           -> competitive refresh (+ price gap alert) -> rule cycle
    SalesRecord          -> sales history
    InventoryObservation -> inventory position -> stockout prediction -> rule cycle

A maintenance loop runs the scheduled cycle (elasticity refresh, stockout
re-prediction, rule cycles, staleness checks).
"""

import asyncio
import logging
import zlib
from dataclasses import dataclass, field
from datetime import datetime

from agents.competitive import CompetitiveAnalytics
from agents.elasticity import ElasticityStore
from agents.rules import RulesEngine
from agents.stockout import StockoutPredictor
from config.config import IngestionConfig
from connectors.history_store import InMemoryHistoryStore
from models.audit import Alert
from models.enums import AlertSeverity, AlertType, ComponentType
from models.errors import ConcurrencyConflictError, NotFoundError, UpstreamTimeoutError
from models.events import EventTypes, PricingEvent
from models.inventory import InventoryPosition
from models.observations import InventoryObservation, PricePoint, SalesRecord
from utils.alerting import AlertManager
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)

Observation = PricePoint | SalesRecord | InventoryObservation


@dataclass
class CycleReport:
    """What one scheduled cycle did."""

    refreshed: list[str] = field(default_factory=list)
    predicted: list[tuple[str, str]] = field(default_factory=list)
    evaluated: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    stale_alerts: list[Alert] = field(default_factory=list)


def shard_for(product_id: str, shards: int) -> int:
    """Stable shard index for a product (independent of hash seeding)."""
    return zlib.crc32(product_id.encode("utf-8")) % shards


def _source_key(observation: Observation) -> tuple:
    if isinstance(observation, PricePoint):
        return (observation.product_id, "price", observation.competitor_id, observation.channel_id)
    if isinstance(observation, InventoryObservation):
        return (observation.product_id, "inventory", observation.location_id, observation.source.value)
    return (observation.product_id, "sale", observation.channel_id)


def _timestamp(observation: Observation) -> datetime:
    if isinstance(observation, SalesRecord):
        return observation.sold_at
    return observation.observed_at


class PricingEventProcessor:
    """Routes inbound observations to the components that consume them."""

    def __init__(
        self,
        store: InMemoryHistoryStore,
        elasticity: ElasticityStore,
        competitive: CompetitiveAnalytics,
        stockout: StockoutPredictor,
        rules: RulesEngine,
        alerts: AlertManager,
        event_bus: EventBus | None = None,
        config: IngestionConfig | None = None,
    ):
        self.store = store
        self.elasticity = elasticity
        self.competitive = competitive
        self.stockout = stockout
        self.rules = rules
        self.alerts = alerts
        self.event_bus = event_bus
        self.config = config or IngestionConfig()
        self._latest: dict[tuple, datetime] = {}
        self._queues: list[asyncio.Queue] = []
        self._workers: list[asyncio.Task] = []
        self._maintenance: asyncio.Task | None = None
        self.pending_retries: set[str] = set()
        self.processed_count = 0

    # --- Worker lifecycle ---

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self, schedule_interval: float | None = None) -> None:
        """Start the shard workers and, optionally, the maintenance loop."""
        if self.running:
            return
        self._queues = [asyncio.Queue(maxsize=self.config.queue_size) for _ in range(self.config.workers)]
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"pricing-shard-{i}") for i in range(self.config.workers)
        ]
        if schedule_interval is not None:
            self._maintenance = asyncio.create_task(self._run_maintenance_loop(schedule_interval))
        logger.info(f"Started {self.config.workers} ingestion workers")

    async def stop(self) -> None:
        """Drain queued observations, then stop all workers."""
        if not self.running:
            return
        for queue in self._queues:
            await queue.join()
        tasks = self._workers + ([self._maintenance] if self._maintenance else [])
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._queues = []
        self._maintenance = None
        logger.info("Stopped ingestion workers")

    async def submit(self, observation: Observation) -> None:
        """Enqueue an observation on its product's shard."""
        if not self.running:
            raise RuntimeError("PricingEventProcessor is not running; call start() first")
        await self._queues[shard_for(observation.product_id, len(self._queues))].put(observation)

    async def drain(self) -> None:
        """Wait until every queued observation has been handled."""
        for queue in self._queues:
            await queue.join()

    async def _worker(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            observation = await queue.get()
            try:
                await self.process(observation)
            except Exception as e:
                logger.error(
                    f"Shard {index} failed on {type(observation).__name__} for {observation.product_id}: {e}",
                    exc_info=True,
                )
            finally:
                queue.task_done()

    async def _run_maintenance_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_scheduled_cycle()
            except Exception as e:
                logger.error(f"Scheduled cycle failed: {e}", exc_info=True)

    # --- Dispatch ---

    async def process(self, observation: Observation, now: datetime | None = None) -> None:
        """Handle one observation inline (workers call this)."""
        self.processed_count += 1
        if isinstance(observation, PricePoint):
            await self.handle_price_point(observation, now=now)
        elif isinstance(observation, SalesRecord):
            await self.handle_sale(observation)
        elif isinstance(observation, InventoryObservation):
            await self.handle_inventory(observation, now=now)
        else:
            raise TypeError(f"Unsupported observation type {type(observation).__name__}")

    def _is_latest(self, observation: Observation) -> bool:
        """Record ``observation`` as latest for its source unless a newer one was applied."""
        key = _source_key(observation)
        ts = _timestamp(observation)
        previous = self._latest.get(key)
        if previous is not None and ts < previous:
            logger.info(f"Out-of-order observation for {key} at {ts} (latest {previous}); stored only")
            return False
        self._latest[key] = ts
        return True

    async def _publish(self, event_type: str, observation: Observation) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            PricingEvent(
                event_type=event_type,
                payload=observation.model_dump(mode="json"),
                source=ComponentType.INGESTION,
                product_id=observation.product_id,
            )
        )

    async def handle_price_point(self, point: PricePoint, now: datetime | None = None) -> None:
        await self.store.append_price_point(point)
        if not self._is_latest(point):
            return
        await self._publish(EventTypes.PRICE_OBSERVED, point)
        now = now or datetime.now()

        try:
            position = await self.competitive.position(point.product_id, now=now)
        except NotFoundError:
            logger.debug(f"Price observed for {point.product_id} with no own price yet")
            return
        if position.price_gap_flagged:
            await self.alerts.raise_alert(
                AlertType.PRICE_GAP,
                AlertSeverity.WARNING,
                f"{point.product_id} is {position.gap_pct:+.1f}% from the competitor median "
                f"{position.median_price:.2f}",
                product_ids=[point.product_id],
                competitor_ids=sorted(position.competitor_prices),
                recommended_actions=["Review price", "Generate a recommendation"],
                now=now,
            )
        await self._rule_cycle(point.product_id, triggered_at=point.observed_at, now=now)

    async def handle_sale(self, sale: SalesRecord) -> None:
        await self.store.append_sale(sale)
        self._is_latest(sale)
        await self._publish(EventTypes.SALE_RECORDED, sale)

    async def handle_inventory(self, observation: InventoryObservation, now: datetime | None = None) -> None:
        """
        Store an inventory observation and, if it is trustworthy and newest,
        make it the location's known level. Low-confidence observations
        leave the last known level in place.
        """
        await self.store.append_inventory_observation(observation)
        if observation.confidence < self.config.min_observation_confidence:
            logger.warning(
                f"Inventory gap for {observation.product_id}@{observation.location_id}: "
                f"{observation.source.value} observation confidence {observation.confidence:.0f} "
                f"< {self.config.min_observation_confidence:.0f}; keeping last known level"
            )
            return
        if not self._is_latest(observation):
            return
        current = await self.store.inventory_position(observation.product_id, observation.location_id)
        if current is not None and observation.observed_at < current.observed_at:
            logger.info(
                f"Inventory observation for {observation.product_id}@{observation.location_id} "
                f"older than known level from {current.source.value}; stored only"
            )
            return

        await self.store.set_inventory_position(
            InventoryPosition(
                product_id=observation.product_id,
                location_id=observation.location_id,
                quantity=observation.quantity,
                confidence=observation.confidence,
                source=observation.source,
                observed_at=observation.observed_at,
            )
        )
        await self._publish(EventTypes.INVENTORY_OBSERVED, observation)
        now = now or datetime.now()
        try:
            await self.stockout.predict(observation.product_id, observation.location_id, now=now)
        except UpstreamTimeoutError as e:
            logger.warning(f"Stockout prediction for {observation.product_id} deferred: {e}")
            self.pending_retries.add(observation.product_id)
            return
        await self._rule_cycle(observation.product_id, triggered_at=observation.observed_at, now=now)

    async def _rule_cycle(self, product_id: str, triggered_at: datetime | None, now: datetime) -> None:
        try:
            await self.rules.evaluate_cycle(product_id, triggered_at=triggered_at, now=now)
        except (UpstreamTimeoutError, ConcurrencyConflictError) as e:
            logger.warning(f"Rule cycle for {product_id} deferred to next scheduled cycle: {e}")
            self.pending_retries.add(product_id)

    # --- Scheduled work ---

    async def check_staleness(self, now: datetime | None = None) -> list[Alert]:
        """Alert on inventory levels and competitor prices that are too old."""
        now = now or datetime.now()
        raised = []
        for position in self.store.all_inventory_positions():
            age = now - position.observed_at
            if age > self.config.max_inventory_age:
                raised.append(
                    await self.alerts.raise_alert(
                        AlertType.STALE_OBSERVATION,
                        AlertSeverity.WARNING,
                        f"Inventory for {position.product_id}@{position.location_id} last observed "
                        f"{age.total_seconds() / 3600:.1f}h ago",
                        product_ids=[position.product_id],
                        location_id=position.location_id,
                        recommended_actions=["Schedule a shelf scan or manual count"],
                        now=now,
                    )
                )

        max_price_age = self.competitive.config.max_price_age
        for product_id in self.store.product_ids():
            latest: dict[str, datetime] = {}
            for point in await self.store.price_points(product_id):
                latest[point.competitor_id] = point.observed_at
            stale = sorted(cid for cid, ts in latest.items() if now - ts > max_price_age)
            if stale:
                raised.append(
                    await self.alerts.raise_alert(
                        AlertType.STALE_OBSERVATION,
                        AlertSeverity.INFO,
                        f"Competitor prices for {product_id} are stale: {', '.join(stale)}",
                        product_ids=[product_id],
                        competitor_ids=stale,
                        recommended_actions=["Check competitor price feed"],
                        now=now,
                    )
                )
        return raised

    async def run_scheduled_cycle(self, now: datetime | None = None) -> CycleReport:
        """
        Refresh due elasticities, re-predict stockouts, re-run rule cycles
        and check staleness. Products hitting an upstream timeout are skipped
        and picked up again on the next cycle.
        """
        now = now or datetime.now()
        report = CycleReport()
        retries, self.pending_retries = self.pending_retries, set()
        if retries:
            logger.info(f"Retrying deferred products: {sorted(retries)}")

        for product_id in await self.elasticity.refresh_due(now=now):
            try:
                await self.elasticity.refresh(product_id, now=now)
                report.refreshed.append(product_id)
            except UpstreamTimeoutError as e:
                logger.warning(f"Elasticity refresh for {product_id} deferred: {e}")
                report.deferred.append(product_id)

        for position in self.store.all_inventory_positions():
            if position.product_id in report.deferred:
                continue
            try:
                await self.stockout.predict(position.product_id, position.location_id, now=now)
                report.predicted.append((position.product_id, position.location_id))
            except UpstreamTimeoutError as e:
                logger.warning(f"Stockout prediction for {position.product_id} deferred: {e}")
                report.deferred.append(position.product_id)

        for product_id in self.rules.products_with_rules():
            if product_id in report.deferred:
                continue
            try:
                await self.rules.evaluate_cycle(product_id, now=now)
                report.evaluated.append(product_id)
            except (UpstreamTimeoutError, ConcurrencyConflictError) as e:
                logger.warning(f"Rule cycle for {product_id} deferred: {e}")
                report.deferred.append(product_id)

        report.stale_alerts = await self.check_staleness(now=now)
        self.pending_retries.update(report.deferred)
        logger.info(
            f"Scheduled cycle: refreshed={len(report.refreshed)}, predicted={len(report.predicted)}, "
            f"evaluated={len(report.evaluated)}, deferred={sorted(set(report.deferred))}"
        )
        return report
