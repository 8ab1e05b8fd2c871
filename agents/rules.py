"""
Rules engine: evaluates user-defined automation rules against live market and
inventory state, validates the resulting price against the rule's
constraints, and applies it.

Per rule and cycle:
    idle -> conditions_evaluated -> {triggered | not_triggered}
    triggered -> constraint_checked -> {executed | rejected}
Rules for a product run in descending priority. Once one rule mutates the
price, the remaining rules for that product are skipped for the cycle.

Conditions and candidate prices are computed from a snapshot taken outside
any lock. The per-product lock is held only while the snapshot version is
re-checked and the constraint-check-and-mutate step runs; if another writer
moved the price in between, the cycle is re-planned from a fresh snapshot.
"""

import asyncio
import logging
import math
from datetime import datetime

from agents.competitive import CompetitiveAnalytics
from agents.constraints import check_price, discount_pct, margin_pct, change_pct
from agents.recommendation import RecommendationEngine
from config.config import RulesEngineConfig, StockoutConfig
from connectors.history_store import InMemoryHistoryStore
from connectors.price_book import PriceBook
from models.audit import AuditLogEntry
from models.enums import (
    ActorKind,
    AlertSeverity,
    AlertType,
    AuditAction,
    Combinator,
    Comparison,
    ComponentType,
    ConditionMetric,
    RuleEvaluationState,
)
from models.errors import (
    ConcurrencyConflictError,
    ContradictoryConditionsError,
    NotFoundError,
    RuleValidationError,
    UnreachableConstraintError,
)
from models.events import EventTypes, PricingEvent
from models.pricing import PricingRecommendation
from models.rules import (
    ApplyDiscountAction,
    MarketSnapshot,
    MatchCompetitorAction,
    PricingRule,
    RuleCondition,
    RuleEvaluation,
    SetPriceAction,
    UseRecommendationAction,
)
from models.state import ProductPriceState
from utils.alerting import AlertManager
from utils.audit_log import AuditLog
from utils.concurrency import KeyedLock
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)

MAX_PLAN_ATTEMPTS = 3

# Lowest value each metric can take: (value, inclusive)
_METRIC_DOMAIN = {
    ConditionMetric.OWN_PRICE: (0.0, False),
    ConditionMetric.LOWEST_COMPETITOR_PRICE: (0.0, False),
    ConditionMetric.AVERAGE_COMPETITOR_PRICE: (0.0, False),
    ConditionMetric.COMPETITOR_PRICE: (0.0, False),
    ConditionMetric.PRICE_GAP_PCT: (-100.0, False),
    ConditionMetric.INVENTORY_LEVEL: (0.0, True),
    ConditionMetric.INVENTORY_RATIO: (0.0, True),
    ConditionMetric.HOURS_TO_STOCKOUT: (0.0, True),
}


# --- Condition evaluation ---


def metric_value(snapshot: MarketSnapshot, condition: RuleCondition) -> float | None:
    """Single dispatcher over the closed set of condition metrics."""
    match condition.metric:
        case ConditionMetric.OWN_PRICE:
            return snapshot.own_price
        case ConditionMetric.LOWEST_COMPETITOR_PRICE:
            return snapshot.lowest_competitor_price
        case ConditionMetric.AVERAGE_COMPETITOR_PRICE:
            return snapshot.average_competitor_price
        case ConditionMetric.COMPETITOR_PRICE:
            return snapshot.competitor_prices.get(condition.competitor_id)
        case ConditionMetric.PRICE_GAP_PCT:
            lowest = snapshot.lowest_competitor_price
            if lowest is None:
                return None
            return (snapshot.own_price - lowest) / lowest * 100.0
        case ConditionMetric.INVENTORY_LEVEL:
            return snapshot.inventory_level
        case ConditionMetric.INVENTORY_RATIO:
            return snapshot.inventory_ratio
        case ConditionMetric.HOURS_TO_STOCKOUT:
            return snapshot.hours_to_stockout
    raise ValueError(f"Unhandled condition metric {condition.metric}")


def compare(value: float, comparison: Comparison, target: float) -> bool:
    match comparison:
        case Comparison.LT:
            return value < target
        case Comparison.LE:
            return value <= target
        case Comparison.GT:
            return value > target
        case Comparison.GE:
            return value >= target
        case Comparison.EQ:
            return math.isclose(value, target, rel_tol=1e-9, abs_tol=1e-9)
    raise ValueError(f"Unhandled comparison {comparison}")


def condition_holds(snapshot: MarketSnapshot, condition: RuleCondition) -> bool:
    value = metric_value(snapshot, condition)
    if value is None:
        return False
    return compare(value, condition.comparison, condition.value)


def conditions_met(rule: PricingRule, snapshot: MarketSnapshot) -> bool:
    results = (condition_holds(snapshot, c) for c in rule.conditions)
    return all(results) if rule.combinator == Combinator.AND else any(results)


# --- Rule validation ---


def _satisfiable(conditions: list[RuleCondition]) -> bool:
    """True if all ``conditions`` (on one metric) can hold at the same time."""
    lower = _METRIC_DOMAIN[conditions[0].metric]
    upper = (math.inf, False)
    for c in conditions:
        v = c.value
        if c.comparison in (Comparison.GT, Comparison.GE, Comparison.EQ):
            bound = (v, c.comparison != Comparison.GT)
            if bound[0] > lower[0] or (bound[0] == lower[0] and not bound[1]):
                lower = bound
        if c.comparison in (Comparison.LT, Comparison.LE, Comparison.EQ):
            bound = (v, c.comparison != Comparison.LT)
            if bound[0] < upper[0] or (bound[0] == upper[0] and not bound[1]):
                upper = bound
    if lower[0] > upper[0]:
        return False
    if lower[0] == upper[0]:
        return lower[1] and upper[1]
    return True


def validate_conditions(conditions: list[RuleCondition], combinator: Combinator) -> None:
    """
    Raises:
        ContradictoryConditionsError: the conditions can never be true
            together (AND) or none of them can ever be true (OR).
    """
    if combinator == Combinator.OR:
        if not any(_satisfiable([c]) for c in conditions):
            raise ContradictoryConditionsError("No condition in this OR rule can ever be true")
        return

    groups: dict[tuple, list[RuleCondition]] = {}
    for c in conditions:
        groups.setdefault((c.metric, c.competitor_id), []).append(c)
    for group in groups.values():
        if not _satisfiable(group):
            described = " AND ".join(c.describe() for c in group)
            raise ContradictoryConditionsError(f"Conditions can never hold together: {described}")


class RulesEngine:
    """Owns price mutation for rule-driven changes."""

    def __init__(
        self,
        store: InMemoryHistoryStore,
        price_book: PriceBook,
        competitive: CompetitiveAnalytics,
        recommendations: RecommendationEngine,
        audit_log: AuditLog,
        alerts: AlertManager,
        config: RulesEngineConfig | None = None,
        stockout_config: StockoutConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.price_book = price_book
        self.competitive = competitive
        self.recommendations = recommendations
        self.audit_log = audit_log
        self.alerts = alerts
        self.config = config or RulesEngineConfig()
        self.stockout_config = stockout_config or StockoutConfig()
        self.event_bus = event_bus
        self.rules: dict[str, PricingRule] = {}
        self._locks = KeyedLock()

    # --- Lifecycle ---

    async def validate_rule(self, rule: PricingRule) -> None:
        """
        Raises:
            ContradictoryConditionsError: conditions can never be satisfied.
            UnreachableConstraintError: the action can never meet the
                attached constraints.
            RuleValidationError: unknown target product, or duplicate id.
        """
        if rule.rule_id in self.rules:
            raise RuleValidationError(f"Rule {rule.rule_id} already exists")
        validate_conditions(rule.conditions, rule.combinator)
        for product_id in rule.product_ids:
            try:
                product = await self.store.get_product(product_id)
            except NotFoundError as e:
                raise RuleValidationError(f"Rule targets unknown product {product_id}") from e
            violations = self._action_violations(rule, product.cost, product.list_price, product_id)
            if violations:
                raise UnreachableConstraintError(
                    f"Rule {rule.rule_id} can never satisfy its constraints for {product_id}: "
                    + "; ".join(violations),
                    violations,
                )

    def _action_violations(
        self, rule: PricingRule, cost: float, list_price: float | None, product_id: str
    ) -> list[str]:
        constraints = rule.constraints
        action = rule.action
        violations = []
        if isinstance(action, SetPriceAction):
            margin = margin_pct(action.price, cost)
            if margin < constraints.min_margin_pct:
                violations.append(
                    f"set price {action.price:.2f} gives margin {margin:.1f}% "
                    f"< minimum {constraints.min_margin_pct:.1f}%"
                )
            if list_price and discount_pct(action.price, list_price) > constraints.max_discount_pct:
                violations.append(
                    f"set price {action.price:.2f} is a {discount_pct(action.price, list_price):.1f}% discount "
                    f"> maximum {constraints.max_discount_pct:.1f}%"
                )
        elif isinstance(action, ApplyDiscountAction):
            # The change from the current price is always exactly the discount
            if action.discount_pct > constraints.max_price_change_pct:
                violations.append(
                    f"discount {action.discount_pct:.1f}% > maximum price change {constraints.max_price_change_pct:.1f}%"
                )
            try:
                current = self.price_book.current_price(product_id)
            except NotFoundError:
                current = None
            if current is not None:
                discounted = current * (1 - action.discount_pct / 100.0)
                reference = list_price or current
                if discount_pct(discounted, reference) > constraints.max_discount_pct:
                    violations.append(
                        f"discounted price {discounted:.2f} is a {discount_pct(discounted, reference):.1f}% discount "
                        f"> maximum {constraints.max_discount_pct:.1f}%"
                    )
                margin = margin_pct(discounted, cost)
                if margin < constraints.min_margin_pct:
                    violations.append(
                        f"discounted price {discounted:.2f} gives margin {margin:.1f}% "
                        f"< minimum {constraints.min_margin_pct:.1f}%"
                    )
        return violations

    async def create_rule(self, rule: PricingRule, actor_id: str | None = None) -> PricingRule:
        """Validate and persist a rule. Invalid rules are never stored."""
        try:
            await self.validate_rule(rule)
        except RuleValidationError as e:
            logger.warning(f"Rejected rule {rule.rule_id}: {e}")
            raise
        self.rules[rule.rule_id] = rule
        await self.audit_log.append(
            AuditLogEntry(
                actor_id=actor_id or rule.owner_id,
                actor_kind=ActorKind.USER,
                action=AuditAction.RULE_CREATED,
                resource_type="rule",
                resource_id=rule.rule_id,
                after=rule.model_dump(mode="json"),
            )
        )
        logger.info(f"Created rule {rule.rule_id} (priority {rule.priority}) for {rule.product_ids}")
        return rule

    async def disable_rule(self, rule_id: str, actor_id: str) -> PricingRule:
        """Retire a rule. Rules are disabled, never deleted."""
        try:
            rule = self.rules[rule_id]
        except KeyError:
            raise NotFoundError(f"Unknown rule {rule_id}") from None
        if not rule.enabled:
            return rule
        disabled = rule.model_copy(update={"enabled": False})
        self.rules[rule_id] = disabled
        await self.audit_log.append(
            AuditLogEntry(
                actor_id=actor_id,
                actor_kind=ActorKind.USER,
                action=AuditAction.RULE_DISABLED,
                resource_type="rule",
                resource_id=rule_id,
                before={"enabled": True},
                after={"enabled": False},
            )
        )
        return disabled

    def rules_for(self, product_id: str) -> list[PricingRule]:
        """Enabled rules targeting a product, highest priority first."""
        rules = [r for r in self.rules.values() if r.enabled and product_id in r.product_ids]
        return sorted(rules, key=lambda r: (-r.priority, r.rule_id))

    def products_with_rules(self) -> list[str]:
        return sorted({pid for r in self.rules.values() if r.enabled for pid in r.product_ids})

    # --- Evaluation ---

    async def snapshot(self, product_id: str, now: datetime | None = None) -> tuple[MarketSnapshot, ProductPriceState]:
        now = now or datetime.now()
        product = await self.store.get_product(product_id)
        price_state = self.price_book.get(product_id)
        competitor_prices = await self.competitive.competitor_prices(product_id, now=now)
        positions = await self.store.inventory_positions(product_id)
        inventory_level = sum(p.quantity for p in positions) if positions else None
        inventory_ratio = (
            inventory_level / product.target_inventory
            if inventory_level is not None and product.target_inventory
            else None
        )
        predictions = [
            p
            for p in await self.store.latest_stockout_predictions(product_id)
            if p.hours_to_stockout is not None and now - p.predicted_at <= self.stockout_config.prediction_ttl
        ]
        snapshot = MarketSnapshot(
            product_id=product_id,
            own_price=price_state.price,
            cost=product.cost,
            reference_price=product.list_price or price_state.price,
            competitor_prices=competitor_prices,
            inventory_level=inventory_level,
            inventory_ratio=inventory_ratio,
            hours_to_stockout=min((p.hours_to_stockout for p in predictions), default=None),
            taken_at=now,
        )
        return snapshot, price_state

    async def candidate_price(self, rule: PricingRule, snapshot: MarketSnapshot, now: datetime) -> float | None:
        """Price the rule's action proposes, or None if it cannot produce one."""
        action = rule.action
        if isinstance(action, SetPriceAction):
            price = action.price
        elif isinstance(action, MatchCompetitorAction):
            if action.target == "lowest":
                base = snapshot.lowest_competitor_price
            elif action.target == "average":
                base = snapshot.average_competitor_price
            else:
                base = snapshot.competitor_prices.get(action.competitor_id)
            if base is None:
                return None
            price = base * (1 + action.offset_pct / 100.0) + action.offset_amount
        elif isinstance(action, ApplyDiscountAction):
            price = snapshot.own_price * (1 - action.discount_pct / 100.0)
        elif isinstance(action, UseRecommendationAction):
            outcome = await self.recommendations.generate(snapshot.product_id, constraints=rule.constraints, now=now)
            if not isinstance(outcome, PricingRecommendation):
                return None
            price = outcome.recommended_price
        else:
            raise ValueError(f"Unhandled action {action!r}")
        return round(price, 2) if price > 0 else None

    async def evaluate_cycle(
        self,
        product_id: str,
        triggered_at: datetime | None = None,
        now: datetime | None = None,
    ) -> list[RuleEvaluation]:
        """
        Run one evaluation cycle for ``product_id``. At most one rule mutates
        the price. ``triggered_at`` is the observation time of the event that
        caused the cycle; actions older than the execution window are rejected.
        """
        now = now or datetime.now()
        rules = self.rules_for(product_id)
        if not rules:
            return []

        for attempt in range(MAX_PLAN_ATTEMPTS):
            snapshot, price_state = await self.snapshot(product_id, now=now)
            plans = []
            for rule in rules:
                evaluation = RuleEvaluation(
                    rule_id=rule.rule_id,
                    product_id=product_id,
                    state=RuleEvaluationState.IDLE,
                    trail=[RuleEvaluationState.IDLE],
                    previous_price=snapshot.own_price,
                    evaluated_at=now,
                )
                matched = conditions_met(rule, snapshot)
                evaluation.advance(RuleEvaluationState.CONDITIONS_EVALUATED)
                candidate = None
                if matched:
                    evaluation.advance(RuleEvaluationState.TRIGGERED)
                    candidate = await self.candidate_price(rule, snapshot, now)
                    evaluation.candidate_price = candidate
                else:
                    evaluation.advance(RuleEvaluationState.NOT_TRIGGERED)
                plans.append((rule, evaluation, candidate))

            async with self._locks.hold(product_id):
                if self.price_book.get(product_id).version != price_state.version:
                    logger.info(f"Price for {product_id} moved during planning; re-planning (attempt {attempt + 1})")
                    continue
                return await self._apply_plans(plans, snapshot, price_state, triggered_at, now)

        raise ConcurrencyConflictError(
            f"Rule cycle for {product_id} could not settle after {MAX_PLAN_ATTEMPTS} attempts"
        )

    async def _apply_plans(
        self,
        plans: list,
        snapshot: MarketSnapshot,
        price_state: ProductPriceState,
        triggered_at: datetime | None,
        now: datetime,
    ) -> list[RuleEvaluation]:
        results = []
        executed = False
        for rule, evaluation, candidate in plans:
            if evaluation.state == RuleEvaluationState.NOT_TRIGGERED:
                results.append(evaluation)
                continue
            if executed:
                evaluation.advance(RuleEvaluationState.SKIPPED)
                evaluation.message = "a higher-priority rule already changed the price this cycle"
                results.append(evaluation)
                continue

            if candidate is None:
                violations = ["action could not produce a price"]
            else:
                violations = check_price(
                    candidate, snapshot.own_price, snapshot.reference_price, snapshot.cost, rule.constraints
                )
            if triggered_at is not None and now - triggered_at > self.config.execution_window:
                violations.append(f"execution window of {self.config.execution_window} elapsed since trigger")
            evaluation.advance(RuleEvaluationState.CONSTRAINT_CHECKED)

            if violations:
                evaluation.violations = violations
                await self._reject(rule, evaluation, snapshot, now)
                results.append(evaluation)
                continue

            if abs(candidate - snapshot.own_price) < self.config.price_epsilon:
                evaluation.message = "price already at target"
            else:
                # Mutation and audit form one step that cancellation cannot split
                await asyncio.shield(self._execute(rule, candidate, price_state, triggered_at, now))
                evaluation.message = f"price {snapshot.own_price:.2f} -> {candidate:.2f}"
            evaluation.advance(RuleEvaluationState.EXECUTED)
            executed = True
            results.append(evaluation)
        return results

    async def _execute(
        self,
        rule: PricingRule,
        new_price: float,
        before: ProductPriceState,
        triggered_at: datetime | None,
        now: datetime,
    ) -> None:
        mutation = self.price_book.apply(
            before.product_id,
            new_price,
            expected_version=before.version,
            actor_id=rule.rule_id,
            reason=f"rule {rule.name or rule.rule_id}",
            now=now,
        )
        entry = AuditLogEntry(
            actor_id=rule.rule_id,
            actor_kind=ActorKind.RULE,
            action=AuditAction.PRICE_CHANGE,
            resource_type="product",
            resource_id=before.product_id,
            before={"price": mutation.before_price, "version": before.version},
            after={"price": mutation.after_price, "version": mutation.version},
            details={
                "priority": rule.priority,
                "owner_id": rule.owner_id,
                "triggered_at": triggered_at.isoformat() if triggered_at else None,
                "change_pct": round(change_pct(mutation.after_price, mutation.before_price), 4),
            },
            timestamp=now,
        )
        try:
            await self.audit_log.append(entry)
        except Exception:
            logger.error(f"Audit write failed for {before.product_id}; rolling back price", exc_info=True)
            self.price_book.restore(before, mutation)
            raise

        if self.event_bus is not None:
            await self.event_bus.publish(
                PricingEvent(
                    event_type=EventTypes.PRICE_MUTATION,
                    payload=mutation.model_dump(mode="json"),
                    source=ComponentType.RULES,
                    product_id=before.product_id,
                )
            )

    async def _reject(
        self, rule: PricingRule, evaluation: RuleEvaluation, snapshot: MarketSnapshot, now: datetime
    ) -> None:
        evaluation.advance(RuleEvaluationState.REJECTED)
        evaluation.message = "; ".join(evaluation.violations)
        await self.audit_log.append(
            AuditLogEntry(
                actor_id=rule.rule_id,
                actor_kind=ActorKind.RULE,
                action=AuditAction.RULE_CONFLICT,
                resource_type="product",
                resource_id=snapshot.product_id,
                before={"price": snapshot.own_price},
                after={"price": evaluation.candidate_price},
                details={"violations": evaluation.violations, "owner_id": rule.owner_id},
                timestamp=now,
            )
        )
        await self.alerts.raise_alert(
            AlertType.RULE_CONFLICT,
            AlertSeverity.WARNING,
            f"Rule {rule.name or rule.rule_id} was not applied to {snapshot.product_id}: {evaluation.message}",
            product_ids=[snapshot.product_id],
            competitor_ids=sorted(snapshot.competitor_prices),
            recipient_id=rule.owner_id,
            recommended_actions=["Review rule action", "Review rule constraints"],
            now=now,
        )

    async def evaluate_all(self, now: datetime | None = None) -> dict[str, list[RuleEvaluation]]:
        """Run a cycle for every product with enabled rules, in parallel across products."""
        product_ids = self.products_with_rules()
        results = await asyncio.gather(
            *(self.evaluate_cycle(pid, now=now) for pid in product_ids), return_exceptions=True
        )
        outcome = {}
        for pid, result in zip(product_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Rule cycle for {pid} failed: {type(result).__name__}: {result}")
                continue
            outcome[pid] = result
        return outcome

    async def audit_trail(self, product_id: str, actor_id: str):
        return await self.audit_log.read_trail(product_id, actor_id)
