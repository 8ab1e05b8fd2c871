"""
Centralized Enum definitions for the pricing decision core.
"""

from enum import Enum


class ComponentType(str, Enum):
    """Components that publish events on the bus"""

    ELASTICITY = "elasticity"
    FORECASTER = "forecaster"
    STOCKOUT = "stockout"
    COMPETITIVE = "competitive"
    RECOMMENDATION = "recommendation"
    RULES = "rules"
    INGESTION = "ingestion"
    ALERTING = "alerting"
    AUDIT = "audit"
    SYSTEM = "system"


class InventorySourceKind(str, Enum):
    """Where an inventory observation came from"""

    VISION = "vision"
    WEIGHT_SENSOR = "weight_sensor"
    RFID = "rfid"
    MANUAL = "manual"


class SalesTrend(str, Enum):
    """Direction of recent sales velocity"""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class ReorderUrgency(str, Enum):
    """Urgency of a reorder, highest first"""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StrategyTag(str, Enum):
    """Candidate price strategies, in registry order"""

    COMPETITOR_MATCH_LOWEST = "competitor_match_lowest"
    COMPETITOR_MATCH_AVERAGE = "competitor_match_average"
    MARGIN_MAXIMIZATION = "margin_maximization"
    REVENUE_MAXIMIZATION = "revenue_maximization"
    CLEARANCE = "clearance"
    PREMIUM = "premium"


class AlertType(str, Enum):
    """Kinds of alerts raised by the core"""

    RULE_CONFLICT = "rule_conflict"
    STOCKOUT_RISK = "stockout_risk"
    LOW_CONFIDENCE = "low_confidence"
    FORECAST_VARIANCE = "forecast_variance"
    STALE_OBSERVATION = "stale_observation"
    PRICE_GAP = "price_gap"
    UPSTREAM_TIMEOUT = "upstream_timeout"


class AlertSeverity(str, Enum):
    """Alert urgency levels"""

    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class AuditAction(str, Enum):
    """Actions recorded in the audit log"""

    PRICE_CHANGE = "price_change"
    RULE_CONFLICT = "rule_conflict"  # Rejected rule action (conflict log)
    RULE_CREATED = "rule_created"
    RULE_DISABLED = "rule_disabled"
    SENSITIVE_READ = "sensitive_read"


class ActorKind(str, Enum):
    USER = "user"
    RULE = "rule"
    SYSTEM = "system"


class ConditionMetric(str, Enum):
    """Market/inventory values a rule condition can test"""

    OWN_PRICE = "own_price"
    LOWEST_COMPETITOR_PRICE = "lowest_competitor_price"
    AVERAGE_COMPETITOR_PRICE = "average_competitor_price"
    COMPETITOR_PRICE = "competitor_price"  # Requires competitor_id
    PRICE_GAP_PCT = "price_gap_pct"  # Own price vs lowest competitor, in percent
    INVENTORY_LEVEL = "inventory_level"
    INVENTORY_RATIO = "inventory_ratio"
    HOURS_TO_STOCKOUT = "hours_to_stockout"


class Comparison(str, Enum):
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="


class Combinator(str, Enum):
    AND = "and"
    OR = "or"


class RuleEvaluationState(str, Enum):
    """States a rule passes through during one evaluation cycle"""

    IDLE = "idle"
    CONDITIONS_EVALUATED = "conditions_evaluated"
    TRIGGERED = "triggered"
    NOT_TRIGGERED = "not_triggered"
    CONSTRAINT_CHECKED = "constraint_checked"
    EXECUTED = "executed"
    REJECTED = "rejected"
    SKIPPED = "skipped"  # A higher-priority rule already mutated the price this cycle
