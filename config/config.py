"""
Configuration classes for the pricing decision core.
Defines thresholds and tuning knobs for each component in a type-safe,
extensible way. Percentages are expressed in percent units (15.0 == 15%).
"""

import os
from dataclasses import dataclass, field, fields
from datetime import timedelta

from utils.env import load_project_dotenv


@dataclass
class ElasticityConfig:
    min_data_points: int = 30
    lookback_days: int = 365  # Must cover at least 90 days of history
    refresh_interval: timedelta = timedelta(days=7)
    global_default_coefficient: float = -1.5
    global_default_confidence: float = 25.0
    category_defaults: dict[str, float] = field(default_factory=dict)
    fallback_confidence_cap: float = 45.0
    fallback_confidence_factor: float = 0.6
    store_timeout_seconds: float = 10.0

    def __post_init__(self):
        if self.lookback_days < 90:
            raise ValueError("Elasticity lookback must cover at least 90 days")
        if self.fallback_confidence_cap >= 50:
            raise ValueError("Fallback confidence cap must stay below 50")


@dataclass
class ForecastConfig:
    sales_window_days: int = 28
    default_horizon_days: int = 30
    interval_z: float = 1.96
    timeout_seconds: float = 5.0
    variance_tolerance_pct: float = 20.0
    seasonal_factors: dict[int, float] = field(default_factory=dict)  # month -> multiplier


@dataclass
class StockoutConfig:
    velocity_window_days: int = 28
    smoothing_alpha: float = 0.3
    trend_band_pct: float = 10.0
    alert_threshold_hours: float = 48.0
    notify_confidence: float = 80.0
    notify_within: timedelta = timedelta(minutes=15)
    safety_z: float = 1.65
    # Upper bounds (hours) for each urgency, shortest first
    critical_hours: float = 12.0
    high_hours: float = 24.0
    medium_hours: float = 36.0
    prediction_ttl: timedelta = timedelta(hours=24)
    store_timeout_seconds: float = 10.0


@dataclass
class CompetitiveConfig:
    gap_threshold_pct: float = 20.0
    max_price_age: timedelta = timedelta(hours=72)


@dataclass
class RecommendationConfig:
    horizon_days: int = 30
    max_alternatives: int = 2
    search_band_pct: float = 10.0
    search_steps: int = 21
    clearance_ratio: float = 1.5
    clearance_base_discount_pct: float = 10.0
    clearance_discount_per_excess_pct: float = 50.0  # Extra discount per 1.0 of ratio above clearance_ratio
    clearance_max_discount_pct: float = 30.0
    premium_ratio: float = 0.3
    premium_base_increase_pct: float = 5.0
    premium_increase_per_shortfall_pct: float = 25.0
    premium_max_increase_pct: float = 15.0
    material_decrease_pct: float = 1.0
    low_confidence_threshold: float = 40.0


@dataclass
class RulesEngineConfig:
    execution_window: timedelta = timedelta(minutes=5)
    price_epsilon: float = 0.005


@dataclass
class AlertConfig:
    coalesce_window: timedelta = timedelta(minutes=10)


@dataclass
class IngestionConfig:
    workers: int = 4
    queue_size: int = 1000
    min_observation_confidence: float = 50.0
    max_inventory_age: timedelta = timedelta(hours=12)
    handler_timeout_seconds: float = 5.0


@dataclass
class PricingCoreConfig:
    elasticity: ElasticityConfig = field(default_factory=ElasticityConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    stockout: StockoutConfig = field(default_factory=StockoutConfig)
    competitive: CompetitiveConfig = field(default_factory=CompetitiveConfig)
    recommendation: RecommendationConfig = field(default_factory=RecommendationConfig)
    rules: RulesEngineConfig = field(default_factory=RulesEngineConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)

    @classmethod
    def from_env(cls, prefix: str = "PRICING_") -> "PricingCoreConfig":
        """
        Build a config from defaults overlaid with environment variables.
        Variables are named ``<prefix><SECTION>_<FIELD>``, e.g.
        ``PRICING_STOCKOUT_ALERT_THRESHOLD_HOURS=36``. Only int, float and
        timedelta (seconds) fields are overridable.
        """
        load_project_dotenv()
        config = cls()
        for section in fields(config):
            section_obj = getattr(config, section.name)
            for f in fields(section_obj):
                key = f"{prefix}{section.name}_{f.name}".upper()
                raw = os.getenv(key)
                if raw is None:
                    continue
                current = getattr(section_obj, f.name)
                if isinstance(current, bool):
                    continue
                if isinstance(current, int):
                    setattr(section_obj, f.name, int(raw))
                elif isinstance(current, float):
                    setattr(section_obj, f.name, float(raw))
                elif isinstance(current, timedelta):
                    setattr(section_obj, f.name, timedelta(seconds=float(raw)))
            # Re-run validation on sections that define it
            post_init = getattr(section_obj, "__post_init__", None)
            if post_init is not None:
                post_init()
        return config
