"""
Alert raising with coalescing for the pricing decision core.
"""

import logging
from datetime import datetime

from config.config import AlertConfig
from models.audit import Alert
from models.enums import AlertSeverity, AlertType, ComponentType
from models.events import EventTypes, PricingEvent
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class AlertManager:
    """Raises alerts and coalesces repeats that share a coalesce key."""

    def __init__(self, event_bus: EventBus | None = None, config: AlertConfig | None = None):
        """
        Args:
            event_bus: Bus new alerts are published on (``alert.raised``).
            config: Coalescing window settings.
        """
        self.event_bus = event_bus
        self.config = config or AlertConfig()
        self.alerts: list[Alert] = []
        self._open: dict[tuple, Alert] = {}

    async def raise_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        product_ids: list[str] | None = None,
        location_id: str | None = None,
        competitor_ids: list[str] | None = None,
        recipient_id: str | None = None,
        recommended_actions: list[str] | None = None,
        notify_by: datetime | None = None,
        now: datetime | None = None,
    ) -> Alert:
        """
        Raise an alert. If an alert with the same type, products, location and
        recipient was raised within the coalescing window, that alert is updated and
        returned instead of emitting a new one.
        """
        ts = now or datetime.now()
        candidate = Alert(
            alert_type=alert_type,
            severity=severity,
            product_ids=product_ids or [],
            competitor_ids=competitor_ids or [],
            location_id=location_id,
            recipient_id=recipient_id,
            message=message,
            recommended_actions=recommended_actions or [],
            notify_by=notify_by,
            created_at=ts,
            last_seen_at=ts,
        )
        key = candidate.coalesce_key()
        existing = self._open.get(key)
        if existing is not None and ts - existing.created_at <= self.config.coalesce_window:
            existing.occurrences += 1
            existing.last_seen_at = ts
            existing.message = message
            if _rank(severity) > _rank(existing.severity):
                existing.severity = severity
            for cid in candidate.competitor_ids:
                if cid not in existing.competitor_ids:
                    existing.competitor_ids.append(cid)
            logger.debug(f"Coalesced {alert_type.value} alert for {key[1]} (x{existing.occurrences})")
            return existing

        self._open[key] = candidate
        self.alerts.append(candidate)
        log = logger.warning if _rank(severity) >= _rank(AlertSeverity.HIGH) else logger.info
        log(f"ALERT [{alert_type.value}/{severity.value}] {message}")
        if self.event_bus is not None:
            await self.event_bus.publish(
                PricingEvent(
                    event_type=EventTypes.ALERT_RAISED,
                    payload=candidate.model_dump(mode="json"),
                    source=ComponentType.ALERTING,
                    product_id=candidate.product_ids[0] if candidate.product_ids else None,
                )
            )
        return candidate

    def for_product(self, product_id: str, alert_type: AlertType | None = None) -> list[Alert]:
        return [
            a
            for a in self.alerts
            if product_id in a.product_ids and (alert_type is None or a.alert_type == alert_type)
        ]


_SEVERITY_ORDER = [AlertSeverity.INFO, AlertSeverity.WARNING, AlertSeverity.HIGH, AlertSeverity.CRITICAL]


def _rank(severity: AlertSeverity) -> int:
    return _SEVERITY_ORDER.index(severity)
