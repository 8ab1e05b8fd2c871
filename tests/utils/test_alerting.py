from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from config.config import AlertConfig
from models.enums import AlertSeverity, AlertType
from models.events import EventTypes
from utils.alerting import AlertManager
from utils.event_bus import EventBus

T0 = datetime(2026, 3, 16, 12, 0)


@pytest.mark.asyncio
async def test_new_alert_is_published():
    """Test a new alert is published and indexed by product."""
    bus = EventBus()
    handler = AsyncMock()
    bus.subscribe(EventTypes.ALERT_RAISED, handler)
    manager = AlertManager(bus)

    alert = await manager.raise_alert(
        AlertType.STOCKOUT_RISK, AlertSeverity.HIGH, "runs out soon", product_ids=["SKU-1"], now=T0
    )

    handler.assert_called_once()
    assert handler.call_args.args[0].payload["alert_id"] == alert.alert_id
    assert manager.for_product("SKU-1") == [alert]


@pytest.mark.asyncio
async def test_repeats_within_window_are_coalesced():
    """Test repeats inside the window merge into one alert."""
    bus = EventBus()
    handler = AsyncMock()
    bus.subscribe(EventTypes.ALERT_RAISED, handler)
    manager = AlertManager(bus, AlertConfig(coalesce_window=timedelta(minutes=10)))

    first = await manager.raise_alert(
        AlertType.PRICE_GAP, AlertSeverity.WARNING, "gap 25%", product_ids=["SKU-1"], competitor_ids=["a"], now=T0
    )
    second = await manager.raise_alert(
        AlertType.PRICE_GAP,
        AlertSeverity.HIGH,
        "gap 30%",
        product_ids=["SKU-1"],
        competitor_ids=["b"],
        now=T0 + timedelta(minutes=5),
    )

    assert second is first
    assert first.occurrences == 2
    assert first.severity == AlertSeverity.HIGH
    assert first.message == "gap 30%"
    assert first.competitor_ids == ["a", "b"]
    assert len(manager.alerts) == 1
    handler.assert_called_once()


@pytest.mark.asyncio
async def test_repeat_after_window_is_a_new_alert():
    """Test a repeat after the window opens a new alert."""
    manager = AlertManager()
    first = await manager.raise_alert(AlertType.PRICE_GAP, AlertSeverity.WARNING, "gap", product_ids=["SKU-1"], now=T0)
    later = await manager.raise_alert(
        AlertType.PRICE_GAP, AlertSeverity.WARNING, "gap", product_ids=["SKU-1"], now=T0 + timedelta(minutes=11)
    )
    assert later is not first
    assert len(manager.alerts) == 2


@pytest.mark.asyncio
async def test_different_locations_are_not_coalesced():
    """Test alerts for different locations stay separate."""
    manager = AlertManager()
    await manager.raise_alert(
        AlertType.STOCKOUT_RISK, AlertSeverity.HIGH, "x", product_ids=["SKU-1"], location_id="store-1", now=T0
    )
    await manager.raise_alert(
        AlertType.STOCKOUT_RISK, AlertSeverity.HIGH, "x", product_ids=["SKU-1"], location_id="store-2", now=T0
    )
    assert len(manager.for_product("SKU-1", AlertType.STOCKOUT_RISK)) == 2


@pytest.mark.asyncio
async def test_different_recipients_are_not_coalesced():
    """Each rule owner keeps a separate conflict alert."""
    manager = AlertManager()
    for owner in ("alice", "bob"):
        await manager.raise_alert(
            AlertType.RULE_CONFLICT, AlertSeverity.WARNING, f"{owner} rejected", product_ids=["SKU-1"],
            recipient_id=owner, now=T0,
        )
    alerts = manager.for_product("SKU-1", AlertType.RULE_CONFLICT)
    assert [(a.recipient_id, a.message) for a in alerts] == [("alice", "alice rejected"), ("bob", "bob rejected")]


@pytest.mark.asyncio
async def test_severity_never_downgrades_on_coalesce():
    """Test coalescing keeps the highest severity."""
    manager = AlertManager()
    alert = await manager.raise_alert(AlertType.RULE_CONFLICT, AlertSeverity.CRITICAL, "x", product_ids=["SKU-1"], now=T0)
    await manager.raise_alert(
        AlertType.RULE_CONFLICT, AlertSeverity.INFO, "y", product_ids=["SKU-1"], now=T0 + timedelta(minutes=1)
    )
    assert alert.severity == AlertSeverity.CRITICAL
