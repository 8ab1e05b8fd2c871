"""
Append-only audit log sink.
"""

import logging

from models.audit import AuditLogEntry
from models.enums import ActorKind, AuditAction, ComponentType
from models.events import EventTypes, PricingEvent
from utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only store of audit entries. There is no update or delete."""

    def __init__(self, event_bus: EventBus | None = None):
        self.event_bus = event_bus
        self._entries: list[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        self._entries.append(entry)
        logger.info(
            f"Audit {entry.action.value} on {entry.resource_type}/{entry.resource_id} by {entry.actor_id}"
        )
        if self.event_bus is not None:
            await self.event_bus.publish(
                PricingEvent(
                    event_type=EventTypes.AUDIT_APPENDED,
                    payload=entry.model_dump(mode="json"),
                    source=ComponentType.AUDIT,
                    product_id=entry.resource_id if entry.resource_type == "product" else None,
                )
            )
        return entry

    async def read_trail(self, resource_id: str, actor_id: str) -> list[AuditLogEntry]:
        """Return the trail for a resource. The read itself is audited."""
        trail = [e for e in self._entries if e.resource_id == resource_id]
        await self.append(
            AuditLogEntry(
                actor_id=actor_id,
                actor_kind=ActorKind.USER,
                action=AuditAction.SENSITIVE_READ,
                resource_type="audit_trail",
                resource_id=resource_id,
                details={"entries_returned": len(trail)},
            )
        )
        return trail

    @property
    def entries(self) -> tuple[AuditLogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
