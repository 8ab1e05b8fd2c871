"""
Outbound audit and alert records.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import ActorKind, AlertSeverity, AlertType, AuditAction


class AuditLogEntry(BaseModel):
    """Immutable record of who/what changed (or read) a price and when."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: str
    actor_kind: ActorKind
    action: AuditAction
    resource_type: str
    resource_id: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class Alert(BaseModel):
    alert_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    alert_type: AlertType
    severity: AlertSeverity
    product_ids: list[str] = Field(default_factory=list)
    competitor_ids: list[str] = Field(default_factory=list)
    location_id: str | None = None
    recipient_id: str | None = None
    message: str
    recommended_actions: list[str] = Field(default_factory=list)
    occurrences: int = 1
    notify_by: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    last_seen_at: datetime = Field(default_factory=datetime.now)

    def coalesce_key(self) -> tuple:
        return (self.alert_type, tuple(sorted(self.product_ids)), self.location_id, self.recipient_id)
