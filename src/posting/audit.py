from __future__ import annotations

import logging

from inventory.data_models import AuditLogEntry
from posting.messaging import POSTING_EVENTS_TOPIC, KafkaBus
from posting.storage import PostgresStore

logger = logging.getLogger(__name__)

ACTION_QUEUED = "queued"
ACTION_UNQUEUED = "unqueued"
ACTION_POSTED = "posted"
ACTION_FAILED = "failed"


class AuditLog:
    """Append-only posting log. Entries are mirrored onto the event bus while it has a broker connection."""

    def __init__(self, store: PostgresStore, bus: KafkaBus | None = None) -> None:
        self.store = store
        self.bus = bus

    async def append(self, vehicle_id: str, action: str, details: str | None = None) -> AuditLogEntry:
        entry = await self.store.append_log(vehicle_id, action, details)
        if self.bus is not None and self.bus.connected:
            try:
                await self.bus.publish(
                    POSTING_EVENTS_TOPIC,
                    {
                        "id": entry.id,
                        "vehicle_id": entry.vehicle_id,
                        "action": entry.action,
                        "details": entry.details,
                        "created_at": entry.created_at.isoformat(),
                    },
                    key=vehicle_id,
                )
            except Exception as exc:
                # The stored entry is authoritative; the bus copy is best effort.
                logger.warning("Failed to publish %s event for %s: %s", action, vehicle_id, exc)
        return entry

    async def recent(self, limit: int = 10) -> list[AuditLogEntry]:
        return await self.store.recent_log(limit=limit)
