from __future__ import annotations

from datetime import date
from typing import Any

from inventory.data_models import PublicationStatus
from posting.storage import PostgresStore


async def posting_status(store: PostgresStore, *, today: date, daily_limit: int, log_limit: int = 10) -> dict[str, Any]:
    daily = await store.get_daily_count(today)
    recent = await store.recent_log(limit=log_limit)
    return {
        "daily": {
            "count": daily.count,
            "limit": daily_limit,
            "lastPostAt": daily.last_post_at.isoformat() if daily.last_post_at else None,
        },
        "queue": await store.count_vehicles(PublicationStatus.QUEUED),
        "posting": await store.count_vehicles(PublicationStatus.POSTING),
        "totalPosted": await store.count_vehicles(PublicationStatus.POSTED),
        "recentLog": [
            {
                "id": e.id,
                "vehicle_id": e.vehicle_id,
                "action": e.action,
                "details": e.details,
                "created_at": e.created_at.isoformat(),
            }
            for e in recent
        ],
    }
