from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from inventory import publication
from inventory.data_models import PublicationStatus, VehicleRecord
from posting.audit import ACTION_FAILED, ACTION_QUEUED, ACTION_UNQUEUED, AuditLog
from posting.storage import PostgresStore

logger = logging.getLogger(__name__)


class VehicleNotFoundError(LookupError):
    pass


async def _load(store: PostgresStore, vehicle_id: str) -> VehicleRecord:
    vehicle = await store.get_vehicle(vehicle_id)
    if vehicle is None:
        raise VehicleNotFoundError("Vehicle not found")
    return vehicle


async def queue_vehicle(store: PostgresStore, audit: AuditLog, vehicle_id: str) -> VehicleRecord:
    vehicle = await _load(store, vehicle_id)
    values = publication.queue(vehicle, datetime.now(timezone.utc))
    await store.update_vehicle(vehicle_id, values)
    await audit.append(vehicle_id, ACTION_QUEUED)
    logger.info("Queued %s (%s)", vehicle.title, vehicle.vin)
    return await _load(store, vehicle_id)


async def unqueue_vehicle(store: PostgresStore, audit: AuditLog, vehicle_id: str) -> VehicleRecord:
    vehicle = await _load(store, vehicle_id)
    values = publication.unqueue(vehicle)
    await store.update_vehicle(vehicle_id, values)
    if vehicle.status is PublicationStatus.QUEUED:
        await audit.append(vehicle_id, ACTION_UNQUEUED)
    return await _load(store, vehicle_id)


async def queue_all_ready(store: PostgresStore, audit: AuditLog) -> int:
    """Queue every not-posted or failed vehicle that has photos and a description."""
    candidates = [
        v
        for status in (PublicationStatus.NOT_POSTED, PublicationStatus.FAILED)
        for v in await store.list_vehicles(status=status)
    ]
    ready = [v for v in candidates if publication.is_ready(v)]
    now = datetime.now(timezone.utc)
    for vehicle in ready:
        await store.update_vehicle(vehicle.id, publication.queue(vehicle, now))
        await audit.append(vehicle.id, ACTION_QUEUED)
    logger.info("Queued %d of %d candidate vehicles", len(ready), len(candidates))
    return len(ready)


async def recover_stuck_postings(
    store: PostgresStore,
    audit: AuditLog,
    threshold: timedelta,
    now: datetime | None = None,
) -> int:
    """Fail vehicles left in ``posting`` by a run that died mid-publish."""
    now = now or datetime.now(timezone.utc)
    recovered = 0
    for vehicle in await store.list_vehicles(status=PublicationStatus.POSTING):
        if not publication.is_stuck(vehicle, now, threshold):
            continue
        await store.update_vehicle(vehicle.id, publication.mark_failed(vehicle))
        await audit.append(vehicle.id, ACTION_FAILED, "interrupted while posting")
        logger.warning("Recovered stuck posting for %s (%s)", vehicle.title, vehicle.vin)
        recovered += 1
    return recovered
