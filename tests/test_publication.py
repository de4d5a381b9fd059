from datetime import datetime, timedelta, timezone

import pytest

from inventory import publication
from inventory.data_models import PublicationStatus, VehicleRecord
from inventory.publication import AlreadyPostedError, AlreadyQueuedError, InvalidTransitionError, NotReadyError
from posting.queueing import (
    VehicleNotFoundError,
    queue_all_ready,
    queue_vehicle,
    recover_stuck_postings,
    unqueue_vehicle,
)

from factories import seed_vehicle

NOW = datetime(2026, 2, 9, 15, 0, tzinfo=timezone.utc)


def _vehicle(status=PublicationStatus.NOT_POSTED, photos=("p.jpg",), description="Runs great."):
    return VehicleRecord(
        id="v1", year="2017", make="Mazda", model="CX-5", vin="JM3KFBCM1H0100001",
        photos=list(photos), description=description, status=status,
    )


# ── Guards ──────────────────────────────────────────────────────────


def test_queue_requires_photos_then_description():
    with pytest.raises(NotReadyError, match="photos"):
        publication.queue(_vehicle(photos=()), NOW)
    with pytest.raises(NotReadyError, match="description"):
        publication.queue(_vehicle(description="  "), NOW)


def test_queue_rejects_queued_and_posted():
    with pytest.raises(AlreadyQueuedError, match="Already in queue"):
        publication.queue(_vehicle(status=PublicationStatus.QUEUED), NOW)
    with pytest.raises(AlreadyPostedError, match="Already posted"):
        publication.queue(_vehicle(status=PublicationStatus.POSTED), NOW)
    with pytest.raises(InvalidTransitionError):
        publication.queue(_vehicle(status=PublicationStatus.POSTING), NOW)


def test_failed_vehicle_can_be_requeued():
    values = publication.queue(_vehicle(status=PublicationStatus.FAILED), NOW)
    assert values == {"status": "queued", "queued_at": NOW}


def test_posting_transitions_only_from_expected_states():
    with pytest.raises(InvalidTransitionError):
        publication.begin_posting(_vehicle(), NOW)
    with pytest.raises(InvalidTransitionError):
        publication.mark_posted(_vehicle(status=PublicationStatus.QUEUED), NOW)
    with pytest.raises(InvalidTransitionError):
        publication.mark_failed(_vehicle(status=PublicationStatus.POSTED))

    posting = _vehicle(status=PublicationStatus.POSTING)
    values = publication.mark_posted(posting, NOW, "https://example.test/item/9")
    assert values["status"] == "posted"
    assert values["listing_url"] == "https://example.test/item/9"
    assert "listing_url" not in publication.mark_posted(posting, NOW)


def test_unqueue_clears_timestamp_and_rejects_posted():
    assert publication.unqueue(_vehicle(status=PublicationStatus.QUEUED)) == {"status": "not_posted", "queued_at": None}
    with pytest.raises(InvalidTransitionError):
        publication.unqueue(_vehicle(status=PublicationStatus.POSTED))


def test_stuck_detection_uses_threshold():
    v = _vehicle(status=PublicationStatus.POSTING)
    v.posting_started_at = NOW - timedelta(minutes=10)
    assert not publication.is_stuck(v, NOW, timedelta(minutes=30))
    assert publication.is_stuck(v, NOW, timedelta(minutes=5))
    assert not publication.is_stuck(_vehicle(status=PublicationStatus.QUEUED), NOW, timedelta(0))


# ── Persisted operations ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_queue_vehicle_persists_and_audits(store, audit):
    vid = await seed_vehicle(store, vin="VIN00000000000001")
    vehicle = await queue_vehicle(store, audit, vid)
    assert vehicle.status is PublicationStatus.QUEUED
    assert vehicle.queued_at is not None

    (entry,) = await store.recent_log()
    assert (entry.vehicle_id, entry.action) == (vid, "queued")


@pytest.mark.asyncio
async def test_queue_vehicle_not_ready_leaves_state_untouched(store, audit):
    vid = await seed_vehicle(store, vin="VIN00000000000002", photos=())
    with pytest.raises(NotReadyError):
        await queue_vehicle(store, audit, vid)
    assert (await store.get_vehicle(vid)).status is PublicationStatus.NOT_POSTED
    assert await store.recent_log() == []


@pytest.mark.asyncio
async def test_queue_unknown_vehicle(store, audit):
    with pytest.raises(VehicleNotFoundError):
        await queue_vehicle(store, audit, "missing")


@pytest.mark.asyncio
async def test_unqueue_vehicle(store, audit):
    vid = await seed_vehicle(store, vin="VIN00000000000003")
    await queue_vehicle(store, audit, vid)
    vehicle = await unqueue_vehicle(store, audit, vid)
    assert vehicle.status is PublicationStatus.NOT_POSTED
    assert vehicle.queued_at is None


@pytest.mark.asyncio
async def test_queue_all_ready_only_picks_ready_vehicles(store, audit):
    ready = await seed_vehicle(store, vin="VIN00000000000004")
    retry = await seed_vehicle(store, vin="VIN00000000000005", status=PublicationStatus.FAILED)
    await seed_vehicle(store, vin="VIN00000000000006", description=None)
    await seed_vehicle(store, vin="VIN00000000000007", status=PublicationStatus.POSTED)

    assert await queue_all_ready(store, audit) == 2
    queued = {v.id for v in await store.list_queued()}
    assert queued == {ready, retry}
    for v in await store.list_vehicles(status=PublicationStatus.QUEUED):
        assert v.photos and v.description
    assert await queue_all_ready(store, audit) == 0


@pytest.mark.asyncio
async def test_recover_stuck_postings(store, audit):
    stale = await seed_vehicle(
        store, vin="VIN00000000000008", status=PublicationStatus.POSTING,
        posting_started_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )
    fresh = await seed_vehicle(
        store, vin="VIN00000000000009", status=PublicationStatus.POSTING,
        posting_started_at=datetime.now(timezone.utc),
    )
    assert await recover_stuck_postings(store, audit, timedelta(minutes=30)) == 1
    assert (await store.get_vehicle(stale)).status is PublicationStatus.FAILED
    assert (await store.get_vehicle(fresh)).status is PublicationStatus.POSTING
    (entry,) = await store.recent_log()
    assert (entry.vehicle_id, entry.action, entry.details) == (stale, "failed", "interrupted while posting")
