"""
Publication lifecycle of a catalog vehicle.

    not_posted -> queued -> posting -> posted
                    ^                \\-> failed -> queued
                    \\-- unqueue --> not_posted

Transition functions validate the move and return the column values to persist;
they never write anything themselves.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from inventory.data_models import PublicationStatus, VehicleRecord


class PublicationError(ValueError):
    pass


class NotReadyError(PublicationError):
    pass


class AlreadyQueuedError(PublicationError):
    pass


class AlreadyPostedError(PublicationError):
    pass


class InvalidTransitionError(PublicationError):
    pass


QUEUEABLE = frozenset({PublicationStatus.NOT_POSTED, PublicationStatus.FAILED})


def readiness_problem(vehicle: VehicleRecord) -> str | None:
    if not vehicle.photos:
        return "Vehicle needs photos first"
    if not (vehicle.description or "").strip():
        return "Vehicle needs a description first"
    return None


def is_ready(vehicle: VehicleRecord) -> bool:
    return vehicle.status in QUEUEABLE and readiness_problem(vehicle) is None


def queue(vehicle: VehicleRecord, now: datetime) -> dict[str, Any]:
    if vehicle.status is PublicationStatus.POSTED:
        raise AlreadyPostedError("Already posted")
    if vehicle.status is PublicationStatus.QUEUED:
        raise AlreadyQueuedError("Already in queue")
    if vehicle.status not in QUEUEABLE:
        raise InvalidTransitionError(f"Cannot queue a vehicle in status {vehicle.status.value}")
    problem = readiness_problem(vehicle)
    if problem:
        raise NotReadyError(problem)
    return {"status": PublicationStatus.QUEUED.value, "queued_at": now}


def unqueue(vehicle: VehicleRecord) -> dict[str, Any]:
    if vehicle.status not in (PublicationStatus.QUEUED, PublicationStatus.NOT_POSTED):
        raise InvalidTransitionError(f"Cannot unqueue a vehicle in status {vehicle.status.value}")
    return {"status": PublicationStatus.NOT_POSTED.value, "queued_at": None}


def begin_posting(vehicle: VehicleRecord, now: datetime) -> dict[str, Any]:
    if vehicle.status is not PublicationStatus.QUEUED:
        raise InvalidTransitionError(f"Only queued vehicles can be posted, got {vehicle.status.value}")
    return {"status": PublicationStatus.POSTING.value, "posting_started_at": now}


def mark_posted(vehicle: VehicleRecord, now: datetime, listing_url: str | None = None) -> dict[str, Any]:
    if vehicle.status is not PublicationStatus.POSTING:
        raise InvalidTransitionError(f"Cannot mark {vehicle.status.value} vehicle as posted")
    values: dict[str, Any] = {"status": PublicationStatus.POSTED.value, "posted_at": now, "posting_started_at": None}
    if listing_url:
        values["listing_url"] = listing_url
    return values


def mark_failed(vehicle: VehicleRecord) -> dict[str, Any]:
    if vehicle.status is not PublicationStatus.POSTING:
        raise InvalidTransitionError(f"Cannot mark {vehicle.status.value} vehicle as failed")
    return {"status": PublicationStatus.FAILED.value, "posting_started_at": None}


def is_stuck(vehicle: VehicleRecord, now: datetime, threshold: timedelta) -> bool:
    if vehicle.status is not PublicationStatus.POSTING:
        return False
    started = vehicle.posting_started_at
    return started is None or now - started >= threshold
