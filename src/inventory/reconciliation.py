from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from inventory.data_models import ParsedVehicle, VehicleRecord

logger = logging.getLogger(__name__)

# Fields a re-sync may overwrite on a vehicle that is already in the catalog.
SYNCED_FIELDS = ("price", "mileage")


@dataclass
class VehicleUpdate:
    record: VehicleRecord
    changes: dict[str, Any]


@dataclass
class ReconciliationPlan:
    inserts: list[ParsedVehicle] = field(default_factory=list)
    updates: list[VehicleUpdate] = field(default_factory=list)
    unchanged: list[VehicleRecord] = field(default_factory=list)
    removals: list[VehicleRecord] = field(default_factory=list)
    missing_vin: list[ParsedVehicle] = field(default_factory=list)
    incoming_total: int = 0


def dedupe_by_vin(batch: Sequence[ParsedVehicle]) -> tuple[list[ParsedVehicle], list[ParsedVehicle]]:
    """Split a batch into VIN-unique vehicles (first occurrence wins) and VIN-less ones."""
    seen: set[str] = set()
    unique: list[ParsedVehicle] = []
    missing: list[ParsedVehicle] = []
    for vehicle in batch:
        key = vehicle.vin_key
        if not key:
            missing.append(vehicle)
            continue
        if key in seen:
            logger.debug("Duplicate VIN %s in report, keeping first occurrence", key)
            continue
        seen.add(key)
        unique.append(vehicle)
    return unique, missing


def _field_changes(record: VehicleRecord, incoming: ParsedVehicle) -> dict[str, Any]:
    wanted = {"price": incoming.price, "mileage": incoming.mileage or None}
    return {k: v for k, v in wanted.items() if getattr(record, k) != v}


def plan_reconciliation(batch: Sequence[ParsedVehicle], catalog: Sequence[VehicleRecord]) -> ReconciliationPlan:
    """Diff a parsed report against the catalog, matching on upper-cased VIN.

    Catalog records without a VIN never match and are never removed.
    """
    unique, missing = dedupe_by_vin(batch)
    plan = ReconciliationPlan(missing_vin=missing, incoming_total=len(batch))

    existing_by_vin: dict[str, VehicleRecord] = {}
    for record in catalog:
        if record.vin_key:
            existing_by_vin.setdefault(record.vin_key, record)
    incoming_vins = {v.vin_key for v in unique}

    for vehicle in unique:
        existing = existing_by_vin.get(vehicle.vin_key)
        if existing is None:
            plan.inserts.append(vehicle)
            continue
        changes = _field_changes(existing, vehicle)
        if changes:
            plan.updates.append(VehicleUpdate(record=existing, changes=changes))
        else:
            plan.unchanged.append(existing)

    plan.removals = [r for r in catalog if r.vin_key and r.vin_key not in incoming_vins]
    return plan
