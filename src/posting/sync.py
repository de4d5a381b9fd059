from __future__ import annotations

import logging
from typing import Iterable, Sequence

from inventory.config import ParserConfig
from inventory.data_models import ParsedVehicle, PublicationStatus, SyncSummary, TextToken, VehicleRecord
from inventory.line_reconstruction import reconstruct_document
from inventory.reconciliation import plan_reconciliation
from inventory.report_parser import ReportParseError, parse_report_lines, publishable
from posting.pdf_tokens import extract_page_tokens
from posting.photos import PhotoStore
from posting.storage import PostgresStore

logger = logging.getLogger(__name__)


class CatalogUnavailableError(RuntimeError):
    pass


def parse_pages(pages: Iterable[Iterable[TextToken]], config: ParserConfig | None = None) -> list[ParsedVehicle]:
    config = config or ParserConfig()
    return parse_report_lines(reconstruct_document(pages, config.line_tolerance), config)


async def remove_vehicle(store: PostgresStore, photos: PhotoStore, vehicle: VehicleRecord) -> bool:
    """Delete a vehicle's photo assets, then the record itself."""
    if vehicle.vin:
        await photos.delete_for_vin(vehicle.vin)
    return await store.delete_vehicle(vehicle.id)


async def sync_inventory(
    *,
    store: PostgresStore,
    photos: PhotoStore,
    batch: Sequence[ParsedVehicle],
) -> SyncSummary:
    """Align the catalog with a freshly parsed report.

    New VINs are inserted as ``not_posted``; known VINs only get price and
    mileage refreshed; VINs missing from the report are treated as sold and
    removed with their photos. A failing record is counted as skipped.
    """
    try:
        catalog = await store.list_vehicles()
    except Exception as exc:
        raise CatalogUnavailableError(f"Failed to fetch existing inventory: {exc}") from exc

    plan = plan_reconciliation(batch, catalog)
    summary = SyncSummary(total=plan.incoming_total, unchanged=len(plan.unchanged))

    for vehicle in plan.missing_vin:
        logger.warning("Skipping %s %s %s: no VIN to reconcile on", vehicle.year, vehicle.make, vehicle.model)
        summary.skipped += 1

    for vehicle in plan.inserts:
        try:
            await store.insert_vehicle(
                {**vehicle.catalog_fields(), "status": PublicationStatus.NOT_POSTED, "photos": [], "description": None}
            )
            summary.added += 1
        except Exception as exc:
            logger.warning("Insert failed for %s: %s", vehicle.vin, exc)
            summary.skipped += 1

    for change in plan.updates:
        try:
            if not await store.update_vehicle(change.record.id, change.changes):
                raise LookupError(f"vehicle {change.record.id} vanished")
            summary.updated += 1
        except Exception as exc:
            logger.warning("Update failed for %s: %s", change.record.vin, exc)
            summary.skipped += 1

    for record in plan.removals:
        try:
            await remove_vehicle(store, photos, record)
            summary.removed += 1
        except Exception as exc:
            logger.warning("Removal failed for %s: %s", record.vin, exc)
            summary.skipped += 1

    logger.info(
        "Sync complete: %d added, %d updated, %d unchanged, %d removed, %d skipped",
        summary.added, summary.updated, summary.unchanged, summary.removed, summary.skipped,
    )
    return summary


async def ingest_report(
    *,
    store: PostgresStore,
    photos: PhotoStore,
    pdf_bytes: bytes,
    config: ParserConfig | None = None,
) -> SyncSummary:
    vehicles = parse_pages(extract_page_tokens(pdf_bytes), config)
    if not vehicles:
        raise ReportParseError("No vehicles could be parsed from this report")
    batch = publishable(vehicles)
    if not batch:
        raise ReportParseError("Report contains no vehicles with an asking price")
    return await sync_inventory(store=store, photos=photos, batch=batch)
