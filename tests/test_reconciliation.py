import pytest

from inventory.data_models import ParsedVehicle, PublicationStatus, VehicleRecord
from inventory.reconciliation import dedupe_by_vin, plan_reconciliation
from inventory.report_parser import ReportParseError
from posting.photos import LocalPhotoStore
from posting.sync import CatalogUnavailableError, ingest_report, sync_inventory

from factories import seed_vehicle, tokens_for_lines


def _parsed(vin, price="10000", mileage="50000", make="Ford"):
    return ParsedVehicle(year="2016", make=make, model="Fusion SE", vin=vin, price=price, mileage=mileage)


def _record(id_, vin, price="10000", mileage="50000"):
    return VehicleRecord(id=id_, year="2016", make="Ford", model="Fusion SE", vin=vin, price=price, mileage=mileage)


@pytest.fixture
def photos(tmp_path):
    return LocalPhotoStore(tmp_path / "photos")


# ── Pure planning ───────────────────────────────────────────────────


def test_plan_added_updated_removed():
    catalog = [_record("1", "VINA"), _record("2", "VINB")]
    batch = [_parsed("VINB", price="9500"), _parsed("VINC")]
    plan = plan_reconciliation(batch, catalog)
    assert [v.vin for v in plan.inserts] == ["VINC"]
    assert [(u.record.id, u.changes) for u in plan.updates] == [("2", {"price": "9500"})]
    assert [r.id for r in plan.removals] == ["1"]


def test_plan_matches_vins_case_insensitively():
    plan = plan_reconciliation([_parsed("1a2b3c4d5e6f7g8h9")], [_record("1", "1A2B3C4D5E6F7G8H9")])
    assert plan.inserts == []
    assert plan.removals == []
    assert [r.id for r in plan.unchanged] == ["1"]


def test_plan_never_touches_catalog_records_without_vin():
    plan = plan_reconciliation([_parsed("VINA")], [_record("1", None), _record("2", "")])
    assert plan.removals == []
    assert [v.vin for v in plan.inserts] == ["VINA"]


def test_dedupe_keeps_first_occurrence_and_separates_missing_vins():
    unique, missing = dedupe_by_vin([_parsed("abc", price="1"), _parsed("ABC", price="2"), _parsed("")])
    assert [v.price for v in unique] == ["1"]
    assert len(missing) == 1


# ── Applying against the store ──────────────────────────────────────


@pytest.mark.asyncio
async def test_sync_scenario_and_final_vin_set(store, photos):
    await seed_vehicle(store, vin="VINA")
    await seed_vehicle(store, vin="VINB", price="12995")

    summary = await sync_inventory(
        store=store, photos=photos, batch=[_parsed("VINB", price="11995"), _parsed("VINC")],
    )
    assert (summary.added, summary.updated, summary.removed, summary.skipped) == (1, 1, 1, 0)
    assert summary.total == 2
    assert {v.vin for v in await store.list_vehicles()} == {"VINB", "VINC"}


@pytest.mark.asyncio
async def test_sync_is_idempotent(store, photos):
    batch = [_parsed("VINA"), _parsed("VINB")]
    first = await sync_inventory(store=store, photos=photos, batch=batch)
    second = await sync_inventory(store=store, photos=photos, batch=batch)
    assert first.added == 2
    assert (second.added, second.updated, second.removed, second.unchanged) == (0, 0, 0, 2)


@pytest.mark.asyncio
async def test_update_preserves_generated_content_and_publication_state(store, photos):
    vid = await seed_vehicle(
        store, vin="VINB", status=PublicationStatus.POSTED, photos=["vinb/1.jpg"],
        description="Great commuter.", listing_url="https://example.test/item/1",
    )
    await sync_inventory(store=store, photos=photos, batch=[_parsed("vinb", price="8000", mileage="70000", make="Other")])

    record = await store.get_vehicle(vid)
    assert record.price == "8000"
    assert record.mileage == "70000"
    assert record.make == "Honda"
    assert record.photos == ["vinb/1.jpg"]
    assert record.description == "Great commuter."
    assert record.status is PublicationStatus.POSTED
    assert record.listing_url == "https://example.test/item/1"


@pytest.mark.asyncio
async def test_new_vehicles_start_unposted_without_content(store, photos):
    await sync_inventory(store=store, photos=photos, batch=[_parsed("NEWVIN")])
    (record,) = await store.list_vehicles()
    assert record.status is PublicationStatus.NOT_POSTED
    assert record.photos == []
    assert record.description is None


@pytest.mark.asyncio
async def test_sold_vehicle_photos_are_deleted(store, photos):
    await seed_vehicle(store, vin="SOLDVIN1")
    folder = photos.folder_for("SOLDVIN1")
    folder.mkdir(parents=True)
    (folder / "1.jpg").write_bytes(b"jpg")

    summary = await sync_inventory(store=store, photos=photos, batch=[_parsed("OTHER")])
    assert summary.removed == 1
    assert not folder.exists()


@pytest.mark.asyncio
async def test_single_record_failure_is_skipped(store, photos, monkeypatch):
    bad_id = await seed_vehicle(store, vin="VINA", price="1")
    await seed_vehicle(store, vin="VINB", price="1")
    original = store.update_vehicle

    async def flaky_update(vehicle_id, values):
        if vehicle_id == bad_id:
            raise RuntimeError("row locked")
        return await original(vehicle_id, values)

    monkeypatch.setattr(store, "update_vehicle", flaky_update)
    summary = await sync_inventory(
        store=store, photos=photos, batch=[_parsed("VINA"), _parsed("VINB"), _parsed("VINC")],
    )
    assert (summary.added, summary.updated, summary.skipped) == (1, 1, 1)


@pytest.mark.asyncio
async def test_vinless_parsed_vehicles_are_skipped(store, photos):
    summary = await sync_inventory(store=store, photos=photos, batch=[_parsed(""), _parsed("VINA")])
    assert summary.skipped == 1
    assert summary.added == 1


@pytest.mark.asyncio
async def test_catalog_fetch_failure_aborts(store, photos, monkeypatch):
    async def broken(**_):
        raise ConnectionError("db down")

    monkeypatch.setattr(store, "list_vehicles", broken)
    with pytest.raises(CatalogUnavailableError):
        await sync_inventory(store=store, photos=photos, batch=[_parsed("VINA")])


# ── Report ingest ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_ingest_report_end_to_end(store, photos, monkeypatch):
    page = tokens_for_lines([
        "2015 Ford Edge SEL",
        "$8,495",
        "VIN: 2FMTK4J85FBB65810",
        "2012 Dodge Avenger SE",
        "VIN: 1C3CDZAB5CN100001",
        "Page 1 of 1",
    ])
    monkeypatch.setattr("posting.sync.extract_page_tokens", lambda _: iter([page]))

    summary = await ingest_report(store=store, photos=photos, pdf_bytes=b"%PDF")
    assert summary.added == 1
    (record,) = await store.list_vehicles()
    assert record.vin == "2FMTK4J85FBB65810"
    assert record.price == "8495"


@pytest.mark.asyncio
async def test_ingest_report_without_vehicles_fails(store, photos, monkeypatch):
    monkeypatch.setattr("posting.sync.extract_page_tokens", lambda _: iter([tokens_for_lines(["Page 1 of 1"])]))
    with pytest.raises(ReportParseError):
        await ingest_report(store=store, photos=photos, pdf_bytes=b"%PDF")
