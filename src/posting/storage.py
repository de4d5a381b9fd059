from __future__ import annotations

import asyncio
import copy
import json
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

import redis.asyncio as redis
from sqlalchemy import JSON, Column, Date, DateTime, Integer, MetaData, String, Table, Text, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from inventory.data_models import AuditLogEntry, DailyPostCount, PublicationStatus, VehicleRecord


metadata = MetaData()

vehicles_table = Table(
    "vehicles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("year", String(4), nullable=False),
    Column("make", String(64), nullable=False),
    Column("model", String(128), nullable=False, default=""),
    Column("trim", String(128), nullable=True),
    Column("vin", String(32), nullable=True, index=True),
    Column("stock_number", String(32), nullable=False, default=""),
    Column("price", String(16), nullable=False, default=""),
    Column("mileage", String(16), nullable=True),
    Column("body", String(128), nullable=False, default=""),
    Column("color", String(64), nullable=False, default=""),
    Column("vehicle_class", String(64), nullable=False, default=""),
    Column("recall_status", String(64), nullable=False, default=""),
    Column("disposition", String(64), nullable=False, default=""),
    Column("photos", JSON, nullable=False, default=list),
    Column("description", Text, nullable=True),
    Column("status", String(16), nullable=False, default=PublicationStatus.NOT_POSTED.value, index=True),
    Column("queued_at", DateTime(timezone=True), nullable=True),
    Column("posting_started_at", DateTime(timezone=True), nullable=True),
    Column("posted_at", DateTime(timezone=True), nullable=True),
    Column("listing_url", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

daily_count_table = Table(
    "posting_daily_count",
    metadata,
    Column("date", Date, primary_key=True),
    Column("count", Integer, nullable=False, default=0),
    Column("last_post_at", DateTime(timezone=True), nullable=True),
)

posting_log_table = Table(
    "posting_log",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("vehicle_id", String(36), nullable=False, index=True),
    Column("action", String(32), nullable=False),
    Column("details", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

_VEHICLE_DEFAULTS: dict[str, Any] = {
    "model": "",
    "trim": None,
    "vin": None,
    "stock_number": "",
    "price": "",
    "mileage": None,
    "body": "",
    "color": "",
    "vehicle_class": "",
    "recall_status": "",
    "disposition": "",
    "photos": [],
    "description": None,
    "status": PublicationStatus.NOT_POSTED.value,
    "queued_at": None,
    "posting_started_at": None,
    "posted_at": None,
    "listing_url": None,
}


def _status_value(status: PublicationStatus | str) -> str:
    return status.value if isinstance(status, PublicationStatus) else status


def _queue_order(row: dict[str, Any]) -> tuple[bool, datetime]:
    queued_at = row.get("queued_at")
    return (queued_at is None, queued_at or datetime.min.replace(tzinfo=timezone.utc))


class RedisCache:
    def __init__(self, redis_url: str, namespace: str = "lotposter") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Any = None
        self._mem: dict[str, str] = {}
        self._expiry: dict[str, float] = {}

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def connect(self) -> None:
        self._client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await asyncio.wait_for(self._client.ping(), timeout=0.75)
        except Exception:
            self._client = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await asyncio.wait_for(self._client.ping(), timeout=0.75))
        except Exception:
            return False

    async def get_json(self, key: str) -> dict[str, Any] | None:
        full_key = self._build_key(key)
        if self._client is not None:
            raw = await self._client.get(full_key)
            return None if raw is None else json.loads(raw)
        now = asyncio.get_running_loop().time()
        if full_key in self._expiry and now > self._expiry[full_key]:
            self._mem.pop(full_key, None)
            self._expiry.pop(full_key, None)
            return None
        raw = self._mem.get(full_key)
        return None if raw is None else json.loads(raw)

    async def set_json(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        full_key = self._build_key(key)
        payload = json.dumps(value)
        if self._client is not None:
            await self._client.set(full_key, payload, ex=ttl_seconds)
            return
        self._mem[full_key] = payload
        self._expiry[full_key] = asyncio.get_running_loop().time() + ttl_seconds

    async def delete(self, key: str) -> None:
        full_key = self._build_key(key)
        if self._client is not None:
            await self._client.delete(full_key)
            return
        self._mem.pop(full_key, None)
        self._expiry.pop(full_key, None)


class PostgresStore:
    """Catalog, daily counter and posting log.

    Falls back to process memory when the database is unreachable at connect
    time, with the same semantics as the SQL path.
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.engine: AsyncEngine | None = None
        self._fallback_mode = False
        self._mem_vehicles: dict[str, dict[str, Any]] = {}
        self._mem_daily: dict[date, dict[str, Any]] = {}
        self._mem_log: list[dict[str, Any]] = []

    async def connect(self) -> None:
        try:
            self.engine = create_async_engine(self.dsn, future=True)
            await self.init_schema()
        except Exception:
            self._fallback_mode = True
            self.engine = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def ping(self) -> bool:
        if self.engine is None:
            return False
        if self._fallback_mode:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
            return True
        except Exception:
            return False

    async def init_schema(self) -> None:
        if self.engine is None:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    # ── Vehicles ────────────────────────────────────────────────────

    async def list_vehicles(
        self,
        *,
        status: PublicationStatus | str | None = None,
        with_vin: bool = False,
    ) -> list[VehicleRecord]:
        if self.engine is None:
            rows = list(self._mem_vehicles.values())
            if status is not None:
                rows = [r for r in rows if r["status"] == _status_value(status)]
            if with_vin:
                rows = [r for r in rows if r.get("vin")]
            rows.sort(key=lambda r: r["created_at"])
            return [VehicleRecord.from_row(copy.deepcopy(r)) for r in rows]
        stmt = select(vehicles_table).order_by(vehicles_table.c.created_at)
        if status is not None:
            stmt = stmt.where(vehicles_table.c.status == _status_value(status))
        if with_vin:
            stmt = stmt.where(vehicles_table.c.vin.is_not(None))
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [VehicleRecord.from_row(dict(r._mapping)) for r in rows]

    async def list_queued(self) -> list[VehicleRecord]:
        """Queued vehicles, oldest ``queued_at`` first."""
        if self.engine is None:
            rows = [r for r in self._mem_vehicles.values() if r["status"] == PublicationStatus.QUEUED.value]
            rows.sort(key=_queue_order)
            return [VehicleRecord.from_row(copy.deepcopy(r)) for r in rows]
        stmt = (
            select(vehicles_table)
            .where(vehicles_table.c.status == PublicationStatus.QUEUED.value)
            .order_by(vehicles_table.c.queued_at.asc().nulls_last())
        )
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [VehicleRecord.from_row(dict(r._mapping)) for r in rows]

    async def count_vehicles(self, status: PublicationStatus | str) -> int:
        if self.engine is None:
            return sum(1 for r in self._mem_vehicles.values() if r["status"] == _status_value(status))
        stmt = select(func.count()).select_from(vehicles_table).where(vehicles_table.c.status == _status_value(status))
        async with self.engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def get_vehicle(self, vehicle_id: str) -> VehicleRecord | None:
        if self.engine is None:
            row = self._mem_vehicles.get(vehicle_id)
            return None if row is None else VehicleRecord.from_row(copy.deepcopy(row))
        stmt = select(vehicles_table).where(vehicles_table.c.id == vehicle_id)
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        return VehicleRecord.from_row(dict(row._mapping)) if row else None

    async def insert_vehicle(self, record: dict[str, Any]) -> str:
        vehicle_id = str(uuid4())
        row = {**_VEHICLE_DEFAULTS, **record, "id": vehicle_id, "created_at": datetime.now(timezone.utc)}
        row["status"] = _status_value(row["status"])
        if self.engine is None:
            self._mem_vehicles[vehicle_id] = copy.deepcopy(row)
            return vehicle_id
        async with self.engine.begin() as conn:
            await conn.execute(insert(vehicles_table).values(**row))
        return vehicle_id

    async def update_vehicle(self, vehicle_id: str, values: dict[str, Any]) -> bool:
        values = dict(values)
        if "status" in values:
            values["status"] = _status_value(values["status"])
        if self.engine is None:
            row = self._mem_vehicles.get(vehicle_id)
            if row is None:
                return False
            row.update(copy.deepcopy(values))
            return True
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(vehicles_table).where(vehicles_table.c.id == vehicle_id).values(**values)
            )
        return result.rowcount > 0

    async def delete_vehicle(self, vehicle_id: str) -> bool:
        if self.engine is None:
            return self._mem_vehicles.pop(vehicle_id, None) is not None
        async with self.engine.begin() as conn:
            result = await conn.execute(delete(vehicles_table).where(vehicles_table.c.id == vehicle_id))
        return result.rowcount > 0

    # ── Daily post counter ──────────────────────────────────────────

    async def get_daily_count(self, day: date) -> DailyPostCount:
        if self.engine is None:
            row = self._mem_daily.get(day)
            if row is None:
                return DailyPostCount(day=day)
            return DailyPostCount(day=day, count=row["count"], last_post_at=row["last_post_at"])
        stmt = select(daily_count_table).where(daily_count_table.c.date == day)
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).first()
        if row is None:
            return DailyPostCount(day=day)
        return DailyPostCount(day=day, count=row.count, last_post_at=row.last_post_at)

    async def increment_daily_count(self, day: date, at: datetime | None = None) -> int:
        """Increment-if-exists-else-insert in one statement; returns the new count."""
        at = at or datetime.now(timezone.utc)
        if self.engine is None:
            row = self._mem_daily.setdefault(day, {"count": 0, "last_post_at": None})
            row["count"] += 1
            row["last_post_at"] = at
            return row["count"]
        stmt = pg_insert(daily_count_table).values(date=day, count=1, last_post_at=at)
        stmt = stmt.on_conflict_do_update(
            index_elements=[daily_count_table.c.date],
            set_={"count": daily_count_table.c.count + 1, "last_post_at": stmt.excluded.last_post_at},
        ).returning(daily_count_table.c.count)
        async with self.engine.begin() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    # ── Posting log ─────────────────────────────────────────────────

    async def append_log(self, vehicle_id: str, action: str, details: str | None = None) -> AuditLogEntry:
        row = {
            "id": str(uuid4()),
            "vehicle_id": vehicle_id,
            "action": action,
            "details": details,
            "created_at": datetime.now(timezone.utc),
        }
        if self.engine is None:
            self._mem_log.append(row)
        else:
            async with self.engine.begin() as conn:
                await conn.execute(insert(posting_log_table).values(**row))
        return AuditLogEntry(**row)

    async def recent_log(self, limit: int = 10, vehicle_id: str | None = None) -> list[AuditLogEntry]:
        """Most recent entries first."""
        if self.engine is None:
            rows = [r for r in self._mem_log if vehicle_id is None or r["vehicle_id"] == vehicle_id]
            return [AuditLogEntry(**r) for r in reversed(rows[-limit:])]
        stmt = select(posting_log_table).order_by(posting_log_table.c.created_at.desc()).limit(limit)
        if vehicle_id is not None:
            stmt = stmt.where(posting_log_table.c.vehicle_id == vehicle_id)
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [AuditLogEntry(**dict(r._mapping)) for r in rows]
