from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from pydantic import BaseModel

from inventory.publication import PublicationError
from inventory.report_parser import ReportParseError
from posting.audit import AuditLog
from posting.control import RedisStopFlag
from posting.logging_config import configure_logging, correlation_id
from posting.messaging import KafkaBus
from posting.photos import LocalPhotoStore
from posting.poster import PosterAlreadyRunningError, PostingScheduler
from posting.publisher import HttpListingPublisher, ListingPublisher
from posting.queueing import VehicleNotFoundError, queue_all_ready, queue_vehicle, unqueue_vehicle
from posting.settings import PostingSettings
from posting.status import posting_status
from posting.storage import PostgresStore, RedisCache
from posting.sync import CatalogUnavailableError, ingest_report, remove_vehicle

logger = logging.getLogger(__name__)


# ── Response Models ─────────────────────────────────────────────────

class SyncResponse(BaseModel):
    success: bool = True
    added: int
    updated: int
    unchanged: int
    removed: int
    skipped: int
    total: int


class VehicleStatusResponse(BaseModel):
    success: bool = True
    vehicle_id: str
    status: str
    queued_at: datetime | None = None


class QueueAllResponse(BaseModel):
    success: bool = True
    queued: int
    message: str | None = None


class PosterControlResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, bool]


# ── App Factory ─────────────────────────────────────────────────────

def create_app(publisher: ListingPublisher | None = None) -> FastAPI:
    settings = PostingSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    store = PostgresStore(dsn=settings.postgres_dsn)
    cache = RedisCache(redis_url=settings.redis_url)
    bus = KafkaBus(bootstrap_servers=settings.kafka_bootstrap_servers, client_id=settings.kafka_client_id)
    audit = AuditLog(store, bus)
    photos = LocalPhotoStore(settings.photo_root)
    poster = PostingScheduler(
        store=store,
        audit=audit,
        publisher=publisher or HttpListingPublisher(
            settings.publisher_base_url,
            api_key=settings.publisher_api_key,
            timeout=settings.publisher_timeout_seconds,
        ),
        stop_flag=RedisStopFlag(cache),
        config=settings.posting_config(),
    )
    background: set[asyncio.Task[Any]] = set()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await cache.connect()
        await store.connect()
        await bus.connect()
        try:
            yield
        finally:
            if poster.is_running:
                await poster.request_stop()
            for task in background:
                task.cancel()
            await cache.close()
            await store.close()
            await bus.close()

    app = FastAPI(title="Lot Poster API", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.poster = poster
    app.state.audit = audit

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Response:
        cid = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex[:12]
        correlation_id.set(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response

    # ── Inventory ───────────────────────────────────────────────────

    @app.post("/inventory/report", response_model=SyncResponse)
    async def upload_report(request: Request) -> SyncResponse:
        body = await request.body()
        if not body:
            raise HTTPException(status_code=400, detail="No file uploaded")
        try:
            summary = await ingest_report(
                store=store, photos=photos, pdf_bytes=body, config=settings.parser_config(),
            )
        except ReportParseError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CatalogUnavailableError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return SyncResponse(**summary.as_dict())

    @app.delete("/vehicles/{vehicle_id}")
    async def delete_vehicle(vehicle_id: str) -> dict[str, Any]:
        vehicle = await store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        await remove_vehicle(store, photos, vehicle)
        return {"success": True}

    # ── Queue ───────────────────────────────────────────────────────

    @app.post("/vehicles/{vehicle_id}/queue", response_model=VehicleStatusResponse)
    async def queue(vehicle_id: str) -> VehicleStatusResponse:
        try:
            vehicle = await queue_vehicle(store, audit, vehicle_id)
        except VehicleNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except PublicationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return VehicleStatusResponse(vehicle_id=vehicle.id, status=vehicle.status.value, queued_at=vehicle.queued_at)

    @app.post("/vehicles/{vehicle_id}/unqueue", response_model=VehicleStatusResponse)
    async def unqueue(vehicle_id: str) -> VehicleStatusResponse:
        try:
            vehicle = await unqueue_vehicle(store, audit, vehicle_id)
        except VehicleNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except PublicationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return VehicleStatusResponse(vehicle_id=vehicle.id, status=vehicle.status.value)

    @app.post("/vehicles/queue-ready", response_model=QueueAllResponse)
    async def queue_ready() -> QueueAllResponse:
        queued = await queue_all_ready(store, audit)
        return QueueAllResponse(queued=queued, message=None if queued else "No vehicles ready to queue")

    # ── Poster ──────────────────────────────────────────────────────

    @app.post("/poster/start", response_model=PosterControlResponse, status_code=status.HTTP_202_ACCEPTED)
    async def start_poster() -> PosterControlResponse:
        if poster.is_running:
            raise HTTPException(status_code=409, detail="Poster is already running")

        async def _run() -> None:
            try:
                await poster.run()
            except PosterAlreadyRunningError:
                logger.info("Poster start raced with a running poster")
            except Exception:
                logger.exception("Poster run aborted")

        task = asyncio.create_task(_run())
        background.add(task)
        task.add_done_callback(background.discard)
        return PosterControlResponse(message="Poster started")

    @app.post("/poster/stop", response_model=PosterControlResponse)
    async def stop_poster() -> PosterControlResponse:
        if not poster.is_running:
            return PosterControlResponse(success=False, message="Poster is not running")
        await poster.request_stop()
        return PosterControlResponse(message="Poster will stop after the current vehicle.")

    @app.get("/poster/status")
    async def get_poster_status() -> dict[str, Any]:
        report = await posting_status(
            store, today=datetime.now().date(), daily_limit=settings.daily_post_limit,
        )
        report["running"] = poster.is_running
        report["currentVehicleId"] = poster.current_vehicle_id
        return report

    # ── Health ──────────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/ready", response_model=ReadinessResponse)
    async def ready() -> ReadinessResponse:
        checks = {
            "postgres": await store.ping(),
            "redis": await cache.ping(),
            "kafka": await bus.ping(),
        }
        if not all(checks.values()):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ReadinessResponse(status="degraded", checks=checks).model_dump(),
            )
        return ReadinessResponse(status="ready", checks=checks)

    return app
