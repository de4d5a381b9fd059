"""
Single-worker posting loop.

One vehicle is published at a time with a randomized pause between attempts,
under a persisted per-day cap. Stopping is cooperative: the flag is honoured
before each vehicle and during pauses, never in the middle of a publish call.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable

from inventory import publication
from inventory.config import PostingConfig
from inventory.data_models import PosterRunSummary, PublicationStatus, PublishResult, VehicleRecord
from inventory.pacing import random_delay_seconds, slots_remaining
from posting.audit import ACTION_FAILED, ACTION_POSTED, AuditLog
from posting.control import StopFlag
from posting.logging_config import new_run_id
from posting.publisher import ListingPublisher
from posting.queueing import recover_stuck_postings
from posting.storage import PostgresStore

logger = logging.getLogger(__name__)


class PosterAlreadyRunningError(RuntimeError):
    pass


class PostingScheduler:
    def __init__(
        self,
        *,
        store: PostgresStore,
        audit: AuditLog,
        publisher: ListingPublisher,
        stop_flag: StopFlag,
        config: PostingConfig | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.audit = audit
        self.publisher = publisher
        self.stop_flag = stop_flag
        self.config = config or PostingConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._clock = clock
        self._running = False
        self.current_vehicle_id: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def _today(self) -> date:
        # Quota days follow the server's local calendar.
        return self._clock().date()

    def _now_utc(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    async def request_stop(self) -> None:
        await self.stop_flag.set()

    async def run(self) -> PosterRunSummary:
        if self._running:
            raise PosterAlreadyRunningError("Poster is already running")
        self._running = True
        run_id = new_run_id()
        logger.info("Poster run %s starting", run_id)
        try:
            # A stop request only cancels the run that is in progress when it is made.
            if await self.stop_flag.is_set():
                logger.info("Discarding stop request left over from an earlier run")
            await self.stop_flag.clear()
            await recover_stuck_postings(
                self.store,
                self.audit,
                timedelta(minutes=self.config.stuck_posting_minutes),
                now=self._now_utc(),
            )
            summary = await self._run()
        finally:
            self._running = False
            self.current_vehicle_id = None
            await self.stop_flag.clear()
        logger.info(
            "Poster run %s finished (%s): %d/%d posted, daily total %d/%d, %d still queued",
            run_id, summary.reason, summary.succeeded, summary.attempted,
            summary.daily_count_after, self.config.daily_max_posts, summary.remaining_queued,
        )
        return summary

    async def _run(self) -> PosterRunSummary:
        daily_max = self.config.daily_max_posts
        summary = PosterRunSummary()
        posted_today = (await self.store.get_daily_count(self._today())).count
        logger.info("Daily posts so far: %d/%d", posted_today, daily_max)

        if posted_today >= daily_max:
            summary.reason = "daily_limit_reached"
            return await self._finish(summary)

        queue = await self.store.list_queued()
        batch = queue[: slots_remaining(posted_today, daily_max)]
        if not batch:
            summary.reason = "queue_empty"
            return await self._finish(summary)
        logger.info("Will post %d of %d queued vehicles", len(batch), len(queue))

        for index, queued in enumerate(batch):
            if await self.stop_flag.is_set():
                summary.stopped = True
                summary.reason = "stopped"
                break
            if (await self.store.get_daily_count(self._today())).count >= daily_max:
                summary.reason = "daily_limit_reached"
                break
            vehicle = await self.store.get_vehicle(queued.id)
            if vehicle is None or vehicle.status is not PublicationStatus.QUEUED:
                logger.info("Vehicle %s left the queue before its turn, skipping", queued.id)
                continue

            await self._post_one(vehicle, summary)

            if index < len(batch) - 1:
                await self._pause(random_delay_seconds(
                    self._rng, self.config.min_delay_seconds, self.config.max_delay_seconds
                ))

        return await self._finish(summary)

    async def _finish(self, summary: PosterRunSummary) -> PosterRunSummary:
        summary.daily_count_after = (await self.store.get_daily_count(self._today())).count
        summary.remaining_queued = len(await self.store.list_queued())
        return summary

    async def _post_one(self, vehicle: VehicleRecord, summary: PosterRunSummary) -> None:
        started = self._now_utc()
        await self.store.update_vehicle(vehicle.id, publication.begin_posting(vehicle, started))
        posting = replace(vehicle, status=PublicationStatus.POSTING, posting_started_at=started)
        self.current_vehicle_id = vehicle.id
        summary.attempted += 1
        logger.info("Posting %s (VIN %s)", vehicle.title, vehicle.vin, extra={"vehicle_id": vehicle.id})

        try:
            result = await self.publisher.publish(posting)
        except Exception as exc:
            logger.exception("Publisher raised for %s", vehicle.id, extra={"vehicle_id": vehicle.id})
            result = PublishResult(success=False, error=str(exc) or exc.__class__.__name__)

        finished = self._now_utc()
        if result.success:
            await self.store.update_vehicle(vehicle.id, publication.mark_posted(posting, finished, result.listing_url))
            await self.store.increment_daily_count(self._today(), finished)
            await self.audit.append(vehicle.id, ACTION_POSTED, result.listing_url)
            summary.succeeded += 1
            logger.info("Posted %s: %s", vehicle.title, result.listing_url or "no listing url", extra={"vehicle_id": vehicle.id})
        else:
            await self.store.update_vehicle(vehicle.id, publication.mark_failed(posting))
            await self.audit.append(vehicle.id, ACTION_FAILED, result.error)
            summary.failed += 1
            logger.warning("Failed to post %s: %s", vehicle.title, result.error, extra={"vehicle_id": vehicle.id})
        self.current_vehicle_id = None

    async def _pause(self, seconds: float) -> None:
        logger.info("Waiting %.1f minutes before next post", seconds / 60)
        remaining = seconds
        while remaining > 0:
            if await self.stop_flag.is_set():
                return
            step = min(remaining, self.config.stop_poll_seconds)
            await self._sleep(step)
            remaining -= step
