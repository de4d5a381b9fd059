"""Command line entry point: ``lot-poster run | serve-cron | events | ingest <report.pdf>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Sequence

from posting.audit import AuditLog
from posting.control import RedisStopFlag
from posting.logging_config import configure_logging
from posting.messaging import POSTING_EVENTS_TOPIC, KafkaBus
from posting.photos import LocalPhotoStore
from posting.poster import PostingScheduler
from posting.publisher import HttpListingPublisher
from posting.scheduler import build_poster_scheduler
from posting.settings import PostingSettings
from posting.storage import PostgresStore, RedisCache
from posting.sync import ingest_report

logger = logging.getLogger(__name__)


class Runtime:
    def __init__(self, settings: PostingSettings) -> None:
        self.settings = settings
        self.store = PostgresStore(dsn=settings.postgres_dsn)
        self.cache = RedisCache(redis_url=settings.redis_url)
        self.bus = KafkaBus(bootstrap_servers=settings.kafka_bootstrap_servers, client_id=settings.kafka_client_id)
        self.audit = AuditLog(self.store, self.bus)
        self.photos = LocalPhotoStore(settings.photo_root)
        self.poster = PostingScheduler(
            store=self.store,
            audit=self.audit,
            publisher=HttpListingPublisher(
                settings.publisher_base_url,
                api_key=settings.publisher_api_key,
                timeout=settings.publisher_timeout_seconds,
            ),
            stop_flag=RedisStopFlag(self.cache),
            config=settings.posting_config(),
        )

    async def __aenter__(self) -> Runtime:
        await self.cache.connect()
        await self.store.connect()
        await self.bus.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.cache.close()
        await self.store.close()
        await self.bus.close()


async def _run_once(settings: PostingSettings) -> int:
    async with Runtime(settings) as rt:
        summary = await rt.poster.run()
    print(json.dumps(summary.as_dict()))
    return 0


async def _serve_cron(settings: PostingSettings) -> int:
    async with Runtime(settings) as rt:
        scheduler = build_poster_scheduler(settings.poster_cron, rt.poster.run)
        scheduler.start()
        logger.info("Poster scheduled with cron '%s'", settings.poster_cron)
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)
    return 0


async def _ingest(settings: PostingSettings, path: Path) -> int:
    async with Runtime(settings) as rt:
        summary = await ingest_report(
            store=rt.store, photos=rt.photos, pdf_bytes=path.read_bytes(), config=settings.parser_config(),
        )
    print(json.dumps(summary.as_dict()))
    return 0


async def _tail_events(settings: PostingSettings) -> int:
    async with Runtime(settings) as rt:
        if not rt.bus.connected:
            logger.error("Kafka is unreachable at %s, no posting events to follow", settings.kafka_bootstrap_servers)
            return 1

        async def _print(event: dict) -> None:
            print(json.dumps(event), flush=True)

        await rt.bus.consume_forever(POSTING_EVENTS_TOPIC, _print, asyncio.Event())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lot-poster", description="Inventory sync and marketplace poster")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="post queued vehicles until the daily limit or the queue is exhausted")
    sub.add_parser("serve-cron", help="run the poster on the POSTER_CRON schedule")
    sub.add_parser("events", help="print posting log events from the event bus as JSON lines")
    ingest = sub.add_parser("ingest", help="sync the catalog from a pricing report PDF")
    ingest.add_argument("report", type=Path)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = PostingSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)
    if args.command == "run":
        return asyncio.run(_run_once(settings))
    if args.command == "serve-cron":
        try:
            return asyncio.run(_serve_cron(settings))
        except KeyboardInterrupt:
            return 0
    if args.command == "events":
        try:
            return asyncio.run(_tail_events(settings))
        except KeyboardInterrupt:
            return 0
    return asyncio.run(_ingest(settings, args.report))


if __name__ == "__main__":
    raise SystemExit(main())
