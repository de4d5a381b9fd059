from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

logger = logging.getLogger(__name__)

POSTING_EVENTS_TOPIC = "posting_events"
FALLBACK_QUEUE_SIZE = 1000


class KafkaBus:
    """Kafka producer/consumer with an in-process queue when the broker is unreachable."""

    def __init__(self, bootstrap_servers: str, client_id: str, fallback_queue_size: int = FALLBACK_QUEUE_SIZE) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self._producer: AIOKafkaProducer | None = None
        self._queues: dict[str, asyncio.Queue[dict[str, Any]]] = defaultdict(
            lambda: asyncio.Queue(maxsize=fallback_queue_size)
        )

    @property
    def connected(self) -> bool:
        return self._producer is not None

    async def connect(self) -> None:
        producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        )
        try:
            await asyncio.wait_for(producer.start(), timeout=1.0)
            self._producer = producer
        except Exception:
            logger.warning("Kafka unavailable at %s, using in-process queue", self.bootstrap_servers)
            self._producer = None
            try:
                await producer.stop()
            except Exception as exc:
                logger.debug("Kafka producer cleanup failed: %s", exc)

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()

    async def ping(self) -> bool:
        if self._producer is None:
            return False
        try:
            partitions = await self._producer.partitions_for(POSTING_EVENTS_TOPIC)
            return partitions is not None
        except Exception:
            return False

    async def publish(self, topic: str, value: dict[str, Any], key: str | None = None) -> None:
        if self._producer is not None:
            encoded_key = None if key is None else key.encode("utf-8")
            await self._producer.send_and_wait(topic, value=value, key=encoded_key)
            return
        try:
            self._queues[topic].put_nowait(value)
        except asyncio.QueueFull:
            logger.warning("In-process %s queue is full, dropping event", topic)

    async def consume_forever(
        self,
        topic: str,
        handler: Callable[[dict[str, Any]], Awaitable[None]],
        stop_event: asyncio.Event,
    ) -> None:
        if self._producer is not None:
            consumer = AIOKafkaConsumer(
                topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=f"{self.client_id}-{topic}",
                value_deserializer=lambda v: json.loads(v.decode("utf-8")),
            )
            await consumer.start()
            try:
                while not stop_event.is_set():
                    batch = await consumer.getmany(timeout_ms=500)
                    for messages in batch.values():
                        for msg in messages:
                            await handler(msg.value)
            finally:
                await consumer.stop()
            return

        queue = self._queues[topic]
        while not stop_event.is_set():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=0.5)
            except TimeoutError:
                continue
            await handler(event)
