from __future__ import annotations

import asyncio
from typing import Protocol

from posting.storage import RedisCache

STOP_KEY = "poster:stop"
STOP_TTL_SECONDS = 24 * 3600


class StopFlag(Protocol):
    async def is_set(self) -> bool: ...

    async def set(self) -> None: ...

    async def clear(self) -> None: ...


class LocalStopFlag:
    """Stop flag shared by tasks of one process."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    async def is_set(self) -> bool:
        return self._event.is_set()

    async def set(self) -> None:
        self._event.set()

    async def clear(self) -> None:
        self._event.clear()


class RedisStopFlag:
    """Stop flag visible across processes, e.g. API process and CLI worker."""

    def __init__(self, cache: RedisCache, key: str = STOP_KEY) -> None:
        self.cache = cache
        self.key = key

    async def is_set(self) -> bool:
        value = await self.cache.get_json(self.key)
        return bool(value and value.get("stop"))

    async def set(self) -> None:
        await self.cache.set_json(self.key, {"stop": True}, ttl_seconds=STOP_TTL_SECONDS)

    async def clear(self) -> None:
        await self.cache.delete(self.key)
