"""Owned, TTL-bounded cache of the database schema description.

One instance is created at startup and passed to whatever needs the schema
(prompt construction). The first caller on a miss loads it; concurrent
callers wait on the same lock and reuse the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

SchemaLoader = Callable[[], Awaitable[dict[str, Any]]]


class SchemaCache:
    """Get-or-populate cache with time-based and manual invalidation.

    ``ttl`` is in seconds; 0 keeps the schema until invalidate() is called.
    """

    def __init__(
        self,
        loader: SchemaLoader,
        ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self._value: dict[str, Any] | None = None
        self._loaded_at = 0.0

    def _cached(self) -> dict[str, Any] | None:
        if self._value is None:
            return None
        if self._ttl and self._clock() - self._loaded_at >= self._ttl:
            return None
        return self._value

    async def get_or_populate(self) -> dict[str, Any]:
        cached = self._cached()
        if cached is not None:
            return cached
        async with self._lock:
            cached = self._cached()
            if cached is None:
                cached = await self._loader()
                self._value = cached
                self._loaded_at = self._clock()
                logger.info("Schema cache filled (%d tables)", len(cached.get("tables", [])))
            return cached

    def invalidate(self) -> None:
        self._value = None
        logger.info("Schema cache invalidated")
