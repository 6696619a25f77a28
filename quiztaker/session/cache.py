"""
Small TTL cache for read-mostly API data (quiz lists, settings).

Never used for attempt state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict

from quiztaker.attempt.scheduler import SystemClock
from quiztaker.logger import setup_logger

logger = setup_logger(__name__)


class CacheExpiry(IntEnum):
    """Expiry tiers in seconds."""

    SHORT = 2 * 60
    MEDIUM = 5 * 60
    LONG = 30 * 60
    SESSION = 24 * 60 * 60


@dataclass
class CacheEntry:
    value: Any
    timestamp: float
    expiry: float


class TTLCache:
    def __init__(self, clock=None) -> None:
        self.clock = clock or SystemClock()
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str, expiry: float | None = None) -> Any:
        """Cached value, or None if missing or older than its expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        max_age = entry.expiry if expiry is None else expiry
        if self.clock.now() - entry.timestamp > max_age:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, expiry: float = CacheExpiry.MEDIUM) -> None:
        self._entries[key] = CacheEntry(value, self.clock.now(), float(expiry))

    def clear(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def info(self) -> Dict[str, Dict[str, Any]]:
        now = self.clock.now()
        return {
            key: {
                "age": now - entry.timestamp,
                "expired": now - entry.timestamp > entry.expiry,
            }
            for key, entry in self._entries.items()
        }

    async def warm(
        self,
        fetchers: Dict[str, Callable[[], Awaitable[Any]]],
        expiry: float = CacheExpiry.MEDIUM,
    ) -> Dict[str, bool]:
        """Prefetch keys concurrently. Returns per-key success."""
        keys = list(fetchers)
        results = await asyncio.gather(
            *(fetchers[key]() for key in keys), return_exceptions=True
        )
        report: Dict[str, bool] = {}
        for key, result in zip(keys, results):
            if isinstance(result, Exception):
                logger.warning(f"⚠️  Cache warm failed for {key}: {result}")
                report[key] = False
            else:
                self.set(key, result, expiry)
                report[key] = True
        logger.info(f"🔥 Cache warmed: {sum(report.values())}/{len(report)} keys")
        return report
