"""
Request de-duplicating cache for idempotent reads

- Live entries (younger than the TTL) are served without calling the fetcher
- Concurrent callers for the same key share ONE in-flight fetch
- Transient failures are retried after a fixed backoff
- Failures are never cached
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from services.errors import is_transient

logger = logging.getLogger(__name__)

T = TypeVar('T')
Fetcher = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    captured_at: float  # clock() reading when the value was stored


class RequestCache:
    """
    In-memory cache keyed by logical request identity (not URL).

    Single event loop only: the entry and pending maps are mutated without a
    lock. A multi-threaded port must guard both maps.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        retry_delay: float = 1.0,
        default_retries: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.retry_delay = retry_delay
        self.default_retries = default_retries
        self.clock = clock

        self.entries: Dict[str, CacheEntry] = {}
        self.pending: Dict[str, asyncio.Task] = {}

        # Bumped by clear()/clear_key(); a fetch only stores its value if
        # nothing was cleared while it was in flight
        self._epoch = 0
        self._key_generations: Dict[str, int] = {}

    async def get(self, key: str, fetcher: Fetcher, retries: Optional[int] = None) -> Any:
        """
        Return the cached value for `key`, joining or starting a fetch if needed.

        Args:
            key: Logical request identity, e.g. 'dashboard-stats'
            fetcher: Zero-argument coroutine function producing the value
            retries: Extra attempts after a transient failure (default 2)

        Raises:
            Whatever `fetcher` raised on its last attempt
        """
        if retries is None:
            retries = self.default_retries
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")

        entry = self.entries.get(key)
        if entry is not None:
            if self._is_live(entry):
                return entry.value
            # Expired entries are never returned
            del self.entries[key]

        task = self.pending.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._fetch_with_retry(key, fetcher, retries, self._generation(key))
            )
            self.pending[key] = task
        else:
            logger.debug(f"Coalescing request for '{key}'")

        # A cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    async def _fetch_with_retry(
        self,
        key: str,
        fetcher: Fetcher,
        retries: int,
        generation: Tuple[int, int],
    ) -> Any:
        try:
            while True:
                try:
                    value = await fetcher()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if retries > 0 and is_transient(e):
                        logger.warning(
                            f"Fetch for '{key}' failed ({e}); retrying in {self.retry_delay}s "
                            f"({retries} retries left)"
                        )
                        retries -= 1
                        await asyncio.sleep(self.retry_delay)
                        continue
                    logger.error(f"Fetch for '{key}' failed: {e}")
                    raise

                if generation == self._generation(key):
                    self.entries[key] = CacheEntry(value=value, captured_at=self.clock())
                else:
                    logger.debug(f"Cache for '{key}' was cleared mid-flight; result not stored")
                return value
        finally:
            if self.pending.get(key) is asyncio.current_task():
                del self.pending[key]

    def _is_live(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.captured_at < self.ttl

    def _generation(self, key: str) -> Tuple[int, int]:
        return (self._epoch, self._key_generations.get(key, 0))

    def clear(self):
        """Drop every entry and pending marker"""
        self.entries.clear()
        self.pending.clear()
        self._epoch += 1

    def clear_key(self, key: str):
        """Drop one key so the next get() goes to the network"""
        self.entries.pop(key, None)
        self.pending.pop(key, None)
        self._key_generations[key] = self._key_generations.get(key, 0) + 1

    def invalidate_prefix(self, prefix: str):
        """Drop every key starting with `prefix` (e.g. all pages of 'admin-reports:')"""
        keys = {k for k in self.entries if k.startswith(prefix)}
        keys.update(k for k in self.pending if k.startswith(prefix))
        for key in keys:
            self.clear_key(key)

    def cleanup_expired(self):
        """Remove all expired entries"""
        expired_keys = [k for k, entry in self.entries.items() if not self._is_live(entry)]
        for key in expired_keys:
            del self.entries[key]

    def peek(self, key: str) -> Optional[Any]:
        """Live cached value for `key` without fetching, or None"""
        entry = self.entries.get(key)
        if entry is not None and self._is_live(entry):
            return entry.value
        return None
