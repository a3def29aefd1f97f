# coalescer.py
"""
Debounced batching of "authoritative count for id X" requests.

``request`` applies cached counts right away, queues the misses and re-arms a
short timer. When the timer fires, everything queued is fetched in chunks of
at most ``chunk_size`` ids, concurrently; each chunk's counts are merged into
the owning store under a single lock and then written to the cache.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from cache import CacheKey, CacheTTL, JsonCacheStore
from errors import ApiKeyMissingError, RequestRejectedError, TransportError

LOGGER = logging.getLogger("mirrortube.coalescer")

FetchBatch = Callable[[List[str]], Awaitable[Dict[str, Any]]]
ApplyFn = Callable[[Dict[str, Any]], Any]


class LogOnce:
    """Emit a warning the first time a condition is seen, stay quiet afterwards."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._seen: Set[str] = set()

    def warning(self, condition: str, msg: str, *args: Any) -> bool:
        if condition in self._seen:
            return False
        self._seen.add(condition)
        self.logger.warning(msg, *args)
        return True

    def seen(self, condition: str) -> bool:
        return condition in self._seen

    def reset(self, condition: Optional[str] = None) -> None:
        if condition is None:
            self._seen.clear()
        else:
            self._seen.discard(condition)


class BatchCoalescer:
    def __init__(
        self,
        name: str,
        fetch_batch: FetchBatch,
        cache: JsonCacheStore,
        key_for: Callable[[str], CacheKey],
        apply: ApplyFn,
        *,
        value_type: Any = int,
        ttl: float = CacheTTL.EIGHT_HOURS,
        chunk_size: int = 50,
        delay: float = 0.15,
    ):
        self.name = name
        self.fetch_batch = fetch_batch
        self.cache = cache
        self.key_for = key_for
        self.value_type = value_type
        self.ttl = ttl
        self.chunk_size = max(1, chunk_size)
        self.delay = delay
        self._apply = apply
        self._pending: Dict[str, None] = {}
        self._in_flight: Set[str] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._merge_lock = asyncio.Lock()
        self._log_once = LogOnce(LOGGER)

    @property
    def in_flight(self) -> FrozenSet[str]:
        """Ids queued or being fetched; counts for these are still loading."""
        return frozenset(self._in_flight.union(self._pending))

    async def request(self, ids: Iterable[str]) -> Dict[str, Any]:
        """Queue ids for fetching; returns the counts already served from cache."""
        hits: Dict[str, Any] = {}
        misses: List[str] = []
        for item_id in dict.fromkeys(i for i in ids if i):
            if item_id in self._pending or item_id in self._in_flight:
                continue
            cached = await self.cache.get(self.key_for(item_id), self.value_type)
            if cached is not None:
                hits[item_id] = cached
            else:
                misses.append(item_id)

        if hits:
            LOGGER.debug("%s: %d ids served from cache", self.name, len(hits))
            await self._merge(hits)
        if not misses:
            return hits
        for item_id in misses:
            self._pending[item_id] = None
        self._arm()
        return hits

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        batch = list(self._pending)
        self._pending.clear()
        if not batch:
            return
        self._in_flight.update(batch)
        task = asyncio.ensure_future(self._drain(batch))
        self._tasks.add(task)
        task.add_done_callback(self._on_drained)

    def _on_drained(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("%s: batch drain failed", self.name, exc_info=exc)

    async def _drain(self, ids: List[str]) -> None:
        chunks = [ids[i:i + self.chunk_size] for i in range(0, len(ids), self.chunk_size)]
        LOGGER.debug("%s: fetching %d ids in %d chunk(s)", self.name, len(ids), len(chunks))
        try:
            await asyncio.gather(*(self._fetch_chunk(chunk) for chunk in chunks))
        finally:
            self._in_flight.difference_update(ids)

    async def _fetch_chunk(self, chunk: List[str]) -> None:
        try:
            values = await self.fetch_batch(chunk)
        except ApiKeyMissingError as e:
            self._log_once.warning("api_key_missing", "%s: %s; counts stay unknown", self.name, e)
            return
        except RequestRejectedError as e:
            self._log_once.warning("request_rejected", "%s: %s (quota or forbidden)", self.name, e)
            return
        except TransportError as e:
            LOGGER.warning("%s: chunk of %d ids failed: %s", self.name, len(chunk), e)
            return

        if not values:
            return
        await self._merge(values)
        for item_id, value in values.items():
            await self.cache.set(self.key_for(item_id), value, self.ttl)

    async def _merge(self, values: Dict[str, Any]) -> None:
        async with self._merge_lock:
            result = self._apply(values)
            if inspect.isawaitable(result):
                await result

    async def wait_idle(self) -> None:
        """Wait until the armed timer has fired and every drain has finished."""
        loop = asyncio.get_running_loop()
        while self._timer is not None or self._tasks:
            if self._timer is not None:
                await asyncio.sleep(max(0.0, self._timer.when() - loop.time()) + 0.01)
                continue
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
