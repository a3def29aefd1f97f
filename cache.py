# cache.py
"""
Two-tier TTL cache.

Entries are stored as a JSON envelope ``{"value": ..., "expiry": <unix ts>}``.
The memory tier keeps the encoded envelope bytes in an LRU bounded by total
byte cost; the disk tier keeps one file per key, named by the SHA-256 of the
key's readable form. Expired entries are evicted lazily on read.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import os
import shutil
import time
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Type, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python

LOGGER = logging.getLogger("mirrortube.cache")

T = TypeVar("T")


class CacheTTL:
    FIVE_MINUTES = 5 * 60
    THIRTY_MINUTES = 30 * 60
    ONE_HOUR = 60 * 60
    SIX_HOURS = 6 * 60 * 60
    EIGHT_HOURS = 8 * 60 * 60
    TWELVE_HOURS = 12 * 60 * 60
    ONE_DAY = 24 * 60 * 60
    TWO_DAYS = 2 * 24 * 60 * 60
    SEVEN_DAYS = 7 * 24 * 60 * 60
    ONE_YEAR = 365 * 24 * 60 * 60


@dataclass(frozen=True)
class CacheKey:
    """Readable composite key, e.g. ``search|q=lofi|hl=en|gl=US``."""

    raw: str

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.raw.encode("utf-8")).hexdigest()

    def filename(self, extension: str = ".json") -> str:
        return f"{self.digest}{extension}"

    def __str__(self) -> str:
        return self.raw


@lru_cache(maxsize=None)
def _adapter(type_: Any) -> TypeAdapter:
    return TypeAdapter(type_)


class CorruptEntry(ValueError):
    pass


def encode_envelope(value: Any, expiry: float) -> bytes:
    payload = {"value": to_jsonable_python(value, by_alias=True), "expiry": expiry}
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_envelope(data: bytes) -> tuple[Any, float]:
    try:
        env = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptEntry(str(e)) from e
    if not isinstance(env, dict) or "value" not in env:
        raise CorruptEntry("envelope without value")
    expiry = env.get("expiry")
    if not isinstance(expiry, (int, float)):
        raise CorruptEntry("envelope without numeric expiry")
    return env["value"], float(expiry)


class MemoryCache:
    """LRU over encoded entries, bounded by the sum of their byte lengths."""

    def __init__(self, max_cost: int):
        self.max_cost = max_cost
        self._store: "OrderedDict[str, bytes]" = OrderedDict()
        self._cost = 0

    @property
    def cost(self) -> int:
        return self._cost

    def __len__(self) -> int:
        return len(self._store)

    def get(self, name: str) -> Optional[bytes]:
        data = self._store.get(name)
        if data is not None:
            self._store.move_to_end(name)
        return data

    def set(self, name: str, data: bytes) -> None:
        self.remove(name)
        if len(data) > self.max_cost:
            return
        self._store[name] = data
        self._cost += len(data)
        while self._cost > self.max_cost and self._store:
            _, evicted = self._store.popitem(last=False)
            self._cost -= len(evicted)

    def remove(self, name: str) -> None:
        old = self._store.pop(name, None)
        if old is not None:
            self._cost -= len(old)

    def clear(self) -> None:
        self._store.clear()
        self._cost = 0


class DiskCache:
    """One file per entry under ``root``; writes go through a temp file + rename."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.root / name

    async def read(self, name: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read_sync, name)

    async def write(self, name: str, data: bytes) -> None:
        await asyncio.to_thread(self._write_sync, name, data)

    async def remove(self, name: str) -> None:
        await asyncio.to_thread(self._remove_sync, name)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)

    def _read_sync(self, name: str) -> Optional[bytes]:
        try:
            return self.path_for(name).read_bytes()
        except FileNotFoundError:
            return None

    def _write_sync(self, name: str, data: bytes) -> None:
        try:
            self._write_once(name, data)
        except FileNotFoundError:
            # root removed by a concurrent clear()
            LOGGER.debug("cache root vanished during write name=%s; retrying", name)
            self._write_once(name, data)

    def _write_once(self, name: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        target = self.path_for(name)
        tmp = self.root / f".{name}.tmp.{uuid.uuid4().hex}"
        try:
            with open(tmp, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, target)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    def _remove_sync(self, name: str) -> None:
        self.path_for(name).unlink(missing_ok=True)

    def _clear_sync(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
        self.root.mkdir(parents=True, exist_ok=True)


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class JsonCacheStore:
    """Typed get/set over the memory + disk tiers for one namespace."""

    def __init__(
        self,
        root: Path,
        max_cost: int = 64 * 1024 * 1024,
        *,
        extension: str = ".json",
        clock: Callable[[], float] = time.time,
    ):
        self.memory = MemoryCache(max_cost)
        self.disk = DiskCache(root)
        self.extension = extension
        self._clock = clock
        self._locks: Dict[str, _KeyLock] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    @property
    def root(self) -> Path:
        return self.disk.root

    @asynccontextmanager
    async def _locked(self, name: str) -> AsyncIterator[None]:
        """Per-key lock; the entry is dropped once no task holds or awaits it."""
        entry = self._locks.get(name)
        if entry is None:
            entry = self._locks[name] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(name, None)

    async def get(self, key: CacheKey, type_: Type[T] | Any) -> Optional[T]:
        name = key.filename(self.extension)
        async with self._locked(name):
            data = self.memory.get(name)
            from_disk = False
            if data is None:
                data = await self.disk.read(name)
                from_disk = True
                if data is None:
                    return None
            try:
                raw_value, expiry = decode_envelope(data)
                if self._clock() >= expiry:
                    LOGGER.debug("cache expired key=%s", key.raw)
                    await self._evict(name)
                    return None
                value = _adapter(type_).validate_python(raw_value)
            except (CorruptEntry, ValidationError) as e:
                LOGGER.warning("cache entry unreadable key=%s err=%s; deleting", key.raw, e)
                await self._evict(name)
                return None
            if from_disk:
                self.memory.set(name, data)
            return value

    async def set(self, key: CacheKey, value: Any, ttl: float) -> None:
        name = key.filename(self.extension)
        data = encode_envelope(value, self._clock() + ttl)
        async with self._locked(name):
            self.memory.set(name, data)
            await self.disk.write(name, data)

    async def remove(self, key: CacheKey) -> None:
        name = key.filename(self.extension)
        async with self._locked(name):
            await self._evict(name)

    async def clear(self) -> None:
        self.memory.clear()
        await self.disk.clear()
        LOGGER.info("cache cleared root=%s", self.root)

    async def get_or_fetch(
        self,
        key: CacheKey,
        type_: Type[T] | Any,
        ttl: float,
        fetch: Callable[[], Awaitable[T]],
        *,
        cache_empty: bool = False,
    ) -> T:
        """Return the cached value or run ``fetch`` once for all concurrent callers."""
        cached = await self.get(key, type_)
        if cached is not None:
            return cached
        fut = self._inflight.get(key.raw)
        if fut is None:
            fut = asyncio.ensure_future(self._fetch_and_store(key, ttl, fetch, cache_empty))
            self._inflight[key.raw] = fut
            fut.add_done_callback(lambda _f, raw=key.raw: self._inflight.pop(raw, None))
        return await asyncio.shield(fut)

    async def _fetch_and_store(self, key, ttl, fetch, cache_empty):
        value = await fetch()
        if value is not None and (cache_empty or _nonempty(value)):
            await self.set(key, value, ttl)
        return value

    async def _evict(self, name: str) -> None:
        self.memory.remove(name)
        await self.disk.remove(name)


def _nonempty(value: Any) -> bool:
    if isinstance(value, (list, tuple, dict, str, bytes)):
        return bool(value)
    return True


class BlobCacheStore:
    """Binary assets (images) sharing the envelope and expiry mechanics."""

    def __init__(self, root: Path, max_cost: int = 128 * 1024 * 1024, *, clock: Callable[[], float] = time.time):
        self._store = JsonCacheStore(root, max_cost, extension=".img", clock=clock)

    @property
    def root(self) -> Path:
        return self._store.root

    async def get(self, key: CacheKey) -> Optional[bytes]:
        encoded = await self._store.get(key, str)
        if encoded is None:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except ValueError:
            await self._store.remove(key)
            return None

    async def set(self, key: CacheKey, data: bytes, ttl: float) -> None:
        await self._store.set(key, base64.b64encode(data).decode("ascii"), ttl)

    async def clear(self) -> None:
        await self._store.clear()
