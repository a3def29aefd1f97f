from __future__ import annotations

import asyncio
import builtins
import hashlib
import shutil
from typing import List

import pytest

import cache as cache_module
from cache import CacheKey, CacheTTL, JsonCacheStore, MemoryCache, decode_envelope, encode_envelope
from models import Channel, Video

pytestmark = pytest.mark.asyncio


async def test_set_then_get_returns_equal_value(json_cache):
    key = CacheKey("search|q=lofi|hl=en|gl=US")
    videos = [Video(id="abcdefghijk", title="Lofi &amp; chill"), Video(id="bcdefghijkl", title="Rain")]

    await json_cache.set(key, videos, CacheTTL.ONE_HOUR)

    assert await json_cache.get(key, List[Video]) == videos


async def test_entry_expires_without_explicit_clear(json_cache, clock):
    key = CacheKey("channel:info:id=UC123")
    await json_cache.set(key, Channel(id="UC123", title="Chan"), 10)

    clock.advance(9)
    assert await json_cache.get(key, Channel) is not None

    clock.advance(2)
    assert await json_cache.get(key, Channel) is None
    assert not json_cache.disk.path_for(key.filename()).exists()


async def test_already_expired_value_reads_back_as_none(json_cache):
    key = CacheKey("expired")
    await json_cache.clear()

    await json_cache.set(key, "value", -1)

    assert await json_cache.get(key, str) is None


async def test_disk_tier_survives_a_fresh_store(tmp_path, clock):
    first = JsonCacheStore(tmp_path / "json", clock=clock)
    await first.set(CacheKey("plcnt:list:PL1"), 42, CacheTTL.EIGHT_HOURS)

    second = JsonCacheStore(tmp_path / "json", clock=clock)
    assert len(second.memory) == 0
    assert await second.get(CacheKey("plcnt:list:PL1"), int) == 42
    assert len(second.memory) == 1


async def test_corrupt_entry_is_deleted_and_treated_as_miss(json_cache):
    key = CacheKey("broken")
    path = json_cache.disk.path_for(key.filename())
    path.write_bytes(b"{not json")

    assert await json_cache.get(key, str) is None
    assert not path.exists()


async def test_value_of_the_wrong_shape_is_a_miss(json_cache):
    key = CacheKey("shape")
    await json_cache.set(key, {"unexpected": True}, CacheTTL.ONE_HOUR)

    assert await json_cache.get(key, List[Video]) is None


async def test_writes_leave_no_temp_files(json_cache):
    for i in range(5):
        await json_cache.set(CacheKey(f"k{i}"), i, CacheTTL.ONE_HOUR)

    names = sorted(p.name for p in json_cache.root.iterdir())
    assert len(names) == 5
    assert all(n.endswith(".json") and ".tmp." not in n for n in names)


async def test_file_name_is_sha256_of_key(json_cache):
    key = CacheKey("related:vid=abc")
    await json_cache.set(key, [], CacheTTL.ONE_HOUR)

    expected = hashlib.sha256(b"related:vid=abc").hexdigest() + ".json"
    assert (json_cache.root / expected).exists()


async def test_get_or_fetch_runs_one_fetch_for_concurrent_callers(json_cache):
    calls = 0
    release = asyncio.Event()

    async def fetch():
        nonlocal calls
        calls += 1
        await release.wait()
        return ["a", "b"]

    key = CacheKey("single-flight")
    waiters = [asyncio.create_task(json_cache.get_or_fetch(key, List[str], 60, fetch)) for _ in range(3)]
    await asyncio.sleep(0.05)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert results == [["a", "b"]] * 3
    assert await json_cache.get(key, List[str]) == ["a", "b"]


async def test_get_or_fetch_does_not_cache_empty_results(json_cache):
    key = CacheKey("empty")

    assert await json_cache.get_or_fetch(key, List[str], 60, _empty) == []
    assert await json_cache.get(key, List[str]) is None


async def _empty():
    return []


async def test_clear_removes_everything(json_cache):
    await json_cache.set(CacheKey("a"), 1, 60)
    await json_cache.clear()

    assert await json_cache.get(CacheKey("a"), int) is None
    assert list(json_cache.root.iterdir()) == []


async def test_blob_store_keeps_bytes(image_cache):
    key = CacheKey("img:https://i.ytimg.com/vi/x/hqdefault.jpg")
    data = b"\xff\xd8\xff\xe0jpeg-bytes"

    await image_cache.set(key, data, CacheTTL.SEVEN_DAYS)

    assert await image_cache.get(key) == data
    assert image_cache.root.joinpath(key.filename(".img")).exists()


async def test_memory_tier_evicts_least_recently_used_by_cost():
    memory = MemoryCache(max_cost=10)
    memory.set("a", b"123456")
    memory.set("b", b"1234")
    assert memory.get("a") is not None

    memory.set("c", b"12345")

    assert memory.get("b") is None
    assert memory.get("c") == b"12345"
    assert memory.cost <= 10


async def test_envelope_carries_value_and_expiry():
    value, expiry = decode_envelope(encode_envelope([Video(id="abcdefghijk")], 123.5))

    assert expiry == 123.5
    assert value[0]["id"] == "abcdefghijk"
    assert "channelTitle" in value[0]


async def test_key_locks_are_released_after_use(json_cache):
    for i in range(200):
        await json_cache.get(CacheKey(f"search|q=term{i}"), int)
    await asyncio.gather(*(json_cache.set(CacheKey(f"k{i % 3}"), i, 60) for i in range(9)))

    assert json_cache._locks == {}
    assert await json_cache.get(CacheKey("k2"), int) == 8


async def test_write_survives_a_concurrent_clear(json_cache, monkeypatch):
    real_open = builtins.open
    cleared = False

    def open_after_clear(path, *args, **kwargs):
        nonlocal cleared
        if not cleared:
            cleared = True
            shutil.rmtree(json_cache.root)
        return real_open(path, *args, **kwargs)

    monkeypatch.setattr(cache_module, "open", open_after_clear, raising=False)
    key = CacheKey("racing-write")

    await json_cache.set(key, "kept", 60)

    assert cleared
    assert json_cache.disk.path_for(key.filename()).read_bytes()
    json_cache.memory.clear()
    assert await json_cache.get(key, str) == "kept"
