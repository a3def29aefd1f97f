# preferences.py
"""Region and custom-category settings, persisted as long-lived cache entries."""
from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

from cache import CacheKey, CacheTTL, JsonCacheStore
from models import CustomCategory
from queries import GLOBAL_REGION, SUPPORTED_REGIONS, preferred_hl

REGION_KEY = CacheKey("settings:region")
CATEGORIES_KEY = CacheKey("settings:custom_categories")


class Preferences:
    def __init__(self, cache: JsonCacheStore, default_hl: str = "en"):
        self.cache = cache
        self.default_hl = default_hl
        self._categories_lock = asyncio.Lock()

    async def region(self) -> str:
        return await self.cache.get(REGION_KEY, str) or GLOBAL_REGION

    async def set_region(self, region: str) -> str:
        code = (region or "").strip().upper() or GLOBAL_REGION
        if code != GLOBAL_REGION and code not in SUPPORTED_REGIONS:
            raise ValueError(f"unsupported region {region!r}")
        await self.cache.set(REGION_KEY, code, CacheTTL.ONE_YEAR)
        return code

    async def locale(self) -> Tuple[str, Optional[str]]:
        """``(hl, gl)`` for content queries; ``gl`` is ``None`` for the global region."""
        region = await self.region()
        gl = None if region == GLOBAL_REGION else region
        return preferred_hl(region, self.default_hl), gl

    async def categories(self) -> List[CustomCategory]:
        return await self.cache.get(CATEGORIES_KEY, List[CustomCategory]) or []

    async def save_category(self, category: CustomCategory) -> List[CustomCategory]:
        async with self._categories_lock:
            existing = [c for c in await self.categories() if c.id != category.id]
            existing.append(category)
            await self.cache.set(CATEGORIES_KEY, existing, CacheTTL.ONE_YEAR)
            return existing

    async def delete_category(self, category_id: str) -> List[CustomCategory]:
        async with self._categories_lock:
            remaining = [c for c in await self.categories() if c.id != category_id]
            await self.cache.set(CATEGORIES_KEY, remaining, CacheTTL.ONE_YEAR)
            return remaining

    async def category(self, category_id: Optional[str]) -> Optional[CustomCategory]:
        if not category_id:
            return None
        for c in await self.categories():
            if c.id == category_id:
                return c
        return None
