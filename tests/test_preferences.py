from __future__ import annotations

import asyncio

import pytest

from cache import JsonCacheStore
from models import CustomCategory
from preferences import Preferences

pytestmark = pytest.mark.asyncio


async def test_region_defaults_to_global(json_cache):
    prefs = Preferences(json_cache)

    assert await prefs.region() == "GLOBAL"
    assert await prefs.locale() == ("en", None)


async def test_region_choice_steers_locale_and_persists(json_cache, tmp_path, clock):
    prefs = Preferences(json_cache)

    assert await prefs.set_region("tr") == "TR"
    assert await prefs.locale() == ("tr", "TR")

    reopened = Preferences(JsonCacheStore(tmp_path / "json", clock=clock))
    assert await reopened.region() == "TR"


async def test_unknown_region_is_rejected(json_cache):
    prefs = Preferences(json_cache)

    with pytest.raises(ValueError):
        await prefs.set_region("XX")
    assert await prefs.region() == "GLOBAL"


async def test_categories_are_saved_replaced_and_deleted(json_cache):
    prefs = Preferences(json_cache)
    cats = CustomCategory(id="c1", name="Cats", primary_keyword="cats")

    await prefs.save_category(cats)
    await prefs.save_category(CustomCategory(id="c2", name="Cars", primary_keyword="cars", date_filter="lastWeek"))
    saved = await prefs.save_category(cats.model_copy(update={"name": "Kittens"}))

    assert [c.id for c in saved] == ["c2", "c1"]
    assert (await prefs.category("c1")).name == "Kittens"
    assert (await prefs.category("c2")).date_filter == "lastWeek"
    assert await prefs.category(None) is None

    remaining = await prefs.delete_category("c2")
    assert [c.id for c in remaining] == ["c1"]
    assert await prefs.category("c2") is None


async def test_concurrent_category_changes_are_not_lost(json_cache):
    prefs = Preferences(json_cache)
    await prefs.save_category(CustomCategory(id="old", name="Old", primary_keyword="old"))

    await asyncio.gather(
        prefs.save_category(CustomCategory(id="a", name="Alpha", primary_keyword="alpha")),
        prefs.save_category(CustomCategory(id="b", name="Beta", primary_keyword="beta")),
        prefs.delete_category("old"),
    )

    assert [c.id for c in await prefs.categories()] == ["a", "b"]
