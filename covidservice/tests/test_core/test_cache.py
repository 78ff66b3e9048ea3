"""Tests for the country cache and the resolver's read-through lookups."""

import pytest

from covidservice.app.cache import CountryCache
from covidservice.app.records import CountryVersion


def _country(country_id=1, name="Germany"):
    return CountryVersion(
        id=country_id, code="DEU", geo_id="DE", name=name, population=1, continent="Europe",
    )


def test_put_and_get():
    cache = CountryCache()
    cache.put(_country())
    assert cache.get(1) == _country()
    assert 1 in cache
    assert len(cache) == 1


def test_get_missing_key():
    assert CountryCache().get(42) is None


def test_put_same_id_keeps_one_entry():
    cache = CountryCache()
    cache.put(_country())
    cache.put(_country())
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_by_id_populates_cache_on_miss(store, germany):
    store.cache = CountryCache()
    assert germany.id not in store.cache

    found = await store.resolver.by_id(germany.id)
    assert found == germany
    assert germany.id in store.cache


@pytest.mark.asyncio
async def test_by_id_served_from_cache(store, germany, monkeypatch):
    async def _fail(country_id):
        raise AssertionError("store should not be consulted")

    monkeypatch.setattr(store, "country_by_version_id", _fail)
    assert await store.resolver.by_id(germany.id) == germany


@pytest.mark.asyncio
async def test_by_id_unknown(store):
    assert await store.resolver.by_id(999) is None
    assert 999 not in store.cache
