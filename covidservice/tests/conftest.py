"""Pytest configuration and shared fixtures."""

from datetime import date

import httpx
import pytest
import pytest_asyncio

from covidservice.app.database import make_engine
from covidservice.app.main import app
from covidservice.app.records import CaseRecord
from covidservice.app.store import CaseStore, get_store


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def store(db_engine):
    case_store = CaseStore(db_engine)
    await case_store.initialize()
    return case_store


@pytest_asyncio.fixture
async def germany(store):
    return await store.resolver.resolve_or_version("DEU", "DE", "Germany", 83_019_213, "Europe")


@pytest_asyncio.fixture
async def seeded_store(store, germany):
    """Store with three days of German data and one day of French data."""
    france = await store.resolver.resolve_or_version("FRA", "FR", "France", 67_012_883, "Europe")
    await store.insert_facts_batch([
        CaseRecord(date=date(2021, 1, 3), country=germany, cases=30, deaths=3, cumulative=6.1),
        CaseRecord(date=date(2021, 1, 1), country=germany, cases=10, deaths=1, cumulative=0.0),
        CaseRecord(date=date(2021, 1, 2), country=germany, cases=20, deaths=2, cumulative=5.5),
        CaseRecord(date=date(2021, 1, 2), country=france, cases=99, deaths=9, cumulative=1.0),
    ])
    return store


@pytest_asyncio.fixture
async def client(seeded_store):
    """HTTP client against the API, backed by the seeded store."""
    app.dependency_overrides[get_store] = lambda: seeded_store
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    from covidservice.app.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
