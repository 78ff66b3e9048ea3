"""Tests for the incremental import engine."""

from datetime import date

import pytest

from covidservice.app.errors import ConflictError, ImportAborted, ValidationError
from covidservice.app.records import EPOCH
from covidservice.app.services.importer import (
    CaseImporter, ImportPolicy, import_records, parse_cumulative, parse_date,
)
from covidservice.app.services.query import query_latest
from covidservice.tests.factories import make_source


def _deu_batch():
    return [
        make_source(1, cases=10, deaths=1, cumulative=""),
        make_source(2, cases=20, deaths=2, cumulative="5.5"),
        make_source(3, cases=30, deaths=3, cumulative="6.1"),
    ]


@pytest.mark.asyncio
async def test_end_to_end_import_and_reimport(store):
    result = await import_records(store, _deu_batch())
    assert result.imported == 3
    assert result.skipped == 0
    assert result.countries == {"DEU"}

    records = await query_latest(store, "DEU").collect()
    assert [r.cumulative for r in records] == [0.0, 5.5, 6.1]
    assert [r.cases for r in records] == [10, 20, 30]
    assert [r.deaths for r in records] == [1, 2, 3]

    again = await import_records(store, _deu_batch() + [make_source(4, cases=40, deaths=4, cumulative="7.0")])
    assert again.imported == 1
    assert again.skipped == 3
    assert await store.count_facts() == 4
    assert await store.last_fact_date("DEU") == date(2021, 1, 4)


@pytest.mark.asyncio
async def test_reimport_is_idempotent(store):
    batch = [make_source(d, code=code, geo_id=code[:2], name=code) for code in ("DEU", "FRA") for d in (1, 2, 3)]
    first = await import_records(store, batch)
    second = await import_records(store, batch)
    assert first.imported == 6
    assert second.imported == 0
    assert second.skipped == 6
    assert await store.count_facts() == 6


@pytest.mark.asyncio
async def test_unseen_country_accepts_any_valid_date(store):
    assert await store.last_fact_date("NZL") == EPOCH
    result = await import_records(store, [
        make_source(2, month=1, year=1970, code="NZL", geo_id="NZ", name="New Zealand"),
    ])
    assert result.imported == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [
    ("day", "x"),
    ("day", "0"),
    ("month", "13"),
    ("year", ""),
    ("day", "-1"),
    ("day", "31.5"),
])
async def test_malformed_date_aborts_whole_import(store, field, value):
    batch = _deu_batch()
    setattr(batch[1], field, value)

    with pytest.raises(ValidationError) as excinfo:
        await import_records(store, batch)

    assert excinfo.value.index == 1
    assert excinfo.value.country_code == "DEU"
    assert await store.count_facts() == 0
    # Validation happens before any country version is written.
    assert await store.country_versions("DEU") == []


@pytest.mark.asyncio
async def test_malformed_cumulative_aborts_whole_import(store):
    batch = _deu_batch()
    batch[2].cumulative = "n/a"
    with pytest.raises(ValidationError, match="record #2"):
        await import_records(store, batch)
    assert await store.count_facts() == 0


def test_parse_cumulative():
    assert parse_cumulative(make_source(1, cumulative="")) == 0.0
    assert parse_cumulative(make_source(1, cumulative="  ")) == 0.0
    assert parse_cumulative(make_source(1, cumulative="12.25")) == 12.25
    record = make_source(1)
    record.cumulative = None
    assert parse_cumulative(record) == 0.0
    for bad in ("abc", "-1", "nan", "inf"):
        with pytest.raises(ValidationError):
            parse_cumulative(make_source(1, cumulative=bad))


def test_parse_date():
    assert parse_date(make_source(14, month=12, year=2020)) == date(2020, 12, 14)
    assert parse_date(make_source(1, month=1, year=2021)) == date(2021, 1, 1)
    with pytest.raises(ValidationError):
        parse_date(make_source(30, month=2, year=2021))
    with pytest.raises(ValidationError):
        parse_date(make_source(1, month=1, year=1970))


@pytest.mark.asyncio
async def test_last_record_date_memoized_per_code(store, monkeypatch):
    calls = []
    original = store.last_fact_date

    async def _counting(code):
        calls.append(code)
        return await original(code)

    monkeypatch.setattr(store, "last_fact_date", _counting)
    batch = _deu_batch() + [make_source(1, code="FRA", geo_id="FR", name="France")]
    await CaseImporter(store).run(batch)
    assert sorted(calls) == ["DEU", "FRA"]


@pytest.mark.asyncio
async def test_metadata_change_creates_version_and_keeps_history(store):
    await import_records(store, [make_source(1, population=100)])
    await import_records(store, [make_source(2, population=200)])

    versions = await store.country_versions("DEU")
    assert [v.population for v in versions] == [100, 200]

    records = await query_latest(store, "DEU").collect()
    assert [(r.date.day, r.country.population) for r in records] == [(1, 100), (2, 200)]
    assert records[0].country.id < records[1].country.id


@pytest.mark.asyncio
async def test_watermark_skips_late_backfill(store):
    await import_records(store, [make_source(5)])
    result = await import_records(store, [make_source(3)])
    assert result.imported == 0
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_backfill_policy_imports_unseen_earlier_dates(store):
    await import_records(store, [make_source(5)])
    result = await import_records(store, [make_source(3), make_source(5)], ImportPolicy.BACKFILL)
    assert result.imported == 1
    assert result.skipped == 1
    assert await store.known_fact_dates("DEU") == {date(2021, 1, 3), date(2021, 1, 5)}


@pytest.mark.asyncio
async def test_backfill_policy_stages_repeated_record_once(store):
    result = await import_records(store, [make_source(3), make_source(3)], ImportPolicy.BACKFILL)
    assert result.imported == 1
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_duplicate_date_in_batch_conflicts_under_watermark(store):
    with pytest.raises(ConflictError):
        await import_records(store, [make_source(3), make_source(3)])
    assert await store.count_facts() == 0


@pytest.mark.asyncio
async def test_country_versions_survive_failed_batch(store, monkeypatch):
    async def _fail(facts):
        raise ImportAborted("disk full")

    monkeypatch.setattr(store, "insert_facts_batch", _fail)
    with pytest.raises(ImportAborted):
        await import_records(store, _deu_batch())

    assert await store.count_facts() == 0
    assert len(await store.country_versions("DEU")) == 1


@pytest.mark.asyncio
async def test_empty_batch(store):
    result = await import_records(store, [])
    assert result.total == 0
    assert result.imported == 0
