"""Persistent store for country versions and daily case facts."""

from contextlib import contextmanager
from datetime import date

import structlog
from sqlalchemy import select, func, insert, inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from covidservice.app.cache import CountryCache
from covidservice.app.config import get_settings
from covidservice.app.database import Base, get_engine, make_session_factory
from covidservice.app.errors import ConflictError, ImportAborted, StorageError
from covidservice.app.lookup import CountryLookup, LookupKind
from covidservice.app.models import CaseFact, Country
from covidservice.app.records import (
    EPOCH, CaseRecord, CountryVersion, from_timestamp, normalize_date, to_timestamp,
)
from covidservice.app.services.resolver import CountryResolver
from covidservice.app.stream import FactStream

logger = structlog.get_logger()

EXPECTED_COLUMNS = {
    "countries": {"id", "code", "geo_id", "name", "population", "continent"},
    "cases": {"date", "country_id", "cases", "deaths", "cumulative"},
}


@contextmanager
def _storage_errors(action: str):
    try:
        yield
    except SQLAlchemyError as exc:
        raise StorageError(f"{action} failed: {exc}") from exc
    except OSError as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == "23505" or getattr(orig, "pgcode", None) == "23505":
        return True
    message = str(orig).lower()
    return "unique" in message or "duplicate key" in message


def _to_version(row: Country) -> CountryVersion:
    return CountryVersion(
        id=row.id,
        code=row.code,
        geo_id=row.geo_id,
        name=row.name,
        population=row.population,
        continent=row.continent,
    )


def _lookup_clause(lookup: CountryLookup):
    if lookup.kind is LookupKind.GEO_ID:
        return Country.geo_id == lookup.value
    if lookup.kind is LookupKind.CODE:
        return Country.code == lookup.value
    return func.lower(Country.name) == lookup.value.lower()


class CaseStore:
    """Countries (versioned) and daily case facts on top of an async engine.

    The store owns the country cache; dimension rows never change once
    written, so cached versions are never evicted.
    """

    def __init__(self, engine: AsyncEngine, cache: CountryCache | None = None, buffer_size: int = 1):
        self.engine = engine
        self.session_factory = make_session_factory(engine)
        self.cache = cache if cache is not None else CountryCache()
        self.resolver = CountryResolver(self)
        self.buffer_size = buffer_size

    async def initialize(self) -> None:
        """Create missing tables and check that existing ones are compatible."""
        with _storage_errors("Schema initialization"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                mismatches = await conn.run_sync(self._schema_mismatches)
        if mismatches:
            raise StorageError(
                "Incompatible existing schema: "
                + ", ".join(f"{table} lacks {sorted(cols)}" for table, cols in mismatches.items())
            )
        logger.info("Database tables ensured", url=self.engine.url.render_as_string(hide_password=True))

    @staticmethod
    def _schema_mismatches(sync_conn) -> dict[str, set[str]]:
        inspector = inspect(sync_conn)
        mismatches = {}
        for table, expected in EXPECTED_COLUMNS.items():
            present = {col["name"] for col in inspector.get_columns(table)}
            missing = expected - present
            if missing:
                mismatches[table] = missing
        return mismatches

    async def current_country_version(self, code: str) -> CountryVersion | None:
        query = (
            select(Country)
            .where(Country.code == code)
            .order_by(Country.id.desc())
            .limit(1)
        )
        with _storage_errors("Country lookup"):
            async with self.session_factory() as session:
                row = (await session.execute(query)).scalar_one_or_none()
        return _to_version(row) if row is not None else None

    async def country_by_version_id(self, country_id: int) -> CountryVersion | None:
        with _storage_errors("Country lookup"):
            async with self.session_factory() as session:
                row = await session.get(Country, country_id)
        return _to_version(row) if row is not None else None

    async def country_versions(self, code: str) -> list[CountryVersion]:
        """All versions of a country, oldest first."""
        query = select(Country).where(Country.code == code).order_by(Country.id)
        with _storage_errors("Country history lookup"):
            async with self.session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
        return [_to_version(r) for r in rows]

    async def insert_country_version(
        self,
        code: str,
        geo_id: str | None,
        name: str | None,
        population: int | None,
        continent: str | None,
    ) -> int:
        """Append a country row and return its id."""
        with _storage_errors("Country insert"):
            async with self.session_factory() as session:
                async with session.begin():
                    row = Country(
                        code=code,
                        geo_id=geo_id,
                        name=name,
                        population=population,
                        continent=continent,
                    )
                    session.add(row)
                    await session.flush()
                    country_id = row.id
        return country_id

    async def insert_facts_batch(self, facts: list[CaseRecord]) -> int:
        """Insert all facts in one transaction, or none of them."""
        if not facts:
            return 0
        rows = [
            {
                "date": to_timestamp(f.date),
                "country_id": f.country.id,
                "cases": f.cases,
                "deaths": f.deaths,
                "cumulative": f.cumulative,
            }
            for f in facts
        ]
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(insert(CaseFact), rows)
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise ConflictError(
                    f"Case batch of {len(rows)} rows collides with existing records: {exc.orig}"
                ) from exc
            raise ImportAborted(f"Case batch of {len(rows)} rows rejected: {exc.orig}") from exc
        except (SQLAlchemyError, OSError) as exc:
            raise ImportAborted(f"Case batch of {len(rows)} rows failed: {exc}") from exc
        return len(rows)

    async def last_fact_date(self, code: str) -> date:
        """Latest fact date over every version of `code`, or EPOCH."""
        query = (
            select(func.max(CaseFact.date))
            .join(Country, CaseFact.country_id == Country.id)
            .where(Country.code == code)
        )
        with _storage_errors("Last record lookup"):
            async with self.session_factory() as session:
                timestamp = (await session.execute(query)).scalar()
        if timestamp is None:
            return EPOCH
        return from_timestamp(timestamp)

    async def known_fact_dates(self, code: str) -> set[date]:
        query = (
            select(CaseFact.date)
            .join(Country, CaseFact.country_id == Country.id)
            .where(Country.code == code)
        )
        with _storage_errors("Record dates lookup"):
            async with self.session_factory() as session:
                timestamps = (await session.execute(query)).scalars().all()
        return {from_timestamp(ts) for ts in timestamps}

    async def count_facts(self) -> int:
        with _storage_errors("Record count"):
            async with self.session_factory() as session:
                return (await session.execute(select(func.count()).select_from(CaseFact))).scalar()

    def query_facts_since(self, lookup: CountryLookup, since: date = EPOCH) -> FactStream:
        """Stream facts matching `lookup` on or after `since`, oldest first."""
        query = (
            select(
                CaseFact.country_id,
                CaseFact.date,
                CaseFact.cases,
                CaseFact.deaths,
                CaseFact.cumulative,
            )
            .join(Country, CaseFact.country_id == Country.id)
            .where(_lookup_clause(lookup), CaseFact.date >= to_timestamp(normalize_date(since)))
            .order_by(CaseFact.date.asc(), CaseFact.country_id.asc())
        )
        return FactStream(self, query, buffer_size=self.buffer_size)


_store: CaseStore | None = None


def get_store() -> CaseStore:
    """Process-wide store, sharing one country cache between imports and queries."""
    global _store
    if _store is None:
        _store = CaseStore(get_engine(), buffer_size=get_settings().query_buffer_size)
    return _store


def reset_store() -> None:
    global _store
    _store = None
