"""Plain records passed between the fetcher, the engine and its callers."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

# Watermark for a country that has no facts yet. Every valid fact date is
# strictly after it.
EPOCH = date(1970, 1, 1)


def normalize_date(value: date | datetime) -> date:
    """Drop the time of day, keeping the local calendar day."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    return value


def to_timestamp(day: date) -> int:
    """Seconds since the Unix epoch at local midnight of `day`."""
    return int(datetime(day.year, day.month, day.day).timestamp())


def from_timestamp(timestamp: int) -> date:
    return datetime.fromtimestamp(timestamp).date()


@dataclass(frozen=True)
class CountryVersion:
    """Immutable snapshot of one row of the countries table."""
    id: int
    code: str
    geo_id: Optional[str]
    name: Optional[str]
    population: Optional[int]
    continent: Optional[str]

    def same_attributes(
        self,
        geo_id: Optional[str],
        name: Optional[str],
        population: Optional[int],
        continent: Optional[str],
    ) -> bool:
        return (
            self.geo_id == geo_id
            and self.name == name
            and self.population == population
            and self.continent == continent
        )


@dataclass(frozen=True)
class CaseRecord:
    """Daily statistics for one country version."""
    date: date
    country: CountryVersion
    cases: int
    deaths: int
    cumulative: float = 0.0


@dataclass
class SourceRecord:
    """Loosely validated record as delivered by a fetcher.

    Date parts and the cumulative incidence stay as text; the importer
    parses them.
    """
    day: str
    month: str
    year: str
    cases: int
    deaths: int
    country_code: str
    geo_id: str
    name: str
    population: Optional[int] = None
    continent: Optional[str] = None
    cumulative: Optional[str] = ""
    date_rep: Optional[str] = None


@dataclass(frozen=True)
class FactResult:
    """One element of a query stream: a record, or the error that ended it."""
    record: Optional[CaseRecord] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImportResult:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    countries: set[str] = field(default_factory=set)
