"""
ECDC fetcher: daily COVID-19 cases and deaths per country.

The European Centre for Disease Prevention and Control published a single
JSON document with one record per country and day:

    {"records": [{"dateRep": "14/12/2020", "day": "14", "month": "12",
                  "year": "2020", "cases": 746, "deaths": 6,
                  "countriesAndTerritories": "Afghanistan", "geoId": "AF",
                  "countryterritoryCode": "AFG", "popData2019": 38041757,
                  "continentExp": "Asia",
                  "Cumulative_number_for_14_days_of_COVID-19_cases_per_100000": "9.01"},
                 ...]}

Data source: https://opendata.ecdc.europa.eu/covid19/casedistribution/json/
"""

from collections.abc import Mapping

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from covidservice.app.errors import ValidationError
from covidservice.app.records import ImportResult, SourceRecord
from covidservice.app.services.importer import ImportPolicy, import_records

logger = structlog.get_logger()

CUMULATIVE_FIELD = "Cumulative_number_for_14_days_of_COVID-19_cases_per_100000"


def _as_int(value, default: int | None = 0) -> int | None:
    if value is None or value == "":
        return default
    return int(value)


def parse_entry(entry: dict) -> SourceRecord:
    """Map one ECDC record onto a SourceRecord, leaving validation to the importer."""
    cumulative = entry.get(CUMULATIVE_FIELD)
    return SourceRecord(
        day=str(entry.get("day", "")),
        month=str(entry.get("month", "")),
        year=str(entry.get("year", "")),
        cases=_as_int(entry.get("cases")),
        deaths=_as_int(entry.get("deaths")),
        country_code=(entry.get("countryterritoryCode") or "").strip(),
        geo_id=(entry.get("geoId") or "").strip(),
        name=entry.get("countriesAndTerritories") or "",
        population=_as_int(entry.get("popData2019"), default=None),
        continent=entry.get("continentExp"),
        cumulative="" if cumulative is None else str(cumulative),
        date_rep=entry.get("dateRep"),
    )


def load_records(payload: dict) -> list[SourceRecord]:
    """Parse an already decoded ECDC document."""
    if not isinstance(payload, Mapping):
        raise ValidationError(f"ECDC document is a {type(payload).__name__}, expected an object")
    entries = payload.get("records", [])
    if not isinstance(entries, list):
        raise ValidationError(f"ECDC 'records' is a {type(entries).__name__}, expected a list")

    records = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ValidationError("entry is not an object", index=index)
        try:
            records.append(parse_entry(entry))
        except ValueError as e:
            raise ValidationError(f"invalid count: {e}", index=index,
                                  country_code=entry.get("countryterritoryCode")) from e
    return records


class ECDCFetcher:
    """Downloads the ECDC case distribution document."""

    def __init__(self, url: str):
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={"User-Agent": "covidservice/1.0 (Public Health Statistics)"},
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _get(self, url: str, **kwargs) -> httpx.Response:
        """HTTP GET with automatic retries."""
        response = await self.client.get(url, **kwargs)
        response.raise_for_status()
        return response

    async def fetch_records(self) -> list[SourceRecord]:
        logger.info("ECDC request", url=self.url)
        response = await self._get(self.url)
        records = load_records(response.json())
        logger.info("ECDC fetch complete", total_records=len(records))
        return records

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self) -> "ECDCFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def import_from_ecdc(store, url: str, policy: ImportPolicy = ImportPolicy.WATERMARK) -> ImportResult:
    """Fetch the current ECDC document and import whatever is new."""
    async with ECDCFetcher(url) as fetcher:
        records = await fetcher.fetch_records()
    return await import_records(store, records, policy)
