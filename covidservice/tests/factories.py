"""Builders for source records used across tests."""

from covidservice.app.records import SourceRecord


def make_source(
    day: int,
    month: int = 1,
    year: int = 2021,
    code: str = "DEU",
    geo_id: str = "DE",
    name: str = "Germany",
    population: int | None = 83_019_213,
    continent: str = "Europe",
    cases: int = 0,
    deaths: int = 0,
    cumulative: str = "",
) -> SourceRecord:
    return SourceRecord(
        day=str(day),
        month=str(month),
        year=str(year),
        cases=cases,
        deaths=deaths,
        country_code=code,
        geo_id=geo_id,
        name=name,
        population=population,
        continent=continent,
        cumulative=cumulative,
    )
