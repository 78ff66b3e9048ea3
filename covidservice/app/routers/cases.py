from datetime import date

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from covidservice.app.errors import StorageError
from covidservice.app.lookup import CountryLookup
from covidservice.app.records import EPOCH
from covidservice.app.schemas import CasePoint, CaseSeriesOut, CountryOut, CountryVersionsOut
from covidservice.app.services.query import query
from covidservice.app.store import CaseStore, get_store

logger = structlog.get_logger()

router = APIRouter(tags=["cases"])


@router.get("/cases/{country}", response_model=CaseSeriesOut)
async def get_cases(
    country: str,
    since: date | None = Query(None),
    store: CaseStore = Depends(get_store),
):
    """Daily records for a country, oldest first.

    `country` may be a geo id ("DE"), a country code ("DEU") or a name
    ("germany"), see covidservice.app.lookup.
    """
    lookup = CountryLookup.parse(country)
    try:
        records = await query(store, country, since).collect()
    except StorageError as e:
        logger.error("Case query failed", country=country, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    if not records:
        raise HTTPException(status_code=404, detail=f"No records for {country!r}")
    return CaseSeriesOut(
        query=country,
        lookup=lookup.kind.value,
        since=since or EPOCH,
        data=[CasePoint.model_validate(r) for r in records],
    )


@router.get("/countries/{code}/versions", response_model=CountryVersionsOut)
async def get_country_versions(code: str, store: CaseStore = Depends(get_store)):
    """Every recorded version of a country's metadata, oldest first."""
    try:
        versions = await store.country_versions(code.upper())
    except StorageError as e:
        logger.error("Country history query failed", code=code, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    if not versions:
        raise HTTPException(status_code=404, detail=f"Unknown country code {code!r}")
    out = [CountryOut.model_validate(v) for v in versions]
    return CountryVersionsOut(code=code.upper(), current=out[-1], versions=out)
