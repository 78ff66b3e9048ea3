from datetime import date
from pydantic import BaseModel


# --- Country schemas ---

class CountryOut(BaseModel):
    id: int
    code: str
    geo_id: str | None = None
    name: str | None = None
    population: int | None = None
    continent: str | None = None

    model_config = {"from_attributes": True}


class CountryVersionsOut(BaseModel):
    code: str
    current: CountryOut
    versions: list[CountryOut]


# --- Case schemas ---

class CasePoint(BaseModel):
    date: date
    cases: int
    deaths: int
    cumulative: float
    country: CountryOut

    model_config = {"from_attributes": True}


class CaseSeriesOut(BaseModel):
    query: str
    lookup: str  # geo_id, code or name
    since: date
    data: list[CasePoint]
