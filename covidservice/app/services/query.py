"""Time-series queries per country."""

from datetime import date, datetime

from covidservice.app.lookup import CountryLookup
from covidservice.app.records import EPOCH, normalize_date
from covidservice.app.stream import FactStream


def query(store, key: str, since: date | datetime | None = None) -> FactStream:
    """Stream a country's records from `since` (inclusive), oldest first.

    `key` is interpreted as described in covidservice.app.lookup. Each result
    carries the country version the record was imported under.
    """
    lower_bound = normalize_date(since) if since is not None else EPOCH
    return store.query_facts_since(CountryLookup.parse(key), lower_bound)


def query_latest(store, key: str) -> FactStream:
    return query(store, key, EPOCH)
