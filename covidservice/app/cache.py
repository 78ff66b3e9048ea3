"""In-memory cache of country versions keyed by surrogate id.

Entries are never evicted or invalidated. A country row is immutable once
written, so a cached version can only become stale through a process
restart with a different database, which starts with an empty cache anyway.
"""

from covidservice.app.records import CountryVersion


class CountryCache:
    def __init__(self):
        self._store: dict[int, CountryVersion] = {}

    def get(self, country_id: int) -> CountryVersion | None:
        """Return the cached version, or None on a miss."""
        return self._store.get(country_id)

    def put(self, country: CountryVersion) -> None:
        self._store[country.id] = country

    def __contains__(self, country_id: int) -> bool:
        return country_id in self._store

    def __len__(self) -> int:
        return len(self._store)
