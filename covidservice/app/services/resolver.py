"""Country dimension versioning.

Countries are stored as slowly changing dimension rows: history is kept by
appending a new row whenever any descriptive attribute changes, and the
latest row per code is the current state.
"""

from typing import Optional

import structlog

from covidservice.app.records import CountryVersion

logger = structlog.get_logger()


class CountryResolver:
    def __init__(self, store):
        self.store = store

    @property
    def cache(self):
        return self.store.cache

    async def resolve_or_version(
        self,
        code: str,
        geo_id: Optional[str],
        name: Optional[str],
        population: Optional[int],
        continent: Optional[str],
    ) -> CountryVersion:
        """Return the current version of `code`, minting a new one if needed.

        No write happens when the current version already carries the given
        attributes. Versions minted here are committed immediately, outside
        of any fact batch the caller may go on to insert.
        """
        current = await self.store.current_country_version(code)
        if current is not None and current.same_attributes(geo_id, name, population, continent):
            return current

        country_id = await self.store.insert_country_version(
            code=code,
            geo_id=geo_id,
            name=name,
            population=population,
            continent=continent,
        )
        country = CountryVersion(
            id=country_id,
            code=code,
            geo_id=geo_id,
            name=name,
            population=population,
            continent=continent,
        )
        self.cache.put(country)
        if current is None:
            logger.info("New country registered", code=code, country_id=country_id)
        else:
            logger.info(
                "Country metadata changed; new version created",
                code=code,
                previous_id=current.id,
                country_id=country_id,
            )
        return country

    async def by_id(self, country_id: int) -> CountryVersion | None:
        country = self.cache.get(country_id)
        if country is not None:
            return country
        country = await self.store.country_by_version_id(country_id)
        if country is not None:
            self.cache.put(country)
        return country
