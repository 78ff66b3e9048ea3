"""Incremental import of source records into the case store."""

import enum
import math
import time
from dataclasses import dataclass
from datetime import date

import structlog

from covidservice.app.errors import ImportAborted, ValidationError
from covidservice.app.records import EPOCH, CaseRecord, ImportResult, SourceRecord

logger = structlog.get_logger()


class ImportPolicy(enum.Enum):
    """How the importer decides that a record is new.

    WATERMARK keeps only records strictly after the latest stored date of
    their country. A record for an earlier, never stored date (a late
    backfill) is skipped.

    BACKFILL keeps every record whose (country, date) is not stored yet,
    whatever its position relative to the latest date.
    """
    WATERMARK = "watermark"
    BACKFILL = "backfill"


@dataclass
class _ParsedRecord:
    source: SourceRecord
    date: date
    cumulative: float


def parse_date(record: SourceRecord, index: int | None = None) -> date:
    parts = {}
    for field in ("day", "month", "year"):
        raw = getattr(record, field)
        text = str(raw).strip() if raw is not None else ""
        if not (text.isascii() and text.isdigit()):
            raise ValidationError(f"invalid {field} {raw!r}", index, record.country_code)
        parts[field] = int(text)
    try:
        parsed = date(parts["year"], parts["month"], parts["day"])
    except ValueError as exc:
        raise ValidationError(str(exc), index, record.country_code) from exc
    if parsed <= EPOCH:
        raise ValidationError(f"date {parsed.isoformat()} is not after {EPOCH.isoformat()}", index, record.country_code)
    return parsed


def parse_cumulative(record: SourceRecord, index: int | None = None) -> float:
    raw = record.cumulative
    if raw is None:
        return 0.0
    text = str(raw).strip()
    if not text:
        return 0.0
    try:
        value = float(text)
    except ValueError as exc:
        raise ValidationError(f"invalid cumulative incidence {raw!r}", index, record.country_code) from exc
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"cumulative incidence out of range {raw!r}", index, record.country_code)
    return value


class CaseImporter:
    """One import call: validate, filter against stored history, insert.

    The known-date lookups are memoized per country code for the lifetime of
    the importer, so use a fresh instance for each batch.
    """

    def __init__(self, store, policy: ImportPolicy = ImportPolicy.WATERMARK):
        self.store = store
        self.policy = policy
        self._watermarks: dict[str, date] = {}
        self._known_dates: dict[str, set[date]] = {}

    async def last_record_date(self, code: str) -> date:
        if code not in self._watermarks:
            self._watermarks[code] = await self.store.last_fact_date(code)
        return self._watermarks[code]

    async def _is_new(self, code: str, day: date) -> bool:
        if self.policy is ImportPolicy.BACKFILL:
            if code not in self._known_dates:
                self._known_dates[code] = await self.store.known_fact_dates(code)
            known = self._known_dates[code]
            if day in known:
                return False
            # Later duplicates in the same batch are not new either.
            known.add(day)
            return True
        return day > await self.last_record_date(code)

    async def run(self, records: list[SourceRecord]) -> ImportResult:
        started = time.monotonic()
        result = ImportResult(total=len(records))
        logger.info("Import started", records=len(records), policy=self.policy.value)

        # Validate everything first: a malformed record must not leave any
        # country versions behind.
        parsed = [
            _ParsedRecord(
                source=record,
                date=parse_date(record, index),
                cumulative=parse_cumulative(record, index),
            )
            for index, record in enumerate(records)
        ]

        staged: list[CaseRecord] = []
        for item in parsed:
            source = item.source
            if not await self._is_new(source.country_code, item.date):
                result.skipped += 1
                continue
            country = await self.store.resolver.resolve_or_version(
                source.country_code,
                source.geo_id,
                source.name,
                source.population,
                source.continent,
            )
            staged.append(CaseRecord(
                date=item.date,
                country=country,
                cases=source.cases,
                deaths=source.deaths,
                cumulative=item.cumulative,
            ))
            result.countries.add(source.country_code)

        try:
            result.imported = await self.store.insert_facts_batch(staged)
        except ImportAborted as e:
            logger.error("Import aborted", staged=len(staged), error=str(e))
            raise

        logger.info(
            "Import completed",
            imported=result.imported,
            skipped=result.skipped,
            countries=len(result.countries),
            elapsed_s=round(time.monotonic() - started, 3),
        )
        return result


async def import_records(
    store,
    records: list[SourceRecord],
    policy: ImportPolicy = ImportPolicy.WATERMARK,
) -> ImportResult:
    return await CaseImporter(store, policy).run(records)
