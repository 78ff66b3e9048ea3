"""Streaming of query results from a database cursor to a consumer.

A producer task owns the session and the cursor and hands decoded results
over a bounded queue. When the queue is full the producer waits, so a slow
consumer holds the cursor back instead of buffering the whole result.

Consumers should iterate inside ``async with``; leaving the block (or
calling ``aclose()``) cancels the producer, which closes the cursor and
returns its connection to the pool.
"""

import asyncio

import structlog

from covidservice.app.errors import StorageError
from covidservice.app.records import CaseRecord, FactResult, from_timestamp

logger = structlog.get_logger()

_DONE = object()


class FactStream:
    def __init__(self, store, statement, buffer_size: int = 1):
        self._store = store
        self._statement = statement
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, buffer_size))
        self._task: asyncio.Task | None = None
        self._finished = False

    async def __aenter__(self) -> "FactStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> "FactStream":
        return self

    async def __anext__(self) -> FactResult:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._produce())
        item = await self._queue.get()
        if item is _DONE:
            self._finished = True
            await self._task
            raise StopAsyncIteration
        if not item.ok:
            # Nothing follows an error.
            self._finished = True
        return item

    async def aclose(self) -> None:
        self._finished = True
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        elif not task.cancelled():
            task.result()

    async def collect(self) -> list[CaseRecord]:
        """Drain the stream, raising the terminal error if there is one."""
        records = []
        async with self:
            async for result in self:
                if result.error is not None:
                    raise result.error
                records.append(result.record)
        return records

    async def _produce(self) -> None:
        try:
            async with self._store.session_factory() as session:
                result = await session.stream(self._statement)
                try:
                    async for row in result:
                        record = await self._decode(row)
                        await self._queue.put(FactResult(record=record))
                finally:
                    await result.close()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not isinstance(exc, StorageError):
                wrapped = StorageError(f"Reading case records failed: {exc}")
                wrapped.__cause__ = exc
                exc = wrapped
            logger.error("Case stream aborted", error=str(exc))
            await self._queue.put(FactResult(error=exc))
            return
        await self._queue.put(_DONE)

    async def _decode(self, row) -> CaseRecord:
        country = await self._store.resolver.by_id(row.country_id)
        if country is None:
            raise StorageError(f"Case record references unknown country id {row.country_id}")
        return CaseRecord(
            date=from_timestamp(row.date),
            country=country,
            cases=int(row.cases),
            deaths=int(row.deaths),
            cumulative=float(row.cumulative),
        )
