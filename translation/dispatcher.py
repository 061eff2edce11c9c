"""
Translation cache & dispatcher

translate(reference, source_text):
1. Stored translation → returned with cost 0 (a cache hit is never re-billed)
2. Same reference already being translated → wait for that translation
3. Otherwise call the translator once, persist, return with the real cost

Step 2 is what keeps concurrent requests for a new reference down to one
billable call: the in-flight check and the registration of the future happen
without an await in between, so only the first caller starts a translation.
Store reads and writes run in a worker thread; the future stays registered
until the write is done. A failed write is logged and the translation is
still returned.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

from pydantic import BaseModel

from ingestion.schema import TranslationRecord
from utils.errors import PersistenceError, UpstreamError

from .openrouter import TranslatorResult

logger = logging.getLogger(__name__)


class Translator(Protocol):
    model: str

    async def translate(self, source_text: str, reference: str) -> TranslatorResult: ...

    def stream(self, source_text: str, reference: str): ...


class TranslationStoreLike(Protocol):
    def get(self, reference: str) -> Optional[TranslationRecord]: ...

    def save(self, record: TranslationRecord) -> TranslationRecord: ...


class DispatchResult(BaseModel):
    """Outcome of one translate request"""

    record: TranslationRecord
    cached: bool
    # what this request cost - 0 for cache hits and shared in-flight results
    cost: float
    persisted: bool = True


class TranslationDispatcher:
    """Serves translations from the store, calling the translator at most once per reference"""

    def __init__(self, store: TranslationStoreLike, translator: Translator):
        self.store = store
        self.translator = translator
        self._in_flight: Dict[str, asyncio.Future] = {}

    async def lookup(self, reference: str) -> Optional[TranslationRecord]:
        """Stored record, or None (a failing read counts as a miss)"""
        try:
            return await asyncio.to_thread(self.store.get, reference)
        except PersistenceError as e:
            logger.warning("Cache lookup failed for %s: %s", reference, e)
            return None

    def in_flight(self, reference: str) -> Optional[asyncio.Future]:
        return self._in_flight.get(reference)

    def begin(self, reference: str) -> asyncio.Future:
        """Registers a translation of `reference` as in flight"""
        future = asyncio.get_running_loop().create_future()
        self._in_flight[reference] = future
        return future

    def finish(
        self,
        reference: str,
        future: asyncio.Future,
        result: Optional[DispatchResult] = None,
        error: Optional[BaseException] = None,
    ):
        """Settles an in-flight translation and removes it from the table"""
        if self._in_flight.get(reference) is future:
            del self._in_flight[reference]
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
            # mark retrieved - there may be no waiters
            future.exception()
        else:
            future.set_result(result)

    async def recheck(self, reference: str, future: asyncio.Future) -> Optional[TranslationRecord]:
        """
        Second lookup once `future` is registered

        A translation that finished while the first lookup was running is
        already stored but no longer in flight. Settles `future` on a hit.
        """
        record = await self.lookup(reference)
        if record is not None:
            self.finish(reference, future, result=DispatchResult(record=record, cached=True, cost=0.0))
        return record

    async def join(self, reference: str, future: asyncio.Future) -> DispatchResult:
        """Waits for another request's translation of the same reference"""
        logger.info("Joining in-flight translation: %s", reference)
        shared = await asyncio.shield(future)
        return DispatchResult(record=shared.record, cached=True, cost=0.0, persisted=shared.persisted)

    async def persist(
        self,
        reference: str,
        source_text: str,
        result: TranslatorResult,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[TranslationRecord, bool]:
        """Saves a fresh translation as the translator produced it; returns (record, persisted)"""
        record = TranslationRecord(
            reference=reference,
            source_text=source_text,
            translated_text=result.translation,
            model_identifier=result.model,
            cost=result.cost,
            created_at=datetime.now(timezone.utc),
            metadata=metadata,
        )
        try:
            return await asyncio.to_thread(self.store.save, record), True
        except PersistenceError as e:
            # the next request for this reference will translate again
            logger.warning("Translation for %s was not persisted: %s", reference, e)
            return record, False

    async def translate(
        self,
        reference: str,
        source_text: str,
        force: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DispatchResult:
        """
        Translation of `reference`

        Args:
            reference: Sefaria reference, the cache key
            source_text: Text to translate on a cache miss
            force: Skip the stored translation and translate again (overwrites it)
            metadata: Stored with a fresh record (e.g. requesting user)

        Raises:
            UpstreamError: If the translator fails; nothing is stored
        """
        if not force:
            record = await self.lookup(reference)
            if record is not None:
                logger.info("Translation cache hit: %s", reference)
                return DispatchResult(record=record, cached=True, cost=0.0)

        pending = self.in_flight(reference)
        if pending is not None:
            return await self.join(reference, pending)

        future = self.begin(reference)
        try:
            if not force:
                record = await self.recheck(reference, future)
                if record is not None:
                    return DispatchResult(record=record, cached=True, cost=0.0)
            result = await self.translator.translate(source_text, reference)
            record, persisted = await self.persist(reference, source_text, result, metadata)
        except asyncio.CancelledError:
            self.finish(reference, future, error=UpstreamError("Translation cancelled"))
            raise
        except Exception as e:
            logger.error("Translation failed for %s: %s", reference, e)
            self.finish(reference, future, error=e)
            raise

        outcome = DispatchResult(record=record, cached=False, cost=record.cost, persisted=persisted)
        self.finish(reference, future, result=outcome)
        logger.info("Translated %s with %s (cost %.6f)", reference, record.model_identifier, record.cost)
        return outcome
