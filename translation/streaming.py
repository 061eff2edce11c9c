"""
Streaming delivery of translations

Producer side (`stream_translate`) emits frames in this order:

    chunk* then exactly one of complete | cached | error, then [DONE]

A stored translation is sent whole as one `cached` frame. Re-chunking it
into words for display is the consumer's business (`iter_translation_text`).
"""

import asyncio
import logging
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Dict, Optional

import pydantic

from ingestion.schema import (
    CachedEvent,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    StreamEvent,
    TranslationRecord,
)
from utils.errors import UpstreamError

from .dispatcher import DispatchResult, TranslationDispatcher
from .frames import DONE_FRAME, FrameDecoder, encode_frame
from .openrouter import TranslatorResult

logger = logging.getLogger(__name__)

REPLAY_DELAY = 0.02

_STREAM_EVENTS = pydantic.TypeAdapter(StreamEvent)


def _error_message(error: Exception) -> str:
    if isinstance(error, UpstreamError):
        return error.message
    return str(error) or "Translation failed"


def _cached_frame(record: TranslationRecord) -> str:
    return encode_frame(CachedEvent(translation=record.translated_text, model=record.model_identifier, cost=0))


async def stream_translate(
    dispatcher: TranslationDispatcher,
    reference: str,
    source_text: str,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    force: bool = False,
) -> AsyncIterator[str]:
    """
    Frames for one streaming translation request

    Args:
        dispatcher: Shared dispatcher (store, translator, in-flight table)
        reference: Sefaria reference, the cache key
        source_text: Text to translate on a cache miss
        is_disconnected: Checked between increments; once true, relaying stops
        metadata: Stored with a fresh record
        force: Ignore a stored translation and translate again
    """
    if not force:
        record = await dispatcher.lookup(reference)
        if record is not None:
            logger.info("Streaming cached translation: %s", reference)
            yield _cached_frame(record)
            yield DONE_FRAME
            return

    pending = dispatcher.in_flight(reference)
    if pending is not None:
        try:
            shared = await dispatcher.join(reference, pending)
        except Exception as e:
            yield encode_frame(ErrorEvent(error=_error_message(e)))
            yield DONE_FRAME
            return
        yield _cached_frame(shared.record)
        yield DONE_FRAME
        return

    future = dispatcher.begin(reference)
    if not force:
        try:
            record = await dispatcher.recheck(reference, future)
        except asyncio.CancelledError:
            dispatcher.finish(reference, future, error=UpstreamError("Translation stream closed"))
            raise
        if record is not None:
            yield _cached_frame(record)
            yield DONE_FRAME
            return

    deltas = dispatcher.translator.stream(source_text, reference)
    parts = []
    cost = 0.0
    disconnected = False
    try:
        async for delta in deltas:
            if is_disconnected is not None and await is_disconnected():
                disconnected = True
                break
            if delta.cost is not None:
                cost = delta.cost
            if delta.content:
                parts.append(delta.content)
                yield encode_frame(ChunkEvent(content=delta.content))

        if disconnected:
            logger.info("Client disconnected, stopped relaying %s", reference)
            dispatcher.finish(reference, future, error=UpstreamError("Client disconnected"))
            return

        result = TranslatorResult(translation="".join(parts), model=dispatcher.translator.model, cost=cost)
        record, persisted = await dispatcher.persist(reference, source_text, result, metadata)
        dispatcher.finish(
            reference,
            future,
            result=DispatchResult(record=record, cached=False, cost=record.cost, persisted=persisted),
        )
    except Exception as e:
        logger.error("Streaming translation error for %s: %s", reference, e)
        dispatcher.finish(reference, future, error=e)
        yield encode_frame(ErrorEvent(error=_error_message(e)))
        yield DONE_FRAME
        return
    finally:
        if not future.done():
            # generator closed or cancelled early (client went away mid-yield)
            dispatcher.finish(reference, future, error=UpstreamError("Translation stream closed"))
        await deltas.aclose()

    yield encode_frame(CompleteEvent(translation=record.translated_text, model=record.model_identifier, cost=record.cost))
    yield DONE_FRAME


async def replay_words(text: str, delay: float = REPLAY_DELAY) -> AsyncIterator[str]:
    """Splits a finished translation into words, pausing `delay` seconds before each"""
    words = text.split(" ")
    for i, word in enumerate(words):
        await asyncio.sleep(delay)
        yield word + (" " if i < len(words) - 1 else "")


async def iter_translation_text(
    chunks: AsyncIterable[str], replay_delay: float = REPLAY_DELAY
) -> AsyncIterator[str]:
    """
    Consumer side: turns a frame stream back into text pieces

    `chunk` contents are passed through, a `cached` translation is replayed
    word by word, `complete` adds nothing (its text was already streamed).
    Payloads that are not a known event are skipped.

    Raises:
        UpstreamError: When the stream carries an `error` frame
    """
    decoder = FrameDecoder()
    unknown = 0
    async for text in chunks:
        for payload in decoder.feed(text):
            try:
                event = _STREAM_EVENTS.validate_python(payload)
            except pydantic.ValidationError as e:
                unknown += 1
                logger.debug("Skipping unknown frame %r: %s", payload, e)
                continue
            if isinstance(event, ChunkEvent) and event.content:
                yield event.content
            elif isinstance(event, CachedEvent):
                async for piece in replay_words(event.translation, replay_delay):
                    yield piece
            elif isinstance(event, ErrorEvent):
                raise UpstreamError(event.error or "Translation failed")
        if decoder.done:
            break

    if decoder.malformed_frames or unknown:
        logger.debug("Skipped %d malformed and %d unknown frames", decoder.malformed_frames, unknown)
