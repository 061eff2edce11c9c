"""
API endpoints for translation
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, Field

from ingestion.normalize import section_refs
from translation.dispatcher import TranslationDispatcher
from translation.streaming import stream_translate
from translation.store import TranslationStore
from utils.errors import AuthorizationError, PersistenceError

from .dependencies import authenticate, get_dispatcher, get_store

logger = logging.getLogger(__name__)

router = APIRouter()


class TranslateRequest(BaseModel):
    """Translation request"""

    reference: Optional[str] = Field(None, validation_alias=AliasChoices("reference", "sefariaRef"))
    source_text: Optional[str] = Field(
        None, validation_alias=AliasChoices("sourceText", "source_text", "hebrewText")
    )
    retranslate: bool = False  # Ignore the stored translation and overwrite it


class TranslateResponse(BaseModel):
    """Translation response"""

    translation: str
    cached: bool
    model: str
    cost: Optional[float] = None


class StoredTranslationsResponse(BaseModel):
    """Stored translations of the sections of a reference"""

    ref: str
    translations: Dict[int, str]


def _check_request(request: TranslateRequest, authorization: Optional[str]) -> str:
    """Validates the body, then the caller; returns the user id"""
    if not request.reference or not request.source_text:
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        return authenticate(authorization)
    except AuthorizationError:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _metadata(user: str) -> dict:
    return {"user_id": user, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/translate", response_model=TranslateResponse)
async def translate(
    request: TranslateRequest,
    authorization: Optional[str] = Header(None),
    dispatcher: TranslationDispatcher = Depends(get_dispatcher),
):
    """
    Translate a reference

    Returns the stored translation (cached, cost 0) when there is one,
    otherwise translates, stores and returns the result with its cost.
    """
    user = _check_request(request, authorization)

    try:
        outcome = await dispatcher.translate(
            request.reference,
            request.source_text,
            force=request.retranslate,
            metadata=_metadata(user),
        )
    except Exception as e:
        logger.error("Translation error for %s: %s", request.reference, e)
        raise HTTPException(status_code=500, detail="Translation failed")

    return TranslateResponse(
        translation=outcome.record.translated_text,
        cached=outcome.cached,
        model=outcome.record.model_identifier,
        cost=outcome.cost,
    )


@router.post("/translate-stream")
async def translate_stream(
    request: TranslateRequest,
    http_request: Request,
    authorization: Optional[str] = Header(None),
    dispatcher: TranslationDispatcher = Depends(get_dispatcher),
):
    """
    Translate a reference as a stream of `data: <json>` frames ending with `data: [DONE]`

    Frame types: chunk, cached, complete, error
    """
    user = _check_request(request, authorization)

    frames = stream_translate(
        dispatcher,
        request.reference,
        request.source_text,
        is_disconnected=http_request.is_disconnected,
        metadata=_metadata(user),
        force=request.retranslate,
    )
    return StreamingResponse(
        frames,
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/translations", response_model=StoredTranslationsResponse)
def get_stored_translations(
    ref: str, sections: int = 0, store: TranslationStore = Depends(get_store)
):
    """
    Stored translations of the sections of a reference

    - sections > 0: looks up "ref:1" .. "ref:sections", keyed by 0-based section index
    - sections = 0: looks up the reference itself, keyed by 0
    """
    if sections < 0:
        raise HTTPException(status_code=400, detail="sections must be >= 0")

    refs = section_refs(ref, sections) if sections else [ref]
    try:
        records = store.get_many(refs)
    except PersistenceError as e:
        logger.error("Error loading stored translations for %s: %s", ref, e)
        raise HTTPException(status_code=500, detail="Failed to load translations")

    translations = {
        i: records[r].translated_text for i, r in enumerate(refs) if r in records
    }
    return StoredTranslationsResponse(ref=ref, translations=translations)
