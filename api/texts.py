"""
API endpoints for Sefaria texts, links and commentary
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from commentary.graph import CommentaryGraph, CommentaryGraphLoader, CommentaryGraphNode
from ingestion.normalize import format_reference
from ingestion.schema import CommentaryLink, LinkPartition
from ingestion.sefaria_client import SefariaClient
from navigation.state import SessionRegistry
from utils.errors import UpstreamError, ValidationError

from .dependencies import (
    COMMENTARY_MAX_DEPTH,
    get_graph_loader,
    get_sefaria_client,
    get_sessions,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class SearchRequest(BaseModel):
    """Search request"""

    query: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None


class SectionLinksResponse(BaseModel):
    """Commentary on one section"""

    ref: str
    section: int
    commentary: List[CommentaryLink]


def _upstream_failed(detail: str, error: Exception):
    logger.error("%s: %s", detail, error)
    raise HTTPException(status_code=502, detail=detail)


@router.get("/sefaria")
def sefaria_lookup(
    ref: Optional[str] = None,
    action: Optional[str] = None,
    client: SefariaClient = Depends(get_sefaria_client),
):
    """
    Proxy to Sefaria

    - action=text: the text of `ref`
    - action=links: all links of `ref`
    """
    if not ref:
        raise HTTPException(status_code=400, detail="Missing reference parameter")
    ref = format_reference(ref)

    try:
        if action == "text":
            return client.fetch_text(ref).model_dump(by_alias=True)
        if action == "links":
            return [link.model_dump(by_alias=True) for link in client.fetch_links(ref)]
    except UpstreamError as e:
        _upstream_failed("Failed to fetch from Sefaria", e)

    raise HTTPException(status_code=400, detail="Invalid action parameter")


@router.post("/sefaria")
def sefaria_search(request: SearchRequest, client: SefariaClient = Depends(get_sefaria_client)):
    """Full-text search on Sefaria"""
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Missing search query")
    try:
        return client.search(request.query, request.filters)
    except UpstreamError as e:
        _upstream_failed("Search failed", e)


@router.get("/commentary", response_model=SectionLinksResponse)
def section_commentary(
    ref: str, section: int, loader: CommentaryGraphLoader = Depends(get_graph_loader)
):
    """Commentary on section `section` (0-based) of `ref`"""
    ref = format_reference(ref)
    try:
        links = loader.fetch_section_links(ref, section)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        _upstream_failed("Failed to fetch section links", e)
    return SectionLinksResponse(ref=ref, section=section, commentary=links)


@router.get("/commentary/related", response_model=LinkPartition)
def related_texts(ref: str, loader: CommentaryGraphLoader = Depends(get_graph_loader)):
    """Links of `ref` split into commentary and other connections"""
    return loader.fetch_related(format_reference(ref))


@router.get("/commentary/node", response_model=CommentaryGraphNode)
def commentary_node(
    ref: str,
    session: Optional[str] = None,
    loader: CommentaryGraphLoader = Depends(get_graph_loader),
    sessions: SessionRegistry = Depends(get_sessions),
):
    """
    Commentary of every section of `ref`

    With `session`, the node also carries the commentary the session has open
    under each section.
    """
    ref = format_reference(ref)
    try:
        node = loader.load_node(ref)
    except UpstreamError as e:
        _upstream_failed("Failed to load commentary", e)
    if session:
        node.expanded = dict(sessions.get(session).open_commentary.get(ref, {}))
    return node


@router.get("/commentary/graph", response_model=CommentaryGraph)
def commentary_graph(
    ref: str,
    depth: int = COMMENTARY_MAX_DEPTH,
    loader: CommentaryGraphLoader = Depends(get_graph_loader),
):
    """Commentary on commentary of `ref`, `depth` levels deep"""
    try:
        return loader.expand(format_reference(ref), max_depth=depth)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamError as e:
        _upstream_failed("Failed to expand commentary", e)
