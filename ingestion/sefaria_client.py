"""
Sefaria API client with time-bounded in-memory caches

Two cache pools:
- texts: key "<ref>-<include_commentary>", default 500 entries / 1 hour
- links: key "<ref>", default 200 entries / 30 minutes

A cache hit never touches the network. Failed requests are never cached
and never retried here - retrying is the caller's decision.
"""

import logging
import threading
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from cachetools import TTLCache

from utils.errors import UpstreamError
from utils.ssl_config import get_verify

from .normalize import normalize_source_text
from .schema import CommentaryLink, SourceText, TextResponse

logger = logging.getLogger(__name__)

BASE_URL = "https://www.sefaria.org/api"


class SefariaClient:
    """Fetches texts and links from Sefaria"""

    def __init__(
        self,
        base_url: str = BASE_URL,
        text_cache_size: int = 500,
        text_ttl: float = 60 * 60,
        links_cache_size: int = 200,
        links_ttl: float = 60 * 30,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Sefaria API root
            text_cache_size: Maximum number of cached text responses
            text_ttl: Seconds a text response stays cached
            links_cache_size: Maximum number of cached link lists
            links_ttl: Seconds a link list stays cached
            timeout: HTTP timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._text_cache = TTLCache(maxsize=text_cache_size, ttl=text_ttl)
        self._links_cache = TTLCache(maxsize=links_cache_size, ttl=links_ttl)
        # TTLCache is not thread-safe and handlers run in a threadpool
        self._lock = threading.Lock()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            r = self.session.get(
                url,
                params=params,
                timeout=self.timeout,
                headers={"accept": "application/json"},
                verify=get_verify(),
            )
        except requests.exceptions.RequestException as e:
            logger.error("Sefaria request failed: %s (%s)", url, e)
            raise UpstreamError(f"Sefaria request failed: {e}") from e

        if not r.ok:
            logger.error("Sefaria API error: %s for %s", r.status_code, url)
            raise UpstreamError(
                f"Sefaria API error: {r.status_code}", status_code=r.status_code
            )

        try:
            return r.json()
        except ValueError as e:
            logger.error("Sefaria returned invalid JSON for %s", url)
            raise UpstreamError("Sefaria returned invalid JSON") from e

    def fetch_text(self, ref: str, include_commentary: bool = False) -> TextResponse:
        """
        Gets the text of a reference

        Args:
            ref: Sefaria reference (e.g., "Berakhot 2a")
            include_commentary: Ask Sefaria to embed commentary in the response

        Returns:
            Parsed text response
        """
        cache_key = f"{ref}-{include_commentary}"
        with self._lock:
            cached = self._text_cache.get(cache_key)
        if cached is not None:
            logger.debug("Text cache hit: %s", cache_key)
            return cached

        params = {"context": "0"}
        if include_commentary:
            params["commentary"] = "1"

        data = self._get(f"texts/{quote(ref)}", params=params)
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected Sefaria text response type: {type(data)}")

        response = TextResponse.model_validate(data)
        with self._lock:
            self._text_cache[cache_key] = response
        return response

    def fetch_links(self, ref: str) -> List[CommentaryLink]:
        """Gets all links (commentary and other connections) of a reference"""
        with self._lock:
            cached = self._links_cache.get(ref)
        if cached is not None:
            logger.debug("Links cache hit: %s", ref)
            return cached

        data = self._get(f"links/{quote(ref)}")
        if not isinstance(data, list):
            # Sefaria answers {"error": ...} for unknown refs
            raise UpstreamError(f"Unexpected Sefaria links response for {ref}")

        links = [CommentaryLink.model_validate(item) for item in data if isinstance(item, dict)]
        with self._lock:
            self._links_cache[ref] = links
        return links

    def search(self, query: str, filters: Optional[Dict[str, Any]] = None) -> Any:
        """Full-text search; results are not cached"""
        params = {"q": query}
        if filters:
            params.update(filters)
        return self._get(f"search/{quote(query)}", params=params)

    @staticmethod
    def extract_hebrew_text(response: TextResponse) -> SourceText:
        """Hebrew text of a response with HTML entities decoded"""
        return normalize_source_text(response.he)

    def fetch_source_text(self, ref: str) -> SourceText:
        """Convenience: fetch a reference and return its normalized Hebrew text"""
        return self.extract_hebrew_text(self.fetch_text(ref))

    def clear_cache(self):
        """Empties both cache pools"""
        with self._lock:
            self._text_cache.clear()
            self._links_cache.clear()
