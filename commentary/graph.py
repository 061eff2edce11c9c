"""
Lazy commentary graph

Every reference may carry commentaries (mefarshim), and a commentary is itself
a reference that may carry commentaries. Nothing is fetched until asked for:

- fetch_section_links(base, k) - commentary of one section, memoized
- load_node(ref) - commentary of every section of a reference
- expand(ref, max_depth) - breadth-first walk over commentary-on-commentary

Node identity is the reference string. The walk keeps a visited set so cyclic
link data terminates, and stops loading at `max_depth`.
"""

import logging
import threading
from collections import deque
from typing import Callable, Dict, Hashable, List, Optional

from cachetools import TTLCache
from pydantic import BaseModel

from ingestion.normalize import section_ref
from ingestion.schema import CommentaryLink, LinkPartition
from ingestion.sefaria_client import SefariaClient
from utils.errors import UpstreamError, ValidationError

from .classify import classify_links

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3


def toggle_section(expanded: Dict[int, str], section_index: int, target_ref: str) -> Optional[str]:
    """
    At most one commentary is open per section: opening another one replaces
    it, opening the open one again closes it. Mutates `expanded`.
    """
    if expanded.get(section_index) == target_ref:
        del expanded[section_index]
        return None
    expanded[section_index] = target_ref
    return target_ref


class CommentaryGraphNode(BaseModel):
    """Commentary discovered for one reference"""

    reference: str
    depth: int = 0
    sectioned: bool = False
    # section index (0-based) -> commentary of that section
    sections: Dict[int, List[CommentaryLink]] = {}
    # commentary of an unsectioned text
    links: List[CommentaryLink] = []
    # section index -> the one expanded commentary reference of that section
    expanded: Dict[int, str] = {}

    def children(self) -> List[str]:
        """Target references of all commentary, first occurrence order"""
        seen = []
        groups = [self.sections[i] for i in sorted(self.sections)] + [self.links]
        for group in groups:
            for link in group:
                if link.target_ref and link.target_ref not in seen:
                    seen.append(link.target_ref)
        return seen

    def toggle_expanded(self, section_index: int, target_ref: str) -> Optional[str]:
        """
        Expands `target_ref` under a section, replacing any other expanded
        commentary there. Toggling the expanded one again collapses it.

        Returns:
            The reference now expanded for the section, or None
        """
        return toggle_section(self.expanded, section_index, target_ref)


class CommentaryGraph(BaseModel):
    """Result of a bounded breadth-first expansion"""

    root: str
    max_depth: int
    nodes: Dict[str, CommentaryGraphNode] = {}
    # references reached at max_depth and left unloaded
    truncated: List[str] = []
    # references whose text or links could not be fetched
    failed: List[str] = []


class CommentaryGraphLoader:
    """Fetches and memoizes commentary links per section"""

    def __init__(
        self,
        client: SefariaClient,
        strict: bool = False,
        cache_size: int = 2000,
        ttl: float = 60 * 30,
    ):
        """
        Args:
            client: Sefaria client used for texts and links
            strict: Classify by Sefaria category/type only (no "on" title match)
            cache_size: Maximum number of memoized link lists per table
            ttl: Seconds a memoized link list is kept (same as the links cache)
        """
        self.client = client
        self.strict = strict
        self._section_links: TTLCache = TTLCache(maxsize=cache_size, ttl=ttl)
        self._reference_links: TTLCache = TTLCache(maxsize=cache_size, ttl=ttl)
        self._lock = threading.Lock()
        self._key_locks: Dict[Hashable, threading.Lock] = {}

    def _memoized(self, table: TTLCache, key: Hashable, load: Callable[[], List[CommentaryLink]]):
        with self._lock:
            value = table.get(key)
            if value is not None:
                return value
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        # One fetch per key even when several threads ask at once
        with key_lock:
            try:
                with self._lock:
                    value = table.get(key)
                if value is not None:
                    return value
                value = load()
                with self._lock:
                    table[key] = value
                return value
            finally:
                with self._lock:
                    if self._key_locks.get(key) is key_lock:
                        del self._key_locks[key]

    def fetch_related(self, ref: str) -> LinkPartition:
        """Commentary and other connections of a reference; empty on upstream failure"""
        try:
            links = self.client.fetch_links(ref)
        except UpstreamError as e:
            logger.error("Error fetching related texts for %s: %s", ref, e)
            return LinkPartition()
        return classify_links(links, strict=self.strict)

    def fetch_section_links(self, base_ref: str, section_index: int) -> List[CommentaryLink]:
        """
        Commentary on one section of `base_ref`

        Links are fetched for the section reference ("base:index+1"), not the
        whole text. The result is memoized per (base_ref, section_index).
        """
        if section_index < 0:
            raise ValidationError(f"Section index must be >= 0, got {section_index}")

        def load():
            links = self.client.fetch_links(section_ref(base_ref, section_index))
            return classify_links(links, strict=self.strict).commentary

        return self._memoized(self._section_links, (base_ref, section_index), load)

    def fetch_reference_links(self, ref: str) -> List[CommentaryLink]:
        """Commentary on a whole (unsectioned) reference, memoized per reference"""

        def load():
            return classify_links(self.client.fetch_links(ref), strict=self.strict).commentary

        return self._memoized(self._reference_links, ref, load)

    def load_node(self, ref: str, depth: int = 0) -> CommentaryGraphNode:
        """Fetches the text of `ref` and the commentary of each of its sections"""
        text = self.client.fetch_source_text(ref)
        node = CommentaryGraphNode(reference=ref, depth=depth)
        if isinstance(text, list):
            node.sectioned = True
            for i in range(len(text)):
                node.sections[i] = self.fetch_section_links(ref, i)
        else:
            node.links = self.fetch_reference_links(ref)
        return node

    def expand(self, ref: str, max_depth: int = DEFAULT_MAX_DEPTH) -> CommentaryGraph:
        """
        Breadth-first expansion of commentary-on-commentary

        Nodes with depth < max_depth are loaded; references first reached at
        max_depth are listed in `truncated`. A failure on the root propagates,
        failures deeper down are recorded in `failed`.
        """
        if max_depth < 1:
            raise ValidationError(f"max_depth must be >= 1, got {max_depth}")

        graph = CommentaryGraph(root=ref, max_depth=max_depth)
        visited = {ref}
        queue = deque([(ref, 0)])

        while queue:
            current, depth = queue.popleft()
            if depth >= max_depth:
                graph.truncated.append(current)
                continue

            try:
                node = self.load_node(current, depth=depth)
            except UpstreamError as e:
                if current == ref:
                    raise
                logger.warning("Skipping commentary %s: %s", current, e)
                graph.failed.append(current)
                continue

            graph.nodes[current] = node
            for child in node.children():
                if child not in visited:
                    visited.add(child)
                    queue.append((child, depth + 1))

        logger.info(
            "Expanded %s: %d nodes, %d truncated, %d failed",
            ref,
            len(graph.nodes),
            len(graph.truncated),
            len(graph.failed),
        )
        return graph

    def invalidate(self, base_ref: Optional[str] = None):
        """Drops memoized links - everything, or only those of `base_ref`"""
        with self._lock:
            if base_ref is None:
                self._section_links.clear()
                self._reference_links.clear()
                return
            for key in [k for k in self._section_links if k[0] == base_ref]:
                self._section_links.pop(key, None)
            self._reference_links.pop(base_ref, None)
