"""
Pytest configuration and fixtures for testing the translation service.

Network-facing pieces (Sefaria, OpenRouter) are replaced by in-process fakes;
the translation store is a real SQLAlchemy store on in-memory sqlite.
"""

import asyncio
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from api import dependencies
from api.main import app
from commentary.graph import CommentaryGraphLoader
from ingestion.normalize import normalize_source_text
from ingestion.schema import CommentaryLink, TextResponse, TranslationDelta
from navigation.state import SessionRegistry
from translation.dispatcher import TranslationDispatcher
from translation.openrouter import TranslatorResult
from translation.store import TranslationStore
from utils.errors import PersistenceError, UpstreamError

API_TOKEN = "test-token"


def make_link(ref: str, category: str = "Commentary", title: Optional[str] = None, type: str = "", source: str = ""):
    """Helper to build a link the way Sefaria returns it."""
    data = {"ref": ref, "sourceRef": source, "category": category, "type": type}
    if title is not None:
        data["collectiveTitle"] = {"en": title}
    return CommentaryLink.model_validate(data)


class FakeTranslator:
    """Translator that streams fixed pieces and counts its calls."""

    def __init__(self, pieces=("In the evening, ", "from when ", "do we recite Shema?"), cost=0.0021,
                 model="test/model", fail: Optional[str] = None, delay: float = 0):
        self.pieces = list(pieces)
        self.cost = cost
        self.model = model
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def stream(self, source_text: str, reference: str, context: Optional[str] = None):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise UpstreamError(self.fail, status_code=502)
        for piece in self.pieces:
            yield TranslationDelta(content=piece)
            await asyncio.sleep(self.delay)
        yield TranslationDelta(cost=self.cost)

    async def translate(self, source_text: str, reference: str, context: Optional[str] = None):
        parts = []
        cost = 0.0
        async for delta in self.stream(source_text, reference, context):
            parts.append(delta.content)
            if delta.cost is not None:
                cost = delta.cost
        return TranslatorResult(translation="".join(parts), model=self.model, cost=cost)


class FakeSefariaClient:
    """In-memory stand-in for SefariaClient with per-reference call counts."""

    def __init__(self, texts: Dict[str, object], links: Dict[str, List[CommentaryLink]]):
        self.texts = texts
        self.links = links
        self.text_calls: Dict[str, int] = {}
        self.link_calls: Dict[str, int] = {}
        self.failing_links = set()

    def fetch_text(self, ref: str, include_commentary: bool = False) -> TextResponse:
        self.text_calls[ref] = self.text_calls.get(ref, 0) + 1
        if ref not in self.texts:
            raise UpstreamError("Sefaria API error: 404", status_code=404)
        return TextResponse(ref=ref, he=self.texts[ref], text=self.texts[ref])

    def fetch_source_text(self, ref: str):
        return normalize_source_text(self.fetch_text(ref).he)

    def fetch_links(self, ref: str) -> List[CommentaryLink]:
        self.link_calls[ref] = self.link_calls.get(ref, 0) + 1
        if ref in self.failing_links:
            raise UpstreamError("Sefaria API error: 500", status_code=500)
        return list(self.links.get(ref, []))

    def search(self, query: str, filters=None):
        return {"hits": {"total": 1, "hits": [{"_source": {"ref": "Berakhot 2a:1"}}]}}


class FailingStore:
    """Store whose reads miss and whose writes always fail."""

    def __init__(self):
        self.saves = 0

    def get(self, reference):
        return None

    def save(self, record):
        self.saves += 1
        raise PersistenceError(f"Could not store translation for {record.reference}")


@pytest.fixture
def sefaria_client():
    """Berakhot 2a with two sections, Rashi and Tosafot on it, Rashi pointing back."""
    rashi = "Rashi on Berakhot 2a:1:1"
    tosafot = "Tosafot on Berakhot 2a:2:1"
    texts = {
        "Berakhot 2a": ["מֵאֵימָתַי קוֹרִין אֶת שְׁמַע בְּעַרְבִית", "מִשָּׁעָה שֶׁהַכֹּהֲנִים נִכְנָסִים"],
        rashi: "מאימתי קורין",
        tosafot: "מאימתי",
    }
    links = {
        "Berakhot 2a:1": [
            make_link(rashi, title="Rashi on Berakhot", source="Berakhot 2a:1"),
            make_link("Deuteronomy 6:7", category="Tanakh", source="Berakhot 2a:1"),
        ],
        "Berakhot 2a:2": [make_link(tosafot, type="commentary", source="Berakhot 2a:2")],
        rashi: [make_link("Berakhot 2a", source=rashi)],
        tosafot: [make_link(rashi, source=tosafot)],
    }
    return FakeSefariaClient(texts, links)


@pytest.fixture
def graph_loader(sefaria_client):
    return CommentaryGraphLoader(sefaria_client)


@pytest.fixture
def store():
    """Fresh in-memory translation store."""
    return TranslationStore("sqlite://")


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def dispatcher(store, translator):
    return TranslationDispatcher(store, translator)


@pytest.fixture
def sessions():
    return SessionRegistry()


@pytest.fixture
def client(monkeypatch, sefaria_client, graph_loader, store, dispatcher, sessions):
    """Test client wired to the fakes above."""
    monkeypatch.setenv("API_TOKENS", f"tester={API_TOKEN}")
    app.dependency_overrides[dependencies.get_sefaria_client] = lambda: sefaria_client
    app.dependency_overrides[dependencies.get_graph_loader] = lambda: graph_loader
    app.dependency_overrides[dependencies.get_store] = lambda: store
    app.dependency_overrides[dependencies.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[dependencies.get_sessions] = lambda: sessions
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {API_TOKEN}"}
