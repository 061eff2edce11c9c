"""
Dependencies for FastAPI - configuration and singleton instances

Singletons are created on first use so importing the app has no side effects
(no database file, no network); tests swap them via app.dependency_overrides.
"""

import logging
import os
from typing import Dict, Optional

from commentary.graph import CommentaryGraphLoader
from ingestion.sefaria_client import SefariaClient
from navigation.state import SessionRegistry
from translation.dispatcher import TranslationDispatcher
from translation.openrouter import OpenRouterTranslator
from translation.store import TranslationStore
from utils.errors import AuthorizationError

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


# Sefaria
SEFARIA_BASE_URL = os.getenv("SEFARIA_BASE_URL", "https://www.sefaria.org/api")
SEFARIA_TIMEOUT = _env_float("SEFARIA_TIMEOUT", 30)
TEXT_CACHE_SIZE = _env_int("TEXT_CACHE_SIZE", 500)
TEXT_CACHE_TTL = _env_float("TEXT_CACHE_TTL", 60 * 60)
LINKS_CACHE_SIZE = _env_int("LINKS_CACHE_SIZE", 200)
LINKS_CACHE_TTL = _env_float("LINKS_CACHE_TTL", 60 * 30)

# OpenRouter
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "google/gemini-2.5-flash")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
OPENROUTER_TIMEOUT = _env_float("OPENROUTER_TIMEOUT", 120)
APP_URL = os.getenv("APP_URL", "http://localhost:8000")

# Storage
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///translations.db")

# Commentary graph
COMMENTARY_MAX_DEPTH = _env_int("COMMENTARY_MAX_DEPTH", 3)
COMMENTARY_STRICT = _env_flag("COMMENTARY_STRICT")
COMMENTARY_CACHE_SIZE = _env_int("COMMENTARY_CACHE_SIZE", 2000)


_sefaria_client = None
_graph_loader = None
_store = None
_translator = None
_dispatcher = None
_sessions = None


def get_sefaria_client() -> SefariaClient:
    global _sefaria_client
    if _sefaria_client is None:
        _sefaria_client = SefariaClient(
            base_url=SEFARIA_BASE_URL,
            text_cache_size=TEXT_CACHE_SIZE,
            text_ttl=TEXT_CACHE_TTL,
            links_cache_size=LINKS_CACHE_SIZE,
            links_ttl=LINKS_CACHE_TTL,
            timeout=SEFARIA_TIMEOUT,
        )
    return _sefaria_client


def get_graph_loader() -> CommentaryGraphLoader:
    global _graph_loader
    if _graph_loader is None:
        _graph_loader = CommentaryGraphLoader(
            get_sefaria_client(),
            strict=COMMENTARY_STRICT,
            cache_size=COMMENTARY_CACHE_SIZE,
            ttl=LINKS_CACHE_TTL,
        )
    return _graph_loader


def get_store() -> TranslationStore:
    global _store
    if _store is None:
        _store = TranslationStore(DATABASE_URL)
    return _store


def get_translator() -> OpenRouterTranslator:
    global _translator
    if _translator is None:
        if not OPENROUTER_API_KEY:
            logger.warning("OPENROUTER_API_KEY is not set - translations will fail")
        _translator = OpenRouterTranslator(
            api_key=OPENROUTER_API_KEY,
            model=OPENROUTER_MODEL,
            base_url=OPENROUTER_BASE_URL,
            timeout=OPENROUTER_TIMEOUT,
            app_url=APP_URL,
        )
    return _translator


def get_dispatcher() -> TranslationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = TranslationDispatcher(get_store(), get_translator())
    return _dispatcher


def get_sessions() -> SessionRegistry:
    global _sessions
    if _sessions is None:
        _sessions = SessionRegistry()
    return _sessions


def parse_api_tokens(value: str) -> Dict[str, str]:
    """
    Parses API_TOKENS ("alice=secret1,bob=secret2") into {token: user}

    An entry without "=" is a token whose user id is the token position.
    """
    tokens = {}
    for i, entry in enumerate(e.strip() for e in value.split(",")):
        if not entry:
            continue
        if "=" in entry:
            user, token = entry.split("=", 1)
            tokens[token.strip()] = user.strip()
        else:
            tokens[entry] = f"user-{i + 1}"
    return tokens


def authenticate(authorization: Optional[str]) -> str:
    """
    Resolves the user of a request from its `Authorization: Bearer` header

    Raises:
        AuthorizationError: Missing, malformed or unknown token
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthorizationError("Missing bearer token")
    token = authorization[len("bearer "):].strip()
    user = parse_api_tokens(os.getenv("API_TOKENS", "")).get(token)
    if user is None:
        raise AuthorizationError("Unknown token")
    return user
