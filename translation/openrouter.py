"""
OpenRouter chat-completions client for Hebrew/Aramaic → English translation

Requests are always streamed; `translate` simply drains the stream.
"""

import json
import logging
from typing import AsyncIterator, Optional

import httpx
from pydantic import BaseModel

from ingestion.schema import TranslationDelta
from utils.errors import UpstreamError
from utils.ssl_config import get_verify

from .frames import FrameDecoder

logger = logging.getLogger(__name__)

BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-2.5-flash"

SYSTEM_PROMPT = """You are an expert translator of Talmudic Hebrew and Aramaic texts.
Your task is to provide accurate, clear English translations while preserving the meaning and nuance of the original text.
Guidelines:
- Maintain the scholarly tone appropriate for Talmudic study
- Preserve technical terms when appropriate, with explanations in parentheses
- Keep the translation concise but complete
- Use modern, readable English while respecting the source material
- If the text contains Biblical quotes, indicate them appropriately"""


def build_user_prompt(source_text: str, reference: str, context: Optional[str] = None) -> str:
    context_line = f"Context: {context}\n" if context else ""
    return (
        "Translate the following Hebrew/Aramaic text to English:\n\n"
        f"Reference: {reference}\n"
        f"{context_line}"
        f"Text: {source_text}\n\n"
        "Provide only the English translation, without any additional commentary or explanation."
    )


class TranslatorResult(BaseModel):
    """Complete output of one translator call"""

    translation: str
    model: str
    cost: float = 0.0


class OpenRouterTranslator:
    """Streams translations from OpenRouter"""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = BASE_URL,
        timeout: float = 120,
        app_url: str = "http://localhost:8000",
        temperature: float = 0.3,
        max_tokens: int = 8000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: OpenRouter API key
            model: Model identifier stored with every translation
            base_url: API root
            timeout: HTTP timeout in seconds
            app_url: Sent as HTTP-Referer (OpenRouter app attribution)
            temperature: Sampling temperature
            max_tokens: Upper bound on generated tokens
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.app_url = app_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        if self.transport is not None:
            return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)
        return httpx.AsyncClient(verify=get_verify(), timeout=self.timeout)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.app_url,
            "X-Title": "Talmudic Study App",
            "Content-Type": "application/json",
        }

    def _body(self, source_text: str, reference: str, context: Optional[str]) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(source_text, reference, context)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
            # ask OpenRouter to report cost in the final usage frame
            "usage": {"include": True},
        }

    @staticmethod
    async def _raise_for_status(response: httpx.Response):
        if response.is_success:
            return
        body = await response.aread()
        message = "Translation failed"
        try:
            error = json.loads(body).get("error") or {}
            message = error.get("message") or message
        except (ValueError, AttributeError):
            pass
        logger.error("OpenRouter error %s: %s", response.status_code, message)
        raise UpstreamError(message, status_code=response.status_code)

    async def stream(
        self, source_text: str, reference: str, context: Optional[str] = None
    ) -> AsyncIterator[TranslationDelta]:
        """
        Yields translation increments as OpenRouter produces them

        The HTTP response is closed when the caller stops iterating, including
        when the consumer abandons the generator early.
        """
        decoder = FrameDecoder()
        url = f"{self.base_url}/chat/completions"
        try:
            async with self._client() as http:
                async with http.stream(
                    "POST", url, headers=self._headers(), json=self._body(source_text, reference, context)
                ) as response:
                    await self._raise_for_status(response)
                    async for line in response.aiter_lines():
                        for payload in decoder.feed_line(line):
                            delta = self._parse_payload(payload)
                            if delta is not None:
                                yield delta
                        if decoder.done:
                            break
        except httpx.HTTPError as e:
            logger.error("OpenRouter request failed for %s: %s", reference, e)
            raise UpstreamError(f"Translation request failed: {e}") from e

        if decoder.malformed_frames:
            logger.debug(
                "Skipped %d malformed OpenRouter frames for %s", decoder.malformed_frames, reference
            )

    @staticmethod
    def _parse_payload(payload: dict) -> Optional[TranslationDelta]:
        if "error" in payload:
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamError(message or "Translation failed")

        content = ""
        choices = payload.get("choices") or []
        if choices:
            delta = choices[0].get("delta") or {}
            content = delta.get("content") or ""

        cost = None
        usage = payload.get("usage") or {}
        for key in ("cost", "total_cost"):
            if usage.get(key):
                cost = float(usage[key])
                break

        if not content and cost is None:
            return None
        return TranslationDelta(content=content, cost=cost)

    async def translate(
        self, source_text: str, reference: str, context: Optional[str] = None
    ) -> TranslatorResult:
        """Translates in one call (the stream drained into a single string)"""
        parts = []
        cost = 0.0
        async for delta in self.stream(source_text, reference, context):
            parts.append(delta.content)
            if delta.cost is not None:
                cost = delta.cost
        return TranslatorResult(translation="".join(parts), model=self.model, cost=cost)

    async def check_health(self) -> bool:
        """True when the models endpoint answers with the configured key"""
        try:
            async with self._client() as http:
                response = await http.get(
                    f"{self.base_url}/models", headers={"Authorization": f"Bearer {self.api_key}"}
                )
            return response.is_success
        except httpx.HTTPError:
            return False
