import asyncio
import json

import httpx
import pytest

from translation.openrouter import OpenRouterTranslator, build_user_prompt
from utils.errors import UpstreamError


def sse(*payloads):
    lines = [": OPENROUTER PROCESSING", ""]
    for payload in payloads:
        lines.append(f"data: {payload if isinstance(payload, str) else json.dumps(payload)}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


def delta(content):
    return {"choices": [{"delta": {"content": content}}]}


def make_translator(handler):
    return OpenRouterTranslator(
        api_key="sk-test",
        model="test/model",
        base_url="https://openrouter.test/api/v1",
        transport=httpx.MockTransport(handler),
    )


def test_translate_streams_and_reports_cost():
    requests = []

    def handler(request):
        requests.append(request)
        body = sse(
            delta("  In the evening, "),
            "{broken",
            delta("from when do we recite Shema?  "),
            {"choices": [{"delta": {}}], "usage": {"prompt_tokens": 120, "cost": 0.00042}},
            "[DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    result = asyncio.run(make_translator(handler).translate("מאימתי", "Berakhot 2a"))

    assert result.translation == "  In the evening, from when do we recite Shema?  "
    assert result.model == "test/model"
    assert result.cost == pytest.approx(0.00042)

    request = requests[0]
    assert str(request.url) == "https://openrouter.test/api/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "test/model"
    assert body["stream"] is True
    assert body["messages"][1]["content"] == build_user_prompt("מאימתי", "Berakhot 2a")


def test_stream_yields_increments():
    def handler(request):
        return httpx.Response(200, content=sse(delta("a "), delta("b"), "[DONE]", delta("ignored")))

    async def collect():
        return [d async for d in make_translator(handler).stream("x", "Berakhot 2a")]

    deltas = asyncio.run(collect())

    assert [d.content for d in deltas] == ["a ", "b"]


def test_http_error_carries_status():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "Rate limit exceeded"}})

    with pytest.raises(UpstreamError) as exc:
        asyncio.run(make_translator(handler).translate("x", "Berakhot 2a"))

    assert exc.value.status_code == 429
    assert exc.value.message == "Rate limit exceeded"


def test_error_inside_stream():
    def handler(request):
        return httpx.Response(200, content=sse(delta("a"), {"error": {"message": "Provider overloaded"}}))

    with pytest.raises(UpstreamError, match="Provider overloaded"):
        asyncio.run(make_translator(handler).translate("x", "Berakhot 2a"))


def test_connection_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError):
        asyncio.run(make_translator(handler).translate("x", "Berakhot 2a"))


def test_check_health():
    def handler(request):
        return httpx.Response(200 if request.url.path.endswith("/models") else 404, json={"data": []})

    assert asyncio.run(make_translator(handler).check_health())


def test_prompt_with_context():
    prompt = build_user_prompt("טקסט", "Berakhot 2a", context="Mishnah")
    assert "Reference: Berakhot 2a\nContext: Mishnah\nText: טקסט" in prompt
