"""Tests for the Ollama and Gemini provider adapters."""
import json

import httpx
import pytest

from siasef import config
from siasef.errors import ProviderUnavailableError, ProviderUnreachableError
from siasef.gemini_client import GeminiClient
from siasef.llm_client import OllamaClient, as_text, as_vector, create_provider
from siasef.models import Turn

HISTORY = [Turn("user", "Apa itu K3?"), Turn("model", "Keselamatan dan Kesehatan Kerja.")]


async def _collect(stream):
    return [delta async for delta in stream]


def _ollama(handler) -> OllamaClient:
    return OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))


def _gemini(handler, api_key="test-key") -> GeminiClient:
    return GeminiClient(
        api_key=api_key,
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(handler),
    )


def test_normalizers_accept_provider_shapes():
    assert as_text(lambda: "teks") == "teks"
    assert as_text(None) == ""
    assert as_vector({"values": [1, 2]}) == [1.0, 2.0]
    assert as_vector([0.5]) == [0.5]
    with pytest.raises(ProviderUnavailableError):
        as_vector("bukan vektor")


async def test_ollama_embed_posts_batch():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"embeddings": [[1, 0], [0, 1]]})

    vectors = await _ollama(handler).embed(["a", "b"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["url"] == "http://ollama.test/api/embed"
    assert seen["body"]["input"] == ["a", "b"]


async def test_ollama_embed_count_mismatch_is_an_error():
    client = _ollama(lambda request: httpx.Response(200, json={"embeddings": [[1.0]]}))

    with pytest.raises(ProviderUnavailableError):
        await client.embed(["a", "b"])


async def test_ollama_http_error_is_wrapped():
    client = _ollama(lambda request: httpx.Response(503, json={"error": "loading"}))

    with pytest.raises(ProviderUnavailableError):
        await client.embed(["a"])


async def test_ollama_chat_stream_yields_deltas():
    seen = {}
    lines = [
        {"message": {"role": "assistant", "content": "Hal"}, "done": False},
        {"message": {"role": "assistant", "content": "o"}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        body = "\n".join(json.dumps(line) for line in lines) + "\n"
        return httpx.Response(200, content=body.encode())

    deltas = await _collect(_ollama(handler).chat_stream(HISTORY, "Apa itu SMK3?", "instruksi"))

    assert deltas == ["Hal", "o"]
    messages = seen["body"]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1]["content"] == "Apa itu SMK3?"
    assert seen["body"]["stream"] is True


async def test_ollama_stream_error_field_raises():
    body = json.dumps({"error": "model not found"}) + "\n"
    client = _ollama(lambda request: httpx.Response(200, content=body.encode()))

    with pytest.raises(ProviderUnavailableError, match="model not found"):
        await _collect(client.chat_stream([], "q", "s"))


async def test_ollama_list_models():
    client = _ollama(lambda request: httpx.Response(200, json={"models": [{"name": "gemma3:12b"}]}))

    assert await client.list_models() == ["gemma3:12b"]


async def test_gemini_single_and_batch_embeddings():
    urls = []

    def handler(request: httpx.Request) -> httpx.Response:
        urls.append(request.url.path)
        assert request.headers["x-goog-api-key"] == "test-key"
        if request.url.path.endswith(":embedContent"):
            return httpx.Response(200, json={"embedding": {"values": [0.1, 0.2]}})
        body = json.loads(request.content)
        return httpx.Response(
            200, json={"embeddings": [{"values": [float(i)]} for i in range(len(body["requests"]))]}
        )

    client = _gemini(handler)

    assert await client.embed(["satu"]) == [[0.1, 0.2]]
    assert await client.embed(["a", "b", "c"]) == [[0.0], [1.0], [2.0]]
    assert urls == [
        f"/v1beta/models/{config.GEMINI_EMBEDDING_MODEL}:embedContent",
        f"/v1beta/models/{config.GEMINI_EMBEDDING_MODEL}:batchEmbedContents",
    ]


async def test_gemini_chat_stream_parses_sse():
    seen = {}
    chunks = [
        {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hal"}]}}]},
        {"candidates": [{"content": {"role": "model", "parts": [{"text": "o"}]}}]},
        {"candidates": [{"finishReason": "STOP"}]},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        body = "".join(f"data: {json.dumps(chunk)}\r\n\r\n" for chunk in chunks)
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    deltas = await _collect(_gemini(handler).chat_stream(HISTORY, "Apa itu SMK3?", "instruksi"))

    assert deltas == ["Hal", "o"]
    assert seen["params"] == {"alt": "sse"}
    assert [c["role"] for c in seen["body"]["contents"]] == ["user", "model", "user"]
    assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "instruksi"
    assert seen["body"]["generationConfig"]["temperature"] == config.CHAT_TEMPERATURE


async def test_gemini_stream_error_payload_raises():
    body = 'data: {"error": {"code": 429, "message": "Resource exhausted"}}\n\n'
    client = _gemini(lambda request: httpx.Response(200, content=body.encode()))

    with pytest.raises(ProviderUnavailableError, match="Resource exhausted"):
        await _collect(client.chat_stream([], "q", "s"))


async def test_gemini_without_key_is_not_configured():
    client = _gemini(lambda request: httpx.Response(500), api_key="")

    assert client.is_configured is False
    with pytest.raises(ProviderUnavailableError):
        await client.embed(["a"])


def test_create_provider_by_name():
    assert isinstance(create_provider("ollama"), OllamaClient)
    assert isinstance(create_provider("Gemini"), GeminiClient)
    with pytest.raises(ValueError):
        create_provider("openai")


@pytest.mark.parametrize(
    "body",
    [{"text": "<html>proxy error</html>"}, {"json": ["bukan", "objek"]}],
)
async def test_malformed_embedding_body_is_a_provider_error(body):
    ollama = _ollama(lambda request: httpx.Response(200, **body))
    gemini = _gemini(lambda request: httpx.Response(200, **body))

    with pytest.raises(ProviderUnavailableError):
        await ollama.embed(["a"])
    with pytest.raises(ProviderUnavailableError):
        await gemini.embed(["a", "b"])


async def test_connection_failure_is_unreachable():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ProviderUnreachableError):
        await _ollama(refuse).embed(["a"])
    with pytest.raises(ProviderUnreachableError):
        await _gemini(refuse).embed(["a"])
