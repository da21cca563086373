"""Tests for embedding generation and the degraded fallback."""
import httpx
import numpy as np
from structlog.testing import capture_logs

from siasef.errors import ProviderUnavailableError
from siasef.gemini_client import GeminiClient
from siasef.llm_client import OllamaClient
from siasef.rag.embedder import Embedder

from conftest import DIMENSION, FakeProvider, keyword_vector


async def test_embed_returns_provider_vector(embedder, provider):
    embedding = await embedder.embed("Audit SMK3 tahunan")

    assert embedding.vector == keyword_vector("Audit SMK3 tahunan")
    assert embedding.degraded is False
    assert provider.embed_calls == [["Audit SMK3 tahunan"]]


async def test_batch_preserves_order_and_length(embedder, provider):
    """Test that vector k always belongs to text k across provider batches."""
    texts = [f"kalimat {i} " + "apd " * i for i in range(12)]

    embeddings = await embedder.embed_batch(texts)

    assert len(embeddings) == len(texts)
    for text, embedding in zip(texts, embeddings):
        assert embedding.vector == keyword_vector(text)
    assert [len(call) for call in provider.embed_calls] == [5, 5, 2]


async def test_batch_of_nothing_makes_no_requests(embedder, provider):
    assert await embedder.embed_batch([]) == []
    assert provider.embed_calls == []


async def test_failure_degrades_to_flagged_random_vector():
    """Test that a provider failure yields a marked random vector and a warning."""
    provider = FakeProvider(fail_embed=True)
    embedder = Embedder(provider, dimension=768, rng=np.random.default_rng(7))

    with capture_logs() as logs:
        embedding = await embedder.embed("Apa kewajiban SMK3?")

    assert embedding.degraded is True
    assert len(embedding.vector) == 768
    assert all(0.0 <= x < 1.0 for x in embedding.vector)

    warnings = [log for log in logs if log["event"] == "embedding_degraded"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert warnings[0]["provider"] == "fake"
    assert "embedding service down" in warnings[0]["reason"]


async def test_missing_credentials_skip_the_provider():
    provider = FakeProvider(configured=False)
    embedder = Embedder(provider, dimension=DIMENSION)

    with capture_logs() as logs:
        embeddings = await embedder.embed_batch(["a", "b"])

    assert provider.embed_calls == []
    assert [e.degraded for e in embeddings] == [True, True]
    assert [log["reason"] for log in logs if log["event"] == "embedding_degraded"] == [
        "provider_not_configured",
        "provider_not_configured",
    ]


async def test_failed_batch_retries_text_by_text():
    """Test that only the texts that still fail after a batch error are degraded."""

    class FlakyBatchProvider(FakeProvider):
        async def embed(self, texts):
            if len(texts) > 1 or "rusak" in texts[0]:
                self.embed_calls.append(list(texts))
                raise ProviderUnavailableError("batch rejected")
            return await super().embed(texts)

    provider = FlakyBatchProvider()
    embedder = Embedder(provider, dimension=DIMENSION)

    with capture_logs() as logs:
        embeddings = await embedder.embed_batch(["audit", "rusak", "apd"])

    assert [e.degraded for e in embeddings] == [False, True, False]
    assert embeddings[0].vector == keyword_vector("audit")
    assert embeddings[2].vector == keyword_vector("apd")
    assert any(log["event"] == "embedding_batch_failed" for log in logs)


async def test_degraded_vectors_have_configured_dimension():
    embedder = Embedder(FakeProvider(fail_embed=True), dimension=16)

    embeddings = await embedder.embed_batch(["satu", "dua", "tiga"])

    assert all(len(e.vector) == 16 and e.degraded for e in embeddings)


def _html_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="<html>proxy error</html>")


async def test_non_json_ollama_response_degrades():
    """Test that a 200 response with an HTML body falls back instead of raising."""
    client = OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(_html_error))
    embedder = Embedder(client, dimension=DIMENSION)

    embedding = await embedder.embed("Apa kewajiban SMK3?")

    assert embedding.degraded is True
    assert len(embedding.vector) == DIMENSION


async def test_non_json_gemini_response_degrades():
    client = GeminiClient(
        api_key="test-key",
        base_url="https://gemini.test/v1beta",
        transport=httpx.MockTransport(_html_error),
    )
    embedder = Embedder(client, dimension=DIMENSION)

    embeddings = await embedder.embed_batch(["satu", "dua"])

    assert [e.degraded for e in embeddings] == [True, True]


async def test_non_object_payload_degrades():
    client = OllamaClient(
        base_url="http://ollama.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[[0.1, 0.2]])),
    )

    embedding = await Embedder(client, dimension=DIMENSION).embed("APD")

    assert embedding.degraded is True


async def test_unreachable_provider_is_not_retried_per_text():
    """Test that a connection failure degrades the batch after a single request."""
    requests = []

    def refuse(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    client = OllamaClient(base_url="http://ollama.test", transport=httpx.MockTransport(refuse))
    embedder = Embedder(client, dimension=DIMENSION, batch_size=5)

    with capture_logs() as logs:
        embeddings = await embedder.embed_batch([f"pasal {i}" for i in range(5)])

    assert len(requests) == 1
    assert all(e.degraded for e in embeddings)
    assert not any(log["event"] == "embedding_batch_failed" for log in logs)
    assert len([log for log in logs if log["event"] == "embedding_degraded"]) == 5
