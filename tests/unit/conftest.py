"""Shared fixtures for unit tests."""
import asyncio
from typing import Dict, List, Optional, Sequence

import pytest

from siasef.db import PassageStore
from siasef.errors import ProviderUnavailableError
from siasef.llm_client import LLMProvider
from siasef.models import Passage, Turn
from siasef.rag.embedder import Embedder

# Small vocabulary so tests can reason about similarity by hand
VOCABULARY = ("smk3", "kecelakaan", "apd", "audit")
DIMENSION = len(VOCABULARY) + 1


def keyword_vector(text: str) -> List[float]:
    """Count vocabulary words, plus a small constant so no vector is zero."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]


class FakeProvider(LLMProvider):
    """Scriptable in-process provider."""

    name = "fake"

    def __init__(
        self,
        deltas: Sequence[str] = ("Hal", "o"),
        configured: bool = True,
        fail_embed: bool = False,
        fail_chat_at: Optional[int] = None,
    ):
        self.deltas = list(deltas)
        self.configured = configured
        self.fail_embed = fail_embed
        self.fail_chat_at = fail_chat_at
        self.vectors: Dict[str, List[float]] = {}
        self.embed_calls: List[List[str]] = []
        self.chat_calls: List[tuple] = []
        self.closed_streams = 0
        self.gate: Optional[asyncio.Event] = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.embed_calls.append(list(texts))
        if self.fail_embed:
            raise ProviderUnavailableError("embedding service down")
        return [self.vectors.get(text, keyword_vector(text)) for text in texts]

    async def chat_stream(self, history: Sequence[Turn], prompt: str, system_instruction: str):
        self.chat_calls.append((list(history), prompt, system_instruction))
        try:
            for index, delta in enumerate(self.deltas):
                if self.fail_chat_at == index:
                    raise ProviderUnavailableError("upstream connection reset")
                if self.gate is not None:
                    await self.gate.wait()
                yield delta
            if self.fail_chat_at == len(self.deltas):
                raise ProviderUnavailableError("upstream connection reset")
        finally:
            self.closed_streams += 1


def make_passage(
    content: str,
    embedding: Optional[List[float]],
    passage_id: int,
    document_name: str = "PP-50-2012.txt",
    degraded: bool = False,
) -> Passage:
    return Passage(
        id=passage_id,
        document_id=1,
        sequence_index=passage_id,
        content=content,
        page_number=1,
        start_offset=0,
        end_offset=len(content),
        embedding=embedding,
        embedding_degraded=degraded,
        document_name=document_name,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store(tmp_path) -> PassageStore:
    return PassageStore(tmp_path / "test.sqlite")


@pytest.fixture
def embedder(provider) -> Embedder:
    return Embedder(provider, dimension=DIMENSION)
