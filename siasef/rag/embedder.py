"""Embedding generation with a marked random-vector fallback.

When the provider fails or has no credentials, the single-text path returns a
random vector so ingestion and chat keep working. Such vectors carry
``degraded=True`` and are logged as ``embedding_degraded``; similarity
scores computed from them are meaningless.
"""
from typing import List, NamedTuple, Optional, Sequence

import numpy as np
import structlog

from siasef import config
from siasef.errors import ProviderUnavailableError, ProviderUnreachableError
from siasef.llm_client import LLMProvider

logger = structlog.get_logger()


class Embedding(NamedTuple):
    """A vector plus whether it came from the fallback path."""

    vector: List[float]
    degraded: bool = False


class Embedder:
    """Single and batched embedding over an :class:`LLMProvider`."""

    def __init__(
        self,
        provider: LLMProvider,
        dimension: int = None,
        batch_size: int = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """Initialize the embedder.

        Args:
            provider: Embedding backend
            dimension: Length of fallback vectors (default from config)
            batch_size: Texts per provider request (default from config)
            rng: Random generator for fallback vectors
        """
        self.provider = provider
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self._rng = rng or np.random.default_rng()

        if self.batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}")

    async def embed(self, text: str) -> Embedding:
        """Embed one text, degrading to a random vector on provider failure."""
        if not self.provider.is_configured:
            return self._fallback(text, reason="provider_not_configured")

        try:
            vectors = await self.provider.embed([text])
        except ProviderUnavailableError as e:
            return self._fallback(text, reason=str(e))

        return Embedding(vectors[0])

    async def embed_batch(self, texts: Sequence[str]) -> List[Embedding]:
        """Embed texts in provider-sized groups, preserving order and length.

        A group whose request fails is re-embedded text by text through
        :meth:`embed`, so only the texts that still fail are degraded. When
        the provider cannot be reached at all the group is degraded without
        further requests.
        """
        results: List[Embedding] = []

        for i in range(0, len(texts), self.batch_size):
            group = list(texts[i : i + self.batch_size])

            if not self.provider.is_configured:
                results.extend(
                    self._fallback(text, reason="provider_not_configured") for text in group
                )
                continue

            try:
                vectors = await self.provider.embed(group)
            except ProviderUnreachableError as e:
                # Provider down: no per-text pass
                results.extend(self._fallback(text, reason=str(e)) for text in group)
                continue
            except ProviderUnavailableError as e:
                logger.warning(
                    "embedding_batch_failed",
                    error=str(e),
                    batch_start=i,
                    batch_size=len(group),
                )
                for text in group:
                    results.append(await self.embed(text))
                continue

            results.extend(Embedding(vector) for vector in vectors)

        logger.debug(
            "embedding_batch_completed",
            count=len(results),
            degraded=sum(1 for e in results if e.degraded),
        )
        return results

    def _fallback(self, text: str, reason: str) -> Embedding:
        logger.warning(
            "embedding_degraded",
            provider=self.provider.name,
            reason=reason,
            dimension=self.dimension,
            text_length=len(text),
        )
        return Embedding(self._rng.random(self.dimension).tolist(), degraded=True)
