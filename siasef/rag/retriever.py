"""Query-time retrieval: embed the question, rank every stored passage.

Handles:
- Query embedding generation
- Brute-force ranking over the full passage set, re-read every turn
- Prompt composition from the ranked passages
"""
from dataclasses import dataclass, field
from typing import List, Optional
import structlog

from siasef import config
from siasef.db import PassageStore
from siasef.models import RankedPassage
from siasef.rag.embedder import Embedder
from siasef.rag.prompt import ComposedPrompt, compose
from siasef.rag.ranker import CosineRanker, Ranker

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """Ranked passages for one query."""

    ranked: List[RankedPassage] = field(default_factory=list)
    query_degraded: bool = False
    candidate_count: int = 0


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        store: PassageStore,
        embedder: Embedder,
        ranker: Optional[Ranker] = None,
        top_k: int = None,
    ):
        """Initialize the retriever.

        Args:
            store: Passage store read on every query
            embedder: Embedder for the query text
            ranker: Similarity ranker (default: exact cosine scan)
            top_k: Number of results to retrieve (default from config)
        """
        self.store = store
        self.embedder = embedder
        self.ranker = ranker or CosineRanker()
        self.top_k = top_k or config.RETRIEVAL_TOP_K

        logger.info(
            "retriever_initialized",
            ranker=type(self.ranker).__name__,
            top_k=self.top_k,
        )

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> RetrievalResult:
        """Retrieve the passages most similar to a query.

        The passage table is read in full each time; no results are cached
        between turns. An empty corpus skips the embedding call entirely.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            RetrievalResult sorted by descending similarity
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return RetrievalResult()

        top_k = top_k or self.top_k
        passages = self.store.get_all_passages()

        if not passages:
            logger.info("empty_corpus_no_results")
            return RetrievalResult()

        query_embedding = await self.embedder.embed(query)
        ranked = self.ranker.rank(query_embedding.vector, passages, top_k)

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            candidates=len(passages),
            results_returned=len(ranked),
            top_score=ranked[0].score if ranked else None,
            query_degraded=query_embedding.degraded,
        )

        return RetrievalResult(
            ranked=ranked,
            query_degraded=query_embedding.degraded,
            candidate_count=len(passages),
        )

    async def compose_prompt(self, question: str, top_k: Optional[int] = None) -> ComposedPrompt:
        """Retrieve for ``question`` and compose the augmented prompt."""
        result = await self.retrieve(question, top_k=top_k)
        composed = compose(question, result.ranked, query_degraded=result.query_degraded)

        if composed.degraded:
            logger.warning(
                "retrieval_degraded",
                source_count=len(composed.sources),
                query_degraded=result.query_degraded,
            )

        return composed
