"""Similarity ranking of passages against a query vector.

:class:`Ranker` is the seam between retrieval and whatever index answers the
nearest-neighbour question. :class:`CosineRanker` is an exact O(N) scan over
the candidates it is given.
"""
from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np
import structlog

from siasef import config
from siasef.errors import DimensionMismatchError
from siasef.models import Passage, RankedPassage

logger = structlog.get_logger()


def check_dimension(vector: Sequence[float], dimension: int) -> None:
    if len(vector) != dimension:
        raise DimensionMismatchError(dimension, len(vector))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors, in [-1, 1].

    Raises:
        DimensionMismatchError: If the vectors differ in length
        ValueError: If either vector has zero norm
    """
    check_dimension(b, len(a))
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        raise ValueError("Cosine similarity is undefined for a zero vector")
    return float(np.clip(va @ vb / denominator, -1.0, 1.0))


def usable_candidates(candidates: Sequence[Passage], dimension: int) -> List[Passage]:
    """Filter out passages that cannot be scored against a query of ``dimension``.

    Passages without an embedding, with a different dimensionality, or with
    an all-zero vector are dropped; input order is kept.
    """
    usable = []
    missing = 0
    mismatched = 0
    zero = 0

    for passage in candidates:
        if not passage.has_embedding:
            missing += 1
            continue
        try:
            check_dimension(passage.embedding, dimension)
        except DimensionMismatchError as e:
            mismatched += 1
            logger.debug("dimension_mismatch", passage_id=passage.id, error=str(e))
            continue
        if not any(passage.embedding):
            zero += 1
            continue
        usable.append(passage)

    if mismatched:
        logger.warning(
            "dimension_mismatch_excluded",
            count=mismatched,
            expected_dimension=dimension,
        )
    if missing or zero:
        logger.debug("candidates_excluded", missing_embedding=missing, zero_vector=zero)

    return usable


class Ranker(ABC):
    """Scores candidates against a query and returns the best ``top_k``."""

    @abstractmethod
    def rank(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[Passage],
        top_k: int,
    ) -> List[RankedPassage]:
        """Return at most ``top_k`` passages sorted by descending score."""


class CosineRanker(Ranker):
    """Exact cosine-similarity scan with a stable sort."""

    def rank(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[Passage],
        top_k: int,
    ) -> List[RankedPassage]:
        if top_k <= 0 or not query_vector:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            logger.warning("zero_query_vector")
            return []

        usable = usable_candidates(candidates, len(query))
        if not usable:
            return []

        matrix = np.asarray([p.embedding for p in usable], dtype=np.float64)
        scores = matrix @ query / (np.linalg.norm(matrix, axis=1) * query_norm)
        scores = np.clip(scores, -1.0, 1.0)

        # Stable sort keeps candidate order among exact ties
        order = np.argsort(-scores, kind="stable")[:top_k]

        logger.debug(
            "passages_ranked",
            candidates=len(candidates),
            scored=len(usable),
            returned=len(order),
        )

        return [RankedPassage(usable[i], float(scores[i])) for i in order]


def create_ranker(name: str = None) -> Ranker:
    """Build the ranker selected by ``RANKER``."""
    name = (name or config.RANKER).lower()
    if name == "cosine":
        return CosineRanker()
    if name == "faiss":
        from siasef.rag.faiss_ranker import FaissRanker

        return FaissRanker()
    raise ValueError(f"Unknown ranker: {name}")
