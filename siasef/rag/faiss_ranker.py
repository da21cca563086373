"""FAISS-backed ranker.

Builds a flat inner-product index over L2-normalized candidate vectors, so
inner product equals cosine similarity. The index is rebuilt per call from the
candidates passed in, which keeps the :class:`Ranker` contract intact.
"""
from typing import List, Sequence

import faiss
import numpy as np
import structlog

from siasef.models import Passage, RankedPassage
from siasef.rag.ranker import Ranker, usable_candidates

logger = structlog.get_logger()


class FaissRanker(Ranker):
    """Cosine ranking through ``faiss.IndexFlatIP``."""

    def rank(
        self,
        query_vector: Sequence[float],
        candidates: Sequence[Passage],
        top_k: int,
    ) -> List[RankedPassage]:
        if top_k <= 0 or not query_vector or not any(query_vector):
            return []

        dimension = len(query_vector)
        usable = usable_candidates(candidates, dimension)
        if not usable:
            return []

        # Convert to numpy arrays and normalize in place
        vectors = np.array([p.embedding for p in usable], dtype=np.float32)
        query = np.array([query_vector], dtype=np.float32)
        faiss.normalize_L2(vectors)
        faiss.normalize_L2(query)

        index = faiss.IndexFlatIP(dimension)
        index.add(vectors)

        k = min(top_k, len(usable))
        scores, indices = index.search(query, k)

        logger.debug("faiss_search_completed", scored=len(usable), top_k=k)

        return [
            RankedPassage(usable[i], float(np.clip(score, -1.0, 1.0)))
            for score, i in zip(scores[0].tolist(), indices[0].tolist())
            if i >= 0
        ]
