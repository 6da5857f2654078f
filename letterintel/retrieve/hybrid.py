"""Hybrid retrieval: vector similarity blended with lexical frequency."""

from __future__ import annotations

import logging
import sqlite3

from letterintel.config import get_retrieval_config
from letterintel.db import get_hit_details, keyword_search, vector_search
from letterintel.models import SearchHit
from letterintel.process.embeddings import RETRIEVAL_QUERY, BaseEmbedder

logger = logging.getLogger(__name__)


def merge_hybrid(
    vector_hits: list[tuple[str, float]],
    keyword_hits: list[tuple[str, float]],
    vector_weight: float = 0.7,
    keyword_weight: float = 0.3,
    top_k: int = 10,
    min_combined_score: float = 0.0,
) -> list[tuple[str, float, float, float]]:
    """Blend two ranked lists into (chunk_id, vector, keyword, combined).

    Keyword scores are scaled to [0, 1] by the best keyword score in the set.
    A chunk missing from one side scores 0 on that side. Ties on the combined
    score go to the higher vector score, then the chunk id.
    """
    max_keyword = max((score for _, score in keyword_hits), default=0.0)
    keyword_scores = {
        chunk_id: (score / max_keyword if max_keyword > 0 else 0.0)
        for chunk_id, score in keyword_hits
    }
    vector_scores = dict(vector_hits)

    merged = []
    for chunk_id in vector_scores.keys() | keyword_scores.keys():
        v = vector_scores.get(chunk_id, 0.0)
        k = keyword_scores.get(chunk_id, 0.0)
        combined = vector_weight * v + keyword_weight * k
        if combined < min_combined_score:
            continue
        merged.append((chunk_id, v, k, combined))

    merged.sort(key=lambda row: (-row[3], -row[1], row[0]))
    return merged[:top_k]


class HybridRetriever:
    """Top-K chunk retrieval for a free-text query."""

    def __init__(self, conn: sqlite3.Connection, embedder: BaseEmbedder, config: dict):
        self.conn = conn
        self.embedder = embedder
        self.settings = get_retrieval_config(config)

    def _keyword_candidates(self, query: str, limit: int) -> list[tuple[str, float]]:
        try:
            return keyword_search(self.conn, query, limit)
        except sqlite3.Error as exc:
            logger.warning("Keyword search failed, using vector results only: %s", exc)
            return []

    async def search(self, query: str, top_k: int | None = None) -> list[SearchHit]:
        top_k = top_k or self.settings["top_k"]
        candidates = top_k * 2

        query_vector = await self.embedder.embed(query, RETRIEVAL_QUERY)
        vector_hits = vector_search(
            self.conn, query_vector, self.embedder.model_name, candidates,
        )
        keyword_hits = self._keyword_candidates(query, candidates)

        merged = merge_hybrid(
            vector_hits,
            keyword_hits,
            vector_weight=self.settings["vector_weight"],
            keyword_weight=self.settings["keyword_weight"],
            top_k=top_k,
            min_combined_score=self.settings["min_combined_score"],
        )
        details = get_hit_details(self.conn, [row[0] for row in merged])

        hits = []
        for chunk_id, v, k, combined in merged:
            hit = details.get(chunk_id)
            if hit is None:
                continue
            hit.vector_score = v
            hit.keyword_score = k
            hit.combined_score = combined
            hits.append(hit)

        logger.info(
            "Hybrid search: %d vector, %d keyword candidates -> %d hits",
            len(vector_hits), len(keyword_hits), len(hits),
        )
        return hits
