"""Agglomerative clustering of message insights by embedding similarity."""

from __future__ import annotations

import logging

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage

from letterintel.models import MessageInsight
from letterintel.process import register_processor
from letterintel.process.base import BaseProcessor
from letterintel.process.embeddings import RETRIEVAL_DOCUMENT, BaseEmbedder

logger = logging.getLogger(__name__)


@register_processor("cluster")
class ClusterProcessor(BaseProcessor[MessageInsight]):
    """Group message insights that cover the same story."""

    def __init__(self, config: dict, embedder: BaseEmbedder):
        super().__init__(config)
        self.embedder = embedder

    @property
    def name(self) -> str:
        return "cluster"

    async def process(self, insights: list[MessageInsight]) -> list[MessageInsight]:
        """Assign cluster ids. Returns insights with cluster_id set."""
        cfg = self.config.get("process", {}).get("cluster", {})
        if len(insights) < 2:
            for i, insight in enumerate(insights):
                insight.cluster_id = i + 1
            return insights

        distance_threshold = cfg.get("distance_threshold", 0.6)

        vectors = await self.embedder.embed_batch(
            [i.text_for_grouping() for i in insights], RETRIEVAL_DOCUMENT,
        )
        emb_matrix = np.array(vectors, dtype=np.float64)

        # Zero vectors make cosine distance undefined
        zero_rows = np.linalg.norm(emb_matrix, axis=1) == 0
        emb_matrix[zero_rows, 0] = 1e-9

        Z = linkage(emb_matrix, method="average", metric="cosine")
        labels = fcluster(Z, t=distance_threshold, criterion="distance")

        for i, insight in enumerate(insights):
            insight.cluster_id = int(labels[i])

        logger.info(
            "Clustered %d messages into %d groups (threshold=%.2f)",
            len(insights), len(set(labels)), distance_threshold,
        )
        return insights

    def build_groups(self, insights: list[MessageInsight]) -> list[list[MessageInsight]]:
        """Group insights by cluster_id, largest groups first."""
        group_map: dict[int, list[MessageInsight]] = {}
        for insight in insights:
            if insight.cluster_id is not None:
                group_map.setdefault(insight.cluster_id, []).append(insight)
        return sorted(group_map.values(), key=len, reverse=True)
