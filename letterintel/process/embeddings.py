"""Embedding providers and the chunk embedding backfill."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod

import httpx
import numpy as np

from letterintel.batching import write_in_batches
from letterintel.config import get_embedding_config, get_rate_limit_delay, get_storage_config
from letterintel.db import get_chunks_pending_embedding, insert_embeddings
from letterintel.models import Embedding
from letterintel.retry import retry_async

logger = logging.getLogger(__name__)

RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
RETRIEVAL_QUERY = "RETRIEVAL_QUERY"


class BaseEmbedder(ABC):
    """Turns text into fixed-dimension vectors for one model."""

    def __init__(self, model_name: str):
        self.model_name = model_name

    @abstractmethod
    async def embed_batch(
        self, texts: list[str], task_type: str = RETRIEVAL_DOCUMENT
    ) -> list[list[float]]:
        """Embed texts, returning vectors in input order."""
        ...

    async def embed(self, text: str, task_type: str = RETRIEVAL_QUERY) -> list[float]:
        vectors = await self.embed_batch([text], task_type)
        return vectors[0]


class Model2VecEmbedder(BaseEmbedder):
    """Local static embeddings (lightweight, CPU-only)."""

    def __init__(self, model_name: str = "minishlab/potion-base-8M"):
        super().__init__(model_name)
        self._model = None

    def _get_model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from model2vec import StaticModel

            logger.info("Loading embedding model: %s", self.model_name)
            self._model = StaticModel.from_pretrained(self.model_name)
        return self._model

    async def embed_batch(
        self, texts: list[str], task_type: str = RETRIEVAL_DOCUMENT
    ) -> list[list[float]]:
        if not texts:
            return []
        model = self._get_model()
        matrix = await asyncio.to_thread(model.encode, texts)
        return [row.tolist() for row in np.asarray(matrix, dtype=np.float32)]


class OpenAICompatibleEmbedder(BaseEmbedder):
    """Remote embeddings from any OpenAI-compatible /embeddings endpoint."""

    def __init__(
        self,
        model_name: str,
        base_url: str,
        api_key: str = "",
        timeout: int = 60,
        max_retries: int = 3,
    ):
        super().__init__(model_name)
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries

    async def embed_batch(
        self, texts: list[str], task_type: str = RETRIEVAL_DOCUMENT
    ) -> list[list[float]]:
        if not texts:
            return []
        return await retry_async(self._do_embed, texts, max_retries=self.max_retries)

    async def _do_embed(self, texts: list[str]) -> list[list[float]]:
        url = f"{self.base_url.rstrip('/')}/embeddings"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                url, json={"model": self.model_name, "input": texts}, headers=headers,
            )
            resp.raise_for_status()
            data = resp.json()

        items = sorted(data["data"], key=lambda item: item["index"])
        if len(items) != len(texts):
            raise ValueError(f"Expected {len(texts)} embeddings, got {len(items)}")
        return [item["embedding"] for item in items]


def build_embedder(config: dict) -> BaseEmbedder:
    """Construct the configured embedding provider."""
    cfg = get_embedding_config(config)
    if cfg["provider"] == "model2vec":
        return Model2VecEmbedder(cfg["model"])
    if cfg["provider"] == "openai_compatible":
        return OpenAICompatibleEmbedder(
            cfg["model"],
            base_url=cfg["base_url"],
            api_key=cfg["api_key"],
            timeout=cfg["timeout"],
            max_retries=cfg["max_retries"],
        )
    raise ValueError(f"Unknown embedding provider: {cfg['provider']}")


async def embed_pending_chunks(
    conn: sqlite3.Connection, embedder: BaseEmbedder, config: dict
) -> int:
    """Embed every non-junk chunk that lacks a vector for this model.

    Batches are sequential with a fixed delay between provider calls.
    Returns the number of embeddings written.
    """
    batch_size = get_embedding_config(config)["batch_size"]
    delay = get_rate_limit_delay(config)
    storage = get_storage_config(config)

    def _write(rows: list[Embedding]) -> int:
        return insert_embeddings(conn, rows, max_payload_bytes=storage["max_payload_bytes"])

    total = 0
    first = True
    while True:
        pending = get_chunks_pending_embedding(conn, embedder.model_name, batch_size)
        if not pending:
            break
        if not first and delay:
            await asyncio.sleep(delay)
        first = False

        vectors = await embedder.embed_batch([c.text for c in pending], RETRIEVAL_DOCUMENT)
        rows = [
            Embedding(chunk_id=chunk.chunk_id, model=embedder.model_name, vector=vector)
            for chunk, vector in zip(pending, vectors)
        ]
        written = await write_in_batches(
            _write, rows,
            batch_size=storage["batch_size"],
            min_rows=storage["min_split_rows"],
            max_retries=storage["max_retries"],
        )
        total += written
        logger.info("Embedded %d chunks (%d total)", written, total)
        if written == 0:
            # Nothing new could be stored; avoid re-fetching the same batch
            break

    return total
