"""Tests for embedding providers and the chunk backfill."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from letterintel.db import count_embeddings, get_chunks_pending_embedding, insert_chunks
from letterintel.models import Chunk
from letterintel.process.embeddings import (
    Model2VecEmbedder,
    OpenAICompatibleEmbedder,
    build_embedder,
    embed_pending_chunks,
)

from tests.conftest import FakeEmbedder


def _store_chunks(conn, n, junk_every=0):
    chunks = [
        Chunk(
            source_id="msg-1@example",
            chunk_index=i,
            text=f"chunk number {i} about semiconductors",
            is_junk=bool(junk_every and i % junk_every == 0),
        )
        for i in range(n)
    ]
    insert_chunks(conn, chunks)
    return chunks


@pytest.mark.asyncio
async def test_embed_pending_chunks_backfills_in_batches(sample_config, db_conn):
    _store_chunks(db_conn, 10)
    embedder = FakeEmbedder()

    written = await embed_pending_chunks(db_conn, embedder, sample_config)

    assert written == 10
    assert embedder.calls == 3  # batch_size 4
    assert count_embeddings(db_conn, "fake-embedder") == 10
    assert get_chunks_pending_embedding(db_conn, "fake-embedder", 100) == []


@pytest.mark.asyncio
async def test_embed_pending_skips_junk(sample_config, db_conn):
    _store_chunks(db_conn, 6, junk_every=2)
    written = await embed_pending_chunks(db_conn, FakeEmbedder(), sample_config)
    assert written == 3


@pytest.mark.asyncio
async def test_embed_pending_is_resumable(sample_config, db_conn):
    _store_chunks(db_conn, 5)
    await embed_pending_chunks(db_conn, FakeEmbedder(), sample_config)

    embedder = FakeEmbedder()
    assert await embed_pending_chunks(db_conn, embedder, sample_config) == 0
    assert embedder.calls == 0


@pytest.mark.asyncio
async def test_dimension_change_is_rejected(sample_config, db_conn):
    _store_chunks(db_conn, 2)
    await embed_pending_chunks(db_conn, FakeEmbedder(dim=64), sample_config)

    insert_chunks(db_conn, [Chunk(source_id="msg-2@example", chunk_index=0, text="later")])
    with pytest.raises(ValueError, match="dim 32"):
        await embed_pending_chunks(db_conn, FakeEmbedder(dim=32), sample_config)


@pytest.mark.asyncio
async def test_model2vec_embedder_encodes_off_loop():
    embedder = Model2VecEmbedder("some/model")
    fake_model = MagicMock()
    fake_model.encode.return_value = np.ones((2, 8))
    embedder._model = fake_model

    vectors = await embedder.embed_batch(["a", "b"])

    assert len(vectors) == 2
    assert len(vectors[0]) == 8
    fake_model.encode.assert_called_once_with(["a", "b"])
    assert await embedder.embed_batch([]) == []


@pytest.mark.asyncio
@patch("letterintel.process.embeddings.httpx.AsyncClient")
async def test_openai_embedder_restores_input_order(mock_client_cls):
    mock_resp = MagicMock()
    mock_resp.raise_for_status = MagicMock()
    mock_resp.json.return_value = {
        "data": [
            {"index": 1, "embedding": [0.0, 1.0]},
            {"index": 0, "embedding": [1.0, 0.0]},
        ]
    }
    mock_client = AsyncMock()
    mock_client.post.return_value = mock_resp
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client

    embedder = OpenAICompatibleEmbedder("text-embed", base_url="http://localhost:9999/v1")
    vectors = await embedder.embed_batch(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert mock_client.post.call_args.args[0] == "http://localhost:9999/v1/embeddings"


def test_build_embedder(sample_config):
    embedder = build_embedder(sample_config)
    assert isinstance(embedder, Model2VecEmbedder)
    assert embedder.model_name == "fake-embedder"
