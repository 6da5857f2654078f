"""Shared test fixtures."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timedelta

import numpy as np
import pytest

from letterintel.config import load_config
from letterintel.db import get_connection, init_db
from letterintel.llm.base import BaseLLMProvider, LLMResponse
from letterintel.models import RawMessage
from letterintel.process.embeddings import BaseEmbedder

WORD_RE = re.compile(r"[a-z0-9]+")


@pytest.fixture
def sample_config(tmp_path):
    """Minimal config for testing (no real API keys)."""
    config_text = """
llm:
  providers:
    mock:
      type: "openai_compatible"
      api_key: "test-key"
      base_url: "http://localhost:9999"
      default_model: "test-model"
  tasks:
    extract: { provider: "mock" }
    synthesize: { provider: "mock" }
    insights: { provider: "mock" }
    narratives: { provider: "mock" }
    briefing: { provider: "mock" }

embeddings:
  provider: "model2vec"
  model: "fake-embedder"
  batch_size: 4

sources:
  mailbox:
    enabled: false
    path: "MAIL_PATH_PLACEHOLDER"
    format: "maildir"

process:
  chunking:
    target_size: 800
    min_size: 200
    overlap: 100
  junk:
    min_length: 300
  dedup:
    enabled: true
  cluster:
    distance_threshold: 0.6

retrieval:
  top_k: 5
  weights:
    vector: 0.7
    keyword: 0.3

search:
  max_citations: 5

briefing:
  fallback_hours: 24
  classify_timeout_seconds: 5

rate_limit:
  delay_seconds: 0

storage:
  batch_size: 500
  min_split_rows: 25

database:
  path: "DB_PATH_PLACEHOLDER"
"""
    db_path = str(tmp_path / "test.db")
    mail_path = str(tmp_path / "mail")
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        config_text.replace("DB_PATH_PLACEHOLDER", db_path).replace(
            "MAIL_PATH_PLACEHOLDER", mail_path
        )
    )
    return load_config(str(cfg_path))


@pytest.fixture
def db_conn(sample_config):
    """Initialized test database connection."""
    db_path = sample_config["database"]["path"]
    init_db(db_path)
    conn = get_connection(db_path)
    yield conn
    conn.close()


class FakeEmbedder(BaseEmbedder):
    """Deterministic bag-of-words embedder: each word hashes to one dimension."""

    def __init__(self, model_name: str = "fake-embedder", dim: int = 64):
        super().__init__(model_name)
        self.dim = dim
        self.calls = 0

    def vector(self, text: str) -> list[float]:
        vec = np.zeros(self.dim, dtype=np.float32)
        for word in WORD_RE.findall(text.lower()):
            idx = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dim
            vec[idx] += 1.0
        return vec.tolist()

    async def embed_batch(self, texts, task_type="RETRIEVAL_DOCUMENT"):
        self.calls += 1
        return [self.vector(t) for t in texts]


class FakeProvider(BaseLLMProvider):
    """LLM provider that replays canned responses and records prompts."""

    def __init__(self, responses=None, default_model: str = "test-model"):
        super().__init__(api_key="", base_url="", default_model=default_model)
        self.responses = list(responses or [])
        self.prompts: list[str] = []
        self.kwargs: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def complete(self, prompt, system="", model=None, temperature=0.3,
                       max_tokens=2000, json_mode=False, max_retries=None):
        self.prompts.append(prompt)
        self.kwargs.append({"json_mode": json_mode, "max_retries": max_retries})
        if not self.responses:
            raise AssertionError(f"Unexpected LLM call: {prompt[:80]}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(prompt)
        return LLMResponse(
            text=item, input_tokens=100, output_tokens=50,
            model=self.default_model, cost_usd=0.001,
        )


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


def make_message(
    idx: int,
    sender: str = "editor@signal.example",
    subject: str | None = None,
    body: str | None = None,
    ingested_at: datetime | None = None,
) -> RawMessage:
    return RawMessage(
        source_id=f"msg-{idx}@example",
        sender_email=sender,
        sender_name=sender.split("@")[0].title(),
        subject=subject or f"Issue {idx}",
        body_text=body or (
            f"Issue {idx} covers semiconductor export controls in depth. "
            "Chipmakers are rerouting supply chains through new fabs. " * 8
        ),
        sent_at=datetime(2025, 1, 5, 9, 0) + timedelta(hours=idx),
        ingested_at=ingested_at or datetime(2025, 1, 6, 8, 0) + timedelta(minutes=idx),
        source="test",
    )


@pytest.fixture
def sample_messages():
    """Three issues on one story from two publishers, plus an unrelated one."""
    return [
        make_message(1, "editor@signal.example", "Chip export rules tighten"),
        make_message(2, "desk@fabweekly.example", "New export rules hit chipmakers"),
        make_message(3, "editor@signal.example", "Chipmakers react to export rules"),
        make_message(
            4, "chef@kitchen.example", "Winter rye guide",
            body="Starter hydration and crumb structure for winter loaves. " * 10,
        ),
    ]
