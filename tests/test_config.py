"""Tests for config loading and env var resolution."""

from __future__ import annotations

import pytest

from letterintel.config import (
    get_active_sources,
    get_briefing_config,
    get_db_path,
    get_embedding_config,
    get_llm_task_config,
    get_quality_weights,
    get_rate_limit_delay,
    get_retrieval_config,
    load_config,
)
from letterintel.errors import ConfigurationError


def test_load_config(sample_config):
    """Config loads and has expected structure."""
    assert "llm" in sample_config
    assert "retrieval" in sample_config
    assert "database" in sample_config


def test_env_var_resolution(tmp_path, monkeypatch):
    """Environment variables in ${VAR} format are resolved."""
    monkeypatch.setenv("TEST_API_KEY", "my-secret-key")
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("""
llm:
  providers:
    test:
      api_key: "${TEST_API_KEY}"
      base_url: "https://api.example.com"
""")
    config = load_config(str(cfg_path))
    assert config["llm"]["providers"]["test"]["api_key"] == "my-secret-key"


def test_empty_config_file(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("")
    assert load_config(str(cfg_path)) == {}


def test_get_active_sources(sample_config):
    """Disabled sources are not returned."""
    assert get_active_sources(sample_config) == []
    sample_config["sources"]["mailbox"]["enabled"] = True
    assert get_active_sources(sample_config) == ["mailbox"]


def test_get_llm_task_config(sample_config):
    """Task-to-provider mapping works."""
    cfg = get_llm_task_config(sample_config, "extract")
    assert cfg["provider_name"] == "mock"
    assert cfg["provider_type"] == "openai_compatible"
    assert cfg["model"] == "test-model"
    assert cfg["base_url"] == "http://localhost:9999"


def test_llm_task_without_provider(sample_config):
    with pytest.raises(ConfigurationError, match="No provider configured"):
        get_llm_task_config(sample_config, "unknown-task")


def test_llm_task_undefined_provider(sample_config):
    sample_config["llm"]["tasks"]["extract"] = {"provider": "missing"}
    with pytest.raises(ConfigurationError, match="not defined"):
        get_llm_task_config(sample_config, "extract")


def test_anthropic_provider_requires_key():
    config = {
        "llm": {
            "providers": {"claude": {"type": "anthropic", "api_key": ""}},
            "tasks": {"synthesize": {"provider": "claude"}},
        }
    }
    with pytest.raises(ConfigurationError, match="api_key"):
        get_llm_task_config(config, "synthesize")


def test_openai_compatible_embeddings_need_base_url():
    with pytest.raises(ConfigurationError, match="base_url"):
        get_embedding_config({"embeddings": {"provider": "openai_compatible"}})


def test_retrieval_weights(sample_config):
    cfg = get_retrieval_config(sample_config)
    assert cfg["vector_weight"] == 0.7
    assert cfg["keyword_weight"] == 0.3
    assert cfg["top_k"] == 5


def test_quality_weight_defaults():
    weights = get_quality_weights({})
    assert weights == {
        "citation": 0.30,
        "subscriber": 0.25,
        "recommendation": 0.15,
        "topic_relevance": 0.20,
        "platform": 0.05,
        "freshness": 0.05,
    }


def test_quality_weights_partial_override():
    weights = get_quality_weights({"quality": {"weights": {"citation": 0.5}}})
    assert weights["citation"] == 0.5
    assert weights["subscriber"] == 0.25


def test_quality_weights_reject_unknown():
    with pytest.raises(ConfigurationError, match="popularity"):
        get_quality_weights({"quality": {"weights": {"popularity": 0.1}}})


def test_briefing_defaults():
    cfg = get_briefing_config({})
    assert cfg["fallback_hours"] == 24
    assert cfg["classify_timeout_seconds"] == 40
    assert cfg["distance_threshold"] == 0.6


def test_rate_limit_delay(sample_config):
    assert get_rate_limit_delay(sample_config) == 0.0
    assert get_rate_limit_delay({}) == 2.0


def test_get_db_path(sample_config):
    """DB path is resolved from config."""
    assert get_db_path(sample_config).endswith("test.db")
    assert get_db_path({}) == "data/letterintel.db"
